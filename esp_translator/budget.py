"""Search budget calculation."""

from __future__ import annotations

import math
from collections.abc import Iterable

from .types import QueueEntry

MIN_BUDGET = 8
MAX_BUDGET = 30
ITEMS_PER_LOOKUP = 4
CHARS_PER_LOOKUP = 600


def compute_budget(
    entries: Iterable[QueueEntry],
    min_budget: int = MIN_BUDGET,
    max_budget: int = MAX_BUDGET,
    items_per_lookup: int = ITEMS_PER_LOOKUP,
    chars_per_lookup: int = CHARS_PER_LOOKUP,
) -> int:
    """
    Number of term lookups allowed for the given remaining work.

    ``clamp(ceil(count / 4) + ceil(total_chars / 600), 8, 30)`` with the
    default constants. Called again whenever the queue shrinks after an
    apply, so the budget follows the remaining work rather than counting down.
    """
    count = 0
    total_chars = 0
    for entry in entries:
        count += 1
        total_chars += len(entry.text)

    raw = math.ceil(count / items_per_lookup) + math.ceil(total_chars / chars_per_lookup)
    return max(min_budget, min(max_budget, raw))


__all__ = ["MAX_BUDGET", "MIN_BUDGET", "compute_budget"]
