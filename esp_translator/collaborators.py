"""
Lookup collaborators consumed by the translation tools.

The real implementations live behind the plugin engine (term glossary and
the reference-translation database). The protocols below are what the
orchestrator needs from them; the in-memory versions back the batch script
and the tests.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Protocol

from .types import SearchCandidate

logger = logging.getLogger(__name__)


class CollaboratorError(Exception):
    """A glossary or reference lookup failed."""
    pass


class TermGlossary(Protocol):
    """Confirmed term translations (the atom glossary)."""

    async def lookup(self, term: str) -> list[SearchCandidate]:
        """Exact, case-insensitive lookup."""
        ...

    async def annotate(self, text: str) -> str:
        """Mark known terms inline as ``Term(translation)``."""
        ...


class ReferenceIndex(Protocol):
    """Previously persisted translations of whole strings."""

    async def query(self, text: str, limit: int) -> list[SearchCandidate]:
        """Fuzzy lookup of ``text``, at most ``limit`` results."""
        ...


class InMemoryGlossary:
    """Dictionary-backed TermGlossary."""

    def __init__(self, terms: Mapping[str, str] | None = None):
        self._terms: dict[str, tuple[str, str]] = {}
        for source, target in (terms or {}).items():
            self.add(source, target)

    def add(self, source: str, target: str) -> None:
        self._terms[source.lower()] = (source, target)

    def __len__(self) -> int:
        return len(self._terms)

    async def lookup(self, term: str) -> list[SearchCandidate]:
        hit = self._terms.get(term.strip().lower())
        if hit is None:
            return []
        return [SearchCandidate(source=term, target=hit[1])]

    async def annotate(self, text: str) -> str:
        if not self._terms or not text:
            return text

        # Longest terms claim their span first; overlapping shorter matches are dropped
        spans: list[tuple[int, int, str]] = []
        for source, target in sorted(self._terms.values(), key=lambda t: len(t[0]), reverse=True):
            for match in re.finditer(re.escape(source), text, re.IGNORECASE):
                start, end = match.span()
                if _is_word_span(text, start, end) and not any(
                    start < s_end and end > s_start for s_start, s_end, _ in spans
                ):
                    spans.append((start, end, target))

        if not spans:
            return text

        result = text
        for start, end, target in sorted(spans, reverse=True):
            result = f"{result[:start]}{result[start:end]}({target}){result[end:]}"
        return result


def _is_word_span(text: str, start: int, end: int) -> bool:
    """True if text[start:end] is not glued to surrounding letters."""
    before_ok = start == 0 or not text[start - 1].isalnum()
    after_ok = end == len(text) or not text[end].isalnum()
    return before_ok and after_ok


@dataclass(frozen=True)
class ReferenceEntry:
    """A persisted translation usable as reference."""

    original_text: str
    translated_text: str


class InMemoryReferenceIndex:
    """List-backed ReferenceIndex with case-insensitive substring matching."""

    def __init__(self, entries: Iterable[ReferenceEntry] | None = None):
        self._entries: list[ReferenceEntry] = list(entries or [])

    def add(self, original_text: str, translated_text: str) -> None:
        self._entries.append(ReferenceEntry(original_text, translated_text))

    async def query(self, text: str, limit: int) -> list[SearchCandidate]:
        needle = text.strip().lower()
        if not needle:
            return []

        matches = [
            entry
            for entry in self._entries
            if entry.original_text and entry.translated_text and needle in entry.original_text.lower()
        ]
        matches.sort(key=lambda entry: len(entry.original_text))
        return [SearchCandidate(source=e.original_text, target=e.translated_text) for e in matches[:limit]]


__all__ = [
    "CollaboratorError",
    "InMemoryGlossary",
    "InMemoryReferenceIndex",
    "ReferenceEntry",
    "ReferenceIndex",
    "TermGlossary",
]
