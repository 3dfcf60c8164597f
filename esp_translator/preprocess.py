"""Term annotation of work items before a batch starts."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from .collaborators import TermGlossary
from .types import QueueEntry, WorkItem

logger = logging.getLogger(__name__)


async def annotate_text(glossary: TermGlossary, text: str) -> str:
    """Annotate one text; on failure the original text is kept."""
    try:
        return await glossary.annotate(text)
    except Exception as e:
        logger.warning(f"Term annotation failed, using original text: {e}")
        return text


async def preprocess_batch(items: Sequence[WorkItem], glossary: TermGlossary | None) -> list[QueueEntry]:
    """
    Build the initial queue, annotating known terms inline.

    Texts are annotated concurrently; order follows ``items``.
    """
    if glossary is None:
        return [QueueEntry(index=item.batch_index, text=item.original_text) for item in items]

    annotated = await asyncio.gather(*(annotate_text(glossary, item.original_text) for item in items))
    changed = sum(1 for item, text in zip(items, annotated) if text != item.original_text)
    logger.info(f"Pre-processing annotated {changed}/{len(items)} texts")

    return [QueueEntry(index=item.batch_index, text=text) for item, text in zip(items, annotated)]


__all__ = ["annotate_text", "preprocess_batch"]
