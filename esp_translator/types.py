"""
Core data types for AI batch translation and edit tracking.

A batch run owns exactly one SessionState; WorkItems are immutable for the
lifetime of the run. StringRecords are the editable table rows that the
history snapshots before and after every change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Literal

# Bounds for the previews shown back to the model
RECENT_INDEX_LIMIT = 5
RECENT_PREVIEW_LIMIT = 3


class TranslationStatus(str, Enum):
    """Origin of a row's current translated text."""

    UNTRANSLATED = "untranslated"
    MANUAL = "manual"
    AI = "ai"


@dataclass(frozen=True)
class StringRecord:
    """One translatable string of a loaded plugin."""

    form_id: str
    record_type: str
    subrecord_type: str
    index: int
    original_text: str
    translated_text: str = ""
    editor_id: str | None = None
    translation_status: TranslationStatus = TranslationStatus.UNTRANSLATED

    @property
    def record_id(self) -> str:
        return make_record_id(self.form_id, self.record_type, self.subrecord_type, self.index)


def make_record_id(form_id: str, record_type: str, subrecord_type: str, index: int) -> str:
    """Durable row identity: ``formId|recordType|subrecordType|index``."""
    return f"{form_id}|{record_type}|{subrecord_type}|{index}"


@dataclass(frozen=True)
class WorkItem:
    """One fragment to translate in a batch."""

    batch_index: int
    record_index: int
    form_id: str
    record_type: str
    subrecord_type: str
    original_text: str

    @property
    def record_id(self) -> str:
        return make_record_id(self.form_id, self.record_type, self.subrecord_type, self.record_index)


@dataclass
class QueueEntry:
    """A not-yet-disposed entry as the model sees it (text may be annotated)."""

    index: int
    text: str


@dataclass(frozen=True)
class SearchCandidate:
    """A source/target pair offered to the model."""

    source: str
    target: str


@dataclass
class SearchResult:
    """Resolution of one search term."""

    status: Literal["ok", "not_found"]
    candidates: list[SearchCandidate] = field(default_factory=list)

    @classmethod
    def not_found(cls) -> SearchResult:
        return cls(status="not_found")

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "candidates": [{"source": c.source, "target": c.target} for c in self.candidates],
        }


@dataclass
class SearchMeta:
    """Search budget and what happened on the last search call."""

    last_requested_terms: list[str] = field(default_factory=list)
    executed_terms: list[str] = field(default_factory=list)
    cache_hits: list[str] = field(default_factory=list)
    deferred_terms: list[str] = field(default_factory=list)
    budget_used: int = 0
    budget_total: int = 0

    @property
    def budget_remaining(self) -> int:
        return max(0, self.budget_total - self.budget_used)


@dataclass
class RecentApply:
    """Summary of the last successful apply_translations call."""

    count: int
    indices: list[int]  # last RECENT_INDEX_LIMIT
    preview: list[tuple[int, str]]  # last RECENT_PREVIEW_LIMIT
    expanded_count: int = 0


@dataclass
class RecentSkip:
    """Summary of the last successful skip call."""

    count: int
    indices: list[int]
    preview: list[tuple[int, str | None]]


@dataclass
class LastError:
    """The last rejected tool call, shown verbatim to the model."""

    tool: str
    args: Any
    error: str
    model_response_preview: str | None = None


@dataclass
class SessionState:
    """
    Mutable state of one batch run.

    Invariants:
    - ``queue`` only shrinks.
    - ``completed_count + len(queue) == total_count``.
    - ``search_meta.budget_used <= search_meta.budget_total``.
    """

    queue: list[QueueEntry]
    total_count: int
    search_cache: dict[str, SearchResult] = field(default_factory=dict)
    search_meta: SearchMeta = field(default_factory=SearchMeta)
    completed_count: int = 0
    recent_apply: RecentApply | None = None
    recent_skip: RecentSkip | None = None
    last_error: LastError | None = None

    def queued_indices(self) -> set[int]:
        return {entry.index for entry in self.queue}

    def remove(self, indices: set[int]) -> None:
        """Drop disposed entries and count them as completed."""
        before = len(self.queue)
        self.queue = [entry for entry in self.queue if entry.index not in indices]
        self.completed_count += before - len(self.queue)


class Disposition(str, Enum):
    """How a queue entry left the queue."""

    APPLIED = "applied"
    EXPANDED = "expanded"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class RowUpdate:
    """Row-level notification sent to the UI/session layer."""

    form_id: str
    record_type: str
    subrecord_type: str
    record_index: int
    translated_text: str | None
    disposition: Disposition
    status: TranslationStatus = TranslationStatus.AI
    reason: str | None = None

    @property
    def record_id(self) -> str:
        return make_record_id(self.form_id, self.record_type, self.subrecord_type, self.record_index)


class TerminationReason(str, Enum):
    """Why a batch run stopped."""

    SUCCESS = "success"
    CANCELLED = "cancelled"
    EXHAUSTED = "exhausted"
    ERROR = "error"


@dataclass
class TranslationResult:
    """Outcome of one batch run."""

    success: bool
    translated_count: int
    reason: TerminationReason
    error: str | None = None
    iterations: int = 0
    remaining: int = 0


RowUpdateCallback = Callable[[RowUpdate], None]
ProgressCallback = Callable[[int, int], None]  # (completed, total)
StatusCallback = Callable[[str], None]


__all__ = [
    "Disposition",
    "LastError",
    "ProgressCallback",
    "QueueEntry",
    "RECENT_INDEX_LIMIT",
    "RECENT_PREVIEW_LIMIT",
    "RecentApply",
    "RecentSkip",
    "RowUpdate",
    "RowUpdateCallback",
    "SearchCandidate",
    "SearchMeta",
    "SearchResult",
    "SessionState",
    "StatusCallback",
    "StringRecord",
    "TerminationReason",
    "TranslationResult",
    "TranslationStatus",
    "WorkItem",
    "make_record_id",
]
