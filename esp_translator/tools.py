"""
Tool executors for the translation session.

Each executor validates its whole request before touching SessionState, so a
rejected call leaves the queue, cache and budget exactly as they were.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from .budget import compute_budget
from .collaborators import ReferenceIndex, TermGlossary
from .config import OrchestratorConfig
from .tool_schemas import (
    ApplyArgs,
    SearchArgs,
    SkipArgs,
    SkipItem,
    ToolArgs,
    ToolExecutionError,
    TranslationItem,
)
from .types import (
    RECENT_INDEX_LIMIT,
    RECENT_PREVIEW_LIMIT,
    Disposition,
    QueueEntry,
    RecentApply,
    RecentSkip,
    RowUpdate,
    RowUpdateCallback,
    SearchCandidate,
    SearchResult,
    SessionState,
    TranslationStatus,
    WorkItem,
)

logger = logging.getLogger(__name__)


class InvalidIndexError(ToolExecutionError):
    """Request referenced indices that are not in the queue."""

    def __init__(self, tool: str, message: str, invalid_indices: list[int]):
        super().__init__(tool, message)
        self.invalid_indices = invalid_indices


class EmptySearchError(ToolExecutionError):
    """Search request had no usable terms."""
    pass


class BudgetExhaustedError(ToolExecutionError):
    """Search budget is used up; nothing was queried."""

    def __init__(self, tool: str, message: str, terms: list[str]):
        super().__init__(tool, message)
        self.terms = terms


@dataclass
class ApplyOutcome:
    """Indices disposed by one apply_translations call."""

    applied: list[int] = field(default_factory=list)
    expanded: list[int] = field(default_factory=list)


def find_duplicate_indices(
    queue: Iterable[QueueEntry],
    items: Mapping[int, WorkItem],
    index: int,
    exclude: Iterable[int] = (),
) -> list[int]:
    """
    Queue indices whose original text is identical to that of ``index``.

    Comparison uses the untouched source text, not the annotated queue text.
    """
    source = items[index].original_text
    excluded = set(exclude)
    excluded.add(index)
    return [
        entry.index
        for entry in queue
        if entry.index not in excluded and items[entry.index].original_text == source
    ]


class ToolExecutor:
    """
    Executes search / apply_translations / skip against one SessionState.

    Usage:
        executor = ToolExecutor(state, items, glossary, references, on_row_update)
        summary = await executor.execute("search", SearchArgs(terms=["Whiterun"]))
    """

    def __init__(
        self,
        state: SessionState,
        items: Mapping[int, WorkItem],
        glossary: TermGlossary | None = None,
        references: ReferenceIndex | None = None,
        on_row_update: RowUpdateCallback | None = None,
        config: OrchestratorConfig | None = None,
    ):
        self.state = state
        self.items = items
        self.glossary = glossary
        self.references = references
        self.on_row_update = on_row_update
        self.config = config or OrchestratorConfig()

    def compute_budget(self, entries: Iterable[QueueEntry]) -> int:
        return compute_budget(
            entries,
            min_budget=self.config.min_budget,
            max_budget=self.config.max_budget,
            items_per_lookup=self.config.items_per_lookup,
            chars_per_lookup=self.config.chars_per_lookup,
        )

    async def execute(self, tool: str, args: ToolArgs) -> str:
        """Dispatch a validated tool call. Returns a one-line summary."""
        if isinstance(args, SearchArgs):
            results = await self.search(args.terms)
            found = sum(1 for r in results.values() if r.status == "ok")
            meta = self.state.search_meta
            summary = f"search: {found}/{len(results)} terms resolved, budget {meta.budget_used}/{meta.budget_total}"
            if meta.deferred_terms:
                summary += f", deferred {len(meta.deferred_terms)}"
            return summary

        if isinstance(args, ApplyArgs):
            outcome = self.apply(args.translations)
            return f"apply_translations: {len(outcome.applied)} applied, {len(outcome.expanded)} expanded"

        if isinstance(args, SkipArgs):
            skipped = self.skip(args.entries)
            return f"skip: {len(skipped)} skipped"

        raise ToolExecutionError(tool, f"no executor for tool '{tool}'")

    # ------------------------------------------------------------------
    # search
    # ------------------------------------------------------------------

    async def search(self, terms: Sequence[str]) -> dict[str, SearchResult]:
        """
        Resolve terms through the cache, then the glossary and references.

        Raises:
            EmptySearchError: no non-blank terms
            BudgetExhaustedError: uncached terms requested with zero budget left
        """
        normalized = list(dict.fromkeys(t.strip() for t in terms if t and t.strip()))
        if not normalized:
            raise EmptySearchError("search", "empty search request")

        cache = self.state.search_cache
        meta = self.state.search_meta

        cache_hits = [t for t in normalized if t in cache and cache[t].status == "ok"]
        missing = [t for t in normalized if t not in cache_hits]

        remaining = meta.budget_remaining
        if missing and remaining == 0:
            raise BudgetExhaustedError(
                "search",
                f"search budget exhausted ({meta.budget_used}/{meta.budget_total}); "
                f"not queried: {', '.join(missing)}. Use the search cache and inline "
                "annotations, or translate these terms yourself.",
                terms=missing,
            )

        to_query = missing[:remaining]
        deferred = missing[remaining:]

        resolved = await self._lookup_terms(to_query)
        cache.update(resolved)

        meta.last_requested_terms = normalized
        meta.executed_terms = to_query
        meta.cache_hits = cache_hits
        meta.deferred_terms = deferred
        meta.budget_used = min(meta.budget_total, meta.budget_used + len(to_query))

        if deferred:
            logger.info(f"search deferred {len(deferred)} terms for budget: {deferred}")
        logger.info(
            f"search: {len(to_query)} queried, {len(cache_hits)} cache hits, "
            f"budget {meta.budget_used}/{meta.budget_total}"
        )

        return {t: cache[t] for t in cache_hits + to_query}

    async def _lookup_terms(self, terms: list[str]) -> dict[str, SearchResult]:
        if not terms:
            return {}
        try:
            results = await asyncio.gather(*(self._lookup_term(term) for term in terms))
        except Exception as e:
            logger.warning(f"Term lookup failed, marking {len(terms)} terms not_found: {e}")
            return {term: SearchResult.not_found() for term in terms}

        not_found = [term for term, result in zip(terms, results) if result.status == "not_found"]
        if not_found:
            logger.info(f"search: no candidates for {', '.join(not_found)}")
        return dict(zip(terms, results))

    async def _lookup_term(self, term: str) -> SearchResult:
        candidates: list[SearchCandidate] = []
        seen_targets: set[str] = set()

        sources: list[SearchCandidate] = []
        if self.glossary is not None:
            sources.extend(await self.glossary.lookup(term))
        if self.references is not None:
            sources.extend(await self.references.query(term, self.config.reference_limit))

        # Glossary entries come first, so they win target-text ties
        for candidate in sources:
            if not candidate.source or not candidate.target:
                continue
            if candidate.target in seen_targets:
                continue
            seen_targets.add(candidate.target)
            candidates.append(candidate)

        if not candidates:
            return SearchResult.not_found()

        candidates.sort(key=lambda c: len(c.target))
        return SearchResult(status="ok", candidates=candidates[: self.config.max_candidates])

    # ------------------------------------------------------------------
    # apply_translations
    # ------------------------------------------------------------------

    def apply(self, translations: Sequence[TranslationItem]) -> ApplyOutcome:
        """
        Commit translations and propagate them to identical source texts.

        All-or-nothing: a single unknown index rejects the whole call.
        """
        self._validate_indices("apply_translations", [t.index for t in translations])

        applied: dict[int, str] = {t.index: t.translated for t in translations}
        expanded: dict[int, str] = {}
        for t in translations:
            for dup in find_duplicate_indices(
                self.state.queue, self.items, t.index, exclude=[*applied, *expanded]
            ):
                expanded[dup] = t.translated

        self.state.remove(set(applied) | set(expanded))

        disposed = [*applied, *expanded]
        self.state.recent_apply = RecentApply(
            count=len(disposed),
            indices=disposed[-RECENT_INDEX_LIMIT:],
            preview=list(applied.items())[-RECENT_PREVIEW_LIMIT:],
            expanded_count=len(expanded),
        )

        meta = self.state.search_meta
        meta.deferred_terms = []
        meta.budget_used = 0
        meta.budget_total = self.compute_budget(self.state.queue)

        # Callbacks run after the state is settled
        for index, text in applied.items():
            self._notify(index, text, Disposition.APPLIED)
        for index, text in expanded.items():
            self._notify(index, text, Disposition.EXPANDED)

        if expanded:
            logger.info(f"apply_translations propagated to {len(expanded)} duplicate entries")
        logger.info(
            f"apply_translations: {len(applied)} applied, {len(expanded)} expanded, "
            f"{len(self.state.queue)} remaining, budget reset to {meta.budget_total}"
        )
        return ApplyOutcome(applied=list(applied), expanded=list(expanded))

    # ------------------------------------------------------------------
    # skip
    # ------------------------------------------------------------------

    def skip(self, entries: Sequence[SkipItem]) -> list[int]:
        """Remove entries without writing a translation."""
        indices = [e.index for e in entries]
        self._validate_indices("skip", indices)

        self.state.remove(set(indices))
        self.state.recent_skip = RecentSkip(
            count=len(indices),
            indices=indices[-RECENT_INDEX_LIMIT:],
            preview=[(e.index, e.reason) for e in entries][-RECENT_PREVIEW_LIMIT:],
        )
        for entry in entries:
            self._notify(entry.index, None, Disposition.SKIPPED, reason=entry.reason)
        logger.info(f"skip: {len(indices)} skipped, {len(self.state.queue)} remaining")
        return indices

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _validate_indices(self, tool: str, indices: list[int]) -> None:
        queued = self.state.queued_indices()
        invalid = sorted({i for i in indices if i not in queued})
        repeated = sorted({i for i in indices if indices.count(i) > 1})

        problems = []
        if invalid:
            problems.append(f"indices not in queue: {', '.join(str(i) for i in invalid)}")
        if repeated:
            problems.append(f"indices given more than once: {', '.join(str(i) for i in repeated)}")
        if problems:
            raise InvalidIndexError(
                tool,
                f"{tool} rejected, nothing was applied; " + "; ".join(problems),
                invalid_indices=invalid + [i for i in repeated if i not in invalid],
            )

    def _notify(
        self,
        index: int,
        translated: str | None,
        disposition: Disposition,
        reason: str | None = None,
    ) -> None:
        if self.on_row_update is None:
            return
        item = self.items[index]
        self.on_row_update(
            RowUpdate(
                form_id=item.form_id,
                record_type=item.record_type,
                subrecord_type=item.subrecord_type,
                record_index=item.record_index,
                translated_text=translated,
                disposition=disposition,
                status=TranslationStatus.AI,
                reason=reason,
            )
        )


__all__ = [
    "ApplyOutcome",
    "BudgetExhaustedError",
    "EmptySearchError",
    "InvalidIndexError",
    "ToolExecutor",
    "find_duplicate_indices",
]
