"""
Translation orchestrator - the session loop driving the model.

One run translates a fixed batch of WorkItems:
1. Annotate known terms in the source texts
2. For each round:
   a. Check cancellation
   b. Build the prompt from SessionState
   c. Call the model (tool call required)
   d. Dispatch tool calls in order; the first rejected call ends the round
3. Stop when the queue is empty, the run is cancelled, the round limit is
   reached, or the model API fails.

Rounds are strictly sequential: one model call in flight, and its tool calls
all executed before the next call.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Sequence
from enum import Enum
from typing import Any

from .api_client import BaseLLMClient, ChatResponse, LLMError, create_client
from .cancellation import CancellationToken
from .collaborators import ReferenceIndex, TermGlossary
from .config import ModelConfig, OrchestratorConfig, TranslatorConfig
from .preprocess import preprocess_batch
from .prompts import build_messages
from .tool_schemas import TOOL_DEFINITIONS, ApplyArgs, SkipArgs, ToolExecutionError, parse_tool_arguments
from .tools import ToolExecutor
from .types import (
    LastError,
    ProgressCallback,
    RowUpdateCallback,
    SessionState,
    StatusCallback,
    TerminationReason,
    TranslationResult,
    WorkItem,
)

logger = logging.getLogger(__name__)

RESPONSE_PREVIEW_CHARS = 200

NO_TOOL_CALL_ERROR = (
    "You must respond with a tool call (search, apply_translations or skip). "
    "Plain text responses are not accepted."
)


class LoopPhase(Enum):
    """Where the session loop currently is."""

    IDLE = "idle"
    RUNNING = "running"
    WAITING_ON_MODEL = "waiting_on_model"
    TOOL_DISPATCH = "tool_dispatch"
    TERMINATED = "terminated"


def _preview(text: str | None) -> str | None:
    if not text:
        return None
    return text[:RESPONSE_PREVIEW_CHARS]


def _loggable_args(arguments: Any) -> Any:
    """Tool arguments as the model sent them, decoded when possible for readability."""
    if isinstance(arguments, str):
        try:
            return json.loads(arguments)
        except json.JSONDecodeError:
            return arguments
    return arguments


class TranslationOrchestrator:
    """
    Drives one model through the search / apply_translations / skip protocol.

    Each instance runs one batch at a time and owns that batch's SessionState.
    Independent batches use independent instances.

    Usage:
        orchestrator = TranslationOrchestrator(client, glossary=glossary, references=refs)
        result = await orchestrator.run(items, on_row_update=store.row_update_handler("Mod.esp"))
    """

    def __init__(
        self,
        client: BaseLLMClient,
        config: OrchestratorConfig | None = None,
        model_config: ModelConfig | None = None,
        glossary: TermGlossary | None = None,
        references: ReferenceIndex | None = None,
    ):
        self.client = client
        self.config = config or OrchestratorConfig()
        self.model_config = model_config or ModelConfig()
        self.glossary = glossary
        self.references = references

        self.phase = LoopPhase.IDLE
        self.state: SessionState | None = None
        self.iterations = 0
        self.history: list[dict[str, Any]] = []

    async def run(
        self,
        items: Sequence[WorkItem],
        on_row_update: RowUpdateCallback | None = None,
        on_progress: ProgressCallback | None = None,
        on_status: StatusCallback | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> TranslationResult:
        """
        Translate a batch.

        Args:
            items: Work items; batch_index values must be unique
            on_row_update: Called once per applied, expanded or skipped entry
            on_progress: Called with (completed, total) after each apply/skip
            on_status: Receives human-readable narration of the run
            cancellation_token: Polled at the top of every round

        Returns:
            TranslationResult; partial progress is reported on failure

        Raises:
            ValueError: duplicate batch indices
        """
        self.iterations = 0
        self.history = []

        if not items:
            self.phase = LoopPhase.TERMINATED
            return TranslationResult(success=True, translated_count=0, reason=TerminationReason.SUCCESS)

        items_by_index: dict[int, WorkItem] = {}
        for item in items:
            if item.batch_index in items_by_index:
                raise ValueError(f"duplicate batch index {item.batch_index}")
            items_by_index[item.batch_index] = item

        start_time = time.time()
        self.phase = LoopPhase.RUNNING
        self._emit(on_status, f"Pre-processing {len(items)} entries")

        queue = await preprocess_batch(items, self.glossary)
        state = SessionState(queue=queue, total_count=len(items))
        self.state = state

        executor = ToolExecutor(
            state,
            items_by_index,
            glossary=self.glossary,
            references=self.references,
            on_row_update=on_row_update,
            config=self.config,
        )
        state.search_meta.budget_total = executor.compute_budget(state.queue)

        logger.info(
            f"Starting batch: {state.total_count} entries, search budget {state.search_meta.budget_total}, "
            f"max {self.config.max_iterations} rounds"
        )
        self._emit(on_status, f"Translating {state.total_count} entries")

        try:
            while state.queue:
                if cancellation_token is not None and cancellation_token.is_cancelled():
                    logger.info(f"Batch cancelled after {self.iterations} rounds")
                    self._emit(on_status, "Translation cancelled")
                    return self._finish(state, TerminationReason.CANCELLED, "cancelled", start_time)

                if self.iterations >= self.config.max_iterations:
                    message = (
                        f"iteration limit ({self.config.max_iterations}) reached with "
                        f"{len(state.queue)} entries remaining"
                    )
                    logger.warning(message)
                    self._emit(on_status, f"Stopped: {message}")
                    return self._finish(state, TerminationReason.EXHAUSTED, message, start_time)

                self.iterations += 1
                await self._run_round(state, executor, on_progress, on_status)

        except LLMError as e:
            logger.error(f"Model call failed in round {self.iterations}: {e}")
            self._emit(on_status, f"Model API error: {e}")
            return self._finish(state, TerminationReason.ERROR, str(e), start_time)
        except Exception as e:
            # Raised by a caller-supplied callback, e.g. the session was closed mid-batch
            logger.exception(f"Callback failed in round {self.iterations}: {e}")
            self._emit(on_status, f"Translation aborted: {e}")
            return self._finish(state, TerminationReason.ERROR, f"{type(e).__name__}: {e}", start_time)

        self._emit(on_status, f"Done: {state.completed_count}/{state.total_count} entries")
        return self._finish(state, TerminationReason.SUCCESS, None, start_time)

    async def _run_round(
        self,
        state: SessionState,
        executor: ToolExecutor,
        on_progress: ProgressCallback | None,
        on_status: StatusCallback | None,
    ) -> None:
        """One model call and the dispatch of its tool calls."""
        self.phase = LoopPhase.WAITING_ON_MODEL
        logger.info(f"Round {self.iterations}: {len(state.queue)} entries remaining")

        messages = build_messages(state, self.config.target_language)
        response = await self.client.complete_with_tools(
            messages=messages,
            tools=TOOL_DEFINITIONS,
            model=self.model_config.model_name,
            max_tokens=self.model_config.max_tokens,
            temperature=self.model_config.temperature,
        )

        if not response.tool_calls:
            logger.warning(f"Round {self.iterations}: model returned no tool call (stop_reason={response.stop_reason})")
            state.last_error = LastError(
                tool="system",
                args={},
                error=NO_TOOL_CALL_ERROR,
                model_response_preview=_preview(response.content),
            )
            self._record(response, ok=False)
            self._emit(on_status, "Model answered without a tool call, retrying")
            self.phase = LoopPhase.RUNNING
            return

        state.last_error = None
        self.phase = LoopPhase.TOOL_DISPATCH
        ok = await self._dispatch(state, executor, response, on_progress, on_status)
        self._record(response, ok=ok)
        self.phase = LoopPhase.RUNNING

    async def _dispatch(
        self,
        state: SessionState,
        executor: ToolExecutor,
        response: ChatResponse,
        on_progress: ProgressCallback | None,
        on_status: StatusCallback | None,
    ) -> bool:
        """Execute tool calls in order. Returns False if one was rejected."""
        for call in response.tool_calls:
            try:
                args = parse_tool_arguments(call.name, call.arguments)
                summary = await executor.execute(call.name, args)
            except ToolExecutionError as e:
                logger.warning(f"Tool call {call.name} rejected: {e}")
                state.last_error = LastError(
                    tool=call.name,
                    args=_loggable_args(call.arguments),
                    error=str(e),
                    model_response_preview=_preview(response.content),
                )
                self._emit(on_status, f"{call.name} rejected: {e}")
                return False

            self._emit(on_status, summary)
            if on_progress is not None and isinstance(args, (ApplyArgs, SkipArgs)):
                on_progress(state.completed_count, state.total_count)

        return True

    def _record(self, response: ChatResponse, ok: bool) -> None:
        self.history.append(
            {
                "round": self.iterations,
                "tools": [call.name for call in response.tool_calls],
                "ok": ok,
                "remaining": len(self.state.queue) if self.state else 0,
            }
        )

    def _finish(
        self,
        state: SessionState,
        reason: TerminationReason,
        error: str | None,
        start_time: float,
    ) -> TranslationResult:
        self.phase = LoopPhase.TERMINATED
        elapsed_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Batch finished ({reason.value}): {state.completed_count}/{state.total_count} "
            f"in {self.iterations} rounds, {elapsed_ms:.0f}ms"
        )
        return TranslationResult(
            success=reason == TerminationReason.SUCCESS,
            translated_count=state.completed_count,
            reason=reason,
            error=error,
            iterations=self.iterations,
            remaining=len(state.queue),
        )

    @staticmethod
    def _emit(on_status: StatusCallback | None, message: str) -> None:
        if on_status is not None:
            on_status(message)


async def translate_batch(
    items: Sequence[WorkItem],
    config: TranslatorConfig | None = None,
    glossary: TermGlossary | None = None,
    references: ReferenceIndex | None = None,
    on_row_update: RowUpdateCallback | None = None,
    on_progress: ProgressCallback | None = None,
    on_status: StatusCallback | None = None,
    cancellation_token: CancellationToken | None = None,
    client: BaseLLMClient | None = None,
) -> TranslationResult:
    """Run one batch with a client built from configuration."""
    config = config or TranslatorConfig()
    orchestrator = TranslationOrchestrator(
        client or create_client(config.model),
        config=config.orchestrator,
        model_config=config.model,
        glossary=glossary,
        references=references,
    )
    return await orchestrator.run(
        items,
        on_row_update=on_row_update,
        on_progress=on_progress,
        on_status=on_status,
        cancellation_token=cancellation_token,
    )


__all__ = [
    "LoopPhase",
    "NO_TOOL_CALL_ERROR",
    "TranslationOrchestrator",
    "translate_batch",
]
