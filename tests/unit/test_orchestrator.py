"""
Unit tests for the translation orchestrator.

Tests the session loop against a scripted model:
- Termination: success, cancellation, iteration cap, model API failure
- Self-correction through last_error
- Callback contracts
"""

from __future__ import annotations

import pytest

from esp_translator.api_client import LLMError
from esp_translator.cancellation import CancellationToken
from esp_translator.config import OrchestratorConfig
from esp_translator.orchestrator import NO_TOOL_CALL_ERROR, LoopPhase, TranslationOrchestrator, translate_batch
from esp_translator.session_store import SessionStore
from esp_translator.types import Disposition, StringRecord, TerminationReason


def apply(*pairs):
    return ("apply_translations", {"translations": [{"index": i, "translated": t} for i, t in pairs]})


def user_prompt(call) -> str:
    return call["messages"][1]["content"]


class TestRunTermination:
    """How a run ends."""

    @pytest.mark.asyncio
    async def test_empty_batch_succeeds_without_model_call(self, make_client):
        client = make_client()
        result = await TranslationOrchestrator(client).run([])

        assert result.success is True
        assert result.translated_count == 0
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_duplicate_batch_index_rejected(self, make_client, make_items):
        items = make_items(["Iron Sword"]) * 2
        with pytest.raises(ValueError, match="duplicate batch index 0"):
            await TranslationOrchestrator(make_client()).run(items)

    @pytest.mark.asyncio
    async def test_success_when_queue_empties(self, make_client, make_tool_response, make_items):
        client = make_client(
            make_tool_response(apply((0, "剑"))),
            make_tool_response(("skip", {"entries": [{"index": 2, "reason": "numeric"}]}), apply((1, "盾"))),
        )
        orchestrator = TranslationOrchestrator(client)

        result = await orchestrator.run(make_items(["Sword", "Shield", "100"]))

        assert result.success is True
        assert result.reason == TerminationReason.SUCCESS
        assert result.translated_count == 3
        assert result.iterations == 2
        assert result.remaining == 0
        assert result.error is None
        assert orchestrator.phase == LoopPhase.TERMINATED

    @pytest.mark.asyncio
    async def test_duplicate_propagation_scenario(self, make_client, make_tool_response, make_items):
        """queue [Sword, Sword]; one apply empties the queue with completed == 2."""
        updates = []
        client = make_client(make_tool_response(apply((0, "剑"))))
        orchestrator = TranslationOrchestrator(client)

        result = await orchestrator.run(make_items(["Sword", "Sword"]), on_row_update=updates.append)

        assert result.success is True
        assert orchestrator.state.completed_count == 2
        assert [u.translated_text for u in updates] == ["剑", "剑"]
        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_iteration_cap_exhausts(self, make_client, make_tool_response, make_items):
        client = make_client(*[make_tool_response(("search", {"terms": [f"term{i}"]})) for i in range(3)])
        orchestrator = TranslationOrchestrator(client, config=OrchestratorConfig(max_iterations=3))

        result = await orchestrator.run(make_items(["Sothis", "Whiterun"]))

        assert result.success is False
        assert result.reason == TerminationReason.EXHAUSTED
        assert result.iterations == 3
        assert result.remaining == 2
        assert "iteration limit (3)" in result.error

    @pytest.mark.asyncio
    async def test_model_failure_is_fatal_with_partial_progress(self, make_client, make_tool_response, make_items):
        client = make_client(make_tool_response(apply((0, "剑"))), LLMError("401 unauthorized"))

        result = await TranslationOrchestrator(client).run(make_items(["Sword", "Shield"]))

        assert result.success is False
        assert result.reason == TerminationReason.ERROR
        assert result.translated_count == 1
        assert result.error == "401 unauthorized"

    @pytest.mark.asyncio
    async def test_row_update_failure_ends_batch_with_result(self, make_client, make_tool_response):
        """Closing the plugin mid-batch makes the store callback raise."""
        store = SessionStore()
        store.open_session("a.esp", [
            StringRecord("00000001", "WEAP", "FULL", 0, "Sword"),
            StringRecord("00000002", "ARMO", "FULL", 0, "Shield"),
        ])

        def close_then_apply(messages):
            store.close_session("a.esp")
            return make_tool_response(apply((0, "剑")))

        orchestrator = TranslationOrchestrator(make_client(close_then_apply))
        items = store.work_items("a.esp")

        result = await orchestrator.run(items, on_row_update=store.row_update_handler("a.esp"))

        assert result.success is False
        assert result.reason == TerminationReason.ERROR
        assert "UnknownSessionError" in result.error
        assert result.translated_count == 1
        assert result.remaining == 1
        assert orchestrator.phase == LoopPhase.TERMINATED
        assert orchestrator.state.recent_apply.count == 1
        assert orchestrator.state.search_meta.budget_used == 0

    @pytest.mark.asyncio
    async def test_cancel_before_first_round(self, make_client, make_items):
        token = CancellationToken()
        token.cancel()
        client = make_client()

        result = await TranslationOrchestrator(client).run(make_items(["Sword"]), cancellation_token=token)

        assert result.success is False
        assert result.reason == TerminationReason.CANCELLED
        assert result.error == "cancelled"
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_cancel_mid_loop_stops_after_current_round(self, make_client, make_tool_response, make_items):
        """The round in flight completes; no further model call is made."""
        token = CancellationToken()

        def cancel_then_apply(messages):
            token.cancel()
            return make_tool_response(apply((0, "剑")))

        client = make_client(cancel_then_apply, make_tool_response(apply((1, "盾"))))

        result = await TranslationOrchestrator(client).run(
            make_items(["Sword", "Shield"]), cancellation_token=token
        )

        assert result.success is False
        assert result.error == "cancelled"
        assert result.translated_count == 1
        assert len(client.calls) == 1


class TestSelfCorrection:
    """Recoverable failures are shown to the model on the next round."""

    @pytest.mark.asyncio
    async def test_no_tool_call_records_protocol_error(self, make_client, make_tool_response, make_text_response, make_items):
        client = make_client(make_text_response("剑"), make_tool_response(apply((0, "剑"))))

        result = await TranslationOrchestrator(client).run(make_items(["Sword"]))

        assert result.success is True
        second = user_prompt(client.calls[1])
        assert "tool: system" in second
        assert NO_TOOL_CALL_ERROR in second
        assert "your response: 剑" in second

    @pytest.mark.asyncio
    async def test_invalid_index_fed_back_and_fixed(self, make_client, make_tool_response, make_items):
        updates = []
        client = make_client(
            make_tool_response(apply((0, "剑"), (9, "弓"))),
            make_tool_response(apply((0, "剑"))),
        )

        result = await TranslationOrchestrator(client).run(make_items(["Sword"]), on_row_update=updates.append)

        assert result.success is True
        assert "indices not in queue: 9" in user_prompt(client.calls[1])
        assert len(updates) == 1

    @pytest.mark.asyncio
    async def test_malformed_arguments_fed_back(self, make_client, make_tool_response, make_items):
        client = make_client(
            make_tool_response(("apply_translations", '{"translations": "[{\\"index\\": 0}]"}')),
            make_tool_response(apply((0, "剑"))),
        )

        result = await TranslationOrchestrator(client).run(make_items(["Sword"]))

        assert result.success is True
        second = user_prompt(client.calls[1])
        assert "invalid arguments for apply_translations" in second

    @pytest.mark.asyncio
    async def test_failed_call_stops_remaining_calls_in_round(self, make_client, make_tool_response, make_items):
        client = make_client(
            make_tool_response(("search", {"terms": []}), apply((0, "剑"))),
            make_tool_response(apply((0, "剑"))),
        )
        orchestrator = TranslationOrchestrator(client)

        result = await orchestrator.run(make_items(["Sword"]))

        assert result.iterations == 2
        assert orchestrator.history[0]["ok"] is False
        assert "empty search request" in user_prompt(client.calls[1])

    @pytest.mark.asyncio
    async def test_last_error_cleared_after_good_round(self, make_client, make_tool_response, make_text_response, make_items):
        client = make_client(
            make_text_response("?"),
            make_tool_response(("search", {"terms": ["Sword"]})),
            make_tool_response(apply((0, "剑"))),
        )

        await TranslationOrchestrator(client).run(make_items(["Sword"]))

        assert "LAST TOOL CALL FAILED" in user_prompt(client.calls[1])
        assert "LAST TOOL CALL FAILED" not in user_prompt(client.calls[2])

    @pytest.mark.asyncio
    async def test_budget_exhaustion_is_recoverable(self, make_client, make_tool_response, make_items, glossary):
        terms = [f"term{i}" for i in range(8)]
        client = make_client(
            make_tool_response(("search", {"terms": terms})),
            make_tool_response(("search", {"terms": ["Sothis"]})),
            make_tool_response(apply((0, "索西斯"))),
        )

        result = await TranslationOrchestrator(client, glossary=glossary).run(make_items(["Sothis"]))

        assert result.success is True
        assert "search budget exhausted (8/8)" in user_prompt(client.calls[2])


class TestCallbacksAndState:
    """What the caller sees during a run."""

    @pytest.mark.asyncio
    async def test_progress_after_apply_and_skip_only(self, make_client, make_tool_response, make_items):
        progress = []
        client = make_client(
            make_tool_response(("search", {"terms": ["Sword"]})),
            make_tool_response(apply((0, "剑")), ("skip", {"entries": [{"index": 1}]})),
        )

        await TranslationOrchestrator(client).run(make_items(["Sword", "100"]), on_progress=lambda c, t: progress.append((c, t)))

        assert progress == [(1, 2), (2, 2)]

    @pytest.mark.asyncio
    async def test_row_updates_carry_identity(self, make_client, make_tool_response, make_items):
        updates = []
        client = make_client(make_tool_response(apply((0, "剑")), ("skip", {"entries": [{"index": 1}]})))

        await TranslationOrchestrator(client).run(make_items(["Sword", "100"]), on_row_update=updates.append)

        assert [(u.record_id, u.disposition) for u in updates] == [
            ("00000001|WEAP|FULL|0", Disposition.APPLIED),
            ("00000002|WEAP|FULL|0", Disposition.SKIPPED),
        ]

    @pytest.mark.asyncio
    async def test_status_narration(self, make_client, make_tool_response, make_items):
        messages = []
        client = make_client(make_tool_response(apply((0, "剑"))))

        await TranslationOrchestrator(client).run(make_items(["Sword"]), on_status=messages.append)

        assert messages[0] == "Pre-processing 1 entries"
        assert "apply_translations: 1 applied, 0 expanded" in messages
        assert messages[-1] == "Done: 1/1 entries"

    @pytest.mark.asyncio
    async def test_prompt_contains_annotated_queue(self, make_client, make_tool_response, make_items, glossary):
        client = make_client(make_tool_response(apply((0, "雪漫城守卫"))))

        await TranslationOrchestrator(client, glossary=glossary).run(make_items(["Whiterun Guard"]))

        assert '0,"Whiterun(雪漫城) Guard"' in user_prompt(client.calls[0])

    @pytest.mark.asyncio
    async def test_initial_budget_from_annotated_queue(self, make_client, make_tool_response, make_items):
        client = make_client(make_tool_response(apply(*[(i, "译") for i in range(40)])))
        orchestrator = TranslationOrchestrator(client)

        await orchestrator.run(make_items(["x" * 60] * 40))

        assert "- search budget: 0/14" in user_prompt(client.calls[0])

    @pytest.mark.asyncio
    async def test_translate_batch_uses_given_client(self, make_client, make_tool_response, make_items):
        client = make_client(make_tool_response(apply((0, "剑"))))
        result = await translate_batch(make_items(["Sword"]), client=client)
        assert result.success is True
