"""
Shared fixtures for translator tests.

Model calls are replaced by ScriptedLLMClient, which replays a fixed list of
responses (or raises scripted exceptions) and records every request.
"""

from __future__ import annotations

import json
from typing import Any, Callable

import pytest

from esp_translator.api_client import BaseLLMClient, ChatResponse, Provider, ToolCall
from esp_translator.collaborators import (
    CollaboratorError,
    InMemoryGlossary,
    InMemoryReferenceIndex,
    ReferenceEntry,
)
from esp_translator.types import (
    QueueEntry,
    SearchCandidate,
    SessionState,
    StringRecord,
    TranslationStatus,
    WorkItem,
)


class ScriptedLLMClient(BaseLLMClient):
    """BaseLLMClient replaying scripted steps in order."""

    def __init__(self, steps: list[Any]):
        # ChatResponse, Exception to raise, or callable(messages) -> ChatResponse
        self.steps = list(steps)
        self.calls: list[dict[str, Any]] = []

    async def complete_with_tools(
        self,
        messages: list[dict[str, str]],
        tools: list[dict[str, Any]],
        model: str,
        max_tokens: int = 4096,
        temperature: float = 0.1,
    ) -> ChatResponse:
        self.calls.append({"messages": messages, "tools": tools, "model": model})
        if not self.steps:
            raise AssertionError("model called more often than scripted")
        step = self.steps.pop(0)
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return step(messages)
        return step


class FailingGlossary:
    """TermGlossary whose every call fails."""

    async def lookup(self, term: str) -> list[SearchCandidate]:
        raise CollaboratorError(f"glossary unavailable for {term}")

    async def annotate(self, text: str) -> str:
        raise CollaboratorError("glossary unavailable")


def tool_response(*calls: tuple[str, Any], content: str = "") -> ChatResponse:
    """Response carrying tool calls; dict arguments are JSON-encoded like OpenAI sends them."""
    return ChatResponse(
        content=content,
        tool_calls=[
            ToolCall(
                id=f"call_{i}",
                name=name,
                arguments=args if isinstance(args, str) else json.dumps(args, ensure_ascii=False),
            )
            for i, (name, args) in enumerate(calls)
        ],
        model="fake-model",
        provider=Provider.OPENAI,
        stop_reason="tool_calls",
    )


def text_response(content: str) -> ChatResponse:
    """Response without any tool call."""
    return ChatResponse(
        content=content,
        tool_calls=[],
        model="fake-model",
        provider=Provider.OPENAI,
        stop_reason="stop",
    )


def build_items(texts: list[str], record_type: str = "WEAP", subrecord_type: str = "FULL") -> list[WorkItem]:
    return [
        WorkItem(
            batch_index=i,
            record_index=0,
            form_id=f"{i + 1:08X}",
            record_type=record_type,
            subrecord_type=subrecord_type,
            original_text=text,
        )
        for i, text in enumerate(texts)
    ]


@pytest.fixture
def make_client() -> Callable[..., ScriptedLLMClient]:
    """Factory: make_client(step1, step2, ...)."""
    return lambda *steps: ScriptedLLMClient(list(steps))


@pytest.fixture
def make_tool_response() -> Callable[..., ChatResponse]:
    return tool_response


@pytest.fixture
def make_text_response() -> Callable[[str], ChatResponse]:
    return text_response


@pytest.fixture
def make_items() -> Callable[..., list[WorkItem]]:
    """Factory: make_items(["Iron Sword", ...]) with batch indices 0..n-1."""
    return build_items


@pytest.fixture
def make_state() -> Callable[..., tuple[SessionState, dict[int, WorkItem]]]:
    """Factory: make_state(items, budget_total=8) -> (state, items_by_index)."""

    def _make(items: list[WorkItem], budget_total: int = 8) -> tuple[SessionState, dict[int, WorkItem]]:
        state = SessionState(
            queue=[QueueEntry(index=item.batch_index, text=item.original_text) for item in items],
            total_count=len(items),
        )
        state.search_meta.budget_total = budget_total
        return state, {item.batch_index: item for item in items}

    return _make


@pytest.fixture
def glossary() -> InMemoryGlossary:
    return InMemoryGlossary(
        {
            "Sword": "剑",
            "Whiterun": "雪漫城",
            "Dragonborn": "龙裔",
            "Argonian": "亚龙人",
        }
    )


@pytest.fixture
def references() -> InMemoryReferenceIndex:
    return InMemoryReferenceIndex(
        [
            ReferenceEntry("Sword", "剑"),
            ReferenceEntry("Iron Sword", "铁剑"),
            ReferenceEntry("Steel Sword", "钢剑"),
            ReferenceEntry("Sword of Jyggalag", "吉格拉格之剑"),
            ReferenceEntry("Whiterun Guard", "雪漫城守卫"),
        ]
    )


@pytest.fixture
def failing_glossary() -> FailingGlossary:
    return FailingGlossary()


@pytest.fixture
def records() -> list[StringRecord]:
    """Rows of a small loaded plugin."""
    return [
        StringRecord("00012EB7", "WEAP", "FULL", 0, "Iron Sword"),
        StringRecord("00012EB8", "WEAP", "FULL", 0, "Steel Sword"),
        StringRecord("0001A6D9", "BOOK", "DESC", 0, "A tale of the Dragonborn."),
        StringRecord(
            "00013BA1",
            "NPC_",
            "FULL",
            0,
            "Whiterun Guard",
            translated_text="雪漫城卫兵",
            translation_status=TranslationStatus.MANUAL,
        ),
        StringRecord("00013BA2", "NPC_", "FULL", 0, "Whiterun Guard"),
    ]
