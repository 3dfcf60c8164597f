"""
Tool-calling LLM clients.

Supports:
- OpenAI and OpenAI-compatible endpoints (chat completions, tool_choice="required")
- Anthropic and Anthropic-compatible endpoints (messages, tool_choice={"type": "any"})

Both force at least one tool call per response. Retries and timeouts are left
to the SDK clients.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import anthropic
import openai
from dotenv import load_dotenv

from .config import ModelConfig

logger = logging.getLogger(__name__)

# Auto-load .env from project root
_project_root = Path(__file__).parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)


class LLMError(Exception):
    """LLM call failed."""
    pass


class Provider(Enum):
    """LLM provider."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"


@dataclass
class ToolCall:
    """One tool invocation requested by the model."""

    id: str
    name: str
    # JSON string (OpenAI) or decoded mapping (Anthropic); validated downstream
    arguments: Any


@dataclass
class ChatResponse:
    """Response from a tool-calling completion."""

    content: str
    tool_calls: list[ToolCall]
    model: str
    provider: Provider
    stop_reason: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)


def resolve_provider(model: str, explicit: str | None = None) -> Provider:
    """Pick the provider for a model name."""
    if explicit:
        return Provider(explicit)
    if model.startswith("claude"):
        return Provider.ANTHROPIC
    # OpenAI-compatible endpoints are the common case for other models
    return Provider.OPENAI


class BaseLLMClient(ABC):
    """Abstract base class for tool-calling LLM clients."""

    @abstractmethod
    async def complete_with_tools(
        self,
        messages: list[dict[str, str]],
        tools: list[dict[str, Any]],
        model: str,
        max_tokens: int = 4096,
        temperature: float = 0.1,
    ) -> ChatResponse:
        """
        Get a completion that must contain at least one tool call.

        Args:
            messages: Chat messages; a leading ``system`` message is allowed
            tools: Provider-neutral tool definitions (name, description, parameters)
            model: Model identifier
            max_tokens: Max output tokens
            temperature: Sampling temperature

        Raises:
            LLMError: on any API failure
        """
        pass


class OpenAIClient(BaseLLMClient):
    """OpenAI chat-completions client."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 60.0,
        max_retries: int = 3,
        client: openai.AsyncOpenAI | None = None,
    ):
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        self.base_url = base_url or os.environ.get("OPENAI_BASE_URL")
        if client is None:
            if not self.api_key:
                raise ValueError("OpenAI API key required. Set OPENAI_API_KEY environment variable.")
            client_kwargs: dict[str, Any] = {
                "api_key": self.api_key,
                "timeout": timeout,
                "max_retries": max_retries,
            }
            if self.base_url:
                client_kwargs["base_url"] = self.base_url
            client = openai.AsyncOpenAI(**client_kwargs)
        self.client = client

    async def complete_with_tools(
        self,
        messages: list[dict[str, str]],
        tools: list[dict[str, Any]],
        model: str,
        max_tokens: int = 4096,
        temperature: float = 0.1,
    ) -> ChatResponse:
        request_params: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "tools": [{"type": "function", "function": tool} for tool in tools],
            "tool_choice": "required",
            "temperature": temperature,
        }
        # GPT-5+ and reasoning models use max_completion_tokens instead of max_tokens
        if model.startswith(("gpt-5", "o1", "o3")):
            request_params["max_completion_tokens"] = max_tokens
        else:
            request_params["max_tokens"] = max_tokens

        try:
            response = await self.client.chat.completions.create(**request_params)
        except openai.OpenAIError as e:
            raise LLMError(f"OpenAI API error: {e}") from e

        if not response.choices:
            raise LLMError("OpenAI API returned no choices")

        choice = response.choices[0]
        message = choice.message
        tool_calls = [
            ToolCall(id=tc.id, name=tc.function.name, arguments=tc.function.arguments)
            for tc in (message.tool_calls or [])
            if tc.type == "function"
        ]

        return ChatResponse(
            content=message.content or "",
            tool_calls=tool_calls,
            model=model,
            provider=Provider.OPENAI,
            stop_reason=choice.finish_reason,
            input_tokens=response.usage.prompt_tokens if response.usage else 0,
            output_tokens=response.usage.completion_tokens if response.usage else 0,
        )


class AnthropicClient(BaseLLMClient):
    """Anthropic messages client."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 60.0,
        max_retries: int = 3,
        client: anthropic.AsyncAnthropic | None = None,
    ):
        # Support both ANTHROPIC_API_KEY and ANTHROPIC_AUTH_TOKEN
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY") or os.environ.get("ANTHROPIC_AUTH_TOKEN")
        self.base_url = base_url or os.environ.get("ANTHROPIC_BASE_URL")
        if client is None:
            if not self.api_key:
                raise ValueError(
                    "Anthropic API key required. Set ANTHROPIC_API_KEY or ANTHROPIC_AUTH_TOKEN environment variable."
                )
            client_kwargs: dict[str, Any] = {
                "api_key": self.api_key,
                "timeout": timeout,
                "max_retries": max_retries,
            }
            if self.base_url:
                client_kwargs["base_url"] = self.base_url
            client = anthropic.AsyncAnthropic(**client_kwargs)
        self.client = client

    async def complete_with_tools(
        self,
        messages: list[dict[str, str]],
        tools: list[dict[str, Any]],
        model: str,
        max_tokens: int = 4096,
        temperature: float = 0.1,
    ) -> ChatResponse:
        # Anthropic takes the system prompt separately
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        chat_messages = [m for m in messages if m["role"] != "system"]

        request_params: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": chat_messages,
            "tools": [
                {"name": t["name"], "description": t["description"], "input_schema": t["parameters"]}
                for t in tools
            ],
            "tool_choice": {"type": "any"},
        }
        if system:
            request_params["system"] = system

        try:
            response = await self.client.messages.create(**request_params)
        except anthropic.AnthropicError as e:
            raise LLMError(f"Anthropic API error: {e}") from e

        content = ""
        tool_calls: list[ToolCall] = []
        for block in response.content:
            if block.type == "text":
                content += block.text
            elif block.type == "tool_use":
                tool_calls.append(ToolCall(id=block.id, name=block.name, arguments=block.input))

        return ChatResponse(
            content=content,
            tool_calls=tool_calls,
            model=model,
            provider=Provider.ANTHROPIC,
            stop_reason=response.stop_reason,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )


def create_client(config: ModelConfig) -> BaseLLMClient:
    """Build the client for a model configuration."""
    provider = resolve_provider(config.model_name, config.provider)
    logger.info(f"Using {provider.value} client for model {config.model_name}")

    if provider == Provider.ANTHROPIC:
        return AnthropicClient(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            max_retries=config.max_retries,
        )
    return OpenAIClient(
        api_key=config.api_key,
        base_url=config.base_url,
        timeout=config.timeout_seconds,
        max_retries=config.max_retries,
    )


__all__ = [
    "AnthropicClient",
    "BaseLLMClient",
    "ChatResponse",
    "LLMError",
    "OpenAIClient",
    "Provider",
    "ToolCall",
    "create_client",
    "resolve_provider",
]
