"""
Model-facing tool definitions and strict argument validation.

Arguments arrive either as a JSON object string (OpenAI) or as a decoded
mapping (Anthropic). Both are validated against the same pydantic models with
strict scalar types; anything else is rejected, never re-parsed.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError


class SearchArgs(BaseModel):
    """Arguments of ``search``."""

    model_config = ConfigDict(extra="forbid")

    terms: list[StrictStr]


class TranslationItem(BaseModel):
    """One translated entry."""

    model_config = ConfigDict(extra="forbid")

    index: StrictInt
    translated: StrictStr


class ApplyArgs(BaseModel):
    """Arguments of ``apply_translations``."""

    model_config = ConfigDict(extra="forbid")

    translations: list[TranslationItem] = Field(min_length=1)


class SkipItem(BaseModel):
    """One skipped entry."""

    model_config = ConfigDict(extra="forbid")

    index: StrictInt
    reason: StrictStr | None = None


class SkipArgs(BaseModel):
    """Arguments of ``skip``."""

    model_config = ConfigDict(extra="forbid")

    entries: list[SkipItem] = Field(min_length=1)


ToolArgs = Union[SearchArgs, ApplyArgs, SkipArgs]

TOOL_ARGUMENT_MODELS: dict[str, type[BaseModel]] = {
    "search": SearchArgs,
    "apply_translations": ApplyArgs,
    "skip": SkipArgs,
}


class ToolExecutionError(Exception):
    """A tool call was rejected; the message is fed back to the model."""

    def __init__(self, tool: str, message: str):
        super().__init__(message)
        self.tool = tool


class ToolArgumentError(ToolExecutionError):
    """Tool call could not be validated."""
    pass


def parse_tool_arguments(tool: str, raw: str | Mapping[str, Any] | None) -> ToolArgs:
    """
    Validate raw tool-call arguments.

    Raises:
        ToolArgumentError: unknown tool, non-object payload, or schema mismatch
    """
    model = TOOL_ARGUMENT_MODELS.get(tool)
    if model is None:
        raise ToolArgumentError(
            tool, f"unknown tool '{tool}', expected one of: {', '.join(TOOL_ARGUMENT_MODELS)}"
        )

    if isinstance(raw, str):
        try:
            data = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as e:
            raise ToolArgumentError(tool, f"arguments are not valid JSON: {e}") from e
    elif raw is None:
        data = {}
    else:
        data = raw

    if not isinstance(data, Mapping):
        raise ToolArgumentError(tool, f"arguments must be a JSON object, got {type(data).__name__}")

    try:
        return model.model_validate(dict(data))
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}" for err in e.errors()
        )
        raise ToolArgumentError(tool, f"invalid arguments for {tool}: {details}") from e


TOOL_DEFINITIONS: list[dict[str, Any]] = [
    {
        "name": "search",
        "description": (
            "Look up candidate translations for proper nouns and terms. "
            "Consumes search budget for terms not already in the search cache."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "terms": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Source-language terms to look up",
                },
            },
            "required": ["terms"],
        },
    },
    {
        "name": "apply_translations",
        "description": (
            "Commit translations for queue entries. Rejected as a whole if any index "
            "is not in the queue. Entries with identical source text are filled in automatically."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "translations": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "index": {"type": "integer", "description": "Queue index"},
                            "translated": {"type": "string", "description": "Translated text"},
                        },
                        "required": ["index", "translated"],
                    },
                },
            },
            "required": ["translations"],
        },
    },
    {
        "name": "skip",
        "description": (
            "Remove entries that need no translation (numbers, symbols, text already "
            "in the target language) without writing a translation."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "entries": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "index": {"type": "integer", "description": "Queue index"},
                            "reason": {"type": "string", "description": "Why no translation is needed"},
                        },
                        "required": ["index"],
                    },
                },
            },
            "required": ["entries"],
        },
    },
]


__all__ = [
    "ApplyArgs",
    "SearchArgs",
    "SkipArgs",
    "SkipItem",
    "TOOL_ARGUMENT_MODELS",
    "TOOL_DEFINITIONS",
    "ToolArgs",
    "ToolArgumentError",
    "ToolExecutionError",
    "TranslationItem",
    "parse_tool_arguments",
]
