"""ESP translator: AI batch translation of game-mod strings.

Drives a tool-calling model through a search / apply_translations / skip
protocol over a queue of plugin strings, and keeps the edited table
undoable per loaded plugin.

Layers:
- Orchestration: budget, pre-processing, tool executors, session loop
- Editing: session store with pending changes and undo history
"""

__version__ = "0.1.0"

# Orchestration
from .orchestrator import LoopPhase, TranslationOrchestrator, translate_batch
from .tools import BudgetExhaustedError, EmptySearchError, InvalidIndexError, ToolExecutor
from .tool_schemas import TOOL_DEFINITIONS, ToolArgumentError, ToolExecutionError, parse_tool_arguments
from .budget import compute_budget
from .preprocess import preprocess_batch
from .cancellation import CancellationToken
from .api_client import AnthropicClient, BaseLLMClient, ChatResponse, LLMError, OpenAIClient, ToolCall, create_client
from .collaborators import (
    CollaboratorError,
    InMemoryGlossary,
    InMemoryReferenceIndex,
    ReferenceIndex,
    TermGlossary,
)

# Editing
from .history import HistoryCommand, HistoryRecord, HistoryStore
from .session_store import RecordEdit, SessionStore, SessionStoreError, UnknownRecordError, UnknownSessionError

# Types & Config
from .types import (
    Disposition,
    RowUpdate,
    SessionState,
    StringRecord,
    TerminationReason,
    TranslationResult,
    TranslationStatus,
    WorkItem,
)
from .config import TranslatorConfig, default_config

__all__ = [
    # Orchestration
    "LoopPhase",
    "TranslationOrchestrator",
    "translate_batch",
    "ToolExecutor",
    "BudgetExhaustedError",
    "EmptySearchError",
    "InvalidIndexError",
    "TOOL_DEFINITIONS",
    "ToolArgumentError",
    "ToolExecutionError",
    "parse_tool_arguments",
    "compute_budget",
    "preprocess_batch",
    "CancellationToken",
    "AnthropicClient",
    "BaseLLMClient",
    "ChatResponse",
    "LLMError",
    "OpenAIClient",
    "ToolCall",
    "create_client",
    "CollaboratorError",
    "InMemoryGlossary",
    "InMemoryReferenceIndex",
    "ReferenceIndex",
    "TermGlossary",
    # Editing
    "HistoryCommand",
    "HistoryRecord",
    "HistoryStore",
    "RecordEdit",
    "SessionStore",
    "SessionStoreError",
    "UnknownRecordError",
    "UnknownSessionError",
    # Types & Config
    "Disposition",
    "RowUpdate",
    "SessionState",
    "StringRecord",
    "TerminationReason",
    "TranslationResult",
    "TranslationStatus",
    "WorkItem",
    "TranslatorConfig",
    "default_config",
]
