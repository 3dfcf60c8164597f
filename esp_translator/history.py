"""
Undo history for table edits.

Every committed edit (AI or manual) becomes one HistoryCommand holding full
before/after snapshots of each row it touched. Stacks are kept per session
and capped; the oldest command is dropped first when the cap is exceeded.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum

from .types import StringRecord

logger = logging.getLogger(__name__)

DEFAULT_MAX_HISTORY = 30


class CommandKind(str, Enum):
    """Whether a command touched one row or many."""

    SINGLE = "single"
    BATCH = "batch"


@dataclass(frozen=True)
class HistoryRecord:
    """Snapshot of one row before and after an edit."""

    record_id: str
    before_state: StringRecord
    after_state: StringRecord


@dataclass(frozen=True)
class HistoryCommand:
    """One undoable unit."""

    session_id: str
    records: tuple[HistoryRecord, ...]
    description: str
    kind: CommandKind = CommandKind.SINGLE
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def create(cls, session_id: str, records: list[HistoryRecord], description: str) -> HistoryCommand:
        kind = CommandKind.BATCH if len(records) > 1 else CommandKind.SINGLE
        return cls(session_id=session_id, records=tuple(records), description=description, kind=kind)


class HistoryStore:
    """
    Per-session LIFO stacks of HistoryCommands.

    Operations on one session never touch another. Undo pops a command and
    hands it back; applying the reversal is the caller's job and is not
    itself recorded.
    """

    def __init__(self, max_size: int = DEFAULT_MAX_HISTORY):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._stacks: dict[str, list[HistoryCommand]] = {}

    def push(self, command: HistoryCommand) -> None:
        """Append a command, evicting the oldest one over the cap."""
        stack = self._stacks.setdefault(command.session_id, [])
        stack.append(command)

        if len(stack) > self.max_size:
            evicted = stack.pop(0)
            logger.warning(
                f"History full for {command.session_id} (limit {self.max_size}), "
                f"dropped oldest: {evicted.description}"
            )

        logger.info(f"History push [{command.session_id}]: {command.description} ({len(command.records)} records)")

    def undo(self, session_id: str) -> HistoryCommand | None:
        """Pop the most recent command of a session, or None if there is none."""
        stack = self._stacks.get(session_id)
        if not stack:
            logger.info(f"Nothing to undo for {session_id}")
            return None

        command = stack.pop()
        if not stack:
            del self._stacks[session_id]

        logger.info(f"Undo [{session_id}]: {command.description}")
        return command

    def can_undo(self, session_id: str) -> bool:
        return bool(self._stacks.get(session_id))

    def undo_count(self, session_id: str) -> int:
        return len(self._stacks.get(session_id, []))

    def get_history(self, session_id: str) -> list[HistoryCommand]:
        """Commands of a session, oldest first."""
        return list(self._stacks.get(session_id, []))

    def clear_session(self, session_id: str) -> None:
        if self._stacks.pop(session_id, None) is not None:
            logger.info(f"Cleared history for {session_id}")

    def clear_all(self) -> None:
        self._stacks.clear()
        logger.info("Cleared all history")


__all__ = [
    "CommandKind",
    "DEFAULT_MAX_HISTORY",
    "HistoryCommand",
    "HistoryRecord",
    "HistoryStore",
]
