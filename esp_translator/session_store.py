"""
Session-scoped table state: rows, unsaved changes, and undo.

A session is one loaded plugin. SessionStore is constructed explicitly and
passed to whoever edits rows (the orchestrator's row-update path, manual
edits, find/replace), so tests and concurrent windows each get their own.

Pending (unsaved) membership is derived, not accumulated: a row is pending
while its current snapshot differs from the last persisted snapshot. Undo
therefore re-derives membership instead of clearing it.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from .config import HistoryConfig
from .history import HistoryCommand, HistoryRecord, HistoryStore
from .types import (
    Disposition,
    RowUpdate,
    RowUpdateCallback,
    StringRecord,
    TranslationStatus,
    WorkItem,
)

logger = logging.getLogger(__name__)


class SessionStoreError(Exception):
    """Invalid session store operation."""
    pass


class UnknownSessionError(SessionStoreError):
    """Session is not open."""
    pass


class UnknownRecordError(SessionStoreError):
    """Record id does not belong to the session."""
    pass


@dataclass(frozen=True)
class RecordEdit:
    """A requested change to one row."""

    record_id: str
    translated_text: str
    status: TranslationStatus = TranslationStatus.MANUAL


class SessionStore:
    """
    Rows, pending changes and edit history for every open session.

    All mutation goes through ``_commit``, which pushes exactly one
    HistoryCommand per call. ``undo`` writes snapshots back directly and
    records nothing.
    """

    def __init__(self, history: HistoryStore | None = None, config: HistoryConfig | None = None):
        config = config or HistoryConfig()
        self.history = history or HistoryStore(max_size=config.max_size)
        self._records: dict[str, dict[str, StringRecord]] = {}
        self._baseline: dict[str, dict[str, StringRecord]] = {}
        self._pending: dict[str, set[str]] = {}

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def open_session(self, session_id: str, records: Iterable[StringRecord]) -> bool:
        """
        Register a loaded plugin's rows.

        Returns False (and keeps the existing rows) if the session is already open.
        """
        if session_id in self._records:
            logger.info(f"Session already open: {session_id}")
            return False

        rows = {record.record_id: record for record in records}
        self._records[session_id] = rows
        self._baseline[session_id] = dict(rows)
        self._pending[session_id] = set()
        logger.info(f"Opened session {session_id} with {len(rows)} records")
        return True

    def close_session(self, session_id: str) -> None:
        """Drop rows, pending changes and history of a session."""
        self._require(session_id)
        del self._records[session_id]
        del self._baseline[session_id]
        del self._pending[session_id]
        self.history.clear_session(session_id)
        logger.info(f"Closed session {session_id}")

    def is_open(self, session_id: str) -> bool:
        return session_id in self._records

    @property
    def session_ids(self) -> list[str]:
        return list(self._records)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_record(self, session_id: str, record_id: str) -> StringRecord:
        rows = self._require(session_id)
        try:
            return rows[record_id]
        except KeyError:
            raise UnknownRecordError(f"{record_id} is not part of session {session_id}") from None

    def records(self, session_id: str, status: TranslationStatus | None = None) -> list[StringRecord]:
        rows = self._require(session_id).values()
        if status is None:
            return list(rows)
        return [r for r in rows if r.translation_status == status]

    def work_items(self, session_id: str, only_untranslated: bool = True) -> list[WorkItem]:
        """Build a translation batch from the session's rows."""
        rows = self.records(session_id)
        if only_untranslated:
            rows = [r for r in rows if r.translation_status == TranslationStatus.UNTRANSLATED]
        return [
            WorkItem(
                batch_index=batch_index,
                record_index=row.index,
                form_id=row.form_id,
                record_type=row.record_type,
                subrecord_type=row.subrecord_type,
                original_text=row.original_text,
            )
            for batch_index, row in enumerate(rows)
            if row.original_text
        ]

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def update_record(
        self,
        session_id: str,
        record_id: str,
        translated_text: str,
        status: TranslationStatus = TranslationStatus.MANUAL,
        description: str | None = None,
    ) -> HistoryCommand | None:
        """Edit one row. Returns the pushed command, or None if nothing changed."""
        edit = RecordEdit(record_id=record_id, translated_text=translated_text, status=status)
        return self._commit(session_id, [edit], description or f"Edit {record_id}")

    def apply_bulk_edits(
        self,
        session_id: str,
        edits: Sequence[RecordEdit],
        description: str | None = None,
    ) -> HistoryCommand | None:
        """Edit many rows as one undoable command."""
        return self._commit(session_id, list(edits), description or f"Edit {len(edits)} items")

    def replace_in_translations(
        self,
        session_id: str,
        find: str,
        replace: str,
        *,
        regex: bool = False,
        case_sensitive: bool = False,
    ) -> HistoryCommand | None:
        """
        Find/replace over translated texts as one undoable command.

        In regex mode ``replace`` may use group references (``\\1``).

        Raises:
            ValueError: blank search text or invalid regular expression
        """
        if not find.strip():
            raise ValueError("search text is empty")

        flags = 0 if case_sensitive else re.IGNORECASE
        try:
            pattern = re.compile(find if regex else re.escape(find), flags)
        except re.error as e:
            raise ValueError(f"invalid regular expression: {e}") from e

        edits: list[RecordEdit] = []
        for record in self.records(session_id):
            text = record.translated_text
            if not text or not pattern.search(text):
                continue
            after = pattern.sub(replace, text) if regex else pattern.sub(lambda _m: replace, text)
            edits.append(RecordEdit(record.record_id, after, TranslationStatus.MANUAL))

        if not edits:
            logger.info(f"Replace '{find}' matched nothing in {session_id}")
            return None
        return self._commit(session_id, edits, f"Replace {len(edits)} items")

    def row_update_handler(self, session_id: str) -> RowUpdateCallback:
        """
        Adapter for the orchestrator's row-update callback.

        Applied and expanded rows become AI edits, one command each; skipped
        rows are left untouched.
        """
        self._require(session_id)

        def handle(update: RowUpdate) -> None:
            if update.disposition == Disposition.SKIPPED or update.translated_text is None:
                return
            label = "AI translate" if update.disposition == Disposition.APPLIED else "AI translate (duplicate)"
            self.update_record(
                session_id,
                update.record_id,
                update.translated_text,
                status=update.status,
                description=f"{label} {update.record_id}",
            )

        return handle

    # ------------------------------------------------------------------
    # Undo
    # ------------------------------------------------------------------

    def can_undo(self, session_id: str) -> bool:
        return self.history.can_undo(session_id)

    def undo(self, session_id: str) -> HistoryCommand | None:
        """Revert the most recent command of a session."""
        rows = self._require(session_id)
        command = self.history.undo(session_id)
        if command is None:
            return None

        for record in command.records:
            rows[record.record_id] = record.before_state
            self._refresh_pending(session_id, record.record_id)

        logger.info(
            f"Reverted {len(command.records)} records in {session_id}, "
            f"{len(self._pending[session_id])} pending"
        )
        return command

    # ------------------------------------------------------------------
    # Pending changes
    # ------------------------------------------------------------------

    def pending_ids(self, session_id: str) -> set[str]:
        self._require(session_id)
        return set(self._pending[session_id])

    def pending_count(self, session_id: str) -> int:
        self._require(session_id)
        return len(self._pending[session_id])

    def total_pending_count(self) -> int:
        return sum(len(ids) for ids in self._pending.values())

    def pending_records(self, session_id: str) -> list[StringRecord]:
        """Rows a save has to persist."""
        rows = self._require(session_id)
        return [rows[record_id] for record_id in rows if record_id in self._pending[session_id]]

    def mark_saved(self, session_id: str) -> int:
        """Make the current rows the persisted baseline. Returns how many were pending."""
        rows = self._require(session_id)
        saved = len(self._pending[session_id])
        self._baseline[session_id] = dict(rows)
        self._pending[session_id].clear()
        logger.info(f"Marked {saved} records saved in {session_id}")
        return saved

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, session_id: str) -> dict[str, StringRecord]:
        try:
            return self._records[session_id]
        except KeyError:
            raise UnknownSessionError(f"session {session_id} is not open") from None

    def _commit(self, session_id: str, edits: list[RecordEdit], description: str) -> HistoryCommand | None:
        rows = self._require(session_id)

        # Resolve everything first so an unknown id changes nothing
        history_records: list[HistoryRecord] = []
        seen: set[str] = set()
        for edit in edits:
            if edit.record_id not in rows:
                raise UnknownRecordError(f"{edit.record_id} is not part of session {session_id}")
            if edit.record_id in seen:
                raise SessionStoreError(f"{edit.record_id} edited twice in one command")
            seen.add(edit.record_id)

            before = rows[edit.record_id]
            after = dataclasses.replace(
                before,
                translated_text=edit.translated_text,
                translation_status=edit.status,
            )
            if after != before:
                history_records.append(HistoryRecord(edit.record_id, before, after))

        if not history_records:
            return None

        for record in history_records:
            rows[record.record_id] = record.after_state
            self._refresh_pending(session_id, record.record_id)

        command = HistoryCommand.create(session_id, history_records, description)
        self.history.push(command)
        return command

    def _refresh_pending(self, session_id: str, record_id: str) -> None:
        pending = self._pending[session_id]
        if self._records[session_id][record_id] == self._baseline[session_id].get(record_id):
            pending.discard(record_id)
        else:
            pending.add(record_id)


__all__ = [
    "RecordEdit",
    "SessionStore",
    "SessionStoreError",
    "UnknownRecordError",
    "UnknownSessionError",
]
