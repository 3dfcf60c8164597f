"""
Integration test: a batch run feeding the session store, then undo.

Covers the path a loaded plugin takes:
- rows opened in a SessionStore
- work items built from untranslated rows
- orchestrator row updates recorded as AI edits
- undo restoring every row and the pending set
"""

from __future__ import annotations

import pytest

from esp_translator.orchestrator import TranslationOrchestrator
from esp_translator.session_store import SessionStore
from esp_translator.types import StringRecord, TranslationStatus

SESSION = "Dawnguard.esm"


@pytest.fixture
def plugin_rows() -> list[StringRecord]:
    return [
        StringRecord("02000801", "WEAP", "FULL", 0, "Iron Sword"),
        StringRecord("02000802", "WEAP", "FULL", 0, "Iron Sword"),
        StringRecord("02000803", "CELL", "FULL", 0, "Whiterun"),
        StringRecord("02000804", "MISC", "FULL", 0, "100"),
        StringRecord(
            "02000805",
            "FACT",
            "FULL",
            0,
            "Dawnguard",
            translated_text="黎明守卫",
            translation_status=TranslationStatus.MANUAL,
        ),
    ]


class TestBatchUndoRoundTrip:
    """Applying a batch then undoing it restores rows bit-for-bit."""

    @pytest.mark.asyncio
    async def test_round_trip(self, plugin_rows, make_client, make_tool_response, glossary):
        store = SessionStore()
        store.open_session(SESSION, plugin_rows)

        # A manual edit made before the batch stays pending throughout
        store.update_record(SESSION, "02000805|FACT|FULL|0", "黎明守卫军")
        rows_before = {r.record_id: r for r in store.records(SESSION)}
        pending_before = store.pending_ids(SESSION)

        items = store.work_items(SESSION)
        assert [i.original_text for i in items] == ["Iron Sword", "Iron Sword", "Whiterun", "100"]

        client = make_client(
            make_tool_response(("search", {"terms": ["Iron Sword", "Whiterun"]})),
            make_tool_response(
                (
                    "apply_translations",
                    {"translations": [{"index": 0, "translated": "铁剑"}, {"index": 2, "translated": "雪漫城"}]},
                ),
                ("skip", {"entries": [{"index": 3, "reason": "numeric"}]}),
            ),
        )
        orchestrator = TranslationOrchestrator(client, glossary=glossary)

        result = await orchestrator.run(items, on_row_update=store.row_update_handler(SESSION))

        assert result.success is True
        assert result.translated_count == 4
        assert store.get_record(SESSION, "02000802|WEAP|FULL|0").translated_text == "铁剑"
        assert store.get_record(SESSION, "02000802|WEAP|FULL|0").translation_status == TranslationStatus.AI
        assert store.get_record(SESSION, "02000804|MISC|FULL|0").translated_text == ""
        assert store.pending_count(SESSION) == 4

        # One command per applied or expanded row
        edits = store.history.undo_count(SESSION) - 1
        assert edits == 3
        for _ in range(edits):
            store.undo(SESSION)

        assert {r.record_id: r for r in store.records(SESSION)} == rows_before
        assert store.pending_ids(SESSION) == pending_before

    @pytest.mark.asyncio
    async def test_save_then_continue(self, plugin_rows, make_client, make_tool_response):
        store = SessionStore()
        store.open_session(SESSION, plugin_rows)
        client = make_client(
            make_tool_response(
                ("apply_translations", {"translations": [{"index": 0, "translated": "铁剑"}, {"index": 2, "translated": "雪漫城"}]}),
                ("skip", {"entries": [{"index": 3}]}),
            )
        )

        await TranslationOrchestrator(client).run(store.work_items(SESSION), on_row_update=store.row_update_handler(SESSION))

        to_save = store.pending_records(SESSION)
        assert sorted(r.form_id for r in to_save) == ["02000801", "02000802", "02000803"]
        store.mark_saved(SESSION)

        # Skipped rows stay untranslated; the saved rows are the new baseline
        assert [i.original_text for i in store.work_items(SESSION)] == ["100"]
        store.undo(SESSION)
        assert store.pending_count(SESSION) == 1


class TestBatchScript:
    """scripts/translate_batch.py helpers with a scripted model."""

    def setup_method(self):
        from scripts import translate_batch

        self.script = translate_batch

    @pytest.mark.asyncio
    async def test_run_batch_report(self, tmp_path, make_client, make_tool_response, monkeypatch):
        import argparse
        import json

        strings = tmp_path / "strings.json"
        strings.write_text(
            json.dumps(
                [
                    {"form_id": "02000801", "record_type": "WEAP", "subrecord_type": "FULL", "index": 0, "original_text": "Sword"},
                    {"form_id": "02000802", "record_type": "WEAP", "subrecord_type": "FULL", "index": 0, "original_text": "Sword"},
                ]
            ),
            encoding="utf-8",
        )
        glossary = tmp_path / "glossary.json"
        glossary.write_text(json.dumps({"Sword": "剑"}, ensure_ascii=False), encoding="utf-8")

        client = make_client(make_tool_response(("apply_translations", {"translations": [{"index": 0, "translated": "剑"}]})))
        monkeypatch.setattr(self.script, "create_client", lambda config: client)

        args = argparse.Namespace(
            input=strings,
            glossary=glossary,
            references=None,
            config=tmp_path / "missing-config.json",
            output=None,
            verbose=False,
        )
        report = await self.script.run_batch(args, self.script.CancellationToken())

        assert report["success"] is True
        assert report["reason"] == "success"
        assert report["translated_count"] == 2
        assert [r["translated_text"] for r in report["records"]] == ["剑", "剑"]
        assert {r["translation_status"] for r in report["records"]} == {"ai"}
        assert "Sword(剑)" in client.calls[0]["messages"][1]["content"]

    def test_load_records_rejects_non_list(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{}", encoding="utf-8")
        with pytest.raises(ValueError, match="expected a JSON list"):
            self.script.load_records(path)
