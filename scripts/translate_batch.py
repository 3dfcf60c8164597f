#!/usr/bin/env python3
"""
Batch translation entry point.

Runs one batch of plugin strings through the translation orchestrator and
writes every row the run changed.

Usage:
    python scripts/translate_batch.py --input strings.json

    # With a term glossary and reference translations
    python scripts/translate_batch.py --input strings.json \\
        --glossary glossary.json --references references.json --output out.json

Input formats:
    strings.json     [{"form_id", "record_type", "subrecord_type", "index",
                       "original_text", "translated_text"?, "translation_status"?}, ...]
    glossary.json    {"Whiterun": "雪漫城", ...}
    references.json  [{"original_text", "translated_text"}, ...]

Model selection follows the config file and environment:
    ESP_TRANSLATOR_MODEL, OPENAI_API_KEY / ANTHROPIC_API_KEY, *_BASE_URL

Ctrl-C stops the batch after the current round; rows already applied are kept.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any

sys.path.insert(0, str(Path(__file__).parent.parent))

from esp_translator.api_client import LLMError, create_client  # noqa: E402
from esp_translator.cancellation import CancellationToken  # noqa: E402
from esp_translator.collaborators import InMemoryGlossary, InMemoryReferenceIndex, ReferenceEntry  # noqa: E402
from esp_translator.config import TranslatorConfig  # noqa: E402
from esp_translator.orchestrator import TranslationOrchestrator  # noqa: E402
from esp_translator.session_store import SessionStore  # noqa: E402
from esp_translator.types import StringRecord, TranslationResult, TranslationStatus  # noqa: E402

logger = logging.getLogger("translate_batch")


def load_records(path: Path) -> list[StringRecord]:
    """Read plugin strings from a JSON list."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a JSON list of records")

    records = []
    for raw in data:
        records.append(
            StringRecord(
                form_id=str(raw["form_id"]),
                record_type=str(raw["record_type"]),
                subrecord_type=str(raw["subrecord_type"]),
                index=int(raw.get("index", 0)),
                original_text=raw.get("original_text", ""),
                translated_text=raw.get("translated_text", ""),
                editor_id=raw.get("editor_id"),
                translation_status=TranslationStatus(raw.get("translation_status", "untranslated")),
            )
        )
    return records


def load_glossary(path: Path | None) -> InMemoryGlossary | None:
    if path is None:
        return None
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object of term -> translation")
    return InMemoryGlossary(data)


def load_references(path: Path | None) -> InMemoryReferenceIndex | None:
    if path is None:
        return None
    data = json.loads(path.read_text(encoding="utf-8"))
    return InMemoryReferenceIndex(
        ReferenceEntry(original_text=e["original_text"], translated_text=e["translated_text"]) for e in data
    )


def build_report(result: TranslationResult, records: list[StringRecord]) -> dict[str, Any]:
    report = asdict(result)
    report["reason"] = result.reason.value
    report["records"] = [
        {**asdict(record), "translation_status": record.translation_status.value} for record in records
    ]
    return report


async def run_batch(args: argparse.Namespace, token: CancellationToken) -> dict[str, Any]:
    """Load inputs, run the orchestrator, return the report."""
    config = TranslatorConfig.load(args.config)
    session_id = args.input.name

    store = SessionStore(config=config.history)
    store.open_session(session_id, load_records(args.input))
    items = store.work_items(session_id)
    print(f"[ESP:START] {len(items)} untranslated strings in {session_id}")

    orchestrator = TranslationOrchestrator(
        create_client(config.model),
        config=config.orchestrator,
        model_config=config.model,
        glossary=load_glossary(args.glossary),
        references=load_references(args.references),
    )

    def on_progress(completed: int, total: int) -> None:
        print(f"[ESP:PROGRESS] {completed}/{total}")

    def on_status(message: str) -> None:
        if args.verbose:
            print(f"[ESP:STATUS] {message}")

    result = await orchestrator.run(
        items,
        on_row_update=store.row_update_handler(session_id),
        on_progress=on_progress,
        on_status=on_status,
        cancellation_token=token,
    )

    print(f"[ESP:DONE] {result.reason.value}: {result.translated_count}/{len(items)} in {result.iterations} rounds")
    return build_report(result, store.pending_records(session_id))


def main():
    parser = argparse.ArgumentParser(
        description="Translate plugin strings with a tool-calling model",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--input", "-i", type=Path, required=True, help="JSON list of plugin strings")
    parser.add_argument("--glossary", "-g", type=Path, help="JSON object of term translations")
    parser.add_argument("--references", "-r", type=Path, help="JSON list of reference translations")
    parser.add_argument("--config", "-c", type=Path, help="Config file (default: ~/.esp-translator/config.json)")
    parser.add_argument("--output", "-o", type=Path, help="Write the report here instead of stdout")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging and status narration")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    token = CancellationToken()
    signal.signal(signal.SIGINT, lambda signum, frame: token.cancel())

    try:
        report = asyncio.run(run_batch(args, token))
    except (OSError, ValueError, KeyError, LLMError) as e:
        print(f"[ESP:ERROR] {e}", file=sys.stderr)
        sys.exit(1)

    output = json.dumps(report, indent=2, ensure_ascii=False)
    if args.output:
        args.output.write_text(output, encoding="utf-8")
        print(f"[ESP:OUTPUT] {args.output}")
    else:
        print(output)

    sys.exit(0 if report["success"] else 1)


if __name__ == "__main__":
    main()
