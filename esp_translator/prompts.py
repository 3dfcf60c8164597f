"""
Prompt templates for the translation session.

The system prompt is fixed per run; the user prompt is rebuilt every round
from SessionState and is the model's only view of progress.
"""

from __future__ import annotations

import json

from .types import SessionState

LIST_PREVIEW_LIMIT = 10
TEXT_PREVIEW_CHARS = 20


def build_system_prompt(target_language: str = "Simplified Chinese") -> str:
    """Build the system prompt describing the tool protocol."""
    return f"""You are the tool-execution engine of a game-mod translation system. Based on the current task state, call tools to translate every queued entry into {target_language}.

## Core rules
1. Respond ONLY with tool calls. Never output translations or explanations as plain text.
2. Tools: search (look up terms), apply_translations (commit translations), skip (drop entries that need no translation).
3. For names, places and terms, check the SEARCH CACHE first; call search only for terms that are missing.
4. search has a budget shown as "budget used/total". Reuse cached results whenever possible.

## Tools

### search(terms: string[])
- Returns per term either "ok" with up to 3 candidates (shortest first) or "not_found".
- "ok": you MUST use one of the candidates, preferring the first.
- "not_found": no known translation exists; create a fitting one and keep it consistent.
- Results stay in the SEARCH CACHE for the whole session. Never search a cached term again.
- When the budget is exhausted, the call is rejected; translate with what you have.

### apply_translations(translations: [{{index, translated}}])
- index is the queue index shown in the table.
- Submit as many entries per call as you can.
- The call is rejected as a whole if any index is not in the queue.
- Entries with identical source text are filled in automatically with the same translation.
- Each successful apply resets the search budget based on the remaining work.

### skip(entries: [{{index, reason?}}])
- For entries needing no translation: pure numbers or symbols, empty strings, text already in {target_language}.
- Writes nothing; only removes the entry from the queue.

## Term annotations
Source text may contain confirmed term translations written as `Term(translation)`, e.g.
"The argonian(亚龙人) looks unfriendly." Use the annotated translation and drop the annotation markup.

## Quality
1. Terminology must stay consistent across the whole session.
2. Use a natural fantasy-RPG register; avoid stiff literal translation.
3. Preserve placeholders (%s, %d, <Alias=...>, {{NAME}}), tags, line breaks and special characters exactly.

## Workflow
1. Identify terms in the queue that need lookup and are not cached.
2. Search them in one batch.
3. Apply every translation you can prepare, in one call.
4. Repeat until the queue is empty.

If a tool call fails, the next state shows the error verbatim. Fix the arguments and try again."""


def _escape_csv(text: str) -> str:
    # Line breaks stay inside the quoted field
    return text.replace('"', '""')


def _preview(text: str | None, limit: int = TEXT_PREVIEW_CHARS) -> str:
    if not text:
        return "no reason given"
    return text[:limit]


def build_user_prompt(state: SessionState) -> str:
    """
    Serialize the session state for one round.

    Sections: queue table, search cache, progress and budget, last
    apply/skip previews, and the last tool error verbatim.
    """
    parts: list[str] = ["Current translation task state:", ""]

    # 1. Queue
    parts.append(f"## QUEUE ({len(state.queue)} entries)")
    parts.append("")
    if not state.queue:
        parts.append("(nothing left to translate)")
    else:
        rows = ["index,original_text"]
        rows.extend(f'{entry.index},"{_escape_csv(entry.text)}"' for entry in state.queue)
        parts.append("```csv\n" + "\n".join(rows) + "\n```")
    parts.append("")

    # 2. Search cache
    parts.append("## SEARCH CACHE")
    parts.append("")
    if not state.search_cache:
        parts.append("(empty)")
    else:
        cache = {term: result.to_dict() for term, result in state.search_cache.items()}
        parts.append("```json\n" + json.dumps(cache, ensure_ascii=False, indent=2) + "\n```")
    parts.append("")

    # 3. Progress and budget
    meta = state.search_meta
    parts.append("## PROGRESS")
    parts.append("")
    parts.append(f"- completed: {state.completed_count}/{state.total_count}")
    parts.append(f"- search budget: {meta.budget_used}/{meta.budget_total}")
    if meta.last_requested_terms:
        parts.append(f"- last search request: [{', '.join(meta.last_requested_terms[:LIST_PREVIEW_LIMIT])}]")
        parts.append(f"  * queried: [{', '.join(meta.executed_terms[:LIST_PREVIEW_LIMIT]) or 'none'}]")
        parts.append(f"  * cache hits: [{', '.join(meta.cache_hits[:LIST_PREVIEW_LIMIT]) or 'none'}]")
        parts.append(f"  * deferred for budget: [{', '.join(meta.deferred_terms[:LIST_PREVIEW_LIMIT]) or 'none'}]")
    else:
        parts.append("- search not called yet")

    if state.recent_apply:
        recent = state.recent_apply
        more = "..." if recent.count > len(recent.indices) else ""
        parts.append(f"- last apply_translations: {recent.count} entries committed ({recent.expanded_count} by duplicate propagation)")
        parts.append(f"  * index: [{', '.join(str(i) for i in recent.indices)}{more}]")
        if recent.preview:
            preview = "; ".join(f'{i}:"{_preview(text)}"' for i, text in recent.preview)
            parts.append(f"  * translations: {preview}")
    else:
        parts.append("- apply_translations not called yet")

    if state.recent_skip:
        recent_skip = state.recent_skip
        more = "..." if recent_skip.count > len(recent_skip.indices) else ""
        parts.append(f"- last skip: {recent_skip.count} entries skipped")
        parts.append(f"  * index: [{', '.join(str(i) for i in recent_skip.indices)}{more}]")
        if recent_skip.preview:
            preview = "; ".join(f'{i}:"{_preview(reason)}"' for i, reason in recent_skip.preview)
            parts.append(f"  * reasons: {preview}")
    parts.append("")

    # 4. Last error
    if state.last_error:
        error = state.last_error
        parts.append("## LAST TOOL CALL FAILED")
        parts.append("")
        parts.append(f"tool: {error.tool}")
        parts.append(f"arguments: {json.dumps(error.args, ensure_ascii=False, default=str)}")
        parts.append(f"error: {error.error}")
        if error.model_response_preview:
            parts.append(f"your response: {error.model_response_preview}")
        parts.append("")
        parts.append("Adjust the arguments according to the error and try again.")
        parts.append("")

    parts.append("---")
    parts.append("")
    parts.append("Use the tools to continue the translation task.")
    return "\n".join(parts)


def build_messages(state: SessionState, target_language: str = "Simplified Chinese") -> list[dict[str, str]]:
    """Full message list for one round."""
    return [
        {"role": "system", "content": build_system_prompt(target_language)},
        {"role": "user", "content": build_user_prompt(state)},
    ]


__all__ = ["build_messages", "build_system_prompt", "build_user_prompt"]
