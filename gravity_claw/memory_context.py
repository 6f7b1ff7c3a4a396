"""Render layered memory into the grounding block of the system prompt."""

import time

from gravity_claw.memory import MemoryContext, MemoryRecord

FACTS_HEADER = "KNOWN FACTS ABOUT THE USER:"
SEMANTIC_HEADER = "RELEVANT MEMORIES (retrieved semantically):"


def now_ms() -> int:
    return int(time.time() * 1000)


def format_ago(timestamp_ms: int, now: int | None = None) -> str:
    """Human phrase for how long ago ``timestamp_ms`` was."""
    diff_sec = max(0, ((now if now is not None else now_ms()) - int(timestamp_ms)) // 1000)
    if diff_sec < 60:
        return "just now"
    diff_min = diff_sec // 60
    if diff_min < 60:
        return f"{diff_min}m ago"
    diff_hr = diff_min // 60
    if diff_hr < 24:
        return f"{diff_hr}h ago"
    diff_day = diff_hr // 24
    if diff_day < 30:
        return f"{diff_day}d ago"
    return f"{diff_day // 30}mo ago"


def _timeline_key(record: MemoryRecord) -> tuple[int, float, str]:
    # Oldest first; equal timestamps put the stronger match first.
    return (record.timestamp, -(record.score or 0.0), record.content)


def build_memory_context(
    context: MemoryContext,
    now: int | None = None,
    snippet_chars: int = 200,
) -> str:
    """Render facts and semantic matches; recent history is sent as chat turns instead.

    Returns an empty string when there are neither facts nor semantic matches.
    """
    parts: list[str] = []

    if context.facts:
        fact_lines = "\n".join(f"• {key}: {value}" for key, value in context.facts.items())
        parts.append(f"{FACTS_HEADER}\n{fact_lines}")

    if context.semantic:
        reference = now if now is not None else now_ms()
        lines = []
        for record in sorted(context.semantic, key=_timeline_key):
            prefix = "User said" if record.role == "user" else "You replied"
            snippet = record.content[: max(0, int(snippet_chars))]
            lines.append(f'• [{format_ago(record.timestamp, reference)}] {prefix}: "{snippet}"')
        parts.append(f"{SEMANTIC_HEADER}\n" + "\n".join(lines))

    return "\n\n".join(parts)
