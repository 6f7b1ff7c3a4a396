import pytest

from gravity_claw.memory import MemoryContext, MemoryRecord
from gravity_claw.memory_context import FACTS_HEADER, SEMANTIC_HEADER, build_memory_context, format_ago

NOW = 1_700_000_000_000


def test_empty_context_renders_nothing() -> None:
    assert build_memory_context(MemoryContext(), now=NOW) == ""


def test_recent_only_context_renders_nothing() -> None:
    context = MemoryContext(recent=[MemoryRecord(role="user", content="hi", timestamp=NOW)])
    assert build_memory_context(context, now=NOW) == ""


def test_facts_render_as_bullets() -> None:
    context = MemoryContext(facts={"name": "Ada", "city": "London"})

    block = build_memory_context(context, now=NOW)

    assert block == f"{FACTS_HEADER}\n• name: Ada\n• city: London"


def test_semantic_matches_render_oldest_first() -> None:
    newer = MemoryRecord(role="user", content="I moved to Paris", timestamp=NOW - 1000, score=0.95)
    older = MemoryRecord(role="assistant", content="Enjoy London!", timestamp=NOW - 5000, score=0.80)
    context = MemoryContext(semantic=[newer, older])

    block = build_memory_context(context, now=NOW)

    assert block.startswith(SEMANTIC_HEADER)
    assert block.index("Enjoy London!") < block.index("I moved to Paris")
    assert '• [just now] You replied: "Enjoy London!"' in block
    assert '• [just now] User said: "I moved to Paris"' in block


def test_equal_timestamps_put_stronger_match_first() -> None:
    weak = MemoryRecord(role="user", content="weak", timestamp=NOW, score=0.8)
    strong = MemoryRecord(role="user", content="strong", timestamp=NOW, score=0.9)

    block = build_memory_context(MemoryContext(semantic=[weak, strong]), now=NOW)

    assert block.index("strong") < block.index("weak")


def test_facts_precede_semantic_section() -> None:
    context = MemoryContext(
        facts={"name": "Ada"},
        semantic=[MemoryRecord(role="user", content="hello", timestamp=NOW - 3 * 3600 * 1000, score=0.9)],
    )

    block = build_memory_context(context, now=NOW)

    facts_part, semantic_part = block.split("\n\n")
    assert facts_part.startswith(FACTS_HEADER)
    assert semantic_part == f'{SEMANTIC_HEADER}\n• [3h ago] User said: "hello"'


def test_snippets_are_truncated() -> None:
    record = MemoryRecord(role="user", content="a" * 500, timestamp=NOW, score=0.9)

    block = build_memory_context(MemoryContext(semantic=[record]), now=NOW, snippet_chars=200)

    assert f'"{"a" * 200}"' in block
    assert "a" * 201 not in block


@pytest.mark.parametrize(
    ("age_ms", "expected"),
    [
        (0, "just now"),
        (59_000, "just now"),
        (60_000, "1m ago"),
        (59 * 60_000, "59m ago"),
        (3_600_000, "1h ago"),
        (23 * 3_600_000, "23h ago"),
        (24 * 3_600_000, "1d ago"),
        (29 * 86_400_000, "29d ago"),
        (30 * 86_400_000, "1mo ago"),
        (95 * 86_400_000, "3mo ago"),
    ],
)
def test_format_ago_thresholds(age_ms: int, expected: str) -> None:
    assert format_ago(NOW - age_ms, now=NOW) == expected


def test_format_ago_clamps_future_timestamps() -> None:
    assert format_ago(NOW + 10_000, now=NOW) == "just now"
