import pytest

from gravity_claw.cron import is_cron_expression, parse_schedule


@pytest.mark.parametrize(
    ("phrase", "expected"),
    [
        ("every day at 6pm", "0 18 * * *"),
        ("every day at 6:30pm", "30 18 * * *"),
        ("every day at 12am", "0 0 * * *"),
        ("every day at 12pm", "0 12 * * *"),
        ("every day at 9am", "0 9 * * *"),
        ("every day at 14:15", "15 14 * * *"),
        ("Every Day At 7 PM", "0 19 * * *"),
        ("every morning", "0 8 * * *"),
        ("every evening", "0 18 * * *"),
        ("every night", "0 21 * * *"),
        ("every monday", "0 9 * * 1"),
        ("every Sunday", "0 9 * * 0"),
        ("every weekday", "0 9 * * 1-5"),
        ("every weekdays", "0 9 * * 1-5"),
        ("every weekend", "0 10 * * 0,6"),
        ("every minute", "* * * * *"),
        ("every 1 minute", "* * * * *"),
        ("every 5 minutes", "*/5 * * * *"),
        ("every 15 min", "*/15 * * * *"),
        ("every hour", "0 * * * *"),
        ("every 2 hours", "0 */2 * * *"),
        ("every 6h", "0 */6 * * *"),
        ("remind me every day at 8am to stretch", "0 8 * * *"),
    ],
)
def test_phrases_translate_to_cron(phrase: str, expected: str) -> None:
    assert parse_schedule(phrase) == expected


@pytest.mark.parametrize(
    "phrase",
    [
        "banana",
        "",
        "   ",
        "tomorrow",
        "every day at 13pm",
        "every day at 25",
        "every day at 6:75pm",
        "every 0 minutes",
        "every 90 minutes",
        "every 24 hours",
    ],
)
def test_unrecognized_or_invalid_phrases_return_none(phrase: str) -> None:
    assert parse_schedule(phrase) is None


@pytest.mark.parametrize(
    "expression",
    ["0 9 * * 1-5", "*/5 * * * *", "30 18 1,15 * *", "0 0 * jan-mar mon", "0 9 * * 7"],
)
def test_cron_expressions_pass_through_unchanged(expression: str) -> None:
    assert is_cron_expression(expression)
    assert parse_schedule(expression) == expression


@pytest.mark.parametrize(
    "text",
    ["0 9 * *", "60 9 * * *", "0 24 * * *", "0 9 0 * *", "0 9 * 13 *", "0 9 * * 8", "*/0 * * * *", "5-1 * * * *"],
)
def test_malformed_cron_is_rejected(text: str) -> None:
    assert not is_cron_expression(text)


@pytest.mark.parametrize(
    "phrase",
    ["every day at 6pm", "every weekday", "every 5 minutes", "every friday", "every night", "0 9 * * 1-5"],
)
def test_parse_is_idempotent(phrase: str) -> None:
    first = parse_schedule(phrase)

    assert first is not None
    assert parse_schedule(first) == first
