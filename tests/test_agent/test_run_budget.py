import pytest

from gravity_claw.exceptions import BudgetExceededError
from gravity_claw.run_budget import (
    BUDGET_GLOBAL,
    BUDGET_PER_TOOL,
    BUDGET_REPEAT,
    STOP_AND_ANSWER_INSTRUCTION,
    RunBudget,
    call_signature,
)


def test_signature_ignores_key_order() -> None:
    assert call_signature("search", {"a": 1, "b": 2}) == call_signature("search", {"b": 2, "a": 1})
    assert call_signature("search", None) == "search:{}"
    assert call_signature("search", {"a": 1}) != call_signature("fetch", {"a": 1})


def test_global_cap_trips_first() -> None:
    budget = RunBudget(max_tool_calls=2, max_calls_per_tool=5)
    for i in range(2):
        budget.check("search", {"q": i})
        budget.record("search")

    with pytest.raises(BudgetExceededError) as exc_info:
        budget.check("search", {"q": 2})

    assert exc_info.value.kind == BUDGET_GLOBAL
    assert exc_info.value.instruction == STOP_AND_ANSWER_INSTRUCTION
    assert budget.exhausted


def test_per_tool_cap_leaves_other_tools_available() -> None:
    budget = RunBudget(max_tool_calls=15, max_calls_per_tool=1)
    budget.check("search", {"q": 1})
    budget.record("search")

    with pytest.raises(BudgetExceededError) as exc_info:
        budget.check("search", {"q": 2})
    assert exc_info.value.kind == BUDGET_PER_TOOL
    assert exc_info.value.tool_name == "search"

    budget.check("fetch", {"url": "x"})


def test_identical_repeat_is_blocked_but_alternating_calls_are_not() -> None:
    budget = RunBudget()
    budget.check("search", {"q": "a"})
    budget.record("search")

    with pytest.raises(BudgetExceededError) as exc_info:
        budget.check("search", {"q": "a"})
    assert exc_info.value.kind == BUDGET_REPEAT
    assert budget.repeat_count == 1

    budget.check("search", {"q": "b"})
    budget.record("search")
    budget.check("search", {"q": "a"})


def test_refused_call_still_becomes_previous_call() -> None:
    budget = RunBudget(max_tool_calls=15, max_calls_per_tool=1)
    budget.check("search", {"q": 1})
    budget.record("search")

    with pytest.raises(BudgetExceededError):
        budget.check("search", {"q": 2})

    assert budget.last_signature == call_signature("search", {"q": 2})
    assert budget.total_calls == 1
