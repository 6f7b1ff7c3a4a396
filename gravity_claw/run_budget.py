"""Per-run tool budgets guarding against runaway tool loops."""

import json
from dataclasses import dataclass, field
from typing import Any

from gravity_claw.exceptions import BudgetExceededError
from gravity_claw.logging import get_logger

log = get_logger(__name__)

BUDGET_GLOBAL = "global"
BUDGET_PER_TOOL = "per_tool"
BUDGET_REPEAT = "repeat"

STOP_AND_ANSWER_INSTRUCTION = (
    "Tool budget for this request is exhausted. Stop calling tools and answer the user now "
    "using the information you already have."
)


def call_signature(name: str, arguments: dict[str, Any] | None) -> str:
    """Canonical identity of one tool call: name plus sorted-key JSON arguments."""
    try:
        encoded = json.dumps(arguments or {}, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError):
        encoded = repr(arguments)
    return f"{name}:{encoded}"


@dataclass
class RunBudget:
    """Counters for one agent run. Created at run start, discarded at run end."""

    max_tool_calls: int = 15
    max_calls_per_tool: int = 5
    total_calls: int = 0
    per_tool: dict[str, int] = field(default_factory=dict)
    last_signature: str | None = None
    repeat_count: int = 0

    def check(self, name: str, arguments: dict[str, Any] | None = None) -> None:
        """Admit or refuse the next requested call.

        Checks run in order: global cap, per-tool cap, identical repeat of the
        previously requested call. The requested call becomes the new "previous"
        call whether or not it is admitted.

        Raises:
            BudgetExceededError carrying the steering instruction for the model
        """
        signature = call_signature(name, arguments)
        is_repeat = signature == self.last_signature
        self.last_signature = signature
        if is_repeat:
            self.repeat_count += 1

        if self.total_calls >= self.max_tool_calls:
            self._trip(BUDGET_GLOBAL, name, STOP_AND_ANSWER_INSTRUCTION)
        if self.per_tool.get(name, 0) >= self.max_calls_per_tool:
            self._trip(
                BUDGET_PER_TOOL,
                name,
                f'Tool "{name}" reached its limit of {self.max_calls_per_tool} calls for this request. '
                "Do not call it again. Answer the user now using the information you already have.",
            )
        if is_repeat:
            self._trip(
                BUDGET_REPEAT,
                name,
                f'Blocked: "{name}" was just called with identical arguments. '
                "Do not repeat identical tool calls. Use the previous result or answer the user.",
            )

    def record(self, name: str) -> None:
        """Count one call that actually reached the tool."""
        self.total_calls += 1
        self.per_tool[name] = self.per_tool.get(name, 0) + 1

    @property
    def exhausted(self) -> bool:
        return self.total_calls >= self.max_tool_calls

    @staticmethod
    def _trip(kind: str, name: str, instruction: str) -> None:
        log.warning("Tool budget tripped", kind=kind, tool=name)
        raise BudgetExceededError(kind, name, instruction)
