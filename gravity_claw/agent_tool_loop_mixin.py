"""Tool-call execution and leaked tool-syntax handling for Agent."""

import json
import re
from collections.abc import Iterable
from typing import Any

from gravity_claw.exceptions import BudgetExceededError
from gravity_claw.llm import Message, ToolCall
from gravity_claw.logging import get_logger
from gravity_claw.run_budget import BUDGET_GLOBAL, STOP_AND_ANSWER_INSTRUCTION
from gravity_claw.tools.registry import ToolRegistry, ToolResult


log = get_logger(__name__)


def _call_pattern(tool_names: Iterable[str]) -> str | None:
    names = sorted({name for name in tool_names if name}, key=len, reverse=True)
    if not names:
        return None
    alternation = "|".join(re.escape(name) for name in names)
    # name, /name, name({...}), name {...}
    return rf"/?(?P<name>{alternation})[ \t]*(?:\((?P<paren>[^\n]*)\)|(?P<json>\{{[^\n]*\}}))?"


def _leaked_call_regexes(tool_names: Iterable[str]) -> list[re.Pattern[str]]:
    call = _call_pattern(tool_names)
    if call is None:
        return []
    return [
        # ```json\nget_current_time\n```
        re.compile(rf"^```[\w-]*[ \t]*\n?[ \t]*{call}[ \t]*\n?```[ \t]*$", re.MULTILINE),
        # a tool name alone on its own line
        re.compile(rf"^[ \t]*{call}[ \t]*$", re.MULTILINE),
    ]


def _decode_leaked_arguments(match: re.Match[str]) -> dict[str, Any]:
    raw = (match.group("json") or match.group("paren") or "").strip()
    if not raw.startswith("{"):
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}


class AgentToolLoopMixin:
    """Execute requested tools under the run budget and clean leaked tool syntax."""

    @staticmethod
    def _sanitize_response(content: str, tool_names: Iterable[str]) -> str:
        """Strip tool names a weak provider emitted as plain text instead of a structured call."""
        cleaned = content or ""
        for pattern in _leaked_call_regexes(tool_names):
            cleaned = pattern.sub("", cleaned)
        cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
        return cleaned.strip()

    @staticmethod
    def _extract_leaked_tool_calls(content: str, tool_names: Iterable[str]) -> list[ToolCall]:
        """Recognize plain-text tool invocations, in order of appearance."""
        found: list[tuple[int, str, dict[str, Any]]] = []
        claimed: list[tuple[int, int]] = []
        for pattern in _leaked_call_regexes(tool_names):
            for match in pattern.finditer(content or ""):
                start, end = match.span()
                if any(start < c_end and end > c_start for c_start, c_end in claimed):
                    continue
                claimed.append((start, end))
                found.append((start, match.group("name"), _decode_leaked_arguments(match)))
        found.sort(key=lambda item: item[0])
        return [
            ToolCall(id=f"leaked_{idx}", name=name, arguments=arguments)
            for idx, (_, name, arguments) in enumerate(found)
        ]

    async def _execute_tool_calls(
        self,
        tool_calls: list[ToolCall],
        registry: ToolRegistry,
        messages: list[Message],
        state: Any,
    ) -> None:
        """Run requested calls one at a time, appending one tool message per call."""
        stop_requested = False
        for tc in tool_calls:
            arguments = tc.arguments if isinstance(tc.arguments, dict) else {}
            try:
                state.budget.check(tc.name, arguments)
            except BudgetExceededError as e:
                result = ToolResult.fail(e.instruction)
                stop_requested = stop_requested or e.kind == BUDGET_GLOBAL
            else:
                state.budget.record(tc.name)
                result = await registry.execute(tc.name, arguments)

            messages.append(
                Message(
                    role="tool",
                    content=result.to_message_content(),
                    tool_call_id=tc.id,
                    tool_name=tc.name,
                )
            )

        if stop_requested and not state.stop_injected:
            state.stop_injected = True
            log.warning("Tool call limit reached; instructing model to answer", total_calls=state.budget.total_calls)
            messages.append(Message(role="system", content=STOP_AND_ANSWER_INSTRUCTION))
