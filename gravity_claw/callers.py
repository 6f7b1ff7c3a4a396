"""Caller adapters sharing one agent engine: interactive, scheduled and webhook runs."""

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from gravity_claw.agent import Agent, AgentRunResult, get_agent
from gravity_claw.execution_queue import UserLaneQueue
from gravity_claw.logging import get_logger
from gravity_claw.tools import ToolRegistry

log = get_logger(__name__)

WEBHOOK_PAYLOAD_MAX_CHARS = 2000

Deliver = Callable[[str, str], Awaitable[None]]


@dataclass
class ScheduledTask:
    """A prompt the scheduler fires on a cron expression."""

    id: str
    user_id: str
    cron_expression: str
    label: str
    action: str
    paused: bool = False


@dataclass
class Webhook:
    """An inbound webhook bound to one user."""

    id: str
    user_id: str
    description: str
    trigger_count: int = 0


# Global lane queue
_lane_queue: UserLaneQueue | None = None


def get_user_lane_queue() -> UserLaneQueue:
    """Get the process-wide per-user lane queue."""
    global _lane_queue
    if _lane_queue is None:
        _lane_queue = UserLaneQueue()
    return _lane_queue


def set_user_lane_queue(queue: UserLaneQueue | None) -> None:
    global _lane_queue
    _lane_queue = queue


async def handle_user_message(
    user_id: str,
    text: str,
    *,
    image: str | None = None,
    agent: Agent | None = None,
    tools: ToolRegistry | None = None,
    queue: UserLaneQueue | None = None,
) -> AgentRunResult:
    """Run one message, queued behind any unfinished run for the same user."""
    active_agent = agent or get_agent()
    lanes = queue or get_user_lane_queue()
    return await lanes.run_for_user(
        user_id,
        lambda: active_agent.run(text, user_id, tools=tools, image=image),
    )


async def _deliver_safely(deliver: Deliver, user_id: str, message: str, source: str) -> None:
    try:
        await deliver(user_id, message)
    except Exception as e:
        log.error("Delivery failed", source=source, user_id=user_id, error=str(e))


async def run_scheduled_task(
    task: ScheduledTask,
    deliver: Deliver,
    *,
    agent: Agent | None = None,
    tools: ToolRegistry | None = None,
    queue: UserLaneQueue | None = None,
) -> str | None:
    """Fire one scheduled task and deliver its answer. Paused tasks do nothing."""
    if task.paused:
        log.debug("Skipping paused task", task_id=task.id)
        return None
    log.info("Executing scheduled task", task_id=task.id, label=task.label)
    result = await handle_user_message(task.user_id, task.action, agent=agent, tools=tools, queue=queue)
    message = f"Scheduled: {task.label}\n\n{result.response}"
    await _deliver_safely(deliver, task.user_id, message, source=f"task:{task.id}")
    return message


def build_webhook_prompt(webhook: Webhook, payload: Any) -> str:
    """Prompt describing an incoming webhook payload, truncated to a bounded size."""
    if isinstance(payload, str):
        payload_text = payload
    else:
        payload_text = json.dumps(payload, indent=2, ensure_ascii=False, default=str)
    return (
        f'A webhook "{webhook.description}" (ID: {webhook.id}) was just triggered. '
        "Here's the incoming payload:\n\n"
        f"```json\n{payload_text[:WEBHOOK_PAYLOAD_MAX_CHARS]}\n```\n\n"
        "Process this webhook data and provide a relevant summary or take appropriate action."
    )


async def handle_webhook_trigger(
    webhook: Webhook,
    payload: Any,
    deliver: Deliver,
    *,
    agent: Agent | None = None,
    tools: ToolRegistry | None = None,
    queue: UserLaneQueue | None = None,
) -> tuple[bool, str]:
    """Run the agent on a webhook payload and deliver the answer to the owner."""
    webhook.trigger_count += 1
    log.info("Webhook triggered", webhook_id=webhook.id, trigger_count=webhook.trigger_count)
    try:
        result = await handle_user_message(
            webhook.user_id,
            build_webhook_prompt(webhook, payload),
            agent=agent,
            tools=tools,
            queue=queue,
        )
    except Exception as e:
        log.error("Webhook processing failed", webhook_id=webhook.id, error=str(e))
        return False, str(e)

    message = f"Webhook: {webhook.description}\n\n{result.response}"
    await _deliver_safely(deliver, webhook.user_id, message, source=f"webhook:{webhook.id}")
    return True, "Webhook processed successfully."
