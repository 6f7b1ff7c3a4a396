"""Agent orchestration for Gravity Claw."""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from gravity_claw.agent_model_mixin import AgentModelMixin
from gravity_claw.agent_tool_loop_mixin import AgentToolLoopMixin
from gravity_claw.config import Config, get_config
from gravity_claw.exceptions import MaxIterationsExceededError
from gravity_claw.execution_queue import BackgroundTaskSet
from gravity_claw.llm import LLMProvider, Message, ToolCall
from gravity_claw.logging import get_logger
from gravity_claw.memory import MemoryContext, MemoryManager
from gravity_claw.memory_context import build_memory_context
from gravity_claw.retry import build_user_error_message
from gravity_claw.run_budget import RunBudget
from gravity_claw.tools import ToolRegistry, create_default_registry

log = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are Gravity Claw, a personal AI assistant. Be concise, accurate and friendly. "
    "Use the available tools when they help you answer; never invent tool results. "
    "When you have what you need, answer the user directly in natural language."
)

MAX_ITERATIONS_RESPONSE = "Agent reached maximum iterations. Stopping to prevent runaway execution."
EMPTY_RESPONSE_FALLBACK = "I couldn't formulate a text response. Please try again."
NATURAL_LANGUAGE_REPROMPT = (
    "Your previous reply contained only tool syntax. Do not name or call tools in text. "
    "Answer my last message directly in plain natural language."
)


@dataclass(frozen=True)
class AgentRunResult:
    """Outcome of one run, returned once and never mutated."""

    response: str
    tool_call_count: int
    iteration_count: int
    input_tokens: int
    output_tokens: int
    latency_ms: int


@dataclass
class RunState:
    """Mutable bookkeeping for a single run."""

    budget: RunBudget
    tool_names: list[str] = field(default_factory=list)
    iterations: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    use_tools: bool = True
    reprompted: bool = False
    fallback_used: bool = False
    stop_injected: bool = False


class Agent(AgentModelMixin, AgentToolLoopMixin):
    """Bounded ReAct loop over one provider, one tool registry and layered memory."""

    def __init__(
        self,
        provider: LLMProvider | None = None,
        tools: ToolRegistry | None = None,
        memory: MemoryManager | None = None,
        *,
        config: Config | None = None,
        background: BackgroundTaskSet | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ):
        """Initialize the agent.

        Args:
            provider: Optional LLM provider override (defaults to the global provider)
            tools: Default tool registry for runs that do not pass one
            memory: Memory manager; built from config when omitted and memory is enabled
            config: Optional configuration override
            background: Supervisor for fire-and-forget memory writes
            sleep: Backoff sleep, injectable for tests
        """
        cfg = config or get_config()
        self.config = cfg
        self.provider = provider
        self.tools = tools if tools is not None else create_default_registry(cfg.agent.tool_timeout_seconds)
        if memory is None and cfg.memory.enabled:
            memory = MemoryManager.from_config(cfg.memory, provider=provider)
        self.memory = memory
        self.background = background or BackgroundTaskSet()
        self._sleep = sleep

        self.model = cfg.model.model
        self.fallback_model = cfg.model.fallback_model
        self.max_iterations = max(1, int(cfg.agent.max_iterations))
        self.retry_config = cfg.retry
        self.leaked_tool_calls = cfg.agent.leaked_tool_calls
        self.error_message_max_chars = cfg.agent.error_message_max_chars
        self.snippet_chars = cfg.memory.snippet_chars

    def _new_run_state(self, registry: ToolRegistry) -> RunState:
        return RunState(
            budget=RunBudget(
                max_tool_calls=self.config.agent.max_tool_calls,
                max_calls_per_tool=self.config.agent.max_calls_per_tool,
            ),
            tool_names=registry.list_tools(),
        )

    async def _load_memory(self, user_id: str, prompt: str) -> MemoryContext:
        if self.memory is None:
            return MemoryContext()
        return await self.memory.get_context(user_id, prompt)

    def _build_messages(self, prompt: str, context: MemoryContext, image: str | None) -> list[Message]:
        """System/context message first, then recent history, then the new user turn."""
        memory_block = build_memory_context(context, snippet_chars=self.snippet_chars)
        system_content = f"{SYSTEM_PROMPT}\n\n{memory_block}" if memory_block else SYSTEM_PROMPT
        messages = [Message(role="system", content=system_content)]
        messages.extend(Message(role=record.role, content=record.content) for record in context.recent)
        messages.append(Message(role="user", content=prompt, images=[image] if image else []))
        return messages

    def _remember_exchange(self, user_id: str, prompt: str, answer: str) -> None:
        """Update the recent buffer now; embed, upsert and extract facts in the background."""
        if self.memory is None:
            return
        try:
            pending = self.memory.record_exchange(user_id, prompt, answer)
        except Exception as e:
            log.warning("Recent buffer update failed", user_id=user_id, error=str(e))
            return
        self.background.spawn(self.memory.persist(pending), label=f"memory:{user_id}")

    async def _run_iterations(
        self,
        prompt: str,
        user_id: str,
        registry: ToolRegistry,
        image: str | None,
        state: RunState,
    ) -> str:
        context = await self._load_memory(user_id, prompt)
        messages = self._build_messages(prompt, context, image)
        tool_defs = registry.get_definitions()
        state.use_tools = bool(tool_defs)

        while state.iterations < self.max_iterations:
            state.iterations += 1
            try:
                response = await self._complete_with_retry(
                    messages,
                    tool_defs if state.use_tools else None,
                    state,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if state.use_tools and state.iterations == 1:
                    log.warning("Tool calling failed; retrying without tools", error=str(e))
                    state.use_tools = False
                    state.iterations -= 1
                    continue
                fallback_text = await self._complete_with_fallback(messages, state)
                if fallback_text is None:
                    raise
                return fallback_text

            if response.requests_tools:
                messages.append(
                    Message(role="assistant", content=response.content or "", tool_calls=list(response.tool_calls))
                )
                await self._execute_tool_calls(response.tool_calls, registry, messages, state)
                continue

            raw = response.content or ""
            if self.leaked_tool_calls == "execute" and state.iterations < self.max_iterations:
                leaked = self._extract_leaked_tool_calls(raw, state.tool_names)
                if leaked:
                    log.info("Executing tool calls leaked as text", tools=[tc.name for tc in leaked])
                    leaked = [
                        ToolCall(id=f"leaked_{state.iterations}_{idx}", name=tc.name, arguments=tc.arguments)
                        for idx, tc in enumerate(leaked)
                    ]
                    messages.append(Message(role="assistant", content="", tool_calls=leaked))
                    await self._execute_tool_calls(leaked, registry, messages, state)
                    continue

            final = self._sanitize_response(raw, state.tool_names)
            if final:
                return final
            if not state.reprompted and state.iterations < self.max_iterations:
                log.info("Empty answer after sanitizing; re-prompting", iteration=state.iterations)
                state.reprompted = True
                messages.append(Message(role="assistant", content=raw))
                messages.append(Message(role="user", content=NATURAL_LANGUAGE_REPROMPT))
                continue
            return EMPTY_RESPONSE_FALLBACK

        raise MaxIterationsExceededError(state.iterations)

    async def run(
        self,
        prompt: str,
        user_id: str,
        tools: ToolRegistry | None = None,
        image: str | None = None,
    ) -> AgentRunResult:
        """Answer one prompt for one user. Never raises; failures become the response text."""
        started = time.perf_counter()
        registry = tools if tools is not None else self.tools
        state = self._new_run_state(registry)
        log.info("Agent run started", user_id=user_id, tools=len(state.tool_names), has_image=bool(image))

        try:
            response = await self._run_iterations(prompt, user_id, registry, image, state)
        except asyncio.CancelledError:
            raise
        except MaxIterationsExceededError as e:
            log.warning("Agent hit iteration limit", user_id=user_id, iterations=e.iterations)
            response = MAX_ITERATIONS_RESPONSE
        except Exception as e:
            log.error("Agent run failed", user_id=user_id, error=str(e))
            response = build_user_error_message(e, max_chars=self.error_message_max_chars)
        else:
            if response != EMPTY_RESPONSE_FALLBACK:
                self._remember_exchange(user_id, prompt, response)

        result = AgentRunResult(
            response=response,
            tool_call_count=state.budget.total_calls,
            iteration_count=state.iterations,
            input_tokens=state.input_tokens,
            output_tokens=state.output_tokens,
            latency_ms=int((time.perf_counter() - started) * 1000),
        )
        log.info(
            "Agent run finished",
            user_id=user_id,
            iterations=result.iteration_count,
            tool_calls=result.tool_call_count,
            latency_ms=result.latency_ms,
        )
        return result


# Global agent instance
_agent: Agent | None = None


def get_agent() -> Agent:
    """Get the global agent instance."""
    global _agent
    if _agent is None:
        _agent = Agent()
    return _agent


def set_agent(agent: Agent | None) -> None:
    """Set the global agent instance."""
    global _agent
    _agent = agent


async def run_agent_loop(
    prompt: str,
    tool_registry: ToolRegistry,
    user_id: str,
    image: str | None = None,
) -> AgentRunResult:
    """Shared entry point for interactive, scheduled and webhook callers."""
    return await get_agent().run(prompt, user_id, tools=tool_registry, image=image)
