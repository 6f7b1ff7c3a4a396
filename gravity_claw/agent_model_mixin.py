"""Provider-call helpers for Agent: retry, tool-disable retry and fallback model."""

from typing import Any

from gravity_claw.llm import LLMProvider, LLMResponse, Message, ToolDefinition, get_provider
from gravity_claw.logging import get_logger
from gravity_claw.retry import with_retry


log = get_logger(__name__)


class AgentModelMixin:
    """Call the provider under the retry policy and fall back to a secondary model."""

    def _get_provider(self) -> LLMProvider:
        if self.provider is None:
            self.provider = get_provider()
        return self.provider

    @staticmethod
    def _accumulate_usage(state: Any, response: LLMResponse) -> None:
        usage = response.usage or {}
        state.input_tokens += int(usage.get("prompt_tokens", 0) or 0)
        state.output_tokens += int(usage.get("completion_tokens", 0) or 0)

    async def _complete_with_retry(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None,
        state: Any,
    ) -> LLMResponse:
        """One logical provider call for the current iteration, retried per policy."""
        provider = self._get_provider()
        model = self.model or None
        label = f"LLM ({model or getattr(provider, 'model', '') or 'default'})"
        log.info(
            "Calling LLM",
            iteration=state.iterations,
            message_count=len(messages),
            tools_sent=bool(tools),
        )
        response = await with_retry(
            lambda: provider.complete(messages, tools=tools, model=model),
            max_retries=self.retry_config.max_retries,
            base_delay_seconds=self.retry_config.base_delay_seconds,
            retryable_statuses=self.retry_config.retryable_statuses,
            label=label,
            sleep=self._sleep,
        )
        self._accumulate_usage(state, response)
        return response

    async def _complete_with_fallback(self, messages: list[Message], state: Any) -> str | None:
        """Exactly one tool-less call against the fallback model.

        Returns the sanitized text, or None when no fallback is configured, it
        was already used this run, or it produced nothing usable.
        """
        if not self.fallback_model or state.fallback_used:
            return None
        state.fallback_used = True
        log.warning("Primary model failed; trying fallback", fallback_model=self.fallback_model)
        try:
            response = await self._get_provider().complete(messages, tools=None, model=self.fallback_model)
        except Exception as e:
            log.error("Fallback model also failed", fallback_model=self.fallback_model, error=str(e))
            return None
        self._accumulate_usage(state, response)
        text = self._sanitize_response(response.content or "", state.tool_names)
        return text or None
