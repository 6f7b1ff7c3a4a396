"""LLM providers - direct HTTP calls to OpenAI-compatible and Ollama chat APIs."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from gravity_claw.exceptions import (
    ConfigurationError,
    LLMAPIError,
    LLMError,
    ProviderAuthError,
    ProviderOverloadedError,
    ProviderTransientError,
)
from gravity_claw.logging import get_logger

log = get_logger(__name__)


OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
OPENAI_BASE_URL = "https://api.openai.com/v1"
OLLAMA_NATIVE_BASE_URL = "http://127.0.0.1:11434"

_TRANSIENT_STATUSES = {408, 429, 500, 502, 504}
_OVERLOADED_STATUSES = {503, 529}
_AUTH_STATUSES = {401, 403}


@dataclass
class ToolCall:
    """A tool call from the LLM."""

    id: str
    name: str
    arguments: dict[str, Any]


@dataclass
class Message:
    """A message in the conversation."""

    role: str  # "system", "user", "assistant", "tool"
    content: str
    tool_call_id: str | None = None
    tool_name: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    images: list[str] = field(default_factory=list)


@dataclass
class LLMResponse:
    """Response from the LLM."""

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str = ""
    model: str = ""
    usage: dict[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.finish_reason:
            self.finish_reason = "tool_calls" if self.tool_calls else "stop"

    @property
    def requests_tools(self) -> bool:
        """Whether the provider signalled tool-call intent."""
        return self.finish_reason == "tool_calls" and bool(self.tool_calls)


@dataclass
class ToolDefinition:
    """Definition of a tool for the LLM."""

    name: str
    description: str
    parameters: dict[str, Any]  # JSON Schema


def provider_error_for_status(status_code: int, message: str) -> LLMAPIError:
    """Map an HTTP status from a provider to the matching error class."""
    if status_code in _AUTH_STATUSES:
        return ProviderAuthError(message, status_code=status_code)
    if status_code in _OVERLOADED_STATUSES:
        return ProviderOverloadedError(message, status_code=status_code)
    if status_code in _TRANSIENT_STATUSES:
        return ProviderTransientError(message, status_code=status_code)
    return LLMAPIError(message, status_code=status_code)


def _decode_arguments(raw: Any) -> dict[str, Any]:
    """Tool-call arguments arrive as a JSON string or a dict; bad JSON becomes {}."""
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        return {}
    return value if isinstance(value, dict) else {}


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    model: str = ""

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        pass

    async def close(self) -> None:
        """Release transport resources."""
        return None


class OpenAICompatibleProvider(LLMProvider):
    """Chat-completions provider (OpenRouter, OpenAI and compatible gateways)."""

    def __init__(
        self,
        model: str,
        api_key: str = "",
        base_url: str = OPENROUTER_BASE_URL,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        timeout: float = 120.0,
        extra_headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.model = model
        self.api_key = api_key
        self.base_url = (base_url or OPENROUTER_BASE_URL).rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.extra_headers = dict(extra_headers or {})
        self.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    @staticmethod
    def _convert_message(msg: Message) -> dict[str, Any]:
        if msg.role == "assistant" and msg.tool_calls:
            return {
                "role": "assistant",
                "content": msg.content or None,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": call.name,
                            "arguments": json.dumps(call.arguments, ensure_ascii=False),
                        },
                    }
                    for call in msg.tool_calls
                ],
            }
        if msg.role == "tool":
            return {
                "role": "tool",
                "tool_call_id": msg.tool_call_id or "",
                "content": msg.content or "",
            }
        if msg.role == "user" and msg.images:
            parts: list[dict[str, Any]] = [{"type": "text", "text": msg.content or ""}]
            for url in msg.images:
                parts.append({"type": "image_url", "image_url": {"url": url}})
            return {"role": "user", "content": parts}
        return {"role": msg.role, "content": msg.content or ""}

    @staticmethod
    def _convert_tools(tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description or "",
                    "parameters": tool.parameters or {"type": "object", "properties": {}},
                },
            }
            for tool in tools
        ]

    def _parse_response(self, data: dict[str, Any], model: str) -> LLMResponse:
        choices = data.get("choices") or []
        if not choices:
            raise LLMError("No response from LLM: provider returned no choices")
        choice = choices[0] or {}
        message = choice.get("message") or {}

        tool_calls = [
            ToolCall(
                id=str(tc.get("id", "")) or f"call_{idx}",
                name=str((tc.get("function") or {}).get("name", "")),
                arguments=_decode_arguments((tc.get("function") or {}).get("arguments")),
            )
            for idx, tc in enumerate(message.get("tool_calls") or [])
        ]

        usage_raw = data.get("usage") or {}
        prompt_tokens = int(usage_raw.get("prompt_tokens") or 0)
        completion_tokens = int(usage_raw.get("completion_tokens") or 0)
        return LLMResponse(
            content=str(message.get("content") or ""),
            tool_calls=tool_calls,
            # Some gateways report "stop" alongside structured tool calls.
            finish_reason="tool_calls" if tool_calls else str(choice.get("finish_reason") or ""),
            model=str(data.get("model") or model),
            usage={
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
            },
        )

    async def complete(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion."""
        target_model = model or self.model
        url = f"{self.base_url}/chat/completions"

        body: dict[str, Any] = {
            "model": target_model,
            "messages": [self._convert_message(msg) for msg in messages],
            "max_tokens": max_tokens or self.max_tokens,
            "temperature": self.temperature if temperature is None else temperature,
        }
        if tools:
            body["tools"] = self._convert_tools(tools)

        headers = {"Content-Type": "application/json", **self.extra_headers}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        log.debug("Calling LLM", model=target_model, url=url, msg_count=len(messages), tools=len(tools or []))
        try:
            response = await self.client.post(url, json=body, headers=headers)
        except httpx.TransportError as e:
            raise ProviderTransientError(f"Network error calling {target_model}: {e!r}") from e

        if not response.is_success:
            raise provider_error_for_status(
                response.status_code,
                f"LLM API error {response.status_code}: {response.text[:500]}",
            )

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise LLMError(f"LLM response decode error: {e}") from e
        return self._parse_response(data, target_model)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


class OllamaProvider(LLMProvider):
    """Direct Ollama API provider."""

    def __init__(
        self,
        model: str = "llama3.2",
        base_url: str = OLLAMA_NATIVE_BASE_URL,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        api_key: str | None = None,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize Ollama provider.

        Args:
            model: Ollama model name (e.g., 'llama3.2', 'qwen3:32b')
            base_url: Ollama API base URL
            temperature: Sampling temperature
            max_tokens: Max tokens to generate
            api_key: Optional API key (Ollama usually doesn't need one locally)
        """
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.api_key = api_key
        self.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    @staticmethod
    def _image_payload(url: str) -> str:
        """Ollama expects raw base64; strip a data-URL prefix when present."""
        if url.startswith("data:") and "," in url:
            return url.split(",", 1)[1]
        return url

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        result = []
        for msg in messages:
            entry: dict[str, Any] = {"role": msg.role, "content": msg.content or ""}
            if msg.role == "assistant" and msg.tool_calls:
                entry["tool_calls"] = [
                    {"function": {"name": call.name, "arguments": call.arguments}}
                    for call in msg.tool_calls
                ]
            if msg.role == "tool" and msg.tool_name:
                entry["tool_name"] = msg.tool_name
            if msg.role == "user" and msg.images:
                entry["images"] = [self._image_payload(url) for url in msg.images]
            result.append(entry)
        return result

    async def complete(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion."""
        target_model = model or self.model
        url = f"{self.base_url}/api/chat"

        options: dict[str, Any] = {
            "temperature": self.temperature if temperature is None else temperature,
            "num_predict": max_tokens or self.max_tokens,
        }
        body: dict[str, Any] = {
            "model": target_model,
            "messages": self._convert_messages(messages),
            "stream": False,
            "options": options,
        }
        if tools:
            body["tools"] = OpenAICompatibleProvider._convert_tools(tools)

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        log.debug("Calling Ollama", model=target_model, url=url, msg_count=len(messages))
        try:
            response = await self.client.post(url, json=body, headers=headers)
        except httpx.TransportError as e:
            raise ProviderTransientError(f"Ollama network error: {e!r}") from e

        if not response.is_success:
            raise provider_error_for_status(
                response.status_code,
                f"Ollama API error {response.status_code}: {response.text[:500]}",
            )

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise LLMError(f"Ollama response decode error: {e}") from e

        message = data.get("message") or {}
        tool_calls = [
            ToolCall(
                id=f"ollama_call_{idx}",
                name=str((tc.get("function") or {}).get("name", "")),
                arguments=_decode_arguments((tc.get("function") or {}).get("arguments")),
            )
            for idx, tc in enumerate(message.get("tool_calls") or [])
        ]
        prompt_tokens = int(data.get("prompt_eval_count") or 0)
        completion_tokens = int(data.get("eval_count") or 0)
        return LLMResponse(
            content=str(message.get("content") or ""),
            tool_calls=tool_calls,
            finish_reason="tool_calls" if tool_calls else str(data.get("done_reason") or "stop"),
            model=target_model,
            usage={
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
            },
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


def create_provider(
    provider: str = "openrouter",
    model: str = "google/gemini-2.5-flash:free",
    api_key: str | None = None,
    base_url: str | None = None,
    temperature: float = 0.7,
    max_tokens: int = 4096,
    timeout: float = 120.0,
) -> LLMProvider:
    """Create an LLM provider.

    Args:
        provider: Provider name (openrouter, openai, ollama)
        model: Model name
        api_key: Optional API key
        base_url: Optional base URL
        temperature: Default temperature
        max_tokens: Default max tokens

    Returns:
        Configured LLMProvider instance
    """
    name = (provider or "").strip().lower()
    if name == "openrouter":
        return OpenAICompatibleProvider(
            model=model,
            api_key=api_key or "",
            base_url=base_url or OPENROUTER_BASE_URL,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
            extra_headers={
                "HTTP-Referer": "https://github.com/gravity-claw",
                "X-Title": "Gravity Claw",
            },
        )
    if name == "openai":
        return OpenAICompatibleProvider(
            model=model,
            api_key=api_key or "",
            base_url=base_url or OPENAI_BASE_URL,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
    if name == "ollama":
        return OllamaProvider(
            model=model,
            base_url=base_url or OLLAMA_NATIVE_BASE_URL,
            temperature=temperature,
            max_tokens=max_tokens,
            api_key=api_key,
            timeout=timeout,
        )
    raise ConfigurationError(f"Provider '{provider}' not supported. Use 'openrouter', 'openai' or 'ollama'.")


# Global provider instance
_provider: LLMProvider | None = None


def get_provider() -> LLMProvider:
    """Get the global LLM provider instance."""
    global _provider
    if _provider is None:
        from gravity_claw.config import get_config
        cfg = get_config()
        _provider = create_provider(
            provider=cfg.model.provider,
            model=cfg.model.model,
            api_key=cfg.model.api_key or None,
            base_url=cfg.model.base_url or None,
            temperature=cfg.model.temperature,
            max_tokens=cfg.model.max_tokens,
            timeout=cfg.model.request_timeout_seconds,
        )
    return _provider


def set_provider(provider: LLMProvider) -> None:
    """Set the global LLM provider instance."""
    global _provider
    _provider = provider
