import json
from typing import Any

import httpx
import pytest

from gravity_claw.exceptions import (
    ConfigurationError,
    LLMAPIError,
    LLMError,
    ProviderAuthError,
    ProviderOverloadedError,
    ProviderTransientError,
)
from gravity_claw.llm import (
    Message,
    OllamaProvider,
    OpenAICompatibleProvider,
    ToolCall,
    ToolDefinition,
    create_provider,
    provider_error_for_status,
)

TIME_TOOL = ToolDefinition(
    name="get_current_time",
    description="Current time",
    parameters={"type": "object", "properties": {"timezone": {"type": "string"}}},
)


def _client(handler: Any, seen: list[httpx.Request]) -> httpx.AsyncClient:
    def recording(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    return httpx.AsyncClient(transport=httpx.MockTransport(recording))


@pytest.mark.asyncio
async def test_openai_provider_sends_tools_images_and_history() -> None:
    seen: list[httpx.Request] = []
    payload = {
        "model": "m",
        "choices": [{"message": {"content": "hi"}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 7, "completion_tokens": 2},
    }
    provider = OpenAICompatibleProvider(
        model="m",
        api_key="secret",
        base_url="https://gw.example/v1/",
        client=_client(lambda request: httpx.Response(200, json=payload), seen),
    )

    response = await provider.complete(
        [
            Message(role="system", content="sys"),
            Message(role="user", content="look", images=["data:image/png;base64,QUJD"]),
            Message(role="assistant", content="", tool_calls=[ToolCall(id="c1", name="get_current_time", arguments={})]),
            Message(role="tool", content='{"time": "noon"}', tool_call_id="c1", tool_name="get_current_time"),
        ],
        tools=[TIME_TOOL],
    )

    request = seen[0]
    assert str(request.url) == "https://gw.example/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer secret"
    body = json.loads(request.content)
    assert body["tools"][0]["function"]["name"] == "get_current_time"
    assert body["messages"][1]["content"][1] == {
        "type": "image_url",
        "image_url": {"url": "data:image/png;base64,QUJD"},
    }
    assert body["messages"][2]["tool_calls"][0]["id"] == "c1"
    assert body["messages"][3] == {"role": "tool", "tool_call_id": "c1", "content": '{"time": "noon"}'}

    assert response.content == "hi"
    assert not response.requests_tools
    assert response.usage["total_tokens"] == 9


@pytest.mark.asyncio
async def test_openai_provider_parses_tool_calls_even_with_stop_reason() -> None:
    seen: list[httpx.Request] = []
    payload = {
        "choices": [
            {
                "finish_reason": "stop",
                "message": {
                    "content": None,
                    "tool_calls": [
                        {"id": "a", "function": {"name": "get_current_time", "arguments": '{"timezone": "UTC"}'}},
                        {"id": "b", "function": {"name": "get_current_time", "arguments": "{broken"}},
                    ],
                },
            }
        ]
    }
    provider = OpenAICompatibleProvider(
        model="m",
        client=_client(lambda request: httpx.Response(200, json=payload), seen),
    )

    response = await provider.complete([Message(role="user", content="time?")])

    assert response.requests_tools
    assert response.content == ""
    assert [tc.arguments for tc in response.tool_calls] == [{"timezone": "UTC"}, {}]
    assert "tools" not in json.loads(seen[0].content)


@pytest.mark.asyncio
async def test_openai_provider_rejects_empty_choices() -> None:
    provider = OpenAICompatibleProvider(
        model="m",
        client=_client(lambda request: httpx.Response(200, json={"choices": []}), []),
    )

    with pytest.raises(LLMError, match="no choices"):
        await provider.complete([Message(role="user", content="hi")])


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "error_type"),
    [
        (429, ProviderTransientError),
        (401, ProviderAuthError),
        (503, ProviderOverloadedError),
        (400, LLMAPIError),
    ],
)
async def test_openai_provider_maps_http_errors(status: int, error_type: type[Exception]) -> None:
    provider = OpenAICompatibleProvider(
        model="m",
        client=_client(lambda request: httpx.Response(status, text="nope"), []),
    )

    with pytest.raises(error_type) as exc_info:
        await provider.complete([Message(role="user", content="hi")])

    assert exc_info.value.status_code == status


@pytest.mark.asyncio
async def test_transport_failure_is_transient_without_status() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    provider = OpenAICompatibleProvider(model="m", client=_client(refuse, []))

    with pytest.raises(ProviderTransientError) as exc_info:
        await provider.complete([Message(role="user", content="hi")])

    assert exc_info.value.status_code is None


@pytest.mark.asyncio
async def test_ollama_provider_round_trip() -> None:
    seen: list[httpx.Request] = []
    payload = {
        "message": {
            "content": "",
            "tool_calls": [{"function": {"name": "get_current_time", "arguments": {"timezone": "UTC"}}}],
        },
        "prompt_eval_count": 11,
        "eval_count": 4,
    }
    provider = OllamaProvider(
        model="llama3.2",
        base_url="http://ollama.local:11434/",
        client=_client(lambda request: httpx.Response(200, json=payload), seen),
    )

    response = await provider.complete(
        [Message(role="user", content="what is this", images=["data:image/jpeg;base64,AAAA"])],
        tools=[TIME_TOOL],
        max_tokens=64,
    )

    request = seen[0]
    assert str(request.url) == "http://ollama.local:11434/api/chat"
    body = json.loads(request.content)
    assert body["stream"] is False
    assert body["options"]["num_predict"] == 64
    assert body["messages"][0]["images"] == ["AAAA"]
    assert body["tools"][0]["function"]["name"] == "get_current_time"

    assert response.requests_tools
    assert response.tool_calls[0].id == "ollama_call_0"
    assert response.tool_calls[0].arguments == {"timezone": "UTC"}
    assert response.usage == {"prompt_tokens": 11, "completion_tokens": 4, "total_tokens": 15}


def test_provider_error_for_status() -> None:
    assert isinstance(provider_error_for_status(403, "x"), ProviderAuthError)
    assert isinstance(provider_error_for_status(529, "x"), ProviderOverloadedError)
    assert isinstance(provider_error_for_status(502, "x"), ProviderTransientError)
    assert type(provider_error_for_status(404, "x")) is LLMAPIError


def test_create_provider_selects_backend() -> None:
    openrouter = create_provider(provider="openrouter", model="a")
    openai = create_provider(provider="OpenAI", model="b", api_key="k")
    ollama = create_provider(provider="ollama", model="c")

    assert isinstance(openrouter, OpenAICompatibleProvider)
    assert openrouter.base_url == "https://openrouter.ai/api/v1"
    assert openrouter.extra_headers["X-Title"] == "Gravity Claw"
    assert isinstance(openai, OpenAICompatibleProvider)
    assert openai.base_url == "https://api.openai.com/v1"
    assert isinstance(ollama, OllamaProvider)
    assert ollama.model == "c"


def test_create_provider_rejects_unknown_backend() -> None:
    with pytest.raises(ConfigurationError, match="not supported"):
        create_provider(provider="carrier-pigeon")
