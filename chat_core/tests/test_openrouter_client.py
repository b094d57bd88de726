import pytest

from chat_core.providers.openrouter_client import OpenRouterClient
from chat_core.domain.exceptions import ApiError, ValidationError
from chat_core.domain.models import ChatRequest, ModelMessage
from chat_core.providers.registry import ProviderConfig


class SettingsStub:
    openrouter_api_key = "sk-or-test-key"
    http_timeout = 1.0
    openrouter_base_url = "https://openrouter.ai/api/v1"


class FakeResponse:
    def __init__(self, lines, status_code=200, text=""):
        self._lines = list(lines)
        self.status_code = status_code
        self.text = text

    def read(self):
        return self.text.encode()

    def iter_lines(self):
        for line in self._lines:
            yield line


class StreamContext:
    def __init__(self, response):
        self._response = response

    def __enter__(self):
        return self._response

    def __exit__(self, *args):
        return False


def _fake_client(response, captured):
    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def stream(self, method, url, json=None, **kw):
            captured["url"] = url
            captured["payload"] = json
            return StreamContext(response)

    return Client


def _request():
    return ChatRequest(
        provider="openrouter",
        model="m1",
        messages=[ModelMessage(role="user", content="hi")],
        system="be nice",
    )


def test_openrouter_chat_stream(monkeypatch):
    stream_lines = [
        ": OPENROUTER PROCESSING",
        'data: {"choices": [{"index": 0, "delta": {"reasoning": "hmm"}}]}',
        'data: {"choices": [{"index": 0, "delta": {"content": "hel"}}]}',
        'data: {"choices": [{"index": 0, "delta": {"content": "lo"}, "finish_reason": "stop"}], "usage": {"prompt_tokens": 1, "completion_tokens": 2, "total_tokens": 3}}',
        "data: [DONE]",
    ]
    captured = {}
    monkeypatch.setattr("httpx.Client", _fake_client(FakeResponse(stream_lines), captured))
    chunks = list(OpenRouterClient(SettingsStub()).chat_stream(_request()))
    assert len(chunks) == 3
    assert chunks[0].choices[0].delta.reasoning == "hmm"
    assert chunks[1].choices[0].delta.content == "hel"
    assert chunks[2].usage.total_tokens == 3
    assert captured["url"].endswith("/chat/completions")
    assert captured["payload"]["stream"] is True
    assert captured["payload"]["messages"][0] == {"role": "system", "content": "be nice"}
    assert captured["payload"]["messages"][1] == {"role": "user", "content": "hi"}


def test_openrouter_api_error(monkeypatch):
    captured = {}
    monkeypatch.setattr("httpx.Client", _fake_client(FakeResponse([], status_code=401, text="bad key"), captured))
    with pytest.raises(ApiError) as exc:
        list(OpenRouterClient(SettingsStub()).chat_stream(_request()))
    assert exc.value.http_status == 401


def test_openrouter_missing_api_key():
    class NoKey(SettingsStub):
        openrouter_api_key = None

    with pytest.raises(ValidationError):
        list(OpenRouterClient(NoKey()).chat_stream(_request()))


def test_openrouter_resolves_model_alias(monkeypatch):
    captured = {}
    monkeypatch.setattr("httpx.Client", _fake_client(FakeResponse(["data: [DONE]"]), captured))
    config = ProviderConfig(name="openrouter", base_url="https://example.test/v1", aliases={"m1": "vendor/model-1"})

    class NoBaseUrl(SettingsStub):
        openrouter_base_url = None

    list(OpenRouterClient(NoBaseUrl(), config).chat_stream(_request()))
    assert captured["payload"]["model"] == "vendor/model-1"
    assert captured["url"] == "https://example.test/v1/chat/completions"
