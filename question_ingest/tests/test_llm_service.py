import json
import logging

import httpx
import pytest
from openai import APIConnectionError, APITimeoutError

from question_ingest.services.llm import LLMClient, parse_json_content, strip_code_fences
from question_ingest.utils.errors import ErrorCode, LLMCallError, LLMResponseParseError, LLMTimeoutError


class _FakeMessage:
    def __init__(self, content):
        self.content = content


class _FakeChoice:
    def __init__(self, content):
        self.message = _FakeMessage(content)


class _FakeUsage:
    prompt_tokens = 11
    completion_tokens = 7
    total_tokens = 18


class _FakeResponse:
    def __init__(self, content, usage=None):
        self.choices = [_FakeChoice(content)]
        self.usage = usage


class _FakeChatCompletions:
    def __init__(self, outcomes):
        self._outcomes = list(outcomes)
        self.calls = []

    def create(self, *args, **kwargs):  # noqa: ANN001, ANN002, ANN003
        self.calls.append(kwargs)
        item = self._outcomes.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class _FakeChat:
    def __init__(self, outcomes):
        self.completions = _FakeChatCompletions(outcomes)


class _FakeClient:
    def __init__(self, *outcomes):
        self.chat = _FakeChat(outcomes)


def _client_with(monkeypatch: pytest.MonkeyPatch, fake: _FakeClient) -> LLMClient:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    c = LLMClient()
    monkeypatch.setattr(c, "_get_client", lambda: fake)
    return c


def _connection_error() -> APIConnectionError:
    return APIConnectionError(request=httpx.Request("POST", "https://api.example.test/v1/chat/completions"))


def test_strip_code_fences():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'
    assert strip_code_fences(None) == ""


@pytest.mark.parametrize(
    "text,expected",
    [
        ('```json\n{"a": 1}\n```', {"a": 1}),
        ('{"a": [1, 2,],}', {"a": [1, 2]}),
        ('Sure! Here it is: {"type": "E1_VOCAB"} Hope this helps.', {"type": "E1_VOCAB"}),
        ('{"a": "hel', {"a": "hel"}),
        ('{"a": "line1\nline2"}', {"a": "line1\nline2"}),
    ],
)
def test_parse_json_content_repairs_common_damage(text, expected):
    assert parse_json_content(text, stage="t") == expected


def test_parse_json_content_gives_up_with_tail():
    with pytest.raises(LLMResponseParseError) as ei:
        parse_json_content("no json here " * 30, stage="t")
    assert len(ei.value.content_tail) == 200
    assert ei.value.code.value == "E5004"


def test_chat_completion_json_parses_and_logs_usage(monkeypatch: pytest.MonkeyPatch, caplog):
    fake = _FakeClient(_FakeResponse(json.dumps({"type": "E4_READING"}), usage=_FakeUsage()))
    c = _client_with(monkeypatch, fake)

    with caplog.at_level(logging.INFO, logger="question_ingest"):
        out = c.chat_completion_json([{"role": "user", "content": "q"}], model="m1", max_tokens=64, stage="detect")

    assert out == {"type": "E4_READING"}
    sent = fake.chat.completions.calls[0]
    assert sent["model"] == "m1"
    assert sent["max_tokens"] == 64
    assert sent["response_format"] == {"type": "json_object"}
    usage_lines = [json.loads(r.getMessage()) for r in caplog.records if '"llm_usage"' in r.getMessage()]
    assert usage_lines and usage_lines[0]["total_tokens"] == 18
    assert usage_lines[0]["stage"] == "detect"


def test_chat_completion_plain_text(monkeypatch: pytest.MonkeyPatch):
    fake = _FakeClient(_FakeResponse("hello"))
    c = _client_with(monkeypatch, fake)
    result = c.chat_completion([{"role": "user", "content": "hi"}])
    assert result.text == "hello"
    assert result.model == c.default_model
    assert result.usage == {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}
    assert "response_format" not in fake.chat.completions.calls[0]
    assert "max_tokens" not in fake.chat.completions.calls[0]


@pytest.mark.parametrize("content", ["", "   ", None])
def test_empty_completion_raises(monkeypatch: pytest.MonkeyPatch, content):
    c = _client_with(monkeypatch, _FakeClient(_FakeResponse(content)))
    with pytest.raises(LLMCallError):
        c.chat_completion([{"role": "user", "content": "hi"}])


def test_unparseable_json_completion_raises_parse_error(monkeypatch: pytest.MonkeyPatch):
    c = _client_with(monkeypatch, _FakeClient(_FakeResponse("I cannot answer that.")))
    with pytest.raises(LLMResponseParseError):
        c.chat_completion_json([{"role": "user", "content": "hi"}])


def test_missing_api_key_raises(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("OPENAI_API_KEY", "")
    c = LLMClient()
    with pytest.raises(LLMCallError):
        c.chat_completion([{"role": "user", "content": "hi"}])


def test_transport_error_exhausts_retries(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("LLM_MAX_RETRIES", "1")
    fake = _FakeClient(_connection_error())
    c = _client_with(monkeypatch, fake)
    with pytest.raises(LLMCallError) as ei:
        c.chat_completion([{"role": "user", "content": "hi"}], stage="detect")
    assert isinstance(ei.value.__cause__, APIConnectionError)
    assert ei.value.code == ErrorCode.LLM_UNAVAILABLE
    assert len(fake.chat.completions.calls) == 1


def test_transport_error_is_retried(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("LLM_MAX_RETRIES", "2")
    fake = _FakeClient(_connection_error(), _FakeResponse("ok"))
    c = _client_with(monkeypatch, fake)
    assert c.chat_completion([{"role": "user", "content": "hi"}]).text == "ok"
    assert len(fake.chat.completions.calls) == 2


def test_timeout_maps_to_timeout_code(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("LLM_MAX_RETRIES", "1")
    timeout = APITimeoutError(request=httpx.Request("POST", "https://api.example.test/v1/chat/completions"))
    fake = _FakeClient(timeout)
    c = _client_with(monkeypatch, fake)
    with pytest.raises(LLMTimeoutError) as ei:
        c.chat_completion([{"role": "user", "content": "hi"}], stage="explain")
    assert ei.value.code == ErrorCode.LLM_TIMEOUT
    assert isinstance(ei.value, LLMCallError)
    assert "explain" in str(ei.value)
