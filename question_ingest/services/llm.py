"""
LLM Client - OpenAI-compatible chat completions

- one request/response per call; transport errors retried with backoff
- JSON mode helper: strips ``` fences, parses, repairs common LLM damage
  (trailing commas, missing commas, truncated tails) before giving up
"""

from __future__ import annotations

import json
import logging
import re
from functools import lru_cache, partial
from typing import Any, Dict, List, Optional

import httpx
from openai import APIConnectionError, APIError, APITimeoutError, OpenAI
from pydantic import BaseModel, Field
from tenacity import (
    retry,
    retry_if_exception_type,
    wait_exponential,
)

from question_ingest.utils.errors import LLMCallError, LLMResponseParseError, LLMTimeoutError
from question_ingest.utils.observability import log_event, log_llm_usage, trace_span
from question_ingest.utils.settings import Settings, get_settings

logger = logging.getLogger(__name__)

Message = Dict[str, str]

_TIMEOUTS = (APITimeoutError, httpx.ReadTimeout, httpx.ConnectTimeout)
_RETRYABLE = (APIConnectionError,) + _TIMEOUTS
_FENCE_RE = re.compile(r"^\s*```(?:json|JSON)?\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)

# Closers tried, in order, against a truncated completion; "" covers escaped-only damage.
_REPAIR_SUFFIXES = ("", '"}]}', '"}]', '"]}', '"}', '"]', '"', "}]}", "}]", "]}", "}", "]")


def _extract_first_json_object(text: str) -> Optional[str]:
    if not text:
        return None
    s = str(text)
    start = s.find("{")
    if start < 0:
        return None
    depth = 0
    in_str = False
    esc = False
    for i in range(start, len(s)):
        ch = s[i]
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return s[start : i + 1]
    return None


def _escape_control_chars(s: str) -> str:
    out: List[str] = []
    i = 0
    while i < len(s):
        c = s[i]
        if c == "\\" and i + 1 < len(s):
            out.append(s[i : i + 2])
            i += 2
            continue
        out.append({"\n": "\\n", "\r": "\\r", "\t": "\\t"}.get(c, c))
        i += 1
    return "".join(out)


def _loads_ok(text: str) -> bool:
    try:
        json.loads(text)
        return True
    except ValueError:
        return False


def _repair_json_text(text: str) -> Optional[str]:
    """
    Best-effort repair of malformed JSON from LLM output.

    Handles:
    - leading/trailing prose around the JSON block
    - trailing commas before } or ]
    - missing commas between elements split across lines
    - truncated tails (unterminated string / unclosed containers)
    """
    if not text:
        return None
    s = str(text)
    block = _extract_first_json_object(s)
    if not block:
        start = s.find("{")
        end = s.rfind("}")
        if start >= 0 and end > start:
            block = s[start : end + 1]
        elif start >= 0:
            block = s[start:]
        else:
            return None

    cleaned = re.sub(r",\s*([}\]])", r"\1", block)
    cleaned = re.sub(r"}\s*\n\s*{", "},\n{", cleaned)
    cleaned = re.sub(r"}\s*\n\s*\"", '},\n"', cleaned)
    cleaned = re.sub(r"]\s*\n\s*\[", "],\n[", cleaned)
    cleaned = re.sub(r'"\s*\n\s*"([^"]+)":', r'",\n"\1":', cleaned)
    if _loads_ok(cleaned):
        return cleaned

    escaped = _escape_control_chars(cleaned)
    for suffix in _REPAIR_SUFFIXES:
        if _loads_ok(escaped + suffix):
            return escaped + suffix
    return None


def strip_code_fences(text: str) -> str:
    m = _FENCE_RE.match(text or "")
    return m.group(1).strip() if m else (text or "").strip()


def parse_json_content(text: str, *, stage: str = "llm") -> Any:
    """
    Completion text -> JSON value. Raises `LLMResponseParseError` when neither
    the raw text nor its repaired form parses.
    """
    body = strip_code_fences(text)
    try:
        return json.loads(body)
    except ValueError:
        pass
    repaired = _repair_json_text(body)
    if repaired is not None:
        try:
            data = json.loads(repaired)
        except ValueError:
            data = None
        else:
            log_event(logger, "llm_json_repaired", level="warning", stage=stage, length=len(body))
            return data
    tail = body[-200:]
    log_event(logger, "llm_json_parse_failed", level="warning", stage=stage, content_tail=tail)
    raise LLMResponseParseError(f"{stage}: completion is not valid JSON", content_tail=tail)


def _stop_after_configured_attempts(retry_state) -> bool:
    try:
        attempts = int(getattr(retry_state.args[0], "max_retries", 3))
    except (IndexError, TypeError, ValueError):
        attempts = 3
    return retry_state.attempt_number >= max(1, attempts)


def _log_retry(op: str, retry_state) -> None:
    model = retry_state.kwargs.get("model", "unknown")
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Retrying %s (model=%s), attempt=%s, exception=%s",
        op,
        model,
        retry_state.attempt_number,
        exc,
    )


class LLMResult(BaseModel):
    """Completion text plus token usage."""

    text: str = Field(..., description="assistant message content")
    model: str = ""
    usage: Optional[Dict[str, int]] = Field(None, description="token usage")


class LLMClient:
    """Synchronous OpenAI-compatible client used by the conservative and route solvers."""

    def __init__(self, settings: Optional[Settings] = None):
        s = settings or get_settings()
        self.api_key = s.openai_api_key
        self.base_url = s.openai_base_url
        self.timeout_seconds = int(s.llm_client_timeout_seconds)
        self.max_retries = int(s.llm_max_retries)
        self.default_model = s.model_solver
        self._client: Optional[OpenAI] = None

    def _get_client(self) -> OpenAI:
        if self._client is None:
            if not self.api_key:
                raise LLMCallError("OPENAI_API_KEY not configured")
            self._client = OpenAI(
                base_url=self.base_url,
                api_key=self.api_key,
                timeout=float(self.timeout_seconds),
            )
        return self._client

    @retry(
        retry=retry_if_exception_type(_RETRYABLE),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        stop=_stop_after_configured_attempts,
        before_sleep=partial(_log_retry, "chat_completion"),
        reraise=True,
    )
    def _create(self, *, messages: List[Message], model: str, temperature: float, max_tokens: Optional[int], json_mode: bool):
        kwargs: Dict[str, Any] = {"model": model, "messages": messages, "temperature": temperature}
        if max_tokens:
            kwargs["max_tokens"] = int(max_tokens)
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        return self._get_client().chat.completions.create(**kwargs)

    @trace_span("llm.chat_completion")
    def chat_completion(
        self,
        messages: List[Message],
        *,
        model: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
        stage: str = "llm",
    ) -> LLMResult:
        model_name = model or self.default_model
        try:
            response = self._create(
                messages=messages,
                model=model_name,
                temperature=temperature,
                max_tokens=max_tokens,
                json_mode=json_mode,
            )
        except _TIMEOUTS as e:
            raise LLMTimeoutError(f"{stage}: LLM request timed out after retries: {e}") from e
        except _RETRYABLE as e:
            raise LLMCallError(f"{stage}: LLM request failed after retries: {e}") from e
        except APIError as e:
            raise LLMCallError(f"{stage}: LLM API error: {e}") from e

        choices = getattr(response, "choices", None) or []
        content = choices[0].message.content if choices else None
        if not content or not str(content).strip():
            raise LLMCallError(f"{stage}: empty completion")

        usage = getattr(response, "usage", None)
        usage_dict = {
            "prompt_tokens": int(getattr(usage, "prompt_tokens", 0) or 0),
            "completion_tokens": int(getattr(usage, "completion_tokens", 0) or 0),
            "total_tokens": int(getattr(usage, "total_tokens", 0) or 0),
        }
        log_llm_usage(logger, model=model_name, usage=usage_dict, stage=stage)
        return LLMResult(text=str(content), model=model_name, usage=usage_dict)

    def chat_completion_json(
        self,
        messages: List[Message],
        *,
        model: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
        stage: str = "llm",
    ) -> Any:
        """JSON-mode completion, parsed. Raises `LLMCallError` or `LLMResponseParseError`."""
        result = self.chat_completion(
            messages,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            json_mode=True,
            stage=stage,
        )
        return parse_json_content(result.text, stage=stage)


@lru_cache
def get_llm_client() -> LLMClient:
    return LLMClient()
