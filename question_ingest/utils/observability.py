from __future__ import annotations

import json
import time
import logging
from functools import wraps
from typing import Any, Dict

# Student text can be an entire exam paper; keep single log lines bounded.
_MAX_LOG_STR = 300


def _safe_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        return value if len(value) <= _MAX_LOG_STR else value[:_MAX_LOG_STR] + "…"
    if isinstance(value, (int, float, bool)):
        return value
    if isinstance(value, (list, tuple)):
        return [_safe_value(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _safe_value(v) for k, v in value.items()}
    dump = getattr(value, "model_dump", None)
    if callable(dump):
        try:
            return _safe_value(dump())
        except Exception:
            pass
    try:
        return str(value)
    except Exception:
        return repr(value)


def log_event(logger, event: str, *, level: str = "info", **fields: Any) -> None:
    """
    Emit a single-line JSON log with a stable `event` key.
    This is best-effort and must never raise.
    """
    try:
        payload: Dict[str, Any] = {"event": event}
        for k, v in fields.items():
            if v is None:
                continue
            payload[str(k)] = _safe_value(v)
        line = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
        fn = getattr(logger, level, None) or getattr(logger, "info", None)
        if fn:
            fn(line)
    except Exception:
        return


def log_llm_usage(
    logger,
    *,
    model: str,
    usage: Any,
    stage: str,
    level: str = "info",
) -> None:
    """
    Emit a structured LLM usage event for token tracing.
    Best-effort and must never raise.

    Expected `usage` shape (best-effort):
      {"prompt_tokens": int, "completion_tokens": int, "total_tokens": int}
    """
    try:
        u = _safe_value(usage) if usage is not None else {}
        if not isinstance(u, dict):
            u = {"usage": u}
        log_event(
            logger,
            "llm_usage",
            level=level,
            model=str(model or ""),
            stage=str(stage or ""),
            prompt_tokens=u.get("prompt_tokens"),
            completion_tokens=u.get("completion_tokens"),
            total_tokens=u.get("total_tokens"),
        )
    except Exception:
        return


def trace_span(name: str) -> Any:
    """
    Lightweight tracing decorator.
    Emits trace_start/trace_end events via log_event.
    """

    def decorator(fn):
        logger = logging.getLogger(fn.__module__)

        @wraps(fn)
        def wrapper(*args, **kwargs):
            start = time.monotonic()
            log_event(logger, "trace_start", span=name)
            try:
                result = fn(*args, **kwargs)
            except Exception as e:
                log_event(
                    logger,
                    "trace_end",
                    level="warning",
                    span=name,
                    elapsed_ms=int((time.monotonic() - start) * 1000),
                    error_type=e.__class__.__name__,
                    error=str(e),
                )
                raise
            log_event(logger, "trace_end", span=name, elapsed_ms=int((time.monotonic() - start) * 1000))
            return result

        return wrapper

    return decorator
