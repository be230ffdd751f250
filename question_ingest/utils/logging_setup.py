from __future__ import annotations

import logging
import os
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional


def _project_root() -> Path:
    # question_ingest/utils/logging_setup.py -> question_ingest/utils -> question_ingest -> repo root
    return Path(__file__).resolve().parents[2]


def setup_file_logging(
    *,
    log_file_path: str,
    level: int,
    logger_names: Optional[list[str]] = None,
) -> None:
    """
    Attach a rotating FileHandler to loggers. Idempotent across reloads.
    - `log_file_path` may be relative to project root.
    """
    if not log_file_path:
        return

    root = _project_root()
    path = Path(log_file_path)
    if not path.is_absolute():
        path = root / path

    os.makedirs(path.parent, exist_ok=True)

    handler_name = "question_ingest_file_handler"
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")

    def _ensure(logger: logging.Logger) -> None:
        for h in logger.handlers:
            if getattr(h, "name", None) == handler_name:
                return

        h = TimedRotatingFileHandler(
            filename=str(path),
            when="midnight",
            interval=1,
            backupCount=14,
            encoding="utf-8",
            utc=False,
        )
        h.setLevel(level)
        h.setFormatter(fmt)
        h.name = handler_name
        logger.addHandler(h)
        # Root defaults to WARNING otherwise.
        if logger.level == logging.NOTSET or logger.level > level:
            logger.setLevel(level)
        if logger.name:
            logger.propagate = False

    targets = logger_names or ["question_ingest"]

    for name in targets:
        _ensure(logging.getLogger(name))


def silence_noisy_loggers() -> None:
    """
    Reduce verbosity of the HTTP/LLM client libraries, which log request details.
    """
    for name in ("httpx", "httpcore", "openai", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)


def configure_logging_from_settings() -> None:
    """Apply LOG_LEVEL / LOG_TO_FILE / LOG_FILE_PATH for hosts embedding the library."""
    from question_ingest.utils.settings import get_settings

    settings = get_settings()
    level = getattr(logging, str(settings.log_level or "INFO").upper(), logging.INFO)
    logging.getLogger("question_ingest").setLevel(level)
    silence_noisy_loggers()
    if settings.log_to_file:
        setup_file_logging(log_file_path=settings.log_file_path, level=level)
