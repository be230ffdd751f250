from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv


def load_project_dotenv() -> bool:
    """
    Load `.env` from the project root into `os.environ`.

    `pydantic-settings` reads `.env` into Settings but does NOT populate
    `os.environ`; the OpenAI SDK falls back to `OPENAI_API_KEY` from there.

    Existing env vars always win (`override=False`).
    """
    project_root = Path(__file__).resolve().parents[2]
    candidates = [
        project_root / ".env",
        project_root / "question_ingest" / ".env",
    ]

    loaded = False
    for p in candidates:
        if p.exists():
            loaded = bool(load_dotenv(p, override=False)) or loaded
    return loaded
