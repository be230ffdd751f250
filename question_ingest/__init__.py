from __future__ import annotations

# Load a local `.env` early so the LLM client sees OPENAI_* in dev shells.
try:
    from question_ingest.utils.env import load_project_dotenv

    load_project_dotenv()
except Exception:
    # Never hard-fail import for optional dev convenience.
    pass
