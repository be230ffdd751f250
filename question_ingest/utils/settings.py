from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
import os


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
    openai_base_url: str = Field(default="https://api.openai.com/v1", validation_alias="OPENAI_BASE_URL")

    # General solver (route solver) and conservative mode models
    model_solver: str = Field(default="gpt-4o-mini", validation_alias="MODEL_SOLVER")
    model_conservative: str = Field(default="gpt-4o-mini", validation_alias="MODEL_CONSERVATIVE")
    solver_temperature: float = Field(default=0.2, validation_alias="SOLVER_TEMPERATURE")
    detect_temperature: float = Field(default=0.1, validation_alias="DETECT_TEMPERATURE")
    explain_temperature: float = Field(default=0.2, validation_alias="EXPLAIN_TEMPERATURE")
    solver_max_tokens: int = Field(default=2048, validation_alias="SOLVER_MAX_TOKENS")

    llm_client_timeout_seconds: int = Field(
        default=60, validation_alias="LLM_CLIENT_TIMEOUT_SECONDS"
    )
    # Transport-level retries inside the client only; pipeline layers never retry.
    llm_max_retries: int = Field(default=3, validation_alias="LLM_MAX_RETRIES")

    # Subject arbitration
    expert_threshold: float = Field(default=0.55, validation_alias="EXPERT_THRESHOLD")
    expert_top_k: int = Field(default=1, validation_alias="EXPERT_TOP_K")

    # Input truncation per prompt (characters)
    detect_input_max_chars: int = Field(default=3000, validation_alias="DETECT_INPUT_MAX_CHARS")
    solver_input_max_chars: int = Field(default=4000, validation_alias="SOLVER_INPUT_MAX_CHARS")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_to_file: bool = Field(default=False, validation_alias="LOG_TO_FILE")
    log_file_path: str = Field(
        default=os.path.join("logs", "question_ingest.log"),
        validation_alias="LOG_FILE_PATH",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
