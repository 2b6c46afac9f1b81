# src/config/settings.py
from typing import Optional
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

# Get project root (2 levels up from this file)
PROJECT_ROOT = Path(__file__).parent.parent.parent

class Settings(BaseSettings):
    # OpenAI
    openai_api_key: str
    openai_llm_model: str = "gpt-4o"
    openai_summary_model: str = "gpt-4o"
    openai_transcription_model: str = "whisper-1"
    extraction_timeout_seconds: float = 300.0

    # PostgreSQL (feedback submissions, campaigns, summaries)
    postgres_host: str
    postgres_port: int = 5432
    postgres_database: str
    postgres_username: str
    postgres_password: str
    postgres_sslmode: str = "require"

    # Analysis config
    sample_cap: int = 50
    max_feedback_to_process: int = 200
    min_feedback_for_analysis: int = 3

    # Job-style transcription service
    assembly_ai_api_key: Optional[str] = None
    assembly_ai_base_url: str = "https://api.assemblyai.com/v2"
    transcription_poll_interval_seconds: float = 1.0
    transcription_max_attempts: int = 30

    log_level: str = "INFO"

    @field_validator("openai_api_key")
    @classmethod
    def api_key_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Missing OPENAI_API_KEY")
        return value.strip()

    @field_validator("sample_cap", "max_feedback_to_process", "min_feedback_for_analysis")
    @classmethod
    def positive_limit(cls, value: int) -> int:
        if value < 1:
            raise ValueError("limits must be at least 1")
        return value

    class Config:
        env_file = str(PROJECT_ROOT / ".env")
        case_sensitive = False
        extra = "ignore"
