"""Application settings and configuration management."""
from __future__ import annotations

from typing import Dict

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or defaults."""

    DB_PATH: str = Field(default="data/interview.db")
    APP_CONFIG_PATH: str = "app_config.json"
    QUESTION_BANK_PATH: str = "config/question_bank.yaml"

    DEFAULT_PLANNED_QUESTIONS: int = 10
    MIN_PLANNED_QUESTIONS: int = 5
    MAX_PLANNED_QUESTIONS: int = 20
    MAX_FOLLOWUPS_PER_TOPIC: int = 2
    PLAN_TOP_GAPS: int = 6

    EMA_ALPHA: float = 0.3
    CODING_TEST_WEIGHT: float = 0.7

    EVAL_LLM_TIMEOUT_S: float = 20.0
    QUESTION_LLM_TIMEOUT_S: float = 30.0

    SESSION_IDLE_TIMEOUT_MIN: int = 30
    SWEEP_INTERVAL_S: int = 60
    CONFLICT_RETRIES: int = 3

    # token -> user id, e.g. AUTH_TOKENS='{"dev-token": "user-1"}'
    AUTH_TOKENS: Dict[str, str] = Field(default_factory=dict)

    model_config = SettingsConfigDict(env_file=".env", validate_assignment=True, extra="ignore")


settings = Settings()
