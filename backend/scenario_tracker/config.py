"""
Configuration settings using Pydantic Settings.
"""

from pathlib import Path
from pydantic import model_validator
from pydantic_settings import BaseSettings
from functools import lru_cache

import os

BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    GIST_TOKEN: str = os.environ.get("GIST_TOKEN") or ""
    GIST_API_BASE_URL: str = "https://api.github.com"
    GIST_TIMEOUT_SECONDS: float = 30.0

    BACKBOARD_API_KEY: str = os.environ.get("BACKBOARD_API_KEY") or ""
    BACKBOARD_ASSISTANT_ID: str = ""
    BACKBOARD_MAX_RETRIES: int = 2
    BACKBOARD_RETRY_BASE_SECONDS: float = 0.5
    BACKBOARD_RETRY_MAX_SECONDS: float = 4.0

    PUSH_DEBOUNCE_SECONDS: float = 8.0
    SNAPSHOT_MAX_AGE_SECONDS: int = 86_400

    RESCAN_DEFAULT_COUNT: int = 10
    RESCAN_MAX_COUNT: int = 50
    RESCAN_MAX_ATTEMPTS: int = 3
    RESCAN_BACKOFF_STEP_SECONDS: float = 8.0

    MAX_INJECTED_NPCS: int = 8
    NPC_SCAN_DEPTH: int = 3
    DEFAULT_DIVERGENCE_THRESHOLD: int = 15
    DESCRIPTION_MAX_CHARS: int = 80

    SCENARIO_NAME: str = ""
    EXTRACTION_PROMPT: str = ""

    DATABASE_PATH: str = "database/tracker.db"

    LLM_PROVIDER: str = "openai"
    MODEL_NAME: str = "gpt-4.1-mini"

    DEBUG: bool = False

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }

    @model_validator(mode="after")
    def resolve_relative_paths(self):
        db_path = Path(self.DATABASE_PATH)
        if not db_path.is_absolute():
            self.DATABASE_PATH = str((BASE_DIR / db_path).resolve())

        self.MAX_INJECTED_NPCS = max(1, min(30, int(self.MAX_INJECTED_NPCS)))
        return self


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    :return: Cached Settings instance
    :rtype: Settings
    """
    return Settings()


settings = get_settings()
