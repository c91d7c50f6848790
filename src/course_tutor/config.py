"""Settings loaded from the environment (COURSE_TUTOR_*) or a .env file."""
import sys
from functools import lru_cache
from typing import Optional

from loguru import logger
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from course_tutor.db import DEFAULT_DB_PATH

LOG_FORMAT = "<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="COURSE_TUTOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    db_path: str = Field(default=DEFAULT_DB_PATH, description="SQLite database file")
    user_id: str = Field(default="local", description="Learner the sessions belong to")

    # Generation service (any OpenAI-compatible chat-completions endpoint)
    llm_base_url: str = Field(default="https://api.openai.com/v1")
    llm_api_key: str = Field(default="")
    llm_model: str = Field(default="gpt-4o-mini")
    llm_timeout: float = Field(default=60.0, gt=0, description="Seconds per generation call")

    # Turn loop
    persist_retries: int = Field(default=3, ge=1)
    max_topic_questions: int = Field(default=15, ge=1)
    confirm_every: int = Field(default=3, ge=1)
    max_connection_questions: int = Field(default=10, ge=0)
    history_window: int = Field(default=10, ge=0)
    random_seed: Optional[int] = Field(default=None, description="Seed for special-question draws")

    log_level: str = Field(default="WARNING")
    log_file: Optional[str] = Field(default=None)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(level: str = "WARNING", log_file: Optional[str] = None) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)
    if log_file:
        logger.add(log_file, level="DEBUG", rotation="5 MB", retention=3)
