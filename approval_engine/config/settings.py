"""Engine Settings - Central Configuration"""
from functools import lru_cache
from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Logging
    logs_path: str = "./logs"
    log_level: str = "INFO"
    log_to_file: bool = False  # Embedded use logs to stdout only unless enabled

    # Approval policy
    default_majority_count: int = 2  # Used when parallel_majority has no count
    majority_reject_policy: Literal["unreachable", "immediate"] = "unreachable"

    # Runtime guards
    max_condition_hops: int = 100  # Consecutive condition nodes before CorruptGraph
    trace_conditions: bool = True  # Log per-condition ABAC results at DEBUG

    # Environment
    environment: str = "development"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
