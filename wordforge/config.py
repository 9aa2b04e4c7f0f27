"""
Configuration settings for WordForge.

Uses Pydantic Settings for environment variable management with .env file support.
Algorithm tuning lives in dataclass configs beside each component; the builders
below let environment overrides flow into them.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from wordforge.delivery.batch_selector import BatchConfig
from wordforge.delivery.level import LevelConfig
from wordforge.delivery.session import SessionConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables (WORDFORGE_*)."""

    model_config = SettingsConfigDict(
        env_prefix="WORDFORGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Storage
    # ========================================
    data_dir: Path = Field(
        default=Path.home() / ".wordforge",
        description="Directory holding the vocabulary snapshot",
    )
    snapshot_filename: str = Field(default="vocab.json")

    # ========================================
    # Question generation service
    # ========================================
    question_api_url: str | None = Field(
        default=None,
        description="Base URL of the quiz-question service (offline generator when unset)",
    )
    question_api_key: str | None = Field(default=None)
    question_endpoint: str = Field(default="/api/vocab/generate-quiz")
    question_timeout_seconds: float = Field(default=30.0, gt=0)

    # ========================================
    # Review sessions
    # ========================================
    batch_size: int = Field(default=10, ge=1, le=50)
    interleave_due_ratio: float = Field(default=0.7, ge=0.0, le=1.0)
    auto_advance_seconds: float = Field(default=2.5, ge=0.0)
    endless_allow_recycle: bool = Field(default=True)

    # ========================================
    # Level adaptation
    # ========================================
    level_up_accuracy: float = Field(default=0.80, ge=0.0, le=1.0)
    level_down_accuracy: float = Field(default=0.50, ge=0.0, le=1.0)

    # ========================================
    # Logging
    # ========================================
    log_level: str = Field(default="WARNING")

    @property
    def snapshot_path(self) -> Path:
        return self.data_dir / self.snapshot_filename

    def batch_config(self) -> BatchConfig:
        return BatchConfig(batch_size=self.batch_size, due_ratio=self.interleave_due_ratio)

    def level_config(self) -> LevelConfig:
        return LevelConfig(
            up_threshold=self.level_up_accuracy,
            down_threshold=self.level_down_accuracy,
        )

    def session_config(self) -> SessionConfig:
        return SessionConfig(
            auto_advance_seconds=self.auto_advance_seconds,
            allow_recycle=self.endless_allow_recycle,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
