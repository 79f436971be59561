"""⚙️ Traversal Configuration - Pydantic models for lineage reconstruction.

Controls clock-skew tolerance, fan-out, deadlines and retries.
Can be loaded from a YAML file, from environment variables, or set programmatically.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TraversalOptions(BaseModel):
    """Optional process-to-process edges followed during expansion."""

    include_ipc: bool = Field(
        default=False,
        description="Follow process-group membership (bidirectional)",
    )
    include_true_ipc: bool = Field(
        default=False,
        description="Follow pipe/IPC events between processes",
    )
    include_net: bool = Field(
        default=False,
        description="Follow socket connections between processes",
    )

    @property
    def any_enabled(self) -> bool:
        return self.include_ipc or self.include_true_ipc or self.include_net


class RetryConfig(BaseModel):
    """Bounded retry policy applied to every store request."""

    attempts: int = Field(default=1, ge=1, le=10, description="1 = no retry")
    backoff_seconds: float = Field(default=0.5, ge=0)
    max_backoff_seconds: float = Field(default=8.0, ge=0)


class TraversalConfig(BaseModel):
    """Configuration for one lineage reconstruction."""

    # Clock skew between independently timestamped event streams
    epsilon_ms: int = Field(
        default=500,
        ge=0,
        description="Tolerated skew when joining events from different streams",
    )

    # Fan-out
    max_concurrency: int = Field(
        default=8,
        ge=1,
        le=256,
        description="Maximum in-flight neighbor queries per phase",
    )

    # Cancellation
    deadline_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Abort the whole traversal after this many seconds",
    )

    retry: RetryConfig = Field(default_factory=RetryConfig)
    options: TraversalOptions = Field(default_factory=TraversalOptions)

    @classmethod
    def from_yaml(cls, path: Path | str) -> "TraversalConfig":
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data.get("traversal", data))

    @classmethod
    def from_settings(cls, settings: "Settings | None" = None) -> "TraversalConfig":
        """Build configuration from environment-based settings."""
        settings = settings or get_settings()
        return cls(
            epsilon_ms=settings.epsilon_ms,
            max_concurrency=settings.max_concurrency,
            deadline_seconds=settings.deadline_seconds,
            retry=RetryConfig(
                attempts=settings.retry_attempts,
                backoff_seconds=settings.retry_backoff_seconds,
            ),
        )

    def to_yaml(self, path: Path | str) -> None:
        """Save configuration to a YAML file."""
        with open(path, "w") as f:
            yaml.safe_dump({"traversal": self.model_dump()}, f, sort_keys=False)


class Settings(BaseSettings):
    """Environment-based settings."""

    model_config = SettingsConfigDict(env_prefix="PROV_", case_sensitive=False)

    # Event store
    store: Literal["duckdb", "rest"] = Field(default="duckdb")
    duckdb_path: str = Field(default=":memory:")
    rest_uri: str = Field(default="http://localhost:3000")
    rest_timeout: float = Field(default=30.0)

    # Traversal
    epsilon_ms: int = Field(default=500)
    max_concurrency: int = Field(default=8)
    deadline_seconds: float | None = Field(default=None)
    retry_attempts: int = Field(default=1)
    retry_backoff_seconds: float = Field(default=0.5)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings from environment."""
    return Settings()


def load_config(path: Path | str | None = None) -> TraversalConfig:
    """Load a traversal config from YAML, falling back to the environment."""
    if path is not None:
        return TraversalConfig.from_yaml(path)
    return TraversalConfig.from_settings()
