"""Orchestrator settings.

Values come from the environment (``SPECFORGE_`` prefix) or an optional
``.env`` file; every field has a working default.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class OrchestratorSettings(BaseSettings):
    """Settings for scheduling, incremental state and context filtering."""

    model_config = SettingsConfigDict(
        env_prefix="SPECFORGE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Scheduling
    max_parallel: int = Field(default=4, ge=1, description="Concurrent generation calls per level")
    deterministic_output: bool = True
    task_timeout_seconds: float | None = Field(default=None, gt=0)
    run_timeout_seconds: float | None = Field(default=None, gt=0)

    # Incremental state
    state_dir_name: str = ".specforge"
    state_file_name: str = "state.json"

    # Generation cache
    cache_enabled: bool = True
    cache_max_size: int = Field(default=100, ge=1)
    cache_ttl_seconds: float = Field(default=24 * 60 * 60, gt=0)

    # Context filtering
    context_max_depth: int = Field(default=5, ge=0)

    # Logging
    log_level: str = "INFO"
    log_json: bool = False


@lru_cache
def get_settings() -> OrchestratorSettings:
    """Return the process-wide settings instance."""
    return OrchestratorSettings()
