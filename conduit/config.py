"""Runtime configuration — env-driven.

Centralized config using pydantic-settings.  Reads from a .env file and
CONDUIT_* environment variables.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class ConduitConfig(BaseSettings):
    """Controller configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export CONDUIT_LOG_LEVEL=DEBUG
        export CONDUIT_STATE_PATH=/data/conduit.db
        export CONDUIT_MAX_WORKERS=8
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CONDUIT_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"

    # Persistent object store used by the CLI
    state_path: Path = Path(".conduit/state.db")

    # Identity
    hash_length: int = 16

    # Dispatch
    max_workers: int = 4
    max_passes: int = 1000
    retry_backoff_base: float = 0.005
    retry_backoff_max: float = 1.0
    reconcile_timeout: float = 10.0
    status_retry_attempts: int = 5

    # Diagnostics
    log_tail_lines: int = 30

    # Namespace holding ArtifactType objects ("" = cluster scoped)
    artifact_type_namespace: str = ""

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


# Module-level singleton; import as `from conduit.config import config`
config = ConduitConfig()
