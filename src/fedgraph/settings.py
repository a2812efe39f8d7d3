"""
Gateway settings loaded from environment variables.

Every setting can be overridden with a ``FEDGRAPH_`` prefixed variable, e.g.
``FEDGRAPH_MAX_BATCH_SIZE=50`` or ``FEDGRAPH_REFRESH_INTERVAL=30``.
"""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class GatewaySettings(BaseSettings):
    """Gateway settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FEDGRAPH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Subgraph registry
    config_path: str = "fedgraph.yaml"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
    playground: bool = True

    # Execution
    subgraph_timeout: float = 10.0  # seconds per sub-request
    request_timeout: float = 30.0  # seconds per client request
    max_batch_size: int = 100  # representations per _entities call
    plan_cache_size: int = 256

    # Composition (0 disables periodic refresh)
    refresh_interval: float = 0.0

    log_level: str = "INFO"
