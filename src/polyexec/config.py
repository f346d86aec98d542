"""Pydantic settings for polyexec configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PolyExecConfig(BaseSettings):
    """Main polyexec configuration loaded from POLYEXEC_ prefixed environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="POLYEXEC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 3001
    log_level: str = "INFO"
    log_format: str = "auto"  # json | console | auto
    debug: bool = False
    api_key: str = ""

    # Docker runtime
    docker_host: str | None = None  # Falls back to DOCKER_HOST / default socket
    network_mode: str = "none"
    container_user: str = "nobody"
    tmpfs_size: str = "100m"

    # Languages
    languages_file: str | None = None
    allowed_languages: list[str] = Field(default_factory=list)

    # Limits
    max_code_size_bytes: int = 1_048_576  # 1MB
    max_stdin_size_bytes: int = 10_240
    max_pty_input_bytes: int = 1_048_576
    max_output_bytes: int = 1_048_576
    max_concurrent_sessions: int = 32

    # Interactive sessions
    default_rows: int = 24
    default_cols: int = 80
    terminate_grace_seconds: float = 3.0
    channel_buffer_size: int = 256
    fix_line_endings: bool = True

    # Security
    screen_dangerous_patterns: bool = False

    # Rate limits per client address, in limits' "count/period" notation
    rate_limit_enabled: bool = True
    api_rate_limit: str = "100/15 minutes"
    execute_rate_limit: str = "20/5 minutes"


def load_config() -> PolyExecConfig:
    """Load and return the polyexec configuration.

    Returns:
        Populated PolyExecConfig instance.
    """
    return PolyExecConfig()
