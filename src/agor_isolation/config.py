"""Configuration management for the isolation engine."""

import os
from pathlib import Path
from typing import Any, Literal

import structlog
import yaml
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from agor_isolation.errors import ConfigurationError
from agor_isolation.naming import AGOR_USERS_GROUP

log = structlog.get_logger()


def default_agor_home() -> Path:
    """Return ``~/.agor`` for the current user."""
    return Path.home() / ".agor"


class Settings(BaseSettings):
    """Engine settings loaded from environment variables and ``config.yaml``."""

    model_config = SettingsConfigDict(
        env_prefix="AGOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Database location
    database_url: str = Field(
        default="",
        description="SQLAlchemy URL or 'file:/path/agor.db' (defaults to ~/.agor/agor.db)",
    )
    config_file: Path = Field(
        default_factory=lambda: default_agor_home() / "config.yaml",
        description="Agor YAML config file providing daemon.unix_user",
    )

    # Isolation
    unix_isolation_enabled: bool = Field(
        default=True,
        description="Enable Unix user/group isolation",
    )
    daemon_unix_user: str | None = Field(
        default=None,
        description="OS account the daemon runs as; added to every repo/worktree group",
    )
    global_group: str = Field(
        default=AGOR_USERS_GROUP,
        description="Group that contains every managed user",
    )
    home_base: Path = Field(default=Path("/home"), description="Base directory for homes")
    user_shell: str = Field(default="/bin/bash", description="Login shell for new users")
    use_sudo: bool = Field(
        default=False,
        description="Prefix privileged commands with 'sudo -n'",
    )

    @model_validator(mode="after")
    def check_fallbacks(self) -> "Settings":
        """Fall back to un-prefixed env vars and the Agor YAML config."""
        if not self.database_url:
            fallback = os.environ.get("DATABASE_URL", "")
            if fallback:
                object.__setattr__(self, "database_url", fallback)

        if not self.daemon_unix_user:
            daemon_user = read_daemon_user(self.config_file)
            if daemon_user:
                object.__setattr__(self, "daemon_unix_user", daemon_user)

        return self

    def require_daemon_user(self) -> str:
        """Return the configured daemon identity.

        Raises:
            ConfigurationError: If isolation is enabled but no daemon user is set.
                The ambient process identity is never used as a fallback.
        """
        if self.unix_isolation_enabled and not self.daemon_unix_user:
            raise ConfigurationError(
                "daemon.unix_user is not configured. "
                f"Set daemon.unix_user in {self.config_file} or AGOR_DAEMON_UNIX_USER.",
                details={"config_file": str(self.config_file)},
            )
        return self.daemon_unix_user or ""


def load_config_file(path: Path) -> dict[str, Any]:
    """Load the Agor YAML config; missing or unreadable files yield ``{}``."""
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        log.warning("config_file_unreadable", path=str(path), error=str(e))
        return {}
    return data if isinstance(data, dict) else {}


def read_daemon_user(path: Path) -> str | None:
    """Read ``daemon.unix_user`` from the Agor YAML config."""
    daemon = load_config_file(path).get("daemon")
    if not isinstance(daemon, dict):
        return None
    value = daemon.get("unix_user")
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def get_settings() -> Settings:
    return Settings()
