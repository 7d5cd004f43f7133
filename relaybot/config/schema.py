"""Configuration schema using Pydantic."""

from pathlib import Path
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class BotConfig(BaseModel):
    """Bot identity and trust configuration."""
    name: str = "RelayBot"
    prefix: str = "."  # Command prefix
    owner_id: str = ""  # Owner identity, bypasses the permission gate
    sudo_users: list[str] = Field(default_factory=list)  # Privileged identities
    blocked_users: list[str] = Field(default_factory=list)  # Silently ignored


class QueueLimitsConfig(BaseModel):
    """Processing queue limits."""
    max_size: int = 1000  # Max pending items before submissions are dropped
    max_concurrent: int = 50  # Max handlers in flight
    max_retries: int = 3


class RateLimitConfig(BaseModel):
    """Per-sender rate limiting."""
    max_requests: int = 20
    window_seconds: float = 60.0


class DispatchSettingsConfig(BaseModel):
    """Command dispatch behaviour."""
    command_timeout_seconds: float = 300.0
    max_suggestions: int = 3
    suggestion_threshold: float = 0.5
    ack_reaction: str = ""  # Emoji reacted before running a command, empty = off


class PluginsConfig(BaseModel):
    """Plugin loading configuration."""
    enabled: bool = True
    builtin: bool = True  # Load the packaged core/permissions plugins
    directories: list[str] = Field(default_factory=lambda: ["~/.relaybot/plugins"])
    hot_reload: bool = False
    poll_interval_seconds: float = 1.0


class PermissionsConfig(BaseModel):
    """Permission store configuration."""
    store_path: str = "~/.relaybot/permissions.json"


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    log_to_file: bool = False
    log_dir: str = "~/.relaybot/logs"
    rotation: str = "50 MB"
    retention: str = "7 days"


class Config(BaseSettings):
    """Root configuration for RelayBot."""
    bot: BotConfig = Field(default_factory=BotConfig)
    queue: QueueLimitsConfig = Field(default_factory=QueueLimitsConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    dispatch: DispatchSettingsConfig = Field(default_factory=DispatchSettingsConfig)
    plugins: PluginsConfig = Field(default_factory=PluginsConfig)
    permissions: PermissionsConfig = Field(default_factory=PermissionsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def permissions_path(self) -> Path:
        """Get expanded permission store path."""
        return Path(self.permissions.store_path).expanduser()

    @property
    def plugin_paths(self) -> list[Path]:
        """Get expanded plugin directories."""
        return [Path(d).expanduser() for d in self.plugins.directories]

    class Config:
        env_prefix = "RELAYBOT_"
        env_nested_delimiter = "__"
