"""Exception types raised by RelayBot components."""


class RelayBotError(Exception):
    """Base class for RelayBot errors."""


class ConfigError(RelayBotError):
    """Raised when configuration cannot be loaded or is invalid."""


class PluginLoadError(RelayBotError):
    """
    Raised when a plugin source is rejected at load time.

    A rejected plugin registers nothing.
    """

    def __init__(self, location: str, reason: str):
        self.location = location
        self.reason = reason
        super().__init__(f"Cannot load plugin {location}: {reason}")
