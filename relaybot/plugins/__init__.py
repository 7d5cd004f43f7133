"""
Plugin system for RelayBot.

Provides:
- Command registry with alias resolution
- Filesystem plugin loading
- Polling watcher for hot reload
"""

from relaybot.plugins.registry import (
    CommandRegistry,
    PluginRecord,
    PluginSource,
    RegistryEntry,
)
from relaybot.plugins.watcher import (
    ChangeKind,
    PluginChange,
    PluginWatcher,
)
from relaybot.plugins.loader import PluginLoader

__all__ = [
    # Registry
    "CommandRegistry",
    "PluginRecord",
    "PluginSource",
    "RegistryEntry",
    # Watcher
    "ChangeKind",
    "PluginChange",
    "PluginWatcher",
    # Loader
    "PluginLoader",
]
