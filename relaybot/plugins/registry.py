"""
Command registry for RelayBot plugins.

A plugin is a named, versioned bundle of command descriptors. Loading a
plugin registers each command under its primary name and its aliases;
unloading removes all of them. The name map is copy-on-write so lookups
never observe a half-applied load or unload.
"""

import threading
import time
from dataclasses import dataclass, field, replace
from typing import Any

from loguru import logger

from relaybot.auto_reply.commands import CommandDescriptor
from relaybot.errors import PluginLoadError


@dataclass
class PluginSource:
    """A plugin definition as provided by a plugin module."""
    name: str
    version: str
    description: str
    commands: list[CommandDescriptor] = field(default_factory=list)
    author: str = ""
    location: str = ""  # Source identity, e.g. a file path


@dataclass
class PluginRecord:
    """A loaded plugin."""
    name: str
    version: str
    description: str
    location: str
    commands: list[CommandDescriptor] = field(default_factory=list)
    author: str = ""
    loaded_at: float = field(default_factory=time.time)

    @property
    def names(self) -> list[str]:
        """Every name and alias this plugin registered."""
        names = []
        for cmd in self.commands:
            names.append(cmd.name)
            names.extend(cmd.aliases)
        return names


@dataclass(frozen=True)
class RegistryEntry:
    """A name in the registry pointing at a descriptor."""
    descriptor: CommandDescriptor
    is_alias: bool = False


class CommandRegistry:
    """
    Registry of plugins and the commands they provide.

    Supports:
    - Structural validation before any registration
    - Alias resolution in O(1)
    - Reload by source location with no overlap of old and new handlers
    - Idempotent unload
    """

    REQUIRED_FIELDS = ("name", "version", "description")

    def __init__(self):
        self._plugins: dict[str, PluginRecord] = {}  # location -> record
        self._commands: dict[str, RegistryEntry] = {}  # name/alias -> entry
        self._lock = threading.Lock()

    def load(self, source: PluginSource) -> PluginRecord:
        """
        Validate and register a plugin.

        Args:
            source: The plugin definition.

        Returns:
            The registered PluginRecord.

        Raises:
            PluginLoadError: If the source is invalid or collides with
                already registered commands. Nothing is registered.
        """
        location = source.location or source.name or "<unknown>"

        with self._lock:
            if location in self._plugins:
                raise PluginLoadError(location, "already loaded, unload or reload it instead")

            commands = self.validate(source)

            record = PluginRecord(
                name=source.name,
                version=source.version,
                description=source.description,
                location=location,
                commands=commands,
                author=source.author,
            )

            updated = dict(self._commands)
            for cmd in commands:
                updated[cmd.name] = RegistryEntry(cmd)
                for alias in cmd.aliases:
                    updated[alias] = RegistryEntry(cmd, is_alias=True)

            self._plugins[location] = record
            self._commands = updated

        logger.info(f"Loaded plugin: {record.name} v{record.version} ({len(commands)} commands)")
        return record

    def validate(self, source: PluginSource, check_conflicts: bool = True) -> list[CommandDescriptor]:
        """
        Check a source and return its normalized descriptors.

        Args:
            source: The plugin definition.
            check_conflicts: Also reject names already held by loaded plugins.

        Raises:
            PluginLoadError: On the first structural problem or conflict.
        """
        location = source.location or source.name or "<unknown>"
        missing = [f for f in self.REQUIRED_FIELDS if not getattr(source, f, None)]
        if missing:
            raise PluginLoadError(location, f"missing required fields: {', '.join(missing)}")

        if check_conflicts:
            for record in self._plugins.values():
                if record.name == source.name:
                    raise PluginLoadError(
                        location, f"plugin name '{source.name}' already loaded from {record.location}"
                    )

        commands: list[CommandDescriptor] = []
        claimed: set[str] = set()

        for cmd in source.commands or []:
            if not isinstance(cmd, CommandDescriptor):
                raise PluginLoadError(location, f"invalid command definition: {cmd!r}")
            if not isinstance(cmd.name, str) or not cmd.name.strip():
                raise PluginLoadError(location, "command without a name")
            if not callable(cmd.handler):
                raise PluginLoadError(location, f"command '{cmd.name}' has no callable handler")

            name = cmd.name.strip().lower()
            declared = cmd.aliases
            if isinstance(declared, str):
                declared = (declared,)
            elif not isinstance(declared, (list, tuple, set, frozenset)):
                raise PluginLoadError(location, f"command '{name}' has invalid aliases: {declared!r}")

            aliases: list[str] = []
            for alias in declared:
                alias = str(alias).strip().lower()
                if alias and alias != name and alias not in aliases:
                    aliases.append(alias)

            for key in (name, *aliases):
                if key in claimed:
                    raise PluginLoadError(location, f"name '{key}' defined twice")
                existing = self._commands.get(key) if check_conflicts else None
                if existing is not None:
                    raise PluginLoadError(
                        location,
                        f"name '{key}' already registered by plugin '{existing.descriptor.plugin}'",
                    )
                claimed.add(key)

            commands.append(replace(cmd, name=name, aliases=tuple(aliases), plugin=source.name))

        return commands

    def unload(self, location: str) -> PluginRecord | None:
        """
        Remove a plugin and every name it registered.

        Unloading an absent plugin is a no-op.

        Args:
            location: Source identity the plugin was loaded from.

        Returns:
            The removed record, or None if nothing was loaded there.
        """
        with self._lock:
            record = self._plugins.pop(location, None)
            if record is None:
                return None

            owned = set(record.names)
            self._commands = {
                key: entry for key, entry in self._commands.items()
                if not (key in owned and entry.descriptor.plugin == record.name)
            }

        logger.info(f"Unloaded plugin: {record.name}")
        return record

    def reload(self, source: PluginSource) -> PluginRecord:
        """
        Replace the plugin loaded from the same location.

        The old commands are removed before the new ones are registered. If
        the new source is invalid the old plugin stays unloaded.

        Raises:
            PluginLoadError: If the new source is rejected.
        """
        location = source.location or source.name
        self.unload(location)
        return self.load(source)

    def resolve(self, name: str) -> CommandDescriptor | None:
        """
        Look up a command by name or alias, case-insensitively.

        Args:
            name: Command name or alias.

        Returns:
            The descriptor or None.
        """
        entry = self._commands.get(name.lower())
        return entry.descriptor if entry else None

    def is_alias(self, name: str) -> bool:
        """Check whether a name is registered as an alias."""
        entry = self._commands.get(name.lower())
        return bool(entry and entry.is_alias)

    def list_commands(self, category: str | None = None) -> list[CommandDescriptor]:
        """List primary commands (no aliases), sorted by name."""
        commands = [
            entry.descriptor for entry in self._commands.values()
            if not entry.is_alias
            and (category is None or entry.descriptor.category == category)
        ]
        return sorted(commands, key=lambda c: c.name)

    def command_names(self) -> list[str]:
        """Sorted primary command names."""
        return [cmd.name for cmd in self.list_commands()]

    def categories(self) -> list[str]:
        """Sorted command categories."""
        return sorted({cmd.category for cmd in self.list_commands()})

    def get_plugin(self, name: str) -> PluginRecord | None:
        """Get a loaded plugin by plugin name."""
        for record in self._plugins.values():
            if record.name == name:
                return record
        return None

    def get_plugin_at(self, location: str) -> PluginRecord | None:
        """Get the plugin loaded from a location."""
        return self._plugins.get(location)

    @property
    def plugins(self) -> list[PluginRecord]:
        """Loaded plugins."""
        return list(self._plugins.values())

    def clear(self) -> None:
        """Unload everything."""
        with self._lock:
            self._plugins.clear()
            self._commands = {}
        logger.info("Command registry cleared")

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._commands

    def __len__(self) -> int:
        return len(self._commands)

    def get_stats(self) -> dict[str, Any]:
        """Get registry statistics."""
        return {
            "total_plugins": len(self._plugins),
            "total_commands": len(self.list_commands()),
            "total_names": len(self._commands),
            "commands_by_plugin": {r.name: len(r.commands) for r in self._plugins.values()},
        }
