"""
Plugin loader for RelayBot.

Imports plugin modules from directories and feeds them to the command
registry. A plugin module exposes either a ``plugin = PluginSource(...)``
attribute or module-level ``name``, ``version``, ``description`` and
``commands``.
"""

import hashlib
import importlib
import importlib.util
import sys
import time
from pathlib import Path
from types import ModuleType
from typing import Any

from loguru import logger

from relaybot.auto_reply.commands import CommandDescriptor
from relaybot.errors import PluginLoadError
from relaybot.plugins.registry import CommandRegistry, PluginRecord, PluginSource
from relaybot.plugins.watcher import ChangeKind, PluginChange


BUILTIN_PREFIX = "builtin:"

BUILTIN_PLUGINS = [
    "relaybot.plugins.builtin.core",
    "relaybot.plugins.builtin.owner",
    "relaybot.plugins.builtin.permissions",
]


def source_from_module(module: ModuleType, location: str) -> PluginSource:
    """
    Extract a PluginSource from an imported module.

    Raises:
        PluginLoadError: If the module does not define a plugin.
    """
    source = getattr(module, "plugin", None)
    if isinstance(source, PluginSource):
        source.location = location
        return source

    if not hasattr(module, "name") and not hasattr(module, "commands"):
        raise PluginLoadError(location, "module defines no plugin")

    commands: list[CommandDescriptor] = []
    for entry in getattr(module, "commands", None) or []:
        if isinstance(entry, CommandDescriptor):
            commands.append(entry)
        elif isinstance(entry, dict):
            try:
                commands.append(CommandDescriptor.from_dict(entry))
            except ValueError as e:
                raise PluginLoadError(location, f"invalid command definition: {e}") from e
        else:
            raise PluginLoadError(location, f"invalid command definition: {entry!r}")

    return PluginSource(
        name=getattr(module, "name", ""),
        version=getattr(module, "version", ""),
        description=getattr(module, "description", ""),
        commands=commands,
        author=getattr(module, "author", ""),
        location=location,
    )


def import_plugin_file(path: Path) -> ModuleType:
    """
    Import a plugin file under a fresh, unique module name.

    Raises:
        PluginLoadError: If the file cannot be imported.
    """
    location = str(path)
    digest = hashlib.sha1(location.encode("utf-8")).hexdigest()[:10]
    mod_name = f"relaybot_plugin_{path.stem}_{digest}"

    spec = importlib.util.spec_from_file_location(mod_name, location)
    if spec is None or spec.loader is None:
        raise PluginLoadError(location, "not an importable Python file")

    module = importlib.util.module_from_spec(spec)
    # Replaces any stale copy from a previous load
    sys.modules[mod_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        sys.modules.pop(mod_name, None)
        raise PluginLoadError(location, f"import failed: {e}") from e
    return module


class PluginLoader:
    """
    Loads plugins from the filesystem and the builtin package.

    Errors never propagate: invalid plugins are logged and recorded in
    ``failed``, and the registry is left unchanged.
    """

    def __init__(self, registry: CommandRegistry, directories: list[Path] | None = None):
        self.registry = registry
        self.directories = [Path(d).expanduser() for d in (directories or [])]
        self.failed: dict[str, str] = {}  # location -> reason
        self._load_started = time.time()

    @staticmethod
    def is_plugin_file(path: Path) -> bool:
        """Check if a path looks like a plugin module."""
        return (
            path.suffix == ".py"
            and not path.name.startswith("_")
            and not path.name.startswith(".")
        )

    def load_builtin(self) -> list[PluginRecord]:
        """Load the packaged plugins."""
        records = []
        for module_path in BUILTIN_PLUGINS:
            location = f"{BUILTIN_PREFIX}{module_path.rsplit('.', 1)[-1]}"
            try:
                module = importlib.import_module(module_path)
                record = self.registry.load(source_from_module(module, location))
            except PluginLoadError as e:
                self._record_failure(location, e.reason)
                continue
            except ImportError as e:
                self._record_failure(location, str(e))
                continue
            records.append(record)
        return records

    def load_all(self) -> list[PluginRecord]:
        """Load every plugin file in the configured directories."""
        self._load_started = time.time()
        records = []
        for directory in self.directories:
            if not directory.is_dir():
                logger.debug(f"Plugin directory does not exist: {directory}")
                continue
            records.extend(self.load_directory(directory))

        elapsed_ms = (time.time() - self._load_started) * 1000
        logger.info(
            f"Loaded {len(self.registry.plugins)} plugins with "
            f"{len(self.registry.command_names())} commands in {elapsed_ms:.0f}ms"
        )
        return records

    def reload_all(self) -> list[PluginRecord]:
        """
        Unload every file plugin and load the directories again.

        Builtin plugins stay registered.
        """
        for record in self.registry.plugins:
            if not self.is_builtin(record):
                self.registry.unload(record.location)
        self.failed = {
            location: reason for location, reason in self.failed.items()
            if location.startswith(BUILTIN_PREFIX)
        }
        return self.load_all()

    @staticmethod
    def is_builtin(record: PluginRecord) -> bool:
        return record.location.startswith(BUILTIN_PREFIX)

    def load_directory(self, directory: Path) -> list[PluginRecord]:
        """Load plugin files in a directory, recursively."""
        records = []
        for path in sorted(directory.rglob("*.py")):
            if not self.is_plugin_file(path):
                continue
            if any(part.startswith((".", "_")) for part in path.relative_to(directory).parts[:-1]):
                continue
            record = self.load_path(path)
            if record:
                records.append(record)
        return records

    def load_path(self, path: Path) -> PluginRecord | None:
        """
        Load a single plugin file.

        Returns:
            The record, or None if the plugin was rejected.
        """
        path = Path(path).resolve()
        location = str(path)
        try:
            module = import_plugin_file(path)
            record = self.registry.load(source_from_module(module, location))
        except PluginLoadError as e:
            self._record_failure(location, e.reason)
            return None

        self.failed.pop(location, None)
        return record

    def reload_path(self, path: Path) -> PluginRecord | None:
        """Unload the plugin from a file and load it again."""
        path = Path(path).resolve()
        logger.info(f"Hot reloading: {path.name}")
        self.registry.unload(str(path))
        return self.load_path(path)

    def unload_path(self, path: Path) -> PluginRecord | None:
        """Unload the plugin from a file, if loaded."""
        path = Path(path).resolve()
        self.failed.pop(str(path), None)
        return self.registry.unload(str(path))

    def check_path(self, path: Path) -> PluginSource:
        """
        Import and validate a plugin file without registering it.

        Raises:
            PluginLoadError: If the plugin is invalid.
        """
        path = Path(path).resolve()
        location = str(path)
        source = source_from_module(import_plugin_file(path), location)
        self.registry.validate(source, check_conflicts=False)
        return source

    async def handle_change(self, change: PluginChange) -> None:
        """Apply a file change notification."""
        if not self.is_plugin_file(change.path):
            return

        if change.kind == ChangeKind.ADDED:
            logger.info(f"New plugin detected: {change.path.name}")
            self.load_path(change.path)
        elif change.kind == ChangeKind.MODIFIED:
            self.reload_path(change.path)
        elif change.kind == ChangeKind.REMOVED:
            logger.info(f"Plugin removed: {change.path.name}")
            self.unload_path(change.path)

    def _record_failure(self, location: str, reason: str) -> None:
        self.failed[location] = reason
        logger.warning(f"Invalid plugin {location}: {reason}")

    def get_stats(self) -> dict[str, Any]:
        """Get loader statistics."""
        return {
            "directories": [str(d) for d in self.directories],
            "failed": dict(self.failed),
            **self.registry.get_stats(),
        }
