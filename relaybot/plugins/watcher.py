"""
Plugin directory watcher.

Polls file modification times and reports added, modified and removed
plugin files. The registry never depends on this; the loader consumes the
notifications.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable

from loguru import logger


class ChangeKind(str, Enum):
    """Kind of file change."""
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class PluginChange:
    """A change to a plugin file."""
    kind: ChangeKind
    path: Path


ChangeCallback = Callable[[PluginChange], Awaitable[None]]


class PluginWatcher:
    """
    Polls plugin directories for changes.

    The first scan only records a baseline; later scans diff against it.
    """

    def __init__(
        self,
        directories: list[Path],
        on_change: ChangeCallback | None = None,
        interval_seconds: float = 1.0,
        pattern: str = "*.py",
    ):
        self.directories = [Path(d).expanduser() for d in directories]
        self.on_change = on_change
        self.interval_seconds = max(0.1, interval_seconds)
        self.pattern = pattern

        self._snapshot: dict[Path, float] | None = None
        self._task: asyncio.Task | None = None
        self._running = False

    def _collect(self) -> dict[Path, float]:
        files: dict[Path, float] = {}
        for directory in self.directories:
            if not directory.is_dir():
                continue
            for path in directory.rglob(self.pattern):
                try:
                    files[path.resolve()] = path.stat().st_mtime
                except FileNotFoundError:
                    continue
        return files

    def scan(self) -> list[PluginChange]:
        """
        Compare the directories with the last snapshot.

        Returns:
            Changes since the previous scan (empty on the first scan).
        """
        current = self._collect()
        previous = self._snapshot
        self._snapshot = current

        if previous is None:
            return []

        changes: list[PluginChange] = []
        for path in sorted(current.keys() - previous.keys()):
            changes.append(PluginChange(ChangeKind.ADDED, path))
        for path in sorted(current.keys() & previous.keys()):
            if current[path] != previous[path]:
                changes.append(PluginChange(ChangeKind.MODIFIED, path))
        for path in sorted(previous.keys() - current.keys()):
            changes.append(PluginChange(ChangeKind.REMOVED, path))
        return changes

    async def poll_once(self) -> list[PluginChange]:
        """Scan and deliver changes to the callback."""
        changes = self.scan()
        for change in changes:
            if not self.on_change:
                continue
            try:
                await self.on_change(change)
            except Exception as e:
                logger.error(f"Plugin change handler failed for {change.path}: {e}")
        return changes

    async def _run(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval_seconds)
            await self.poll_once()

    def start(self) -> None:
        """Start polling in the background."""
        if self._running:
            return
        self._running = True
        self.scan()
        self._task = asyncio.create_task(self._run())
        logger.info(f"Hot reload enabled for {len(self.directories)} plugin directories")

    async def stop(self) -> None:
        """Stop polling."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    @property
    def is_running(self) -> bool:
        return self._running
