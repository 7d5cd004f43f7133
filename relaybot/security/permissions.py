"""
Permission gate for RelayBot.

Maps identities to the commands they may invoke. A "*" entry grants every
command. The configured owner bypasses the gate entirely.

The store is a JSON object of identity -> list of command names, rewritten
after every mutation.
"""

import json
import os
from pathlib import Path
from typing import Any

from loguru import logger


WILDCARD = "*"


class PermissionGate:
    """
    Persisted allow-list of identity -> command names.

    Reads always see the latest in-memory state; mutations are written to
    disk synchronously after they are applied.
    """

    def __init__(self, store_path: Path, owner_id: str = ""):
        self.store_path = Path(store_path).expanduser()
        self.owner_id = owner_id
        self._permissions: dict[str, list[str]] = {}
        self._loaded = False

    def load(self) -> None:
        """Load the store from disk. A missing store is created empty."""
        self._loaded = True

        if not self.store_path.exists():
            self._permissions = {}
            self.save()
            return

        try:
            data = json.loads(self.store_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.error(f"Failed to load permissions from {self.store_path}: {e}")
            self._permissions = {}
            return

        if not isinstance(data, dict):
            logger.error(f"Permission store {self.store_path} is not an object, ignoring")
            self._permissions = {}
            return

        self._permissions = {
            str(identity): [str(c) for c in commands]
            for identity, commands in data.items()
            if isinstance(commands, list)
        }
        logger.info(f"Loaded permissions for {len(self._permissions)} users")

    def save(self) -> bool:
        """
        Write the store to disk atomically.

        Returns:
            True if written.
        """
        try:
            self.store_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.store_path.with_suffix(self.store_path.suffix + ".tmp")
            tmp_path.write_text(json.dumps(self._permissions, indent=2), encoding="utf-8")
            os.replace(tmp_path, self.store_path)
            return True
        except OSError as e:
            logger.error(f"Failed to save permissions to {self.store_path}: {e}")
            return False

    def is_owner(self, identity: str) -> bool:
        """Check if an identity is the configured owner."""
        return bool(self.owner_id) and identity == self.owner_id

    def has_permission(self, identity: str, command: str) -> bool:
        """
        Check whether an identity may invoke a command.

        Args:
            identity: Sender identity.
            command: Command name.

        Returns:
            True for the owner, or if the command or "*" is granted.
        """
        if self.is_owner(identity):
            return True
        granted = self._permissions.get(identity)
        if not granted:
            return False
        return command.lower() in granted or WILDCARD in granted

    def grant(self, identity: str, command: str) -> bool:
        """
        Allow a command for an identity.

        Returns:
            True if added, False if already granted.
        """
        command = command.lower()
        granted = self._permissions.setdefault(identity, [])
        if command in granted:
            return False

        granted.append(command)
        self.save()
        logger.info(f"Allowed command '{command}' for {identity}")
        return True

    def revoke(self, identity: str, command: str) -> bool:
        """
        Remove a command from an identity.

        Returns:
            True if removed, False if it was not granted.
        """
        command = command.lower()
        granted = self._permissions.get(identity)
        if not granted or command not in granted:
            return False

        granted.remove(command)
        if not granted:
            del self._permissions[identity]
        self.save()
        logger.info(f"Removed command '{command}' for {identity}")
        return True

    def clear(self, identity: str) -> bool:
        """
        Remove every permission of an identity.

        Returns:
            True if the identity had permissions.
        """
        if identity not in self._permissions:
            return False
        del self._permissions[identity]
        self.save()
        logger.info(f"Cleared all permissions for {identity}")
        return True

    def get_permissions(self, identity: str) -> list[str]:
        """Get the commands granted to an identity."""
        return list(self._permissions.get(identity, []))

    def all_permissions(self) -> dict[str, list[str]]:
        """Get a copy of the whole store."""
        return {identity: list(cmds) for identity, cmds in self._permissions.items()}

    def get_stats(self) -> dict[str, Any]:
        """Get permission store statistics."""
        return {
            "identities": len(self._permissions),
            "wildcard_identities": sum(1 for c in self._permissions.values() if WILDCARD in c),
            "store_path": str(self.store_path),
            "loaded": self._loaded,
        }
