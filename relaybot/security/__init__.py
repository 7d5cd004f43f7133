"""
Security module for RelayBot.

Provides the persisted permission gate consulted for inbound commands.
"""

from relaybot.security.permissions import PermissionGate, WILDCARD

__all__ = ["PermissionGate", "WILDCARD"]
