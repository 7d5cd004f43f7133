"""
Auto-reply pipeline for RelayBot.

Provides message ingestion and command dispatch:
- Command detection and parsing
- Priority processing queue with retry
- Per-sender rate limiting
- Dispatch with permission checks
"""

from relaybot.auto_reply.commands import (
    Capability,
    Command,
    CommandContext,
    CommandDescriptor,
    Scope,
    parse_command,
)
from relaybot.auto_reply.queue import (
    ItemState,
    Priority,
    ProcessingQueue,
    QueueConfig,
    QueueItem,
)
from relaybot.auto_reply.ratelimit import RateLimiter
from relaybot.auto_reply.dispatch import (
    Dispatcher,
    DispatchConfig,
    DispatchJob,
    DispatchOutcome,
)

__all__ = [
    # Commands
    "Capability",
    "Command",
    "CommandContext",
    "CommandDescriptor",
    "Scope",
    "parse_command",
    # Queue
    "ItemState",
    "Priority",
    "ProcessingQueue",
    "QueueConfig",
    "QueueItem",
    # Rate limiting
    "RateLimiter",
    # Dispatch
    "Dispatcher",
    "DispatchConfig",
    "DispatchJob",
    "DispatchOutcome",
]
