"""
Command dispatcher for RelayBot auto-reply.

Routes inbound events to command handlers with:
- Directionality and permission filtering
- Priority placement on the processing queue
- Rate limiting and blocked-sender checks
- Unknown-command suggestions
- Error recovery at the handler boundary
"""

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from loguru import logger

from relaybot.auto_reply.commands import (
    Capability,
    Command,
    CommandContext,
    CommandDescriptor,
    Scope,
    parse_command,
)
from relaybot.auto_reply.queue import Priority, ProcessingQueue, QueueItem
from relaybot.channels.base import InboundEvent, Transport
from relaybot.security.permissions import WILDCARD
from relaybot.utils.helpers import similarity

if TYPE_CHECKING:
    from relaybot.auto_reply.ratelimit import RateLimiter
    from relaybot.plugins.loader import PluginLoader
    from relaybot.plugins.registry import CommandRegistry
    from relaybot.security.permissions import PermissionGate


@dataclass
class DispatchConfig:
    """Configuration for the dispatcher."""
    prefix: str = "."
    owner_id: str = ""
    sudo_users: list[str] = field(default_factory=list)
    blocked_users: list[str] = field(default_factory=list)
    max_suggestions: int = 3
    suggestion_threshold: float = 0.5
    command_timeout_seconds: float = 300.0
    ack_reaction: str = ""
    error_message: str = "❌ An error occurred while executing the command."


class DispatchOutcome(str, Enum):
    """What happened to an inbound event at admission."""
    DISCARDED = "discarded"  # No message body
    IGNORED = "ignored"  # Not eligible (non-command)
    DENIED = "denied"  # Permission gate refused
    DROPPED = "dropped"  # Queue full
    QUEUED = "queued"


@dataclass
class DispatchJob:
    """
    Queue payload for one admitted event.

    The same job is handed back on every retry, so it records what already
    happened: the rate limiter is consulted once per event, and once a
    handler has run only its undelivered reply is sent again.
    """
    event: InboundEvent
    rate_checked: bool = False
    completed: bool = False  # Handler (or unknown-command reply) done
    reply: str | None = None  # Produced but not yet delivered


# Handler for non-command messages from trusted senders
MessageHandler = Callable[[InboundEvent], Awaitable[str | None]]


class Dispatcher:
    """
    Classifies inbound events and runs commands through the queue.

    Flow:
    1. Discard events without a body
    2. Self-originated: commands only. Others: permitted commands only
    3. Enqueue with a priority tier
    4. On execution: rate limit, blocked check, resolve, authorize, run
    """

    def __init__(
        self,
        registry: "CommandRegistry",
        queue: ProcessingQueue,
        permissions: "PermissionGate",
        rate_limiter: "RateLimiter",
        transport: Transport,
        config: DispatchConfig | None = None,
        stats_provider: Callable[[], dict[str, Any]] | None = None,
        loader: "PluginLoader | None" = None,
    ):
        self.registry = registry
        self.queue = queue
        self.permissions = permissions
        self.rate_limiter = rate_limiter
        self.transport = transport
        self.config = config or DispatchConfig()
        self.loader = loader
        self._stats_provider = stats_provider or self._default_stats

        self._message_handler: MessageHandler | None = None
        self._blocked = set(self.config.blocked_users)
        self._sudo = set(self.config.sudo_users)

        self.queue.set_failure_callback(self._on_item_failed)

        # Stats
        self._received = 0
        self._outcomes: dict[DispatchOutcome, int] = {o: 0 for o in DispatchOutcome}
        self._rate_limited = 0
        self._blocked_count = 0
        self._unknown = 0
        self._unauthorized = 0
        self._commands_executed = 0
        self._error_count = 0

    def set_message_handler(self, handler: MessageHandler | None) -> None:
        """Set the handler for non-command messages from trusted senders."""
        self._message_handler = handler

    def block(self, identity: str) -> None:
        """Silently ignore an identity from now on."""
        self._blocked.add(identity)

    def unblock(self, identity: str) -> None:
        self._blocked.discard(identity)

    def is_blocked(self, identity: str) -> bool:
        return identity in self._blocked

    @property
    def blocked(self) -> list[str]:
        """Currently blocked identities, sorted."""
        return sorted(self._blocked)

    def is_owner(self, event: InboundEvent) -> bool:
        """Self-originated events and the configured owner count as owner."""
        if event.is_self:
            return True
        return bool(self.config.owner_id) and event.sender_id == self.config.owner_id

    def is_privileged(self, event: InboundEvent) -> bool:
        return self.is_owner(event) or event.sender_id in self._sudo

    def priority_for(self, event: InboundEvent, command: Command | None) -> Priority:
        """Pick the queue tier for an admitted event."""
        if self.is_privileged(event):
            return Priority.HIGH
        if command is not None:
            return Priority.NORMAL
        return Priority.LOW

    async def handle(self, event: InboundEvent) -> DispatchOutcome:
        """
        Admit an inbound event.

        Never raises for ordinary rejections; every outcome is silent
        towards the remote party.

        Args:
            event: The inbound event.

        Returns:
            The admission outcome.
        """
        self._received += 1
        outcome = self._admit(event)
        self._outcomes[outcome] += 1
        return outcome

    def _admit(self, event: InboundEvent) -> DispatchOutcome:
        if not event.has_body:
            return DispatchOutcome.DISCARDED

        command = parse_command(event.body, self.config.prefix)

        if event.is_self:
            if command is None:
                return DispatchOutcome.IGNORED
        elif command is None:
            if not (self._message_handler and self._may_converse(event)):
                logger.debug(f"Skipping non-command message from {event.sender_id}")
                return DispatchOutcome.IGNORED
        elif not self._is_permitted(event, command):
            logger.info(f"Permission denied for {event.sender_id} to use '{command.name}'")
            return DispatchOutcome.DENIED

        priority = self.priority_for(event, command)
        if not self.queue.submit(DispatchJob(event), self.process, priority):
            return DispatchOutcome.DROPPED
        return DispatchOutcome.QUEUED

    def _is_permitted(self, event: InboundEvent, command: Command) -> bool:
        if self.is_owner(event):
            return True
        if self.permissions.has_permission(event.sender_id, command.name):
            return True
        # Grants are by canonical name; allow invoking them through an alias
        descriptor = self.registry.resolve(command.name)
        return bool(descriptor) and self.permissions.has_permission(event.sender_id, descriptor.name)

    def _may_converse(self, event: InboundEvent) -> bool:
        return self.is_owner(event) or self.permissions.has_permission(event.sender_id, WILDCARD)

    async def process(self, job: DispatchJob) -> None:
        """
        Execute an admitted event. Runs as the queue item handler.

        Handler failures are answered here; only delivery failures
        propagate to the queue. A retried job skips the rate limiter and,
        if its handler already ran, only resends the pending reply.
        """
        if job.completed:
            await self._deliver(job)
            return

        event = job.event
        sender = event.sender_id

        if not job.rate_checked:
            if not self.rate_limiter.admit(sender):
                self._rate_limited += 1
                return
            job.rate_checked = True

        if self.is_blocked(sender):
            self._blocked_count += 1
            logger.debug(f"Ignoring blocked sender {sender}")
            return

        command = parse_command(event.body, self.config.prefix)
        if command is None:
            await self._handle_message(job)
            return

        ctx = self._build_context(event, command)
        descriptor = self.registry.resolve(command.name)

        if descriptor is None:
            self._unknown += 1
            job.reply = self._unknown_reply(command.name)
            job.completed = True
            await self._deliver(job)
            return

        allowed, reason = self._authorize(descriptor, ctx)
        if not allowed:
            self._unauthorized += 1
            logger.info(f"Refused '{descriptor.name}' for {sender}: {reason}")
            return

        await self._execute(ctx, descriptor, job)

    def _build_context(self, event: InboundEvent, command: Command) -> CommandContext:
        return CommandContext(
            event=event,
            command=command,
            prefix=self.config.prefix,
            transport=self.transport,
            registry=self.registry,
            permissions=self.permissions,
            queue=self.queue,
            is_owner=self.is_owner(event),
            is_privileged=self.is_privileged(event),
            stats=self._stats_provider,
            dispatcher=self,
            loader=self.loader,
        )

    def _authorize(self, descriptor: CommandDescriptor, ctx: CommandContext) -> tuple[bool, str]:
        """Check scope and capability restrictions."""
        if descriptor.scope == Scope.GROUP_ONLY and not ctx.is_group:
            return False, "group only"
        if descriptor.scope == Scope.PRIVATE_ONLY and ctx.is_group:
            return False, "private only"
        if descriptor.capability == Capability.OWNER and not ctx.is_owner:
            return False, "owner only"
        if descriptor.capability == Capability.SUDO and not ctx.is_privileged:
            return False, "sudo only"
        return True, ""

    async def _execute(self, ctx: CommandContext, descriptor: CommandDescriptor, job: DispatchJob) -> None:
        """Run a command handler, answering failures with a generic notice."""
        if self.config.ack_reaction and ctx.event.message_id:
            try:
                await ctx.react(self.config.ack_reaction)
            except Exception as e:
                logger.debug(f"Ack reaction failed: {e}")

        start = time.perf_counter()
        try:
            result = descriptor.handler(ctx)
            if inspect.isawaitable(result):
                result = await asyncio.wait_for(
                    result,
                    timeout=self.config.command_timeout_seconds,
                )
        except asyncio.TimeoutError:
            job.completed = True
            self._error_count += 1
            logger.error(f"Command {descriptor.name} timed out for {ctx.sender_id}")
            await self._notify_failure(ctx.chat_id, ctx.event.message_id)
            return
        except Exception as e:
            job.completed = True
            self._error_count += 1
            logger.exception(f"Command execution failed [{descriptor.name}] for {ctx.sender_id}: {e}")
            await self._notify_failure(ctx.chat_id, ctx.event.message_id)
            return

        job.completed = True
        self._commands_executed += 1
        duration_ms = (time.perf_counter() - start) * 1000
        where = "group" if ctx.is_group else "private"
        logger.info(f"Command {descriptor.name} by {ctx.sender_id} ({where}) in {duration_ms:.0f}ms")

        if isinstance(result, str) and result:
            job.reply = result
        await self._deliver(job)

    async def _deliver(self, job: DispatchJob) -> None:
        """
        Send a job's pending reply, quoting the triggering message.

        Transport errors propagate so the queue retries the delivery.
        """
        if not job.reply:
            return
        event = job.event
        options = {"quoted": event.message_id} if event.message_id else {}
        await self.transport.send(event.chat_id, job.reply, options)
        job.reply = None

    async def _notify_failure(self, chat_id: str, message_id: str = "") -> None:
        options = {"quoted": message_id} if message_id else {}
        try:
            await self.transport.send(chat_id, self.config.error_message, options)
        except Exception as e:
            logger.error(f"Failed to send error notice to {chat_id}: {e}")

    def _unknown_reply(self, name: str) -> str:
        p = self.config.prefix

        response = f"❌ Unknown command: *{name}*"
        suggestions = self.suggest(name)
        if suggestions:
            response += "\n\n💡 Did you mean:\n"
            response += "".join(f"├ {p}{s}\n" for s in suggestions)
        response += f"\nUse *{p}help* to see all available commands."
        return response

    def suggest(self, name: str) -> list[str]:
        """
        Suggest registered commands similar to a name.

        Returns:
            Up to ``max_suggestions`` names above the similarity threshold,
            most similar first.
        """
        scored = [
            (similarity(name, candidate), candidate)
            for candidate in self.registry.command_names()
        ]
        matches = [
            (score, candidate) for score, candidate in scored
            if score > self.config.suggestion_threshold
        ]
        matches.sort(key=lambda m: (-m[0], m[1]))
        return [candidate for _, candidate in matches[:self.config.max_suggestions]]

    async def _handle_message(self, job: DispatchJob) -> None:
        if not self._message_handler:
            return
        event = job.event
        try:
            response = await self._message_handler(event)
        except Exception as e:
            job.completed = True
            self._error_count += 1
            logger.exception(f"Message handler failed for {event.sender_id}: {e}")
            return
        job.completed = True
        job.reply = response or None
        await self._deliver(job)

    async def _on_item_failed(self, item: QueueItem, error: BaseException) -> None:
        job = item.payload
        if not isinstance(job, DispatchJob):
            return
        event = job.event
        logger.error(
            f"Giving up on message from {event.sender_id} in {event.chat_id} "
            f"after {item.retries} retries: {error}"
        )
        if parse_command(event.body, self.config.prefix) is not None:
            await self._notify_failure(event.chat_id, event.message_id)

    def _default_stats(self) -> dict[str, Any]:
        return {"dispatcher": self.get_stats(), "queue": self.queue.get_stats()}

    def get_stats(self) -> dict[str, Any]:
        """Get dispatcher statistics."""
        return {
            "received": self._received,
            **{o.value: n for o, n in self._outcomes.items()},
            "rate_limited": self._rate_limited,
            "blocked": self._blocked_count,
            "unknown_commands": self._unknown,
            "unauthorized": self._unauthorized,
            "commands_executed": self._commands_executed,
            "error_count": self._error_count,
            "queue_stats": self.queue.get_stats(),
        }
