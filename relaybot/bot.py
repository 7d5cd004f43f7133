"""
RelayBot composition root.

Builds the pipeline components from configuration and owns their
lifecycle: the registry, permission gate, rate limiter and queue are
created here and passed by reference to the dispatcher.
"""

import time
from typing import Any

from loguru import logger

from relaybot.auto_reply.dispatch import DispatchConfig, Dispatcher, DispatchOutcome, MessageHandler
from relaybot.auto_reply.queue import ProcessingQueue, QueueConfig
from relaybot.auto_reply.ratelimit import RateLimiter
from relaybot.channels.base import InboundEvent, Transport
from relaybot.config.schema import Config
from relaybot.plugins.loader import PluginLoader
from relaybot.plugins.registry import CommandRegistry
from relaybot.plugins.watcher import PluginWatcher
from relaybot.security.permissions import PermissionGate


class RelayBot:
    """
    Wires configuration and a transport into a running dispatch pipeline.

    Usage:
        bot = RelayBot(config, transport)
        await bot.start()
        await bot.handle(event)   # for every inbound event
        await bot.stop()
    """

    def __init__(self, config: Config, transport: Transport):
        self.config = config
        self.transport = transport

        self.registry = CommandRegistry()
        self.permissions = PermissionGate(
            config.permissions_path,
            owner_id=config.bot.owner_id,
        )
        self.rate_limiter = RateLimiter(
            max_requests=config.rate_limit.max_requests,
            window_seconds=config.rate_limit.window_seconds,
        )
        self.queue = ProcessingQueue(QueueConfig(
            max_size=config.queue.max_size,
            max_concurrent=config.queue.max_concurrent,
            max_retries=config.queue.max_retries,
        ))
        self.loader = PluginLoader(self.registry, config.plugin_paths)
        self.dispatcher = Dispatcher(
            registry=self.registry,
            queue=self.queue,
            permissions=self.permissions,
            rate_limiter=self.rate_limiter,
            transport=transport,
            config=DispatchConfig(
                prefix=config.bot.prefix,
                owner_id=config.bot.owner_id,
                sudo_users=list(config.bot.sudo_users),
                blocked_users=list(config.bot.blocked_users),
                max_suggestions=config.dispatch.max_suggestions,
                suggestion_threshold=config.dispatch.suggestion_threshold,
                command_timeout_seconds=config.dispatch.command_timeout_seconds,
                ack_reaction=config.dispatch.ack_reaction,
            ),
            stats_provider=self.get_stats,
            loader=self.loader,
        )

        self.watcher: PluginWatcher | None = None
        if config.plugins.enabled and config.plugins.hot_reload:
            self.watcher = PluginWatcher(
                config.plugin_paths,
                on_change=self.loader.handle_change,
                interval_seconds=config.plugins.poll_interval_seconds,
            )

        self._started_at: float | None = None
        self._running = False

    async def start(self) -> None:
        """Load permissions and plugins, and start hot reload if enabled."""
        if self._running:
            return

        self.permissions.load()

        if self.config.plugins.builtin:
            self.loader.load_builtin()
        if self.config.plugins.enabled:
            self.loader.load_all()
        if self.watcher:
            self.watcher.start()

        self._started_at = time.time()
        self._running = True
        logger.info(
            f"{self.config.bot.name} started with prefix '{self.config.bot.prefix}' "
            f"and {len(self.registry.command_names())} commands"
        )

    async def handle(self, event: InboundEvent) -> DispatchOutcome:
        """Feed an inbound event into the pipeline."""
        return await self.dispatcher.handle(event)

    def set_message_handler(self, handler: MessageHandler | None) -> None:
        """Install a handler for non-command messages from trusted senders."""
        self.dispatcher.set_message_handler(handler)

    async def stop(self, drain: bool = True, timeout: float | None = 30.0) -> int:
        """
        Stop hot reload and shut the queue down.

        Returns:
            Number of abandoned queue items.
        """
        if self.watcher:
            await self.watcher.stop()
        abandoned = await self.queue.shutdown(drain=drain, timeout=timeout)
        self._running = False
        logger.info(f"{self.config.bot.name} stopped")
        return abandoned

    @property
    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> dict[str, Any]:
        """Aggregate statistics of every component."""
        uptime = time.time() - self._started_at if self._started_at else 0.0
        return {
            "uptime_seconds": uptime,
            "queue": self.queue.get_stats(),
            "dispatcher": self.dispatcher.get_stats(),
            "plugins": self.loader.get_stats(),
            "permissions": self.permissions.get_stats(),
            "rate_limit": self.rate_limiter.get_stats(),
        }
