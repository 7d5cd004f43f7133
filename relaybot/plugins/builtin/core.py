"""Core commands: ping, help, stats."""

import time

from relaybot import __version__
from relaybot.auto_reply.commands import Capability, CommandContext, CommandDescriptor
from relaybot.plugins.registry import PluginSource
from relaybot.utils.helpers import format_duration


async def handle_ping(ctx: CommandContext) -> str:
    latency_ms = max(0, int((time.time() - ctx.event.timestamp) * 1000))
    queue = ctx.queue.get_stats()
    return (
        "🏓 *Pong!*\n"
        f"├ Latency: {latency_ms}ms\n"
        f"├ Processed: {queue['processed']}\n"
        f"└ In flight: {queue['in_flight']}"
    )


async def handle_help(ctx: CommandContext) -> str:
    p = ctx.prefix

    if ctx.command.arg:
        cmd = ctx.registry.resolve(ctx.command.arg)
        if cmd is None:
            return f"❌ No help for: *{ctx.command.arg}*"
        lines = [f"*{p}{cmd.name}* - {cmd.description or 'No description'}"]
        if cmd.aliases:
            lines.append("Aliases: " + ", ".join(f"{p}{a}" for a in cmd.aliases))
        if cmd.usage:
            lines.append(f"Usage:\n{cmd.usage}")
        return "\n".join(lines)

    lines = ["📋 *Available commands:*"]
    for category in ctx.registry.categories():
        commands = ctx.registry.list_commands(category)
        if not ctx.is_owner:
            commands = [c for c in commands if c.capability == Capability.NONE]
        if not commands:
            continue
        lines.append(f"\n*{category.title()}*")
        for cmd in commands:
            lines.append(f"├ {p}{cmd.name} - {cmd.description}")
    lines.append(f"\nUse *{p}help <command>* for details.")
    return "\n".join(lines)


async def handle_stats(ctx: CommandContext) -> str:
    stats = ctx.stats() if ctx.stats else {}
    queue = stats.get("queue", ctx.queue.get_stats())
    registry = ctx.registry.get_stats()
    dispatcher = stats.get("dispatcher", {})

    return (
        f"📊 *RelayBot v{__version__}*\n"
        f"├ Uptime: {format_duration(queue['uptime_seconds'])}\n"
        f"├ Plugins: {registry['total_plugins']} ({registry['total_commands']} commands)\n"
        f"├ Processed: {queue['processed']} | Failed: {queue['failed']}\n"
        f"├ Queued: {queue['queued']} | In flight: {queue['in_flight']}\n"
        f"├ Success rate: {queue['success_rate']}%\n"
        f"└ Commands run: {dispatcher.get('commands_executed', 0)}"
    )


plugin = PluginSource(
    name="core",
    version="1.0.0",
    description="Core bot commands",
    commands=[
        CommandDescriptor(
            name="ping",
            aliases=("p", "pong", "test"),
            category="general",
            description="Test bot response time",
            usage=".ping",
            handler=handle_ping,
        ),
        CommandDescriptor(
            name="help",
            aliases=("h", "menu"),
            category="general",
            description="Show available commands",
            usage=".help [command]",
            handler=handle_help,
        ),
        CommandDescriptor(
            name="stats",
            aliases=("status",),
            category="general",
            description="Show bot statistics",
            usage=".stats",
            handler=handle_stats,
        ),
    ],
)
