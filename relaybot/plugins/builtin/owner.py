"""
Owner commands: plugin management and sender blocking.

These act on the live pipeline through the dispatcher and plugin loader
carried by the command context.
"""

from pathlib import Path

from relaybot.auto_reply.commands import Capability, CommandContext, CommandDescriptor
from relaybot.plugins.registry import PluginSource


def _plugin_list(ctx: CommandContext) -> str:
    stats = ctx.registry.get_stats()
    lines = [
        "*🔌 LOADED PLUGINS*\n",
        f"Total Plugins: {stats['total_plugins']}",
        f"Total Commands: {stats['total_commands']}\n",
    ]
    for name, count in stats["commands_by_plugin"].items():
        lines.append(f"├ {name}: {count} commands")
    return "\n".join(lines)


def _plugin_reload(ctx: CommandContext, name: str) -> str:
    loader = ctx.loader
    if loader is None:
        return "❌ Plugin loading is not available."

    if not name:
        loader.reload_all()
        message = f"✅ All plugins reloaded successfully! ({len(ctx.registry.plugins)} loaded)"
        if loader.failed:
            message += f"\n⚠️ Failed: {', '.join(Path(loc).name for loc in loader.failed)}"
        return message

    record = ctx.registry.get_plugin(name)
    if record is None:
        return f"❌ Plugin not found: *{name}*"
    if loader.is_builtin(record):
        return f"⚠️ *{name}* is built in and cannot be reloaded."

    reloaded = loader.reload_path(Path(record.location))
    if reloaded is None:
        reason = loader.failed.get(record.location, "unknown error")
        return f"❌ Failed to reload *{name}*: {reason}"
    return f"✅ Reloaded plugin *{reloaded.name}* v{reloaded.version}"


async def handle_plugin(ctx: CommandContext) -> str:
    action = ctx.command.arg.lower()

    if action == "list":
        return _plugin_list(ctx)
    if action == "reload":
        name = ctx.args[1] if len(ctx.args) > 1 else ""
        return _plugin_reload(ctx, name)
    return "❌ Invalid action. Use: reload, list"


async def handle_block(ctx: CommandContext) -> str:
    if not ctx.command.arg:
        return "❌ Please provide an identity to block."
    if ctx.dispatcher is None:
        return "❌ Blocking is not available."

    identity = ctx.command.arg
    if identity == ctx.dispatcher.config.owner_id:
        return "❌ The owner cannot be blocked."
    if ctx.dispatcher.is_blocked(identity):
        return f"⚠️ {identity} is already blocked."

    ctx.dispatcher.block(identity)
    return f"🚫 User {identity} has been blocked."


async def handle_unblock(ctx: CommandContext) -> str:
    if not ctx.command.arg:
        return "❌ Please provide an identity to unblock."
    if ctx.dispatcher is None:
        return "❌ Blocking is not available."

    identity = ctx.command.arg
    if not ctx.dispatcher.is_blocked(identity):
        return f"⚠️ {identity} is not blocked."

    ctx.dispatcher.unblock(identity)
    return f"✅ User {identity} has been unblocked."


plugin = PluginSource(
    name="owner",
    version="1.0.0",
    description="Administrative controls for the bot owner",
    commands=[
        CommandDescriptor(
            name="plugin",
            aliases=("pl",),
            category="owner",
            description="Manage plugins",
            usage=".plugin list\n.plugin reload [name]",
            capability=Capability.OWNER,
            handler=handle_plugin,
        ),
        CommandDescriptor(
            name="block",
            aliases=("ban",),
            category="owner",
            description="Ignore every message from a user",
            usage=".block <identity>",
            capability=Capability.OWNER,
            handler=handle_block,
        ),
        CommandDescriptor(
            name="unblock",
            aliases=("unban",),
            category="owner",
            description="Stop ignoring a user",
            usage=".unblock <identity>",
            capability=Capability.OWNER,
            handler=handle_unblock,
        ),
    ],
)
