"""
Permission management commands.

Owner-only commands for granting and revoking command access.
"""

from relaybot.auto_reply.commands import Capability, CommandContext, CommandDescriptor
from relaybot.plugins.registry import PluginSource
from relaybot.security.permissions import WILDCARD


def _target(ctx: CommandContext) -> tuple[str, str] | None:
    """Resolve (identity, command) from '<command>' or '<identity> <command>'."""
    args = ctx.args
    if not args:
        return None
    if len(args) == 1:
        return ctx.chat_id, args[0].lower()
    return args[0], args[1].lower()


async def handle_allow(ctx: CommandContext) -> str:
    target = _target(ctx)
    if target is None:
        p = ctx.prefix
        return (
            "❌ Usage:\n"
            f"• {p}allow <command> - Allow current chat user\n"
            f"• {p}allow <identity> <command> - Allow specific user\n"
            f"• {p}allow {WILDCARD} - Allow all commands for current chat"
        )

    identity, command = target
    if ctx.permissions.grant(identity, command):
        return f"✅ Allowed command `{command}` for {identity}"
    return f"⚠️ {identity} already has permission for `{command}`"


async def handle_remove(ctx: CommandContext) -> str:
    target = _target(ctx)
    if target is None:
        p = ctx.prefix
        return (
            "❌ Usage:\n"
            f"• {p}remove <command> - Remove current chat user permission\n"
            f"• {p}remove <identity> <command> - Remove specific user permission"
        )

    identity, command = target
    if ctx.permissions.revoke(identity, command):
        return f"❌ Removed command `{command}` for {identity}"
    return f"⚠️ {identity} doesn't have permission for `{command}`"


async def handle_permissions(ctx: CommandContext) -> str:
    if ctx.args:
        identity = ctx.args[0]
        granted = ctx.permissions.get_permissions(identity)
        if not granted:
            return f"📋 *{identity}* has no permissions."
        return f"📋 *{identity}* permissions:\n└ Commands: {', '.join(granted)}"

    everything = ctx.permissions.all_permissions()
    if not everything:
        return "📋 No permissions granted yet."

    lines = ["📋 *User Permissions:*"]
    for identity, granted in everything.items():
        lines.append(f"\n👤 *{identity}*\n└ Commands: {', '.join(granted)}")
    return "\n".join(lines)


plugin = PluginSource(
    name="permissions",
    version="1.0.0",
    description="Permission management for controlling user access to commands",
    commands=[
        CommandDescriptor(
            name="allow",
            aliases=("permit", "grant"),
            category="owner",
            description="Allow a user to use a command",
            usage=".allow <command>\n.allow <identity> <command>",
            capability=Capability.OWNER,
            handler=handle_allow,
        ),
        CommandDescriptor(
            name="remove",
            aliases=("revoke", "deny"),
            category="owner",
            description="Remove a user's command permission",
            usage=".remove <command>\n.remove <identity> <command>",
            capability=Capability.OWNER,
            handler=handle_remove,
        ),
        CommandDescriptor(
            name="permissions",
            aliases=("perms", "listperms"),
            category="owner",
            description="List user permissions",
            usage=".permissions [identity]",
            capability=Capability.OWNER,
            handler=handle_permissions,
        ),
    ],
)
