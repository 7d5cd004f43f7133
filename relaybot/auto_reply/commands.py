"""
Command model and parsing for RelayBot auto-reply.

Supports:
- Prefix commands (".ping arg1 arg2")
- Command descriptors with aliases, scope and capability tags
- Execution context passed to handlers
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

if TYPE_CHECKING:
    from relaybot.auto_reply.dispatch import Dispatcher
    from relaybot.auto_reply.queue import ProcessingQueue
    from relaybot.channels.base import InboundEvent, Transport
    from relaybot.plugins.loader import PluginLoader
    from relaybot.plugins.registry import CommandRegistry
    from relaybot.security.permissions import PermissionGate


class Scope(str, Enum):
    """Where a command may be invoked."""
    NONE = "none"
    GROUP_ONLY = "group-only"
    PRIVATE_ONLY = "private-only"


class Capability(str, Enum):
    """Capability required to invoke a command."""
    NONE = "none"
    SUDO = "sudo"
    OWNER = "owner"


@dataclass
class Command:
    """A parsed command."""
    name: str
    arguments: list[str] = field(default_factory=list)
    raw: str = ""

    @property
    def arg(self) -> str:
        """Get first argument or empty string."""
        return self.arguments[0] if self.arguments else ""

    @property
    def args_str(self) -> str:
        """Get all arguments as a single string."""
        return " ".join(self.arguments)


# Handler for a command; a returned string is sent back as a reply
CommandHandler = Callable[["CommandContext"], Awaitable[str | None] | str | None]


@dataclass
class CommandDescriptor:
    """
    Metadata and handler for one invocable command.

    Descriptors are validated by the registry at load time; ``plugin`` is
    filled in on registration.
    """
    name: str
    handler: CommandHandler
    aliases: tuple[str, ...] = ()
    category: str = "general"
    description: str = ""
    usage: str = ""
    capability: Capability = Capability.NONE
    scope: Scope = Scope.NONE
    plugin: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CommandDescriptor":
        """
        Build a descriptor from a plain mapping.

        Accepts the legacy ``ownerOnly``/``groupOnly``/``privateOnly`` flags
        and ``permission: "sudo"`` as well as ``capability``/``scope``.
        """
        capability = Capability(data.get("capability", Capability.NONE))
        if data.get("ownerOnly") or data.get("owner_only"):
            capability = Capability.OWNER
        elif data.get("permission") == "sudo":
            capability = Capability.SUDO

        scope = Scope(data.get("scope", Scope.NONE))
        if data.get("groupOnly") or data.get("group_only"):
            scope = Scope.GROUP_ONLY
        elif data.get("privateOnly") or data.get("private_only"):
            scope = Scope.PRIVATE_ONLY

        usage = data.get("usage", "")
        if isinstance(usage, (list, tuple)):
            usage = "\n".join(usage)

        aliases = data.get("aliases") or ()
        if isinstance(aliases, str):
            aliases = (aliases,)

        return cls(
            name=data.get("name", ""),
            handler=data.get("handler"),
            aliases=tuple(aliases),
            category=data.get("category", "general"),
            description=data.get("description", ""),
            usage=usage,
            capability=capability,
            scope=scope,
        )


@dataclass
class CommandContext:
    """Everything a command handler needs for one invocation."""
    event: "InboundEvent"
    command: Command
    prefix: str
    transport: "Transport"
    registry: "CommandRegistry"
    permissions: "PermissionGate"
    queue: "ProcessingQueue"
    is_owner: bool = False
    is_privileged: bool = False
    stats: Callable[[], dict[str, Any]] | None = None
    dispatcher: "Dispatcher | None" = None
    loader: "PluginLoader | None" = None

    @property
    def sender_id(self) -> str:
        return self.event.sender_id

    @property
    def chat_id(self) -> str:
        return self.event.chat_id

    @property
    def is_group(self) -> bool:
        return self.event.is_group

    @property
    def args(self) -> list[str]:
        return self.command.arguments

    @property
    def full_args(self) -> str:
        return self.command.args_str

    async def reply(self, content: str, **options: Any) -> Any:
        """Reply in the originating chat, quoting the triggering message."""
        if self.event.message_id:
            options.setdefault("quoted", self.event.message_id)
        return await self.transport.send(self.chat_id, content, options)

    async def send(self, content: str, **options: Any) -> Any:
        """Send to the originating chat without quoting."""
        return await self.transport.send(self.chat_id, content, options)

    async def react(self, emoji: str) -> Any:
        """React to the triggering message."""
        return await self.transport.react(self.chat_id, emoji, self.event.message_id)


def parse_command(text: str | None, prefix: str) -> Command | None:
    """
    Parse a prefix command from message text.

    Examples (prefix "."):
        .help -> Command(name="help")
        .allow 123@s.whatsapp.net ping -> Command(name="allow", arguments=[...])
        .PING -> Command(name="ping")

    Args:
        text: Message body.
        prefix: Configured command prefix.

    Returns:
        Parsed Command or None if the text is not a command.
    """
    if not text or not prefix:
        return None

    # The prefix must be the very first character; "  .ping" is plain text
    if not text.startswith(prefix):
        return None

    text = text.rstrip()
    parts = text[len(prefix):].split()
    if not parts:
        return None

    return Command(
        name=parts[0].lower(),
        arguments=parts[1:],
        raw=text,
    )
