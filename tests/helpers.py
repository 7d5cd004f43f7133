"""
Shared builders and fakes for RelayBot tests.
"""

from pathlib import Path
from typing import Any

from relaybot.auto_reply.commands import CommandDescriptor
from relaybot.channels.base import InboundEvent, Transport
from relaybot.plugins.registry import PluginSource


OWNER = "owner@s.whatsapp.net"
FRIEND = "friend@s.whatsapp.net"
STRANGER = "stranger@s.whatsapp.net"


class RecordingTransport(Transport):
    """Transport that records everything sent."""

    name = "recording"

    def __init__(self):
        self.sent: list[tuple[str, str, dict[str, Any]]] = []
        self.reactions: list[tuple[str, str, str]] = []

    async def send(self, chat_id, content, options=None):
        self.sent.append((chat_id, content, dict(options or {})))

    async def react(self, chat_id, emoji, message_ref):
        self.reactions.append((chat_id, emoji, message_ref))

    @property
    def texts(self) -> list[str]:
        return [content for _, content, _ in self.sent]


def make_event(
    body: str | None,
    sender: str = STRANGER,
    chat: str | None = None,
    is_self: bool = False,
    is_group: bool = False,
    message_id: str = "m1",
) -> InboundEvent:
    """Build an inbound event; the chat defaults to the sender's private chat."""
    return InboundEvent(
        sender_id=sender,
        chat_id=chat or sender,
        body=body,
        is_self=is_self,
        is_group=is_group,
        message_id=message_id,
    )


def make_plugin(name: str, *commands: CommandDescriptor, location: str = "") -> PluginSource:
    """Build a plugin source around some descriptors."""
    return PluginSource(
        name=name,
        version="1.0.0",
        description=f"{name} test plugin",
        commands=list(commands),
        location=location or f"test:{name}",
    )


async def noop_handler(ctx):
    return None


def write_plugin(directory: Path, filename: str, name: str, command: str, reply: str = "ok") -> Path:
    """Write a minimal file plugin exposing one command."""
    path = directory / filename
    path.write_text(
        "from relaybot.auto_reply.commands import CommandDescriptor\n"
        "from relaybot.plugins.registry import PluginSource\n"
        "\n"
        "\n"
        "async def handle(ctx):\n"
        f"    return {reply!r}\n"
        "\n"
        "\n"
        "plugin = PluginSource(\n"
        f"    name={name!r},\n"
        "    version='1.0.0',\n"
        f"    description='{name} plugin',\n"
        f"    commands=[CommandDescriptor(name={command!r}, handler=handle)],\n"
        ")\n",
        encoding="utf-8",
    )
    return path
