"""Transport boundary for RelayBot."""

from relaybot.channels.base import InboundEvent, Transport
from relaybot.channels.console import ConsoleTransport

__all__ = ["InboundEvent", "Transport", "ConsoleTransport"]
