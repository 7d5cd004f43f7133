"""
Transport boundary.

The protocol client (connect, authenticate, send/receive raw events) lives
outside RelayBot; it converts raw events to InboundEvent and implements
Transport for replies.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class InboundEvent:
    """A message received from the chat transport."""
    sender_id: str
    chat_id: str
    body: str | None = None
    is_self: bool = False  # Sent by the bot's own account
    quoted_body: str | None = None
    is_group: bool = False
    message_id: str = ""
    timestamp: float = field(default_factory=time.time)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def has_body(self) -> bool:
        """Check if the event carries non-empty text."""
        return bool(self.body and self.body.strip())


class Transport(ABC):
    """Outbound side of the chat transport."""

    name: str = "base"

    @abstractmethod
    async def send(
        self,
        chat_id: str,
        content: str,
        options: dict[str, Any] | None = None,
    ) -> Any:
        """
        Send a message to a chat.

        Args:
            chat_id: Destination chat identity.
            content: Message text.
            options: Transport-specific options (e.g. "quoted").
        """
        pass

    @abstractmethod
    async def react(self, chat_id: str, emoji: str, message_ref: str) -> Any:
        """
        React to a message.

        Args:
            chat_id: Chat containing the message.
            emoji: Reaction emoji.
            message_ref: Identifier of the message reacted to.
        """
        pass
