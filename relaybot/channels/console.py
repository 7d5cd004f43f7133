"""Console transport for local sessions."""

from typing import Any

from rich.console import Console

from relaybot.channels.base import Transport


class ConsoleTransport(Transport):
    """
    Prints outbound messages to a rich console.

    Used by ``relaybot console`` to drive the pipeline without a chat
    network. Sent messages are also kept in ``sent`` for inspection.
    """

    name = "console"

    def __init__(self, console: Console | None = None, bot_name: str = "RelayBot"):
        self.console = console or Console()
        self.bot_name = bot_name
        self.sent: list[tuple[str, str]] = []

    async def send(
        self,
        chat_id: str,
        content: str,
        options: dict[str, Any] | None = None,
    ) -> Any:
        self.sent.append((chat_id, content))
        self.console.print(f"[bold green]{self.bot_name}:[/bold green]", end=" ")
        self.console.print(content, markup=False, emoji=False, highlight=False)
        return len(self.sent)

    async def react(self, chat_id: str, emoji: str, message_ref: str) -> Any:
        self.console.print(f"[dim]{self.bot_name} reacted {emoji} to {message_ref}[/dim]")
