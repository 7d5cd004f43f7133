"""CLI commands for RelayBot."""

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from relaybot import __version__, __logo__

app = typer.Typer(
    name="relaybot",
    help=f"{__logo__} RelayBot - Chat command dispatch pipeline",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} RelayBot v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """RelayBot - Chat command dispatch pipeline."""
    pass


def _load_config(config_path: Path | None):
    """Load configuration or exit with a readable error."""
    from relaybot.config.loader import load_config
    from relaybot.errors import ConfigError

    try:
        return load_config(config_path)
    except ConfigError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)


# ============================================================================
# Onboard / Setup
# ============================================================================


@app.command()
def onboard(
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file to create"),
):
    """Initialize RelayBot configuration, plugin directory and permission store."""
    from relaybot.config.loader import get_config_path, save_config
    from relaybot.config.schema import Config
    from relaybot.security.permissions import PermissionGate
    from relaybot.utils.helpers import ensure_dir

    config_path = config_path or get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    config = Config()
    save_config(config, config_path)
    console.print(f"[green]✓[/green] Created config at {config_path}")

    for directory in config.plugin_paths:
        ensure_dir(directory)
        console.print(f"[green]✓[/green] Plugin directory at {directory}")

    gate = PermissionGate(config.permissions_path, owner_id=config.bot.owner_id)
    gate.load()
    console.print(f"[green]✓[/green] Permission store at {gate.store_path}")

    console.print(f"\n{__logo__} RelayBot is ready!")
    console.print("\nNext steps:")
    console.print(f"  1. Set [cyan]bot.owner_id[/cyan] in [cyan]{config_path}[/cyan]")
    console.print("  2. Drop plugin files into the plugin directory")
    console.print("  3. Try it: [cyan]relaybot console -m \".ping\"[/cyan]")


# ============================================================================
# Plugin Commands
# ============================================================================


plugins_app = typer.Typer(help="Inspect plugins")
app.add_typer(plugins_app, name="plugins")


@plugins_app.command("list")
def plugins_list(
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file"),
):
    """List loadable plugins and their commands."""
    from relaybot.plugins.loader import PluginLoader
    from relaybot.plugins.registry import CommandRegistry

    config = _load_config(config_path)

    registry = CommandRegistry()
    loader = PluginLoader(registry, config.plugin_paths)
    if config.plugins.builtin:
        loader.load_builtin()
    if config.plugins.enabled:
        loader.load_all()

    if not registry.plugins and not loader.failed:
        console.print("No plugins found.")
        return

    table = Table(title="Plugins")
    table.add_column("Plugin", style="cyan")
    table.add_column("Version")
    table.add_column("Commands", style="green")
    table.add_column("Location", style="dim")

    for record in registry.plugins:
        names = ", ".join(cmd.name for cmd in record.commands)
        table.add_row(record.name, record.version, names, record.location)

    console.print(table)

    if loader.failed:
        failed = Table(title="Failed Plugins")
        failed.add_column("Location", style="yellow")
        failed.add_column("Reason", style="red")
        for location, reason in loader.failed.items():
            failed.add_row(location, escape(reason))
        console.print(failed)


@plugins_app.command("check")
def plugins_check(
    path: Path = typer.Argument(..., help="Plugin file to validate"),
):
    """Validate a plugin file without registering it."""
    from relaybot.errors import PluginLoadError
    from relaybot.plugins.loader import PluginLoader
    from relaybot.plugins.registry import CommandRegistry

    if not path.exists():
        console.print(f"[red]File not found: {path}[/red]")
        raise typer.Exit(1)

    loader = PluginLoader(CommandRegistry())
    try:
        source = loader.check_path(path)
    except PluginLoadError as e:
        console.print(f"[red]✗ {escape(e.reason)}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] {source.name} v{source.version} - {source.description}")
    for cmd in source.commands:
        aliases = f" ({', '.join(cmd.aliases)})" if cmd.aliases else ""
        console.print(f"  [cyan]{cmd.name}[/cyan]{aliases}")


# ============================================================================
# Permission Commands
# ============================================================================


permissions_app = typer.Typer(help="Manage command permissions")
app.add_typer(permissions_app, name="permissions")


def _open_gate(config_path: Path | None):
    from relaybot.security.permissions import PermissionGate

    config = _load_config(config_path)
    gate = PermissionGate(config.permissions_path, owner_id=config.bot.owner_id)
    gate.load()
    return gate


@permissions_app.command("list")
def permissions_list(
    identity: str = typer.Argument(None, help="Only show this identity"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file"),
):
    """List granted permissions."""
    gate = _open_gate(config_path)

    if identity:
        entries = {identity: gate.get_permissions(identity)}
    else:
        entries = gate.all_permissions()

    entries = {k: v for k, v in entries.items() if v}
    if not entries:
        console.print("[dim]No permissions granted[/dim]")
        return

    table = Table(title="Permissions")
    table.add_column("Identity", style="cyan")
    table.add_column("Commands", style="green")

    for who, commands in entries.items():
        table.add_row(who, ", ".join(commands))

    console.print(table)


@permissions_app.command("grant")
def permissions_grant(
    identity: str = typer.Argument(..., help="Identity to grant"),
    command: str = typer.Argument(..., help="Command name, or * for all"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file"),
):
    """Allow an identity to use a command."""
    gate = _open_gate(config_path)

    if gate.grant(identity, command):
        console.print(f"[green]✓[/green] Allowed '{command.lower()}' for {identity}")
    else:
        console.print(f"[yellow]{identity} already has '{command.lower()}'[/yellow]")


@permissions_app.command("revoke")
def permissions_revoke(
    identity: str = typer.Argument(..., help="Identity to revoke"),
    command: str = typer.Argument(..., help="Command name"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file"),
):
    """Remove a command permission from an identity."""
    gate = _open_gate(config_path)

    if gate.revoke(identity, command):
        console.print(f"[green]✓[/green] Removed '{command.lower()}' for {identity}")
    else:
        console.print(f"[red]{identity} does not have '{command.lower()}'[/red]")
        raise typer.Exit(1)


# ============================================================================
# Console Session
# ============================================================================


@app.command("console")
def console_session(
    message: str = typer.Option(None, "--message", "-m", help="Send one message and exit"),
    sender: str = typer.Option("", "--as", help="Send as this identity instead of the bot itself"),
    group: bool = typer.Option(False, "--group", "-g", help="Pretend the chat is a group"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file"),
    verbose: bool = typer.Option(False, "--verbose", help="Verbose output"),
):
    """Drive the dispatch pipeline from the terminal."""
    from relaybot.auto_reply.dispatch import DispatchOutcome
    from relaybot.bot import RelayBot
    from relaybot.channels.base import InboundEvent
    from relaybot.channels.console import ConsoleTransport
    from relaybot.utils.helpers import generate_id
    from relaybot.utils.logging import setup_logging

    config = _load_config(config_path)
    setup_logging(config.logging, verbose=verbose)

    async def send(bot: RelayBot, text: str) -> None:
        event = InboundEvent(
            sender_id=sender or config.bot.owner_id or "console",
            chat_id="console",
            body=text,
            is_self=not sender,
            is_group=group,
            message_id=generate_id(),
        )
        outcome = await bot.handle(event)
        if outcome != DispatchOutcome.QUEUED:
            console.print(f"[dim]({outcome.value})[/dim]")
            return
        await bot.queue.join(timeout=config.dispatch.command_timeout_seconds)

    async def run():
        bot = RelayBot(config, ConsoleTransport(console, config.bot.name))
        await bot.start()
        try:
            if message:
                await send(bot, message)
                return

            console.print(f"{__logo__} Console session, prefix '{config.bot.prefix}' (Ctrl+C to exit)\n")
            while True:
                try:
                    text = await asyncio.to_thread(console.input, "[bold blue]You:[/bold blue] ")
                except EOFError:
                    break
                if text.strip() in ("exit", "quit"):
                    break
                if text.strip():
                    await send(bot, text.strip())
        finally:
            await bot.stop()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\nGoodbye!")
