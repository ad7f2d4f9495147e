"""AgentRelay CLI - notify an operator by email and resume on reply."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from agentrelay import __version__
from agentrelay.config import RelaySettings, ensure_dirs
from agentrelay.errors import RelayError

app = typer.Typer(
    name="agentrelay",
    help="Email an operator from a terminal agent and resume on reply.",
    no_args_is_help=True,
)
sessions_app = typer.Typer(help="Inspect and clean up registered sessions.")
email_app = typer.Typer(help="Check the SMTP transport.")
mcp_app = typer.Typer(help="MCP server management.")

app.add_typer(sessions_app, name="sessions")
app.add_typer(email_app, name="email")
app.add_typer(mcp_app, name="mcp")

console = Console()


def version_callback(value: bool) -> None:
    if value:
        console.print(f"agentrelay {__version__}")
        raise typer.Exit()


def _registry(with_email: bool = False):
    from agentrelay.registry import RegistryCoordinator

    dispatcher = None
    if with_email:
        from agentrelay.dispatch import EmailConfig, SmtpDispatcher

        dispatcher = SmtpDispatcher(EmailConfig.from_env())
    return RegistryCoordinator(RelaySettings.from_env(), dispatcher=dispatcher)


def _format_epoch(value: int) -> str:
    return datetime.fromtimestamp(value, timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", "-V", callback=version_callback, is_eager=True),
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
) -> None:
    """AgentRelay - email notifications with reply-to-resume tokens."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ensure_dirs()


# ── Notify ───────────────────────────────────────────────────────


@app.command("notify")
def notify(
    project: Annotated[str, typer.Option("--project", "-p", help="Project name")],
    message: Annotated[str, typer.Option("--message", "-m", help="Notification text")] = "",
    event_type: Annotated[
        str, typer.Option("--type", "-t", help="completed or waiting")
    ] = "completed",
    tmux_session: Annotated[
        Optional[str], typer.Option("--tmux-session", "-s", help="Route replies to this tmux session")
    ] = None,
    user_question: Annotated[
        Optional[str], typer.Option("--question", "-q", help="Original request shown in the subject")
    ] = None,
    send: Annotated[bool, typer.Option("--send/--no-send", help="Send the email")] = True,
) -> None:
    """Register a reply token and email the operator."""
    from pydantic import ValidationError

    from agentrelay.sessions.models import Notification, NotificationMetadata

    metadata = None
    if tmux_session or user_question:
        metadata = NotificationMetadata(tmux_session=tmux_session, user_question=user_question)
    try:
        notification = Notification(
            type=event_type, project=project, message=message, metadata=metadata
        )
    except ValidationError:
        console.print(f"[red]Error:[/red] --type must be 'completed' or 'waiting', got {event_type!r}")
        raise typer.Exit(1)

    try:
        registry = _registry(with_email=send)
        registration = asyncio.run(registry.register(notification, dispatch=send))
    except (RelayError, OSError) as e:
        console.print(f"[red]Registration failed:[/red] {e}")
        raise typer.Exit(1)

    verb = "Sent" if send else "Registered"
    console.print(f"[green]{verb}:[/green] token [bold]{registration.token}[/bold]")
    console.print(f"  Session: {registration.session_id}")
    console.print(f"  tmux:    {registration.tmux_session}")


# ── Sessions commands ────────────────────────────────────────────


@sessions_app.command("list")
def sessions_list() -> None:
    """List tokens in the session map."""
    registry = _registry()
    entries = asyncio.run(registry.session_map.entries())
    if not entries:
        console.print("[dim]No registered sessions.[/dim]")
        return

    now = registry.clock()
    table = Table(title="Registered Sessions")
    table.add_column("Token", style="cyan")
    table.add_column("tmux", style="green")
    table.add_column("Description")
    table.add_column("Expires")

    for token, entry in sorted(entries.items(), key=lambda kv: kv[1].created_at):
        expires = _format_epoch(entry.expires_at)
        if entry.is_expired(now):
            expires = f"[red]{expires} (expired)[/red]"
        table.add_row(token, entry.tmux_session, entry.description, expires)

    console.print(table)


@sessions_app.command("show")
def sessions_show(
    token: Annotated[str, typer.Argument(help="Token from the email subject")],
) -> None:
    """Show the session a token routes to."""
    registry = _registry()
    token = token.strip().upper()
    entry = asyncio.run(registry.session_map.lookup(token))
    if not entry:
        console.print(f"[red]Token not found:[/red] {token}")
        raise typer.Exit(1)

    record = asyncio.run(registry.records.get(entry.session_id))
    console.print(f"[bold]{token}[/bold] → tmux [green]{entry.tmux_session}[/green]")
    console.print(f"  Description: {entry.description}")
    console.print(f"  Session:     {entry.session_id}")
    console.print(f"  cwd:         {entry.cwd}")
    console.print(f"  Expires:     {_format_epoch(entry.expires_at)}")
    if record:
        console.print(f"  Status:      {record.status.value}")
        console.print(f"  Commands:    {record.command_count}/{record.max_commands}")
    else:
        console.print("  [yellow]Session record missing[/yellow]")


@sessions_app.command("sweep")
def sessions_sweep() -> None:
    """Remove expired tokens and session records."""
    registry = _registry()
    result = asyncio.run(registry.sweep())
    console.print(
        f"[green]Swept:[/green] {len(result.tokens)} tokens, "
        f"{len(result.session_ids)} session records"
    )


# ── Email commands ───────────────────────────────────────────────


@email_app.command("status")
def email_status() -> None:
    """Show the SMTP settings read from the environment."""
    from agentrelay.dispatch import EmailConfig, SmtpDispatcher

    try:
        status = SmtpDispatcher(EmailConfig.from_env()).status()
    except RelayError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    configured = "[green]yes[/green]" if status["configured"] else "[red]no[/red]"
    smtp = status["smtp"]
    console.print(f"[bold]Email transport[/bold]  configured: {configured}")
    console.print(f"  Host:      {smtp['host']}")
    console.print(f"  Port:      {smtp['port']}")
    console.print(f"  Secure:    {smtp['secure']}")
    console.print(f"  Recipient: {status['recipient']}")


@email_app.command("test")
def email_test() -> None:
    """Verify the SMTP connection, then send a test notification."""
    import smtplib

    from agentrelay.dispatch import self_test_notification

    try:
        registry = _registry(with_email=True)
        asyncio.run(registry.dispatcher.verify())
        registration = asyncio.run(registry.register(self_test_notification()))
    except (RelayError, smtplib.SMTPException, OSError) as e:
        console.print(f"[red]Email test failed:[/red] {e}")
        raise typer.Exit(1)

    console.print(f"[green]Test email sent:[/green] token [bold]{registration.token}[/bold]")


# ── MCP commands ─────────────────────────────────────────────────


@mcp_app.command("serve")
def mcp_serve() -> None:
    """Start the MCP server (stdio transport)."""
    try:
        from agentrelay.mcp.server import mcp
    except RelayError as e:
        console.print(f"[red]Cannot start MCP server:[/red] {e}")
        raise typer.Exit(1)

    mcp.run()
