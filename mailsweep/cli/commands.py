"""CLI command implementations; each opens the service graph via open_services()."""

from __future__ import annotations

import asyncio
import logging
import os

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from mailsweep.agent.services import open_services
from mailsweep.digest.delivery import OutputConfig, OutputRouter
from mailsweep.digest.scheduler import DigestScheduler
from mailsweep.mail.auth import OAuthConfig, run_installed_app_flow
from mailsweep.mail.errors import MailError
from mailsweep.mail.types import SweepOptions, SweepResult
from mailsweep.processing.types import DraftContext, Priority

logger = logging.getLogger(__name__)
console = Console(width=200)

_PRIORITY_STYLE = {Priority.HIGH: "bold red", Priority.MEDIUM: "yellow", Priority.LOW: "dim"}


def _fail(message: str) -> None:
    console.print(f"[red]{message}[/red]")
    raise SystemExit(1)


# ── auth ─────────────────────────────────────────────────────────────────────────


@click.command()
def auth() -> None:
    """Authorise Gmail access in the browser and store the token file."""
    try:
        path = run_installed_app_flow(OAuthConfig.from_env())
    except MailError as exc:
        _fail(f"Authorisation failed: {exc}")
        return
    console.print(f"[green]Token written to {path}[/green]")


# ── sweep ────────────────────────────────────────────────────────────────────────


@click.command()
@click.option("--all", "include_read", is_flag=True, help="Include read messages.")
@click.option("--label", "labels", multiple=True, help="Restrict to a label (repeatable).")
@click.option("--from", "sender", default=None, help="Only messages from this sender.")
@click.option("--subject", default=None, help="Only messages whose subject matches.")
@click.option("--limit", default=20, show_default=True, help="Maximum messages to process.")
@click.option("--mark-read", "mark_read_after", is_flag=True, help="Mark processed messages read.")
def sweep(
    include_read: bool,
    labels: tuple[str, ...],
    sender: str | None,
    subject: str | None,
    limit: int,
    mark_read_after: bool,
) -> None:
    """Fetch matching messages, summarise and classify each one."""
    options = SweepOptions(
        unread_only=not include_read,
        labels=list(labels),
        sender=sender,
        subject=subject,
        limit=limit,
    )
    asyncio.run(_sweep_async(options, mark_read_after))


async def _sweep_async(options: SweepOptions, mark_read_after: bool) -> None:
    try:
        async with open_services() as services:
            result = await services.sync.perform_sweep(options)
            if mark_read_after and result.summaries:
                await services.sync.mark_as_read([s.id for s in result.summaries])
    except MailError as exc:
        _fail(f"Sweep failed: {exc}")
        return
    _print_sweep(result)


def _print_sweep(result: SweepResult) -> None:
    if not result.summaries and not result.errors:
        console.print("[yellow]No matching messages.[/yellow]")
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=3)
    table.add_column("Subject", max_width=40)
    table.add_column("From", max_width=28)
    table.add_column("Priority", width=8)
    table.add_column("Action", width=6)
    table.add_column("Categories", max_width=30)
    table.add_column("Summary", max_width=70)

    for i, summary in enumerate(result.summaries, start=1):
        style = _PRIORITY_STYLE[summary.priority]
        table.add_row(
            str(i),
            summary.subject,
            summary.from_.display_name or summary.from_.email,
            f"[{style}]{summary.priority.value}[/{style}]",
            "yes" if summary.action_required else "",
            ", ".join(summary.categories),
            summary.summary,
        )

    console.print(table)
    console.print(f"\nProcessed [bold]{result.processed_count}[/bold] message(s).")
    for error in result.errors:
        console.print(f"  [red]✗ {error.id}: {error.error}[/red]")
    if result.next_page_token:
        console.print("[dim]More messages match; raise --limit to process them.[/dim]")


# ── digest ───────────────────────────────────────────────────────────────────────


@click.command()
@click.option(
    "--output",
    default=None,
    help="Comma-separated outputs to enable: terminal,file,email. Overrides env vars.",
)
@click.option("--batch-size", default=None, type=int, help="Unread messages to include.")
def digest(output: str | None, batch_size: int | None) -> None:
    """Run one digest now: summarise unread mail, draft replies, deliver the report."""
    asyncio.run(_digest_async(output, batch_size))


def _output_config(output_override: str | None) -> OutputConfig:
    if output_override is None:
        return OutputConfig.from_env()
    flags = {s.strip() for s in output_override.split(",")}
    env = OutputConfig.from_env()
    return OutputConfig(
        terminal="terminal" in flags,
        file="file" in flags,
        email_self="email" in flags,
        digest_dir=env.digest_dir,
        email_recipient=os.environ.get("DIGEST_EMAIL_TO", ""),
    )


async def _digest_async(output_override: str | None, batch_size: int | None) -> None:
    config = _output_config(output_override)
    async with open_services() as services:
        scheduler = DigestScheduler(
            services.sync,
            services.pipeline,
            OutputRouter(config, sync=services.sync),
            batch_size=batch_size or 50,
            notifications=services.notifications,
        )
        report = await scheduler.run_digest()
    if report is None:
        _fail("Digest failed; see the log for details.")
    elif report.is_empty:
        console.print("[green]No new emails to digest.[/green]")


# ── draft ────────────────────────────────────────────────────────────────────────


@click.command()
@click.argument("message_id")
@click.option("--context", "additional_context", default=None, help="Extra guidance for the reply.")
@click.option("--send", "send_now", is_flag=True, help="Send the draft immediately.")
def draft(message_id: str, additional_context: str | None, send_now: bool) -> None:
    """Draft a reply to MESSAGE_ID using its conversation history."""
    asyncio.run(_draft_async(message_id, additional_context, send_now))


async def _draft_async(message_id: str, additional_context: str | None, send_now: bool) -> None:
    try:
        async with open_services() as services:
            message = await services.sync.get_message(message_id)
            # Store the message so the thread history lookup can see it.
            await services.memory.store_email(message)
            reply = await services.sync.draft_response(
                message, DraftContext(additional_context=additional_context)
            )
            console.print(
                Panel(
                    reply.body_text or "",
                    title=f"[bold]{reply.subject}[/bold]",
                    subtitle=", ".join(a.email for a in reply.to),
                    border_style="blue",
                )
            )
            if not send_now:
                return
            result = await services.sync.send_email(reply)
    except MailError as exc:
        _fail(f"Draft failed: {exc}")
        return

    if result.success:
        console.print(f"[green]Sent ({result.message_id}).[/green]")
    else:
        _fail(f"Send failed: {result.error}")


# ── mark-read ────────────────────────────────────────────────────────────────────


@click.command(name="mark-read")
@click.argument("message_ids", nargs=-1, required=True)
def mark_read(message_ids: tuple[str, ...]) -> None:
    """Remove the UNREAD label from one or more messages."""
    asyncio.run(_mark_read_async(list(message_ids)))


async def _mark_read_async(message_ids: list[str]) -> None:
    try:
        async with open_services() as services:
            await services.sync.mark_as_read(message_ids)
    except MailError as exc:
        _fail(f"Mark as read failed: {exc}")
        return
    console.print(f"[green]Marked {len(message_ids)} message(s) as read.[/green]")


# ── run ──────────────────────────────────────────────────────────────────────────


@click.command()
def run() -> None:
    """Run the agent: poll for new mail and deliver scheduled digests."""
    from mailsweep.agent.watcher import _amain

    try:
        asyncio.run(_amain())
    except KeyboardInterrupt:
        logger.info("Interrupted; goodbye")
