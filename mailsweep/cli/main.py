"""CLI entry point for mailsweep."""

import logging
import os

import click
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Mailbox triage: sweep, digest, draft and automation commands."""
    load_dotenv()
    logging.basicConfig(
        # keep CLI output clean; errors still surface
        level=os.environ.get("LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    ctx.ensure_object(dict)


# Import and register commands after cli is defined to avoid circular imports.
from mailsweep.cli.commands import auth, digest, draft, mark_read, run, sweep  # noqa: E402

cli.add_command(auth)
cli.add_command(sweep)
cli.add_command(digest)
cli.add_command(draft)
cli.add_command(mark_read)
cli.add_command(run)
