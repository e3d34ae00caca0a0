#!/usr/bin/env python3
"""CLI for the motorcycle listing ingest service."""

import logging
import signal
import sys
from datetime import datetime, timedelta, timezone

import click

import config
import db
import scheduler
from errors import IngestError, MediaAcquisitionError
from models import STATUS_DRAFT, STATUSES
from services import build_services


def _print_listing(listing):
    click.echo(f"\n{listing.title}")
    click.echo(f"  ID:          {listing.id}")
    click.echo(f"  Status:      {listing.status}")
    click.echo(f"  Price:       {listing.price} {listing.currency}")
    click.echo(f"  Source:      {listing.source_url}")
    for key, value in listing.attributes.as_dict().items():
        click.echo(f"  {key + ':':<12} {value}")
    if listing.description:
        click.echo(f"  Description: {listing.description}")
    click.echo(f"  Photos:      {len(listing.photos)}")
    for photo in listing.photos:
        click.echo(f"    [{photo.order}] {photo.url}")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--db-path", default=config.DB_PATH, show_default=True, help="SQLite database file")
@click.pass_context
def cli(ctx, verbose, db_path):
    """Motorcycle listing ingest service"""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    ctx.obj = {"db_path": db_path}


@cli.command("init-db")
@click.pass_context
def init_db(ctx):
    """Create the database schema."""
    db.init_db(ctx.obj["db_path"])
    click.echo(f"Database ready at {ctx.obj['db_path']}")


@cli.command()
@click.argument("url")
@click.option("--operator", default="cli", help="Operator name recorded in the logs")
@click.pass_context
def ingest(ctx, url, operator):
    """Scrape a vendor page and store it as a draft listing."""
    services = build_services(ctx.obj["db_path"])
    try:
        listing = services.assembler.create_from_url(operator, url)
    except MediaAcquisitionError as e:
        click.echo(f"Photo upload failed: {e}")
        click.echo(f"Draft {e.listing_id} was kept without photos")
        sys.exit(1)
    except IngestError as e:
        click.echo(f"Error ({e.stage}): {e}")
        sys.exit(1)

    _print_listing(listing)
    click.echo("\nSet a price and publish with the bot or the admin API.")


@cli.command()
@click.option("--older-than", type=float, default=None,
              help="Only drafts created more than this many hours ago")
@click.pass_context
def drafts(ctx, older_than):
    """List draft listings."""
    services = build_services(ctx.obj["db_path"])
    criteria = {"status": STATUS_DRAFT}
    if older_than is not None:
        cutoff = datetime.now(timezone.utc) - timedelta(hours=older_than)
        criteria["created_before"] = cutoff.isoformat()

    listings = services.assembler.list(criteria)
    if not listings:
        click.echo("No drafts found.")
        return

    click.echo(f"\n{'ID':<36}  {'Title':<40} {'Photos':>6}  Created")
    click.echo("-" * 110)
    for listing in listings:
        click.echo(
            f"{listing.id:<36}  {listing.title[:39]:<40} {len(listing.photos):>6}  "
            f"{listing.created_at}"
        )


@cli.command()
@click.argument("listing_id")
@click.pass_context
def show(ctx, listing_id):
    """Show one listing with its photos."""
    services = build_services(ctx.obj["db_path"])
    try:
        listing = services.assembler.get(listing_id)
    except IngestError as e:
        click.echo(f"Error: {e}")
        sys.exit(1)
    _print_listing(listing)


@cli.command()
@click.argument("listing_id")
@click.argument("new_status", type=click.Choice(STATUSES))
@click.pass_context
def status(ctx, listing_id, new_status):
    """Move a listing to another status."""
    services = build_services(ctx.obj["db_path"])
    try:
        listing = services.assembler.set_status(listing_id, new_status)
    except IngestError as e:
        click.echo(f"Error: {e}")
        sys.exit(1)
    click.echo(f"{listing.title}: {listing.status}")


@cli.command()
@click.pass_context
def bot(ctx):
    """Run the operator bot (long polling)."""
    from bot import OperatorBot
    from notifier import TelegramClient

    if not config.TELEGRAM_BOT_TOKEN:
        click.echo("TELEGRAM_BOT_TOKEN is not set")
        sys.exit(1)
    if not config.OPERATOR_IDS:
        click.echo("Warning: OPERATOR_IDS is empty, nobody can ingest listings")

    services = build_services(ctx.obj["db_path"])
    client = TelegramClient(config.TELEGRAM_BOT_TOKEN)
    operator_bot = OperatorBot(client, services.assembler, services.conversations,
                               operator_ids=config.OPERATOR_IDS)

    def _shutdown(signum, frame):
        click.echo("\nShutting down...")
        operator_bot.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    me = client.get_me()
    click.echo(f"Authorized as @{me.get('username')}")
    scheduler.start_scheduler(services.assembler, services.conversations)
    try:
        operator_bot.run()
    finally:
        scheduler.stop_scheduler()


@cli.command()
@click.option("--host", default="127.0.0.1", help="Interface to bind")
@click.option("--port", default=8000, help="Port to serve on")
@click.option("--reload/--no-reload", default=False)
def serve(host, port, reload):
    """Start the admin API."""
    import uvicorn
    click.echo(f"Starting admin API on http://{host}:{port}")
    uvicorn.run("app:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    cli()
