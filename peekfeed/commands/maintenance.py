import logging

import click
from flask.cli import with_appcontext

from peekfeed import settings, store
from peekfeed.core import get_core
from peekfeed.database import init_schema

logging.basicConfig(level=settings.LOG_LEVEL)
log = logging.getLogger(__name__)


@click.command('init-db')
@with_appcontext
def init_db():
    init_schema()
    click.echo("Local store ready.")


@click.command('reset-data')
@click.option('--yes', is_flag=True, help="Skip the confirmation prompt.")
@with_appcontext
def reset_data(yes):
    if not yes:
        click.confirm("Delete all history, stars, follows, blocks and cached posts?", abort=True)
    store.reset_all_data()
    click.echo("All local data reset.")


@click.command('clear-cache')
@click.option('--media', is_flag=True, help="Also delete downloaded media files.")
@with_appcontext
def clear_cache(media):
    store.clear_cache()
    log.info("Cleared the request cache.")
    if media:
        removed = get_core().media.clear_media_cache()
        click.echo(f"Removed {removed} media files.")
    click.echo("Cache cleared.")
