import logging

import click
from flask.cli import with_appcontext

from peekfeed import settings
from peekfeed.core import get_core
from peekfeed.errors import TransientNetworkError

logging.basicConfig(level=settings.LOG_LEVEL)
log = logging.getLogger(__name__)

BOARDS = ("a", "b", "fit", "g", "gif", "e", "h", "o", "n", "r", "s", "sci", "soc", "v", "wsg",)


@click.command('prefetch')
@click.argument('boards', nargs=-1)
@click.option('--threads', is_flag=True, help="Also load every new thread in full.")
@with_appcontext
def prefetch(boards, threads):
    """Pull catalogs (and optionally threads) into the local store."""
    engine = get_core().feed
    for board in boards or BOARDS:
        log.info(f"Prefetching /{board}/.")
        page = engine.fetch_catalog(board)
        click.echo(f"/{board}/: {len(page.items)} items")

        if not threads:
            continue

        for op in page.items:
            if not op.is_op:
                continue
            try:
                engine.refresh_thread(board, op.no)
            except TransientNetworkError as e:
                log.warning(f"Skipping thread /{board}/{op.no}: {e}")


@click.command('refresh-following')
@click.option('--max-age', type=int, default=None, help="Refresh threads older than this many seconds.")
@with_appcontext
def refresh_following(max_age):
    refreshed = get_core().feed.refresh_followed_threads(max_age)
    click.echo(f"Refreshed {refreshed} followed threads.")
