import logging

import click
from flask.cli import with_appcontext

from peekfeed import moderation, settings

logging.basicConfig(level=settings.LOG_LEVEL)
log = logging.getLogger(__name__)


@click.group('keywords')
def keywords():
    """Manage blocked keywords."""


@keywords.command('list')
@with_appcontext
def list_keywords():
    for keyword in moderation.get_blocked_keywords():
        click.echo(keyword)


@keywords.command('add')
@click.argument('keyword')
@with_appcontext
def add_keyword(keyword):
    try:
        normalized = moderation.add_blocked_keyword(keyword)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="KEYWORD")
    click.echo(f"Blocked {normalized!r}.")


@keywords.command('remove')
@click.argument('keyword')
@with_appcontext
def remove_keyword(keyword):
    moderation.remove_blocked_keyword(keyword)
    click.echo(f"Unblocked {keyword.strip().lower()!r}.")


@keywords.command('clear')
@with_appcontext
def clear_keywords():
    moderation.clear_all_blocked_keywords()
    click.echo("All blocked keywords removed.")


@keywords.command('reset')
@with_appcontext
def reset_keywords():
    moderation.reset_to_default_blocked_keywords()
    click.echo(f"Restored {len(moderation.get_blocked_keywords())} default keywords.")
