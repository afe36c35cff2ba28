from peekfeed.commands.keywords import keywords
from peekfeed.commands.maintenance import clear_cache, init_db, reset_data
from peekfeed.commands.prefetch import prefetch, refresh_following


def command_init(app):
    app.cli.add_command(init_db)
    app.cli.add_command(prefetch)
    app.cli.add_command(refresh_following)
    app.cli.add_command(reset_data)
    app.cli.add_command(clear_cache)
    app.cli.add_command(keywords)
