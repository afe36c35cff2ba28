import logging

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, ProgrammingError, SQLAlchemyError

from peekfeed.errors import StorageInitError

log = logging.getLogger(__name__)

db = SQLAlchemy()

# Columns added after the first release. Older stores get them on startup.
MIGRATIONS = (
    ("threads", "blocked", "BOOLEAN DEFAULT 0"),
    ("threads", "last_fetched", "FLOAT DEFAULT 0"),
)


def _column_exists_error(e):
    message = str(e.orig).lower()
    return "duplicate column" in message or "already exists" in message


def _add_column(table, column, ddl):
    try:
        with db.engine.begin() as conn:
            conn.execute(text("ALTER TABLE {} ADD COLUMN {} {}".format(table, column, ddl)))
        log.info("Added column {}.{}".format(table, column))
    except (OperationalError, ProgrammingError) as e:
        if _column_exists_error(e):
            return
        raise


def init_schema():
    """Create every table and apply additive migrations.

    Safe to run on every start. Raises StorageInitError on anything other
    than a column that already exists.
    """
    from peekfeed import models  # noqa: F401

    try:
        db.create_all()
        for table, column, ddl in MIGRATIONS:
            _add_column(table, column, ddl)
    except SQLAlchemyError as e:
        raise StorageInitError("Could not initialize the local store: {}".format(e)) from e


def db_init(app):
    db.init_app(app)
    with app.app_context():
        init_schema()

        from peekfeed.moderation import init_default_blocked_keywords
        init_default_blocked_keywords()
