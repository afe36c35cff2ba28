import sqlalchemy

from peekfeed.database import db


class Config(db.Model):
    __tablename__ = 'config'

    key = db.Column(db.String, primary_key=True)
    value = db.Column(db.String)


class Request(db.Model):
    """
    Cached response body keyed by the exact URL. Media downloads store the
    local file path in `data`.
    """
    __tablename__ = 'requests'

    url = db.Column(db.String, primary_key=True)
    data = db.Column(db.Text)
    timestamp = db.Column(db.Float)


class Thread(db.Model):
    """
    One row per post, OPs and replies alike. `data` holds the serialized
    Post; decode it with Post.from_data.
    """
    __tablename__ = 'threads'
    __table_args__ = (
        db.Index('idx_threads_board_time', 'board', 'time'),
        db.Index('idx_threads_resto', 'board', 'resto'),
    )

    no = db.Column(db.BigInteger, primary_key=True, autoincrement=False)
    board = db.Column(db.String, primary_key=True)
    resto = db.Column(db.BigInteger, nullable=False, default=0)
    time = db.Column(db.BigInteger, nullable=False, default=0)
    is_op = db.Column(db.Boolean, nullable=False, default=False)
    data = db.Column(db.Text, nullable=False)
    blocked = db.Column(db.Boolean, nullable=False, default=False, server_default=sqlalchemy.text("0"))
    last_fetched = db.Column(db.Float, nullable=False, default=0, server_default=sqlalchemy.text("0"))


class Board(db.Model):
    __tablename__ = 'boards'

    board = db.Column(db.String, primary_key=True)
    title = db.Column(db.String)
    ws_board = db.Column(db.Integer)
    data = db.Column(db.Text)


class History(db.Model):
    __tablename__ = 'history'
    __table_args__ = (
        db.Index('idx_history_timestamp', 'timestamp'),
        db.Index('idx_history_resto', 'board', 'resto'),
    )

    no = db.Column(db.BigInteger, primary_key=True, autoincrement=False)
    board = db.Column(db.String, primary_key=True)
    resto = db.Column(db.BigInteger, nullable=False, default=0)
    timestamp = db.Column(db.Float, nullable=False)


class Star(db.Model):
    __tablename__ = 'stars'
    __table_args__ = (
        db.Index('idx_stars_timestamp', 'timestamp'),
    )

    no = db.Column(db.BigInteger, primary_key=True, autoincrement=False)
    board = db.Column(db.String, primary_key=True)
    timestamp = db.Column(db.Float, nullable=False)


class Following(db.Model):
    __tablename__ = 'following'
    __table_args__ = (
        db.Index('idx_following_timestamp', 'timestamp'),
    )

    no = db.Column(db.BigInteger, primary_key=True, autoincrement=False)
    board = db.Column(db.String, primary_key=True)
    timestamp = db.Column(db.Float, nullable=False)


class LegalConsent(db.Model):
    __tablename__ = 'legal_consent'

    consent_type = db.Column(db.String, primary_key=True)
    version = db.Column(db.String, primary_key=True)
    timestamp = db.Column(db.Float)
    accepted = db.Column(db.Boolean, nullable=False, default=False)


class BlockedKeyword(db.Model):
    __tablename__ = 'blocked_keywords'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    keyword = db.Column(db.String, nullable=False, unique=True, index=True)
    created_at = db.Column(db.Float, nullable=False)
