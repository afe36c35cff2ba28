"""
Keyed object store: every read and write of the local database goes through
here. Rows are decoded into schemas.Post / schemas.BoardInfo at this
boundary and nowhere else.
"""
import logging
from dataclasses import dataclass

from pydantic import ValidationError
from sqlalchemy import and_, case, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import aliased

from peekfeed.database import db
from peekfeed.errors import MalformedRowError
from peekfeed.models import (
    Board,
    Config,
    Following,
    History,
    LegalConsent,
    Request,
    Star,
    Thread,
)
from peekfeed.schemas import BoardInfo, Post
from peekfeed.utils import now, upsert

log = logging.getLogger(__name__)

TERMS_OF_SERVICE = "terms_of_service"


@dataclass
class CachedRequest:
    url: str
    data: str
    timestamp: float


def owner_no(table):
    """SQL expression for the owning OP's `no` of a threads row."""
    return case((table.resto == 0, table.no), else_=table.resto)


def row_to_post(row):
    return Post.from_data(row.data, last_fetched=row.last_fetched or 0, blocked=bool(row.blocked))


def rows_to_posts(rows):
    posts = []
    for row in rows:
        try:
            posts.append(row_to_post(row))
        except ValidationError:
            log.warning("Unreadable post /{}/{} in store, skipping.".format(row.board, row.no))
    return posts


# --- Config ---

def get_config(key):
    # Column query, so a value written by another process is never read stale.
    return db.session.query(Config.value).filter(Config.key == key).scalar()


def set_config(key, value):
    upsert(Config, dict(key=key), value=value)
    db.session.commit()


# --- Requests cache ---

def get_cached_request(url):
    row = db.session.get(Request, url)
    if row is None:
        return None
    return CachedRequest(url=row.url, data=row.data, timestamp=row.timestamp or 0)


def save_cached_request(url, data, timestamp=None):
    upsert(Request, dict(url=url), data=data, timestamp=now() if timestamp is None else timestamp)
    db.session.commit()


def clear_cache():
    Request.query.delete()
    db.session.commit()


# --- Boards ---

def save_boards(boards):
    try:
        for info in boards:
            upsert(Board, dict(board=info.board),
                   title=info.title, ws_board=info.ws_board, data=info.to_data())
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        log.exception("Error saving boards.")


def get_boards(safe_only=False):
    query = Board.query.order_by(Board.board)
    if safe_only:
        query = query.filter(Board.ws_board == 1)
    return [BoardInfo.from_data(row.data) for row in query.all()]


def get_board_info(board):
    row = db.session.get(Board, board)
    return BoardInfo.from_data(row.data) if row else None


# --- Posts ---

def parse_posts(raw_posts, board):
    """Decode API post dicts for `board`, dropping malformed ones."""
    posts = []
    for raw in raw_posts or ():
        try:
            posts.append(Post.from_remote(raw, board))
        except MalformedRowError as e:
            log.warning("Skipping malformed post on /{}/: {}".format(board, e))
    return posts


def stage_post(post):
    """
    Add or update the row for `post` in the current session without
    committing. Posts without media or without a key are not stored;
    returns whether a row was staged. `blocked` and `last_fetched` are
    never touched.
    """
    if not post.has_media:
        return False
    if post.no is None or not post.board:
        log.warning("Skipping post with missing key: {!r}".format(post))
        return False

    upsert(Thread, dict(no=post.no, board=post.board),
           resto=post.resto, time=post.time, is_op=post.is_op, data=post.to_data())
    return True


def save_posts(posts):
    """
    Persist every post that carries media, one commit per row so a failing
    row is logged and skipped without losing the rest. Returns the number
    of rows written.
    """
    saved = 0
    for post in posts:
        try:
            if stage_post(post):
                db.session.commit()
                saved += 1
        except Exception:
            # The driver raises plain OverflowError and friends for bad values.
            db.session.rollback()
            log.exception("Error saving post /{}/{}.".format(post.board, post.no))
    return saved


def get_post(no, board):
    row = db.session.get(Thread, (no, board))
    return row_to_post(row) if row else None


def get_thread_op(thread_no, board):
    return get_post(thread_no, board)


def update_thread_last_fetched(thread_no, board, timestamp=None):
    Thread.query.filter_by(no=thread_no, board=board, resto=0).update(
        {Thread.last_fetched: now() if timestamp is None else timestamp})
    db.session.commit()


def _thread_query(thread_no, board):
    return Thread.query.filter(
        Thread.board == board,
        or_(Thread.no == thread_no, Thread.resto == thread_no),
    )


def get_thread_items(thread_no, board):
    return rows_to_posts(_thread_query(thread_no, board).order_by(Thread.time.asc()).all())


def get_thread_items_with_history(thread_no, board):
    """Posts of a thread oldest first, plus the set of their viewed `no`s."""
    rows = (
        db.session.query(Thread, History.no)
        .outerjoin(History, and_(History.no == Thread.no, History.board == Thread.board))
        .filter(Thread.board == board, or_(Thread.no == thread_no, Thread.resto == thread_no))
        .order_by(Thread.time.asc())
        .all()
    )
    viewed = {row.no for row, history_no in rows if history_no is not None}
    return rows_to_posts(row for row, _ in rows), viewed


def is_thread_fully_loaded(thread_no, board):
    # OP plus at least one reply counts as loaded.
    return _thread_query(thread_no, board).count() > 1


def hydrate_ops(posts):
    """Attach the stored OP to every reply that lacks one. One query per board."""
    wanted = {}
    for post in posts:
        if post.resto != 0 and post.op_thread is None:
            wanted.setdefault(post.board, set()).add(post.resto)

    for board, nos in wanted.items():
        rows = Thread.query.filter(Thread.board == board, Thread.no.in_(nos)).all()
        ops = {op.no: op for op in rows_to_posts(rows)}
        for post in posts:
            if post.board == board and post.resto != 0 and post.op_thread is None:
                post.op_thread = ops.get(post.resto)
    return posts


def _unseen_query(exclude_ids):
    """
    Posts not in history whose owning OP is stored and not blocked.
    Returns the query and the owning-OP expression.
    """
    owner = owner_no(Thread)
    op = aliased(Thread)
    query = (
        db.session.query(Thread)
        .join(op, and_(op.board == Thread.board, op.no == owner, op.blocked.is_not(True)))
        .outerjoin(History, and_(History.no == Thread.no, History.board == Thread.board))
        .filter(History.no.is_(None))
    )
    if exclude_ids:
        query = query.filter(Thread.no.notin_(list(exclude_ids)))
    return query, owner


def list_followed_candidates(board, limit, exclude_ids=()):
    """
    Unseen posts on `board` from followed, unblocked threads, newest first.
    Never contains a post listed in `exclude_ids` or in history.
    """
    query, owner = _unseen_query(exclude_ids)
    rows = (
        query.join(Following, and_(Following.board == Thread.board, Following.no == owner))
        .filter(Thread.board == board)
        .order_by(Thread.time.desc())
        .limit(limit)
        .all()
    )
    return rows_to_posts(rows)


def list_other_candidates(board, limit, exclude_ids=()):
    """Same contract as list_followed_candidates for threads not followed."""
    query, owner = _unseen_query(exclude_ids)
    rows = (
        query.outerjoin(Following, and_(Following.board == Thread.board, Following.no == owner))
        .filter(Thread.board == board, Following.no.is_(None))
        .order_by(Thread.time.desc())
        .limit(limit)
        .all()
    )
    return rows_to_posts(rows)


def get_followed_unread(safe_only=False, limit=20, exclude_ids=()):
    """Unseen posts from every followed, unblocked thread across boards."""
    query, owner = _unseen_query(exclude_ids)
    query = query.join(Following, and_(Following.board == Thread.board, Following.no == owner))
    if safe_only:
        query = (
            query.outerjoin(Board, Board.board == Thread.board)
            .filter(or_(Board.ws_board.is_(None), Board.ws_board == 1))
        )
    rows = query.order_by(Thread.time.desc()).limit(limit).all()
    return hydrate_ops(rows_to_posts(rows))


def get_followed_threads_needing_update(max_age, timestamp=None):
    """Followed OPs whose last refresh is older than `max_age` seconds."""
    cutoff = (now() if timestamp is None else timestamp) - max_age
    rows = (
        db.session.query(Thread)
        .join(Following, and_(Following.no == Thread.no, Following.board == Thread.board))
        .filter(func.coalesce(Thread.last_fetched, 0) < cutoff)
        .order_by(Following.timestamp.desc())
        .all()
    )
    return rows_to_posts(rows)


# --- History ---

def add_to_history(post, timestamp=None):
    save_posts([post])
    upsert(History, dict(no=post.no, board=post.board),
           resto=post.resto or 0, timestamp=now() if timestamp is None else timestamp)
    db.session.commit()


def get_viewed_posts(board, thread_no):
    rows = (
        db.session.query(History.no)
        .filter(History.board == board, or_(History.no == thread_no, History.resto == thread_no))
        .all()
    )
    return {row.no for row in rows}


def get_history(limit=50, offset=0, op_only=False, board=None):
    query = (
        db.session.query(Thread)
        .join(History, and_(History.no == Thread.no, History.board == Thread.board))
    )
    if op_only:
        query = query.filter(Thread.resto == 0)
    if board:
        query = query.filter(Thread.board == board)
    rows = query.order_by(History.timestamp.desc()).limit(limit).offset(offset).all()
    return hydrate_ops(rows_to_posts(rows))


def get_history_boards(limit=3):
    """Boards with the most viewed OPs, busiest first."""
    rows = (
        db.session.query(Thread.board, func.count().label("count"))
        .join(History, and_(History.no == Thread.no, History.board == Thread.board))
        .filter(Thread.resto == 0)
        .group_by(Thread.board)
        .order_by(func.count().desc())
        .limit(limit)
        .all()
    )
    return [row.board for row in rows]


def get_history_nos(board, nos):
    nos = list(nos)
    if not nos:
        return set()
    rows = db.session.query(History.no).filter(History.board == board, History.no.in_(nos)).all()
    return {row.no for row in rows}


def clear_history():
    History.query.delete()
    db.session.commit()


# --- Legal consent ---

def has_accepted_terms():
    row = (
        LegalConsent.query.filter_by(consent_type=TERMS_OF_SERVICE)
        .order_by(LegalConsent.timestamp.desc())
        .first()
    )
    return bool(row and row.accepted)


def accept_terms(version="1.0.0"):
    upsert(LegalConsent, dict(consent_type=TERMS_OF_SERVICE, version=version),
           timestamp=now(), accepted=True)
    db.session.commit()


# --- Reset ---

def reset_all_data():
    """Wipe everything except blocked keywords, then re-seed the defaults."""
    from peekfeed.moderation import init_default_blocked_keywords

    for model in (Config, Request, History, Star, Following, Thread, Board, LegalConsent):
        model.query.delete()
    db.session.commit()
    log.info("All local data reset.")
    init_default_blocked_keywords()
