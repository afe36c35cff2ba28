"""
Star, follow and block state per (board, no).

Following and blocking exclude each other: a blocked thread cannot be
followed, and blocking a thread drops its following row. Stars are
independent of both.
"""
import logging

from sqlalchemy import and_

from peekfeed import store
from peekfeed.database import db
from peekfeed.models import Following, Star, Thread
from peekfeed.utils import now

log = logging.getLogger(__name__)


class Ledger(object):

    def __init__(self, events):
        self.events = events

    # --- Stars ---

    def toggle_star(self, post):
        """Star or unstar any post; returns the new state."""
        row = db.session.get(Star, (post.no, post.board))
        if row is not None:
            db.session.delete(row)
            db.session.commit()
            return False

        store.stage_post(post)
        db.session.add(Star(no=post.no, board=post.board, timestamp=now()))
        db.session.commit()
        return True

    def is_starred(self, no, board):
        return db.session.get(Star, (no, board)) is not None

    def get_stars(self):
        rows = (
            db.session.query(Thread)
            .join(Star, and_(Star.no == Thread.no, Star.board == Thread.board))
            .order_by(Star.timestamp.desc())
            .all()
        )
        return store.hydrate_ops(store.rows_to_posts(rows))

    # --- Following ---

    def toggle_follow(self, post):
        """
        Follow or unfollow the thread whose OP is `post`. Returns the new
        state, or False without changing anything when the thread is
        blocked. Callers resolve replies to their OP first.
        """
        if self.is_blocked(post.no, post.board):
            log.info("Cannot follow blocked thread /{}/{}.".format(post.board, post.no))
            return False

        row = db.session.get(Following, (post.no, post.board))
        if row is not None:
            db.session.delete(row)
            following = False
        else:
            store.stage_post(post)
            db.session.add(Following(no=post.no, board=post.board, timestamp=now()))
            following = True
        db.session.commit()

        self.events.notify_follow_changed(post.no, post.board, following)
        return following

    def is_following(self, no, board):
        return db.session.get(Following, (no, board)) is not None

    def get_following(self):
        rows = (
            db.session.query(Thread)
            .join(Following, and_(Following.no == Thread.no, Following.board == Thread.board))
            .order_by(Following.timestamp.desc())
            .all()
        )
        return store.rows_to_posts(rows)

    # --- Blocking ---

    def toggle_block(self, post):
        """
        Block or unblock the thread `post` belongs to. Blocking also
        unfollows it. Returns the new blocked state.
        """
        thread_no = post.thread_no
        row = db.session.get(Thread, (thread_no, post.board))
        if row is None:
            op = post if post.is_op else post.op_thread
            if op is not None and store.stage_post(op):
                db.session.flush()
                row = db.session.get(Thread, (thread_no, post.board))
        if row is None:
            log.warning("Cannot block /{}/{}: thread is not stored.".format(post.board, thread_no))
            return False

        blocked = not row.blocked
        row.blocked = blocked
        unfollowed = False
        if blocked:
            unfollowed = Following.query.filter_by(no=thread_no, board=post.board).delete() > 0
        db.session.commit()

        if unfollowed:
            self.events.notify_follow_changed(thread_no, post.board, False)
        log.info("Thread /{}/{} {}.".format(post.board, thread_no, "blocked" if blocked else "unblocked"))
        return blocked

    def is_blocked(self, no, board):
        row = db.session.get(Thread, (no, board))
        return bool(row is not None and row.blocked)

    def get_blocked_items(self):
        rows = Thread.query.filter(Thread.blocked.is_(True)).order_by(Thread.time.desc()).all()
        return store.rows_to_posts(rows)
