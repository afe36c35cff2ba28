"""
Feed assembly.

A board feed starts from the remote catalog (OPs not seen before) and
continues from the local store, mixing posts from followed threads with
everything else. The follow feed (board "__FOLLOW__") only shows unread
posts from followed threads and refreshes those threads when it runs dry.
"""
import logging
import random
import threading
from collections import Counter, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from pydantic import ValidationError

from peekfeed import moderation, store
from peekfeed.errors import TransientNetworkError
from peekfeed.schemas import BoardInfo, Post

log = logging.getLogger(__name__)

FOLLOW_BOARD = "__FOLLOW__"

FOLLOWED_SHARE = 0.4
MIN_FOLLOWED_CANDIDATES = 20
# Once this many items are in a page, no thread may hold 1/CAP_DIVISOR of it.
CAP_MIN_ITEMS = 5
CAP_DIVISOR = 5


class EmptyReason(Enum):
    NO_FOLLOWS = "no_follows"
    NOTHING_UNREAD = "nothing_unread"


@dataclass
class FeedPage:
    items: List[Post] = field(default_factory=list)
    empty_reason: Optional[EmptyReason] = None
    has_more: bool = True

    @property
    def ids(self):
        return [post.no for post in self.items]


def interleave(followed, other, limit):
    """
    Merge two candidate lists into at most `limit` posts.

    Followed posts are preferred until they make up FOLLOWED_SHARE of
    `limit` (or the other list runs out). A post is admitted only if its
    `no` is new, its thread differs from the previous item's thread and,
    from CAP_MIN_ITEMS items on, its thread holds fewer than
    len(result) / CAP_DIVISOR items. When a step admits nothing the next
    remaining post is taken regardless of those two constraints.
    """
    target_followed = int(limit * FOLLOWED_SHARE)
    result = []
    added = set()
    per_thread = Counter()
    state = {"last_thread": None, "followed": 0}

    def can_add(post):
        if post.no in added:
            return False
        thread_no = post.thread_no
        if thread_no == state["last_thread"]:
            return False
        if len(result) >= CAP_MIN_ITEMS and per_thread[thread_no] >= len(result) / CAP_DIVISOR:
            return False
        return True

    def admit(post, from_followed):
        result.append(post)
        added.add(post.no)
        per_thread[post.thread_no] += 1
        state["last_thread"] = post.thread_no
        if from_followed:
            state["followed"] += 1

    fi = oi = 0
    while len(result) < limit:
        taken = False

        if fi < len(followed) and (state["followed"] < target_followed or oi >= len(other)):
            post = followed[fi]
            fi += 1
            if can_add(post):
                admit(post, True)
                taken = True

        if not taken and oi < len(other):
            post = other[oi]
            oi += 1
            if can_add(post):
                admit(post, False)
                taken = True

        if taken:
            continue

        # Nothing fit this step: relax the constraints rather than stall.
        if fi < len(followed):
            post = followed[fi]
            fi += 1
            if post.no not in added:
                admit(post, True)
        elif oi < len(other):
            post = other[oi]
            oi += 1
            if post.no not in added:
                admit(post, False)
        else:
            break

    return result


def app_context_spawner(app):
    """Run background work on a daemon thread inside `app`'s context."""

    def spawn(fn, *args):
        def run():
            with app.app_context():
                try:
                    fn(*args)
                except Exception:
                    log.exception("Background task {} failed.".format(getattr(fn, "__name__", fn)))

        threading.Thread(target=run, daemon=True).start()

    return spawn


class ThreadLoader(object):
    """
    Fetches full threads for OPs whose replies are not stored yet, one
    thread at a time. A thread already queued or loading is not queued
    again.
    """

    def __init__(self, engine, spawn):
        self.engine = engine
        self._spawn = spawn
        self._lock = threading.Lock()
        self._pending = deque()
        self._queued = set()
        self._processing = False

    def enqueue(self, board, no):
        if store.is_thread_fully_loaded(no, board):
            return False

        key = (board, no)
        with self._lock:
            if key in self._queued:
                return False
            self._queued.add(key)
            self._pending.append(key)
            start = not self._processing
            self._processing = True

        log.debug("Queued thread /{}/{} for loading.".format(board, no))
        if start:
            self._spawn(self._drain)
        return True

    def _drain(self):
        while True:
            with self._lock:
                if not self._pending:
                    self._processing = False
                    return
                board, no = self._pending.popleft()

            try:
                self.engine.refresh_thread(board, no)
            except Exception as e:
                log.warning("Failed to load thread /{}/{}: {}".format(board, no, e))
            finally:
                with self._lock:
                    self._queued.discard((board, no))


class FeedEngine(object):

    def __init__(self, client, throttle, ledger, spawn=None, rng=None,
                 page_size=20, refresh_age=60 * 60):
        self.client = client
        self.throttle = throttle
        self.ledger = ledger
        self.rng = rng or random.Random()
        self.page_size = page_size
        self.refresh_age = refresh_age
        self._spawn = spawn or (lambda fn, *args: fn(*args))
        self._refresh_lock = threading.Lock()
        self._refreshing = False
        self.loader = ThreadLoader(self, self._spawn)

    # --- Boards ---

    def fetch_boards(self):
        data = self.client.boards()
        boards = []
        for raw in (data or {}).get("boards", []):
            try:
                boards.append(BoardInfo.model_validate(raw))
            except ValidationError as e:
                log.warning("Skipping malformed board entry: {}".format(e))
        store.save_boards(boards)
        return boards

    def get_boards(self, safe_only=False):
        try:
            self.fetch_boards()
        except TransientNetworkError as e:
            log.warning("Board list unavailable, using stored boards: {}".format(e))
        return store.get_boards(safe_only)

    # --- Board feed ---

    def fetch_catalog(self, board, limit=None):
        """
        First page of a board: catalog OPs with media that pass moderation
        and were never viewed. Falls through to the stored feed when none
        are left.
        """
        limit = limit or self.page_size
        try:
            pages = self.client.catalog(board)
        except TransientNetworkError as e:
            log.warning("Catalog for /{}/ unavailable: {}".format(board, e))
            pages = []

        raw_threads = []
        for page in pages or []:
            raw_threads.extend(page.get("threads", []))

        ops = [op for op in store.parse_posts(raw_threads, board) if op.has_media]
        for op in ops:
            op.resto = 0
        ops = moderation.filter_posts(ops)

        seen = store.get_history_nos(board, [op.no for op in ops])
        fresh = [op for op in ops if op.no not in seen]
        if not fresh:
            log.info("No new OPs on /{}/, continuing from the store.".format(board))
            items = self.get_recommended_items(board, limit, [])
            return FeedPage(items, has_more=bool(items))

        log.info("Found {} new OPs on /{}/.".format(len(fresh), board))
        store.save_posts(fresh)
        return FeedPage(fresh)

    def get_recommended_items(self, board, limit, exclude_ids=()):
        """
        Up to `limit` unseen posts from `board`, about FOLLOWED_SHARE of
        them from followed threads, in random order.
        """
        exclude_ids = list(exclude_ids or ())
        target_followed = int(limit * FOLLOWED_SHARE)
        followed = store.list_followed_candidates(
            board, max(target_followed * 2, MIN_FOLLOWED_CANDIDATES), exclude_ids)
        other = store.list_other_candidates(board, limit * 2, exclude_ids)
        log.debug("Candidates on /{}/: followed={}, other={}".format(board, len(followed), len(other)))

        self.rng.shuffle(followed)
        self.rng.shuffle(other)
        store.hydrate_ops(followed)
        store.hydrate_ops(other)

        result = interleave(followed, other, limit)
        self.rng.shuffle(result)
        result = moderation.filter_posts(result)
        log.info("Recommended {} items on /{}/.".format(len(result), board))
        return result

    # --- Follow feed ---

    def get_followed_unread(self, safe_only=False, limit=None, exclude_ids=()):
        limit = limit or self.page_size
        return moderation.filter_posts(store.get_followed_unread(safe_only, limit, exclude_ids))

    def load_follow_feed(self, safe_only=False, limit=None):
        limit = limit or self.page_size
        items = self.get_followed_unread(safe_only, limit)
        if items:
            if len(items) < limit:
                self.refresh_in_background()
            return FeedPage(items)

        if not self.ledger.get_following():
            return FeedPage(empty_reason=EmptyReason.NO_FOLLOWS, has_more=False)

        self.refresh_followed_threads()
        items = self.get_followed_unread(safe_only, limit)
        if items:
            return FeedPage(items)
        return FeedPage(empty_reason=EmptyReason.NOTHING_UNREAD, has_more=False)

    def load_more_follow(self, safe_only=False, limit=None, exclude_ids=()):
        limit = limit or self.page_size
        items = self.get_followed_unread(safe_only, limit, exclude_ids)
        if len(items) < limit:
            self.refresh_in_background()
        return FeedPage(items, has_more=bool(items))

    # --- Dispatch ---

    def load_feed(self, board, safe_only=False, limit=None):
        if board == FOLLOW_BOARD:
            return self.load_follow_feed(safe_only, limit)
        return self.fetch_catalog(board, limit)

    def load_more(self, board, exclude_ids=(), safe_only=False, limit=None):
        if board == FOLLOW_BOARD:
            return self.load_more_follow(safe_only, limit, exclude_ids)
        items = self.get_recommended_items(board, limit or self.page_size, exclude_ids)
        return FeedPage(items, has_more=bool(items))

    # --- Threads ---

    def refresh_thread(self, board, no):
        """Fetch, filter and store a full thread. Throttled."""
        return self.throttle.throttle(self._refresh_thread, board, no)

    def _refresh_thread(self, board, no):
        data = self.client.thread(board, no)
        posts = store.parse_posts((data or {}).get("posts"), board)
        posts = moderation.filter_posts(posts)
        store.save_posts(posts)
        store.update_thread_last_fetched(no, board)
        log.info("Refreshed thread /{}/{} ({} posts).".format(board, no, len(posts)))
        return posts

    def load_thread(self, board, no):
        """Posts of a thread oldest first and the set of viewed `no`s."""
        try:
            self.refresh_thread(board, no)
        except TransientNetworkError as e:
            log.warning("Thread /{}/{} unavailable, using stored posts: {}".format(board, no, e))

        posts, viewed = store.get_thread_items_with_history(no, board)
        return moderation.filter_posts(posts), viewed

    def refresh_followed_threads(self, max_age=None):
        """Refresh every followed thread older than `max_age` seconds."""
        try:
            ops = store.get_followed_threads_needing_update(
                self.refresh_age if max_age is None else max_age)
        except Exception:
            log.exception("Could not list followed threads to refresh.")
            return 0

        if ops:
            log.info("Updating {} followed threads.".format(len(ops)))

        refreshed = 0
        for op in ops:
            try:
                self.refresh_thread(op.board, op.no)
                refreshed += 1
            except Exception as e:
                log.warning("Failed to update thread /{}/{}: {}".format(op.board, op.no, e))
        return refreshed

    def refresh_in_background(self):
        with self._refresh_lock:
            if self._refreshing:
                return False
            self._refreshing = True

        def run():
            try:
                self.refresh_followed_threads()
            finally:
                with self._refresh_lock:
                    self._refreshing = False

        self._spawn(run)
        return True

    # --- Viewing ---

    def on_item_viewed(self, post):
        """Record `post` as seen and queue its thread if replies are missing."""
        if post.has_media:
            store.add_to_history(post)
        if post.is_op:
            self.loader.enqueue(post.board, post.no)
