import math
from collections import Counter

import pytest

from conftest import API, make_post
from peekfeed import moderation, store
from peekfeed.feed import FOLLOW_BOARD, EmptyReason, FeedEngine, ThreadLoader, interleave


def catalog(*threads):
    return [{"page": 1, "threads": [dict(t) for t in threads]}]


def raw(no, resto=0, media=True, **fields):
    data = dict(no=no, resto=resto, time=no, com="post {}".format(no))
    data.update(fields)
    if media:
        data.update(tim=1700000000000 + no, ext=".jpg")
    return data


def no_adjacent_threads(posts):
    return all(a.thread_no != b.thread_no for a, b in zip(posts, posts[1:]))


# --- interleave ---

def test_interleave_followed_share():
    followed = [make_post(n) for n in range(1, 11)]
    other = [make_post(n) for n in range(101, 111)]

    result = interleave(followed, other, 10)

    assert len(result) == 10
    assert len([p for p in result if p.no <= 10]) == 4


def test_interleave_fills_from_followed_when_other_runs_out():
    followed = [make_post(n) for n in range(1, 11)]
    other = [make_post(101)]

    result = interleave(followed, other, 8)
    assert len(result) == 8
    assert 101 in [p.no for p in result]


def test_interleave_avoids_same_thread_back_to_back():
    followed = [make_post(n, resto=1) for n in range(2, 7)]
    other = [make_post(n) for n in range(101, 111)]

    result = interleave(followed, other, 10)
    assert len(result) == 10
    assert no_adjacent_threads(result)


def test_interleave_caps_each_thread():
    followed = [make_post(op * 100 + n, resto=op) for op in (1, 2, 3) for n in range(1, 5)]
    other = [make_post(n) for n in range(1001, 1011)]

    result = interleave(followed, other, 10)
    assert len(result) == 10
    assert no_adjacent_threads(result)
    per_thread = Counter(p.thread_no for p in result)
    assert max(per_thread.values()) <= math.ceil(len(result) / 5)


def test_interleave_single_thread_pool_does_not_stall():
    followed = [make_post(n, resto=1) for n in range(2, 12)]

    result = interleave(followed, [], 10)
    assert 0 < len(result) <= 10
    assert len({p.no for p in result}) == len(result)


def test_interleave_skips_duplicates():
    shared = make_post(5)
    result = interleave([shared, make_post(6)], [shared, make_post(7)], 10)
    assert sorted(p.no for p in result) == [5, 6, 7]


def test_interleave_empty():
    assert interleave([], [], 10) == []
    assert interleave([make_post(1)], [], 0) == []


# --- recommended items ---

@pytest.fixture()
def engine(core, no_keywords):
    return core.feed


def seed_board(core, followed_nos, other_nos, board="g"):
    for no in followed_nos:
        core.ledger.toggle_follow(make_post(no, board=board))
    store.save_posts([make_post(no, board=board) for no in other_nos])


def test_recommended_mix(engine, core):
    followed = set(range(1, 11))
    seed_board(core, followed, range(101, 111))

    items = engine.get_recommended_items("g", 10)
    assert len(items) == 10
    assert len([p for p in items if p.no in followed]) == 4


def test_recommended_excludes_history_and_shown(engine, core):
    seed_board(core, [], range(1, 6))
    store.add_to_history(make_post(1))

    items = engine.get_recommended_items("g", 10, exclude_ids=[2, 3])
    assert sorted(p.no for p in items) == [4, 5]


def test_recommended_excludes_blocked_threads(engine, core):
    store.save_posts([make_post(1), make_post(2, resto=1), make_post(3)])
    core.ledger.toggle_block(make_post(1))

    items = engine.get_recommended_items("g", 10)
    assert [p.no for p in items] == [3]


def test_recommended_hydrates_replies(engine, core):
    store.save_posts([make_post(1), make_post(2, resto=1)])
    store.add_to_history(make_post(1))

    items = engine.get_recommended_items("g", 10)
    assert [p.no for p in items] == [2]
    assert items[0].op_thread.no == 1


def test_recommended_filters_keywords(engine, core):
    store.save_posts([make_post(1, com="spoiler alert"), make_post(2)])
    moderation.add_blocked_keyword("spoiler")

    assert [p.no for p in engine.get_recommended_items("g", 10)] == [2]


def test_recommended_only_from_board(engine, core):
    store.save_posts([make_post(1, board="g"), make_post(2, board="v")])
    assert [p.no for p in engine.get_recommended_items("v", 10)] == [2]


# --- catalog ---

def test_catalog_returns_new_media_ops(engine, session):
    session.add_json(API + "/g/catalog.json", catalog(
        raw(1), raw(2, media=False), raw(3, sub="Spoiler thread"), raw(4)))
    moderation.add_blocked_keyword("spoiler")

    page = engine.fetch_catalog("g")
    assert sorted(page.ids) == [1, 4]
    assert page.has_more
    assert store.get_post(1, "g") is not None
    assert store.get_post(3, "g") is None


def test_catalog_drops_viewed_ops(engine, session):
    session.add_json(API + "/g/catalog.json", catalog(raw(1), raw(2)))
    store.add_to_history(make_post(1))

    assert engine.fetch_catalog("g").ids == [2]


def test_catalog_falls_back_to_store(engine, session):
    session.add_json(API + "/g/catalog.json", catalog(raw(1)))
    store.add_to_history(make_post(1))
    store.save_posts([make_post(2, resto=1)])

    page = engine.fetch_catalog("g")
    assert page.ids == [2]


def test_catalog_unreachable_and_nothing_stored(engine, session):
    page = engine.fetch_catalog("g")
    assert page.items == []
    assert not page.has_more


def test_catalog_is_cached(engine, session):
    session.add_json(API + "/g/catalog.json", catalog(raw(1)))
    engine.fetch_catalog("g")
    engine.fetch_catalog("g")
    assert session.count(API + "/g/catalog.json") == 1


# --- follow feed ---

def thread_json(op_no, reply_nos):
    return {"posts": [raw(op_no)] + [raw(no, resto=op_no) for no in reply_nos]}


def test_follow_feed_without_follows(engine):
    page = engine.load_feed(FOLLOW_BOARD)
    assert page.items == []
    assert page.empty_reason is EmptyReason.NO_FOLLOWS
    assert not page.has_more


def test_follow_feed_refreshes_when_empty(engine, core, session):
    core.ledger.toggle_follow(make_post(10))
    store.add_to_history(make_post(10))
    session.add_json(API + "/g/thread/10.json", thread_json(10, [11, 12]))

    page = engine.load_feed(FOLLOW_BOARD)
    assert sorted(page.ids) == [11, 12]
    assert page.empty_reason is None
    assert session.count(API + "/g/thread/10.json") == 1


def test_follow_feed_nothing_unread(engine, core, session):
    core.ledger.toggle_follow(make_post(10))
    store.add_to_history(make_post(10))
    session.add_json(API + "/g/thread/10.json", thread_json(10, []))

    page = engine.load_feed(FOLLOW_BOARD)
    assert page.items == []
    assert page.empty_reason is EmptyReason.NOTHING_UNREAD


def test_follow_feed_unread_across_boards(engine, core):
    core.ledger.toggle_follow(make_post(10, board="g"))
    core.ledger.toggle_follow(make_post(20, board="v"))
    store.save_posts([make_post(11, resto=10, board="g"), make_post(21, resto=20, board="v"),
                      make_post(31, resto=30, board="v")])
    store.update_thread_last_fetched(10, "g")
    store.update_thread_last_fetched(20, "v")

    page = engine.load_feed(FOLLOW_BOARD)
    assert sorted(page.ids) == [10, 11, 20, 21]
    replies = [p for p in page.items if not p.is_op]
    assert all(p.op_thread is not None for p in replies)


def test_follow_feed_safe_only(engine, core):
    from peekfeed.schemas import BoardInfo

    store.save_boards([BoardInfo(board="g", ws_board=1), BoardInfo(board="b", ws_board=0)])
    core.ledger.toggle_follow(make_post(10, board="g"))
    core.ledger.toggle_follow(make_post(20, board="b"))
    store.update_thread_last_fetched(10, "g")
    store.update_thread_last_fetched(20, "b")

    assert engine.load_feed(FOLLOW_BOARD, safe_only=True).ids == [10]


def test_load_more_follow_excludes_shown(engine, core):
    core.ledger.toggle_follow(make_post(10))
    store.save_posts([make_post(11, resto=10)])
    store.update_thread_last_fetched(10, "g")

    page = engine.load_more(FOLLOW_BOARD, exclude_ids=[10, 11])
    assert page.items == []
    assert not page.has_more


def test_load_more_board_uses_store(engine, core):
    store.save_posts([make_post(1), make_post(2)])
    page = engine.load_more("g", exclude_ids=[1])
    assert page.ids == [2]


# --- threads ---

def test_refresh_followed_threads_continues_after_failure(engine, core, session):
    core.ledger.toggle_follow(make_post(10))
    core.ledger.toggle_follow(make_post(20))
    session.add_json(API + "/g/thread/20.json", thread_json(20, [21]))

    assert engine.refresh_followed_threads() == 1
    assert store.get_post(21, "g") is not None
    assert store.get_post(20, "g").last_fetched > 0
    assert store.get_post(10, "g").last_fetched == 0

    # Thread 20 is fresh now and thread 10 still fails.
    assert engine.refresh_followed_threads() == 0


def test_load_thread_falls_back_to_store(engine, session):
    store.save_posts([make_post(10), make_post(11, resto=10)])
    store.add_to_history(make_post(11, resto=10))

    posts, viewed = engine.load_thread("g", 10)
    assert [p.no for p in posts] == [10, 11]
    assert viewed == {11}


def test_load_thread_fetches_and_filters(engine, session):
    session.add_json(API + "/g/thread/10.json", {"posts": [
        raw(10), raw(11, resto=10, com="a spoiler"), raw(12, resto=10), raw(13, resto=10, media=False)]})
    moderation.add_blocked_keyword("spoiler")

    posts, viewed = engine.load_thread("g", 10)
    assert [p.no for p in posts] == [10, 12]
    assert viewed == set()


def test_viewing_op_loads_its_thread_once(engine, session):
    session.add_json(API + "/g/thread/10.json", thread_json(10, [11]))
    op = make_post(10)

    engine.on_item_viewed(op)
    assert store.get_history_nos("g", [10]) == {10}
    assert store.is_thread_fully_loaded(10, "g")

    assert not engine.loader.enqueue("g", 10)
    assert session.count(API + "/g/thread/10.json") == 1


def test_viewing_reply_does_not_load_thread(engine, session):
    store.save_posts([make_post(10)])
    engine.on_item_viewed(make_post(11, resto=10))
    assert store.get_history_nos("g", [11]) == {11}
    assert session.calls == []


def test_boards_skip_malformed_entries(engine, session):
    session.add_json(API + "/boards.json", {"boards": [
        {"board": "g", "title": "Technology", "ws_board": 1},
        {"board": "b", "title": "Random", "ws_board": 0},
        {"title": "missing key"},
    ]})
    assert [b.board for b in engine.get_boards()] == ["b", "g"]
    assert [b.board for b in engine.get_boards(safe_only=True)] == ["g"]


def test_boards_unreachable_uses_stored(engine, session):
    from peekfeed.schemas import BoardInfo

    store.save_boards([BoardInfo(board="g", title="Technology")])
    assert [b.board for b in engine.get_boards()] == ["g"]


def test_thread_loader_runs_one_drain_and_dedupes(app):
    calls = []
    drains = []

    class Engine:
        def refresh_thread(self, board, no):
            calls.append((board, no))

    loader = ThreadLoader(Engine(), lambda fn, *args: drains.append(fn))
    assert loader.enqueue("g", 10)
    assert not loader.enqueue("g", 10)
    assert loader.enqueue("g", 11)
    assert len(drains) == 1

    drains[0]()
    assert calls == [("g", 10), ("g", 11)]

    # Nothing was stored, so the thread may be queued again.
    assert loader.enqueue("g", 10)
    assert len(drains) == 2


class HeldSpawn:
    """Collects background work instead of running it."""

    def __init__(self):
        self.tasks = []

    def __call__(self, fn, *args):
        self.tasks.append((fn, args))

    def run_all(self):
        tasks, self.tasks = self.tasks, []
        for fn, args in tasks:
            fn(*args)


@pytest.fixture()
def held():
    return HeldSpawn()


@pytest.fixture()
def held_engine(core, held, no_keywords):
    return FeedEngine(core.client, core.throttle, core.ledger, spawn=held, page_size=20)


def test_short_follow_page_starts_background_refresh(held_engine, held, core, session):
    core.ledger.toggle_follow(make_post(10))
    session.add_json(API + "/g/thread/10.json", thread_json(10, [11]))

    page = held_engine.load_follow_feed()
    assert page.ids == [10]
    assert len(held.tasks) == 1
    assert session.calls == []

    held.run_all()
    assert session.count(API + "/g/thread/10.json") == 1
    assert store.get_post(11, "g") is not None


def test_full_follow_page_skips_background_refresh(core, held, session, no_keywords):
    engine = FeedEngine(core.client, core.throttle, core.ledger, spawn=held, page_size=2)
    core.ledger.toggle_follow(make_post(10))
    store.save_posts([make_post(11, resto=10), make_post(12, resto=10)])

    page = engine.load_follow_feed()
    assert len(page.items) == 2
    assert held.tasks == []


def test_background_refresh_triggers_collapse(held_engine, held, core):
    core.ledger.toggle_follow(make_post(10))

    held_engine.load_follow_feed()
    held_engine.load_more_follow(exclude_ids=[10])
    assert held_engine.refresh_in_background() is False
    assert len(held.tasks) == 1

    held.run_all()
    assert held_engine.refresh_in_background() is True
    assert len(held.tasks) == 1
