from flask import Blueprint, abort, jsonify, request

from peekfeed import moderation, store
from peekfeed.core import get_core
from peekfeed.errors import MalformedRowError, TransientNetworkError
from peekfeed.filters import decode_html, media_url, thumbnail_url
from peekfeed.schemas import Post

blueprint = Blueprint('main', __name__)


def _flag(name):
    return request.args.get(name, "").lower() in ("1", "true", "yes")


def _int_arg(name, default=None):
    value = request.args.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError("{} must be an integer".format(name))


def _post_json(post):
    d = post.model_dump(exclude_none=True)
    d.update(
        thread_no=post.thread_no,
        is_op=post.is_op,
        blocked=post.blocked,
        media_url=media_url(post),
        thumbnail_url=thumbnail_url(post),
        text=decode_html(post.com),
    )
    if post.op_thread is not None:
        d["op_thread"] = _post_json(post.op_thread)
    return d


def _posts_json(posts):
    return [_post_json(post) for post in posts]


def _page_json(page):
    return jsonify(
        items=_posts_json(page.items),
        empty_reason=page.empty_reason.value if page.empty_reason else None,
        has_more=page.has_more,
    )


def _resolve_post(board, no):
    """The stored post, or one built from the request body when not stored."""
    post = store.get_post(no, board)
    if post is not None:
        return post

    body = request.get_json(silent=True)
    if not body or not isinstance(body, dict):
        abort(404)
    try:
        return Post.from_remote(dict(body, no=no), board)
    except MalformedRowError as e:
        raise ValueError(str(e))


@blueprint.errorhandler(TransientNetworkError)
def network_error(e):
    return jsonify(error=str(e), url=e.url), 502


@blueprint.errorhandler(ValueError)
def bad_request(e):
    return jsonify(error=str(e)), 400


# --- Boards and feeds ---

@blueprint.route("/boards", methods=("GET",))
def boards():
    infos = get_core().feed.get_boards(safe_only=_flag("safe"))
    return jsonify([info.model_dump() for info in infos])


@blueprint.route("/feed/<board>", methods=("GET",))
def feed(board):
    page = get_core().feed.load_feed(board, safe_only=_flag("safe"), limit=_int_arg("limit"))
    return _page_json(page)


@blueprint.route("/feed/<board>/more", methods=("POST",))
def feed_more(board):
    body = request.get_json(silent=True) or {}
    exclude = body.get("exclude", [])
    if not isinstance(exclude, list):
        raise ValueError("exclude must be a list of post numbers")
    limit = body.get("limit")
    page = get_core().feed.load_more(
        board,
        exclude_ids=[int(no) for no in exclude],
        safe_only=bool(body.get("safe", False)),
        limit=int(limit) if limit is not None else None,
    )
    return _page_json(page)


@blueprint.route("/thread/<board>/<int:no>", methods=("GET",))
def thread(board, no):
    posts, viewed = get_core().feed.load_thread(board, no)
    return jsonify(posts=_posts_json(posts), viewed=sorted(viewed))


@blueprint.route("/viewed/<board>/<int:thread_no>", methods=("GET",))
def viewed_posts(board, thread_no):
    return jsonify(sorted(store.get_viewed_posts(board, thread_no)))


# --- Per-post state ---

@blueprint.route("/posts/<board>/<int:no>", methods=("GET",))
def post_state(board, no):
    ledger = get_core().ledger
    post = store.get_post(no, board)
    if post is None:
        abort(404)
    return jsonify(
        post=_post_json(post),
        starred=ledger.is_starred(no, board),
        following=ledger.is_following(post.thread_no, board),
        blocked=ledger.is_blocked(post.thread_no, board),
    )


@blueprint.route("/posts/<board>/<int:no>/viewed", methods=("POST",))
def mark_viewed(board, no):
    get_core().feed.on_item_viewed(_resolve_post(board, no))
    return jsonify(ok=True)


@blueprint.route("/posts/<board>/<int:no>/star", methods=("POST",))
def toggle_star(board, no):
    return jsonify(starred=get_core().ledger.toggle_star(_resolve_post(board, no)))


@blueprint.route("/posts/<board>/<int:no>/follow", methods=("POST",))
def toggle_follow(board, no):
    post = _resolve_post(board, no)
    if not post.is_op:
        post = post.op_thread or store.get_thread_op(post.resto, board)
        if post is None:
            abort(404)
    return jsonify(following=get_core().ledger.toggle_follow(post))


@blueprint.route("/posts/<board>/<int:no>/block", methods=("POST",))
def toggle_block(board, no):
    post = _resolve_post(board, no)
    if not post.is_op and post.op_thread is None:
        post.op_thread = store.get_thread_op(post.resto, board)
    return jsonify(blocked=get_core().ledger.toggle_block(post))


@blueprint.route("/stars", methods=("GET",))
def stars():
    return jsonify(_posts_json(get_core().ledger.get_stars()))


@blueprint.route("/following", methods=("GET",))
def following():
    return jsonify(_posts_json(get_core().ledger.get_following()))


@blueprint.route("/following/stale", methods=("GET",))
def stale_following():
    max_age = _int_arg("max_age", get_core().feed.refresh_age)
    return jsonify(_posts_json(store.get_followed_threads_needing_update(max_age)))


@blueprint.route("/following/refresh", methods=("POST",))
def refresh_following():
    return jsonify(refreshed=get_core().feed.refresh_followed_threads())


@blueprint.route("/blocked", methods=("GET",))
def blocked():
    return jsonify(_posts_json(get_core().ledger.get_blocked_items()))


# --- History ---

@blueprint.route("/history", methods=("GET",))
def history():
    posts = store.get_history(
        limit=_int_arg("limit", 50),
        offset=_int_arg("offset", 0),
        op_only=_flag("op_only"),
        board=request.args.get("board") or None,
    )
    return jsonify(_posts_json(posts))


@blueprint.route("/history", methods=("DELETE",))
def clear_history():
    store.clear_history()
    return jsonify(ok=True)


@blueprint.route("/history/boards", methods=("GET",))
def history_boards():
    return jsonify(store.get_history_boards(limit=_int_arg("limit", 3)))


# --- Keywords ---

@blueprint.route("/keywords", methods=("GET",))
def keywords():
    return jsonify(moderation.get_blocked_keywords())


@blueprint.route("/keywords", methods=("POST",))
def add_keyword():
    body = request.get_json(silent=True) or {}
    keyword = moderation.add_blocked_keyword(body.get("keyword"))
    return jsonify(keyword=keyword), 201


@blueprint.route("/keywords/<keyword>", methods=("DELETE",))
def remove_keyword(keyword):
    moderation.remove_blocked_keyword(keyword)
    return jsonify(ok=True)


@blueprint.route("/keywords", methods=("DELETE",))
def clear_keywords():
    moderation.clear_all_blocked_keywords()
    return jsonify(ok=True)


@blueprint.route("/keywords/reset", methods=("POST",))
def reset_keywords():
    moderation.reset_to_default_blocked_keywords()
    return jsonify(moderation.get_blocked_keywords())


# --- Media ---

@blueprint.route("/media", methods=("GET",))
def media():
    url = request.args.get("url")
    if not url:
        raise ValueError("url is required")
    uri = get_core().media.get_media_uri(
        url,
        high_priority=request.args.get("priority") == "high",
        context=request.args.get("context"),
    )
    return jsonify(uri=uri)


@blueprint.route("/media/queue", methods=("DELETE",))
def clear_media_queue():
    context = request.args.get("context")
    return jsonify(cleared=get_core().media.clear_download_queue(context))


@blueprint.route("/media", methods=("DELETE",))
def clear_media():
    return jsonify(removed=get_core().media.clear_media_cache())


# --- Maintenance ---

@blueprint.route("/cache", methods=("DELETE",))
def clear_cache():
    store.clear_cache()
    return jsonify(ok=True)


@blueprint.route("/reset", methods=("POST",))
def reset():
    store.reset_all_data()
    return jsonify(ok=True)


@blueprint.route("/terms", methods=("GET",))
def terms():
    return jsonify(accepted=store.has_accepted_terms())


@blueprint.route("/terms", methods=("POST",))
def accept_terms():
    body = request.get_json(silent=True) or {}
    store.accept_terms(body.get("version", "1.0.0"))
    return jsonify(accepted=True)
