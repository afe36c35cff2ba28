"""
Keyword moderation. Posts whose subject, comment or filename contain a
blocked keyword (case-insensitive substring) are dropped before they are
stored for the feed and again whenever the feed reads them back.
"""
import logging
import uuid

from sqlalchemy.exc import SQLAlchemyError

from peekfeed import store
from peekfeed.cache import cache
from peekfeed.database import db
from peekfeed.models import BlockedKeyword
from peekfeed.utils import now

log = logging.getLogger(__name__)

KEYWORDS_CACHE_KEY = "blocked_keywords"
KEYWORDS_INITIALIZED = "blocked_keywords_initialized"
# Replaced on every change so each process drops its cached list on next read.
KEYWORDS_VERSION = "blocked_keywords_version"

DEFAULT_BLOCKED_KEYWORDS = (
    # Violence & fighting
    "violence", "fight", "beat", "beating", "assault", "attack", "brawl", "war",
    # Regions
    "india", "africa", "brazil", "mexico",
    # Accidents & disasters
    "disaster", "train", "accident", "crash", "explosion",
    # Death & killing
    "death", "dead", "die", "died", "dying", "kill", "killed", "killing",
    "murder", "suicide", "electrocution",
    # Gore & blood
    "gore", "blood", "bloody", "bleeding", "graphic", "nsfl", "brutal",
    # Weapons
    "shooting", "shot", "gun", "stabbing", "stab", "knife", "beheading",
    "decapitation",
    # Extreme violence
    "execution", "torture", "mutilation", "dismember", "severed", "amputation",
    # Bodies & remains
    "corpse", "body", "dead body", "remains",
    # Criminal
    "cartel", "gang", "mafia",
    # Injuries
    "injury", "wound", "trauma", "burn", "burned",
    # Filth
    "filth", "vomit", "puke", "puking", "vomiting", "feces", "shit", "poop",
    "scat", "defecate", "urine", "piss", "pee", "diarrhea", "sewage", "toilet",
    "gross", "disgusting", "rotten", "decay", "maggot", "worm", "parasite",
    # Other
    "hanging", "lynching", "drowning", "suffocation", "rape", "abuse", "victim",
)


def _normalize(keyword):
    return (keyword or "").strip().lower()


def _insert_ignore(keyword, created_at):
    if BlockedKeyword.query.filter_by(keyword=keyword).first() is None:
        db.session.add(BlockedKeyword(keyword=keyword, created_at=created_at))


def _cache_key(version):
    return "{}:{}".format(KEYWORDS_CACHE_KEY, version or "initial")


def _invalidate():
    version = uuid.uuid4().hex
    store.set_config(KEYWORDS_VERSION, version)
    log.debug("Blocked keywords now at version {}.".format(version))


def init_default_blocked_keywords(force=False):
    """Install the default keyword set once; `force` reinstalls it."""
    if not force and store.get_config(KEYWORDS_INITIALIZED) == "true":
        log.debug("Blocked keywords already initialized, skipping.")
        return

    created_at = now()
    for keyword in DEFAULT_BLOCKED_KEYWORDS:
        try:
            _insert_ignore(keyword.lower(), created_at)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            log.exception("Error adding default keyword {!r}.".format(keyword))

    _invalidate()
    store.set_config(KEYWORDS_INITIALIZED, "true")
    log.info("Initialized default blocked keywords.")


def add_blocked_keyword(keyword):
    normalized = _normalize(keyword)
    if not normalized:
        raise ValueError("Keyword cannot be empty")

    _insert_ignore(normalized, now())
    db.session.commit()
    _invalidate()
    return normalized


def remove_blocked_keyword(keyword):
    BlockedKeyword.query.filter_by(keyword=_normalize(keyword)).delete()
    db.session.commit()
    _invalidate()


def clear_all_blocked_keywords():
    BlockedKeyword.query.delete()
    db.session.commit()
    _invalidate()


def reset_to_default_blocked_keywords():
    clear_all_blocked_keywords()
    init_default_blocked_keywords(force=True)


def get_blocked_keywords():
    key = _cache_key(store.get_config(KEYWORDS_VERSION))
    keywords = cache.get(key)
    if keywords is not None:
        return keywords

    rows = BlockedKeyword.query.order_by(BlockedKeyword.created_at.asc(), BlockedKeyword.id.asc()).all()
    keywords = [row.keyword for row in rows]
    cache.set(key, keywords)
    return keywords


def contains_blocked_keyword(text):
    if not text:
        return False

    lowered = text.lower()
    return any(keyword in lowered for keyword in get_blocked_keywords())


def filter_posts(posts):
    keywords = get_blocked_keywords()
    if not keywords:
        return list(posts)

    kept = []
    for post in posts:
        text = post.moderation_text
        if any(keyword in text for keyword in keywords):
            log.debug("Filtered /{}/{} by keyword.".format(post.board, post.no))
            continue
        kept.append(post)
    return kept
