"""
Wires the long-lived components together once per app. Views and commands
reach them through get_core().
"""
import logging

import requests
from flask import current_app

from peekfeed.events import FollowEvents
from peekfeed.feed import FeedEngine, app_context_spawner
from peekfeed.ledger import Ledger
from peekfeed.proxy import ApiClient, MediaProxy
from peekfeed.throttle import RateLimiter

log = logging.getLogger(__name__)

EXTENSION_KEY = "peekfeed"


class Core(object):

    def __init__(self, app, session=None, spawn=None, rng=None):
        config = app.config
        spawn = spawn or app_context_spawner(app)
        session = session or requests.Session()

        self.events = FollowEvents()
        self.ledger = Ledger(self.events)
        self.throttle = RateLimiter(config["API_MIN_INTERVAL"])
        self.client = ApiClient(
            config["API_BASE_URL"],
            session=session,
            timeout=config["HTTP_TIMEOUT"],
            catalog_ttl=config["CATALOG_TTL"],
            thread_ttl=config["THREAD_TTL"],
            boards_ttl=config["BOARDS_TTL"],
        )
        self.media = MediaProxy(
            app,
            config["MEDIA_DIR"],
            session=session,
            timeout=config["HTTP_TIMEOUT"],
            max_images=config["MAX_CONCURRENT_IMAGE_DOWNLOADS"],
            min_images=config["MIN_CONCURRENT_IMAGE_DOWNLOADS"],
            spawn=spawn,
        )
        self.feed = FeedEngine(
            self.client,
            self.throttle,
            self.ledger,
            spawn=spawn,
            rng=rng,
            page_size=config["FEED_PAGE_SIZE"],
            refresh_age=config["FOLLOW_REFRESH_AGE"],
        )


def core_init(app, session=None, spawn=None, rng=None):
    app.extensions[EXTENSION_KEY] = Core(app, session=session, spawn=spawn, rng=rng)
    log.debug("Core components ready.")


def get_core():
    return current_app.extensions[EXTENSION_KEY]
