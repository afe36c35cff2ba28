import logging

from flask import Flask


def create_app(test_config=None, session=None, spawn=None, rng=None):
    from peekfeed import settings
    from peekfeed.blueprints import main
    from peekfeed.cache import cache
    from peekfeed.commands import command_init
    from peekfeed.core import core_init
    from peekfeed.database import db_init

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_mapping(
        SECRET_KEY=settings.SECRET_KEY,
        SQLALCHEMY_DATABASE_URI=settings.DATABASE_URI,
        API_BASE_URL=settings.API_BASE_URL,
        MEDIA_BASE_URL=settings.MEDIA_BASE_URL,
        MEDIA_DIR=settings.MEDIA_DIR,
        HTTP_TIMEOUT=settings.HTTP_TIMEOUT,
        MAX_CONCURRENT_IMAGE_DOWNLOADS=settings.MAX_CONCURRENT_IMAGE_DOWNLOADS,
        MIN_CONCURRENT_IMAGE_DOWNLOADS=settings.MIN_CONCURRENT_IMAGE_DOWNLOADS,
        API_MIN_INTERVAL=settings.API_MIN_INTERVAL,
        FOLLOW_REFRESH_AGE=settings.FOLLOW_REFRESH_AGE,
        FEED_PAGE_SIZE=settings.FEED_PAGE_SIZE,
        CATALOG_TTL=settings.CATALOG_TTL,
        THREAD_TTL=settings.THREAD_TTL,
        BOARDS_TTL=settings.BOARDS_TTL,
        CACHE_TYPE="SimpleCache",
    )
    if test_config is not None:
        app.config.from_mapping(test_config)

    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    logging.getLogger("peekfeed").setLevel(settings.LOG_LEVEL)

    app.register_blueprint(main.blueprint)

    cache.init_app(app)
    command_init(app)
    db_init(app)
    core_init(app, session=session, spawn=spawn, rng=rng)

    return app
