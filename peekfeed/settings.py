import os

from dotenv import load_dotenv

load_dotenv()


def _get_int(name, default):
    value = os.environ.get(name)
    return int(value) if value else default


def _get_float(name, default):
    value = os.environ.get(name)
    return float(value) if value else default


SECRET_KEY = os.environ.get("SECRET_KEY", "dev")
DATABASE_URI = os.environ.get("DATABASE_URI", "sqlite:///peekfeed.db")

API_BASE_URL = os.environ.get("API_BASE_URL", "https://a.4cdn.org")
MEDIA_BASE_URL = os.environ.get("MEDIA_BASE_URL", "https://i.4cdn.org")
MEDIA_DIR = os.environ.get("MEDIA_DIR", "./media")
HTTP_TIMEOUT = _get_float("HTTP_TIMEOUT", 10.0)

MAX_CONCURRENT_IMAGE_DOWNLOADS = _get_int("MAX_CONCURRENT_IMAGE_DOWNLOADS", 4)
MIN_CONCURRENT_IMAGE_DOWNLOADS = 1

# Seconds between the end of one thread fetch and the start of the next.
API_MIN_INTERVAL = _get_float("API_MIN_INTERVAL", 1.0)

FOLLOW_REFRESH_AGE = _get_int("FOLLOW_REFRESH_AGE", 60 * 60)
FEED_PAGE_SIZE = _get_int("FEED_PAGE_SIZE", 20)

# Seconds a cached API response is served without refetching.
CATALOG_TTL = _get_int("CATALOG_TTL", 300)
THREAD_TTL = _get_int("THREAD_TTL", 300)
BOARDS_TTL = _get_int("BOARDS_TTL", 24 * 60 * 60)

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
