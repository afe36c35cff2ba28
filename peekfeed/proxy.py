import json
import logging
import os
import threading
import time
from collections import deque
from concurrent.futures import CancelledError, Future
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import requests

from peekfeed import store
from peekfeed.errors import TransientNetworkError

log = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "webp")
IMAGE = "image"
VIDEO = "video"


def _ensure_dir(directory):
    if not os.path.exists(directory):
        os.makedirs(directory)


def is_image(url):
    path = urlparse(url).path
    return path.rsplit(".", 1)[-1].lower() in IMAGE_EXTENSIONS


class ApiClient(object):
    """JSON GETs against the remote API, cached in the `requests` table."""

    def __init__(self, base_url, session=None, timeout=10.0, clock=time.time,
                 catalog_ttl=300, thread_ttl=300, boards_ttl=24 * 60 * 60):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.clock = clock
        self.catalog_ttl = catalog_ttl
        self.thread_ttl = thread_ttl
        self.boards_ttl = boards_ttl

    def url_for(self, endpoint):
        return "{}{}".format(self.base_url, endpoint)

    def fetch_json(self, endpoint, ttl=300):
        """
        Return the parsed JSON for `endpoint`. A cached body younger than
        `ttl` seconds is returned without touching the network. When the
        network fails, any cached body is returned regardless of age;
        TransientNetworkError is raised only if nothing is cached.
        """
        url = self.url_for(endpoint)
        cached = store.get_cached_request(url)

        if cached is not None:
            age = self.clock() - cached.timestamp
            if age < ttl:
                try:
                    log.debug("Cache hit for {} (age {:.0f}s).".format(url, age))
                    return json.loads(cached.data)
                except (TypeError, ValueError):
                    log.error("Unparsable cached body for {}, refetching.".format(url))
                    cached = None
            else:
                log.debug("Cache expired for {} (age {:.0f}s).".format(url, age))

        try:
            log.info("GET {}".format(url))
            resp = self.session.get(url, timeout=self.timeout)
            resp.raise_for_status()
            body = resp.text
            data = json.loads(body)
        except (requests.RequestException, ValueError) as e:
            log.warning("Fetch of {} failed: {}".format(url, e))
            if cached is not None:
                try:
                    log.info("Falling back to stale cache for {}.".format(url))
                    return json.loads(cached.data)
                except (TypeError, ValueError):
                    pass
            raise TransientNetworkError(url, e) from e

        store.save_cached_request(url, body, timestamp=self.clock())
        return data

    def boards(self):
        return self.fetch_json("/boards.json", self.boards_ttl)

    def catalog(self, board):
        return self.fetch_json("/{}/catalog.json".format(board), self.catalog_ttl)

    def thread(self, board, no):
        return self.fetch_json("/{}/thread/{}.json".format(board, no), self.thread_ttl)


@dataclass
class DownloadRequest:
    url: str
    future: Future
    kind: str
    high_priority: bool
    context: Optional[str] = None


def _spawn_thread(fn, *args):
    threading.Thread(target=fn, args=args, daemon=True).start()


class MediaProxy(object):
    """
    Downloads remote media to MEDIA_DIR and hands back local paths.

    Three lanes: high priority (starts at once, and while any is running
    normal images are limited to `min_images` at a time), normal images
    (at most `max_images` at a time, FIFO beyond that) and videos (start
    at once). Concurrent requests for the same URL share one download.
    """

    def __init__(self, app, media_dir, session=None, timeout=30.0, downloader=None,
                 max_images=4, min_images=1, spawn=_spawn_thread):
        self.app = app
        self.media_dir = media_dir
        self._session = session or requests.Session()
        self._timeout = timeout
        self._downloader = downloader or self._download
        self._max_images = max_images
        self._min_images = min_images
        self._spawn = spawn

        self._lock = threading.Lock()
        self._queue = deque()
        self._in_flight = {}
        self._active_images = 0
        self._active_high = 0

    def _image_limit(self):
        if self._active_high > 0:
            return self._min_images
        return self._max_images

    def local_path(self, url):
        parts = [p for p in urlparse(url).path.split("/") if p]
        return os.path.join(self.media_dir, "_".join(parts))

    def _download(self, url, path):
        _ensure_dir(os.path.dirname(path) or ".")
        try:
            with self._session.get(url, stream=True, timeout=self._timeout) as r:
                r.raise_for_status()
                with open(path, "wb") as f:
                    for chunk in r.iter_content(chunk_size=64 * 1024):
                        if chunk:
                            f.write(chunk)
        except (requests.RequestException, OSError):
            if os.path.exists(path):
                os.remove(path)
            raise
        return path

    def submit(self, url, high_priority=False, context=None):
        """Schedule `url` and return a Future resolving to its local path."""
        cached = store.get_cached_request(url)
        if cached is not None and cached.data and os.path.exists(cached.data):
            future = Future()
            future.set_result(cached.data)
            return future

        with self._lock:
            existing = self._in_flight.get(url)
            if existing is not None:
                log.debug("Joining in-flight download of {}.".format(url))
                return existing

            request = DownloadRequest(
                url=url,
                future=Future(),
                kind=IMAGE if is_image(url) else VIDEO,
                high_priority=high_priority,
                context=context,
            )
            self._in_flight[url] = request.future

            start = True
            if high_priority:
                self._active_high += 1
            elif request.kind == IMAGE:
                if self._active_images < self._image_limit():
                    self._active_images += 1
                else:
                    self._queue.append(request)
                    start = False
                    log.debug("Queued {} [{}], queue size {}.".format(url, context, len(self._queue)))

        if start:
            self._start(request)
        return request.future

    def get_media_uri(self, url, high_priority=False, context=None):
        """Local path for `url`, or `url` itself if the download fails."""
        future = self.submit(url, high_priority, context)
        try:
            return future.result()
        except CancelledError:
            log.debug("Download of {} was cancelled.".format(url))
        except Exception as e:
            log.warning("Download of {} failed: {}".format(url, e))
        return url

    def clear_download_queue(self, context):
        """Drop queued, not yet started downloads tagged with `context`."""
        if not context:
            return 0

        with self._lock:
            dropped = [r for r in self._queue if r.context == context]
            self._queue = deque(r for r in self._queue if r.context != context)
            for request in dropped:
                if self._in_flight.get(request.url) is request.future:
                    del self._in_flight[request.url]

        for request in dropped:
            request.future.cancel()
        log.info("Cleared {} queued downloads for context {}.".format(len(dropped), context))
        return len(dropped)

    def clear_media_cache(self):
        if not os.path.isdir(self.media_dir):
            return 0

        removed = 0
        for name in os.listdir(self.media_dir):
            path = os.path.join(self.media_dir, name)
            if os.path.isfile(path):
                os.remove(path)
                removed += 1
        log.info("Removed {} cached media files.".format(removed))
        return removed

    @property
    def queue_length(self):
        with self._lock:
            return len(self._queue)

    def _start(self, request):
        log.info("Starting download {} [{}] ({} priority).".format(
            request.url, request.context, "high" if request.high_priority else "normal"))
        self._spawn(self._execute, request)

    def _execute(self, request):
        path, error = None, None
        running = request.future.set_running_or_notify_cancel()
        if running:
            try:
                path = self._downloader(request.url, self.local_path(request.url))
                with self.app.app_context():
                    store.save_cached_request(request.url, path)
            except Exception as e:
                log.warning("{} download of {} failed: {}".format(request.kind, request.url, e))
                error = e

        with self._lock:
            if self._in_flight.get(request.url) is request.future:
                del self._in_flight[request.url]
            if request.high_priority:
                self._active_high -= 1
            elif request.kind == IMAGE:
                self._active_images -= 1

            admitted = []
            while self._queue and self._active_images < self._image_limit():
                self._active_images += 1
                admitted.append(self._queue.popleft())

        if not running:
            log.debug("Download of {} was cancelled before it started.".format(request.url))
        elif error is None:
            request.future.set_result(path)
        else:
            request.future.set_exception(error)

        for queued in admitted:
            self._start(queued)
