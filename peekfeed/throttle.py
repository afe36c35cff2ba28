import logging
import threading
import time

log = logging.getLogger(__name__)


class RateLimiter(object):
    """
    Serializes calls so that each one starts at least `interval` seconds
    after the previous one finished, whether it succeeded or raised.
    """

    def __init__(self, interval=1.0, clock=time.monotonic, sleep=time.sleep):
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_finished = None

    def throttle(self, fn, *args, **kwargs):
        with self._lock:
            if self._last_finished is not None:
                wait = self.interval - (self._clock() - self._last_finished)
                if wait > 0:
                    log.debug("Waiting {:.3f}s before next request.".format(wait))
                    self._sleep(wait)

            started = self._clock()
            try:
                return fn(*args, **kwargs)
            finally:
                self._last_finished = self._clock()
                log.debug("Request completed in {:.3f}s.".format(self._last_finished - started))
