import logging
import threading

log = logging.getLogger(__name__)


class FollowEvents(object):
    """
    Broadcasts (thread_no, board, is_following) whenever a follow state
    changes so every view of that thread can update without re-querying.
    """

    def __init__(self):
        self._listeners = []
        self._lock = threading.Lock()

    def subscribe(self, callback):
        """Register `callback`; returns a function that unsubscribes it."""
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def notify_follow_changed(self, thread_no, board, is_following):
        with self._lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(thread_no, board, is_following)
            except Exception:
                log.exception("Error in follow listener.")
