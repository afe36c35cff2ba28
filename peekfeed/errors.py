class PeekfeedError(Exception):
    pass


class TransientNetworkError(PeekfeedError):
    """A fetch or download failed and no local fallback exists."""

    def __init__(self, url, cause=None):
        self.url = url
        self.cause = cause
        super().__init__("Request to {} failed: {}".format(url, cause))


class MalformedRowError(PeekfeedError):
    """A post is missing its primary key or required fields."""


class StorageInitError(PeekfeedError):
    """The local store could not be created or migrated."""
