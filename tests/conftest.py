from __future__ import annotations

import json
import random
from typing import Generator

import pytest
import requests
from flask import Flask

from peekfeed import create_app
from peekfeed.schemas import Post

API = "https://api.test"
MEDIA = "https://media.test"


class FakeResponse:

    def __init__(self, text="", status_code=200, content=b""):
        self.text = text
        self.status_code = status_code
        self.content = content

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError("{} error".format(self.status_code), response=self)

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i:i + chunk_size]

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeSession:
    """Serves canned bodies by URL and records every GET."""

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add_json(self, url, data, status_code=200):
        self.routes[url] = FakeResponse(json.dumps(data), status_code)

    def add_bytes(self, url, content):
        self.routes[url] = FakeResponse(content=content)

    def fail(self, url):
        self.routes[url] = requests.ConnectionError("connection refused")

    def count(self, url):
        return self.calls.count(url)

    def get(self, url, timeout=None, stream=False):
        self.calls.append(url)
        route = self.routes.get(url)
        if route is None:
            raise requests.ConnectionError("no route for {}".format(url))
        if isinstance(route, Exception):
            raise route
        return route


def sync_spawn(fn, *args):
    fn(*args)


def make_post(no, board="g", resto=0, time=None, media=True, **fields):
    data = dict(no=no, board=board, resto=resto, time=no if time is None else time, **fields)
    if media:
        data.setdefault("tim", 1700000000000 + no)
        data.setdefault("ext", ".jpg")
    data.setdefault("com", "thread {}".format(no))
    return Post(**data)


@pytest.fixture()
def session() -> FakeSession:
    return FakeSession()


def build_app(tmp_path, session, **config):
    """An app on tmp_path/test.db; apps built on the same tmp_path share it."""
    test_config = {
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///{}".format(tmp_path / "test.db"),
        "API_BASE_URL": API,
        "MEDIA_BASE_URL": MEDIA,
        "MEDIA_DIR": str(tmp_path / "media"),
        "API_MIN_INTERVAL": 0,
    }
    test_config.update(config)
    return create_app(test_config=test_config, session=session, spawn=sync_spawn, rng=random.Random(0))


@pytest.fixture()
def app(tmp_path, session) -> Generator[Flask, None, None]:
    app = build_app(tmp_path, session)
    with app.app_context():
        yield app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def core(app):
    from peekfeed.core import get_core
    return get_core()


@pytest.fixture()
def no_keywords(app):
    from peekfeed import moderation
    moderation.clear_all_blocked_keywords()
