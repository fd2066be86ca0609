from __future__ import annotations

import itertools
from datetime import timedelta
from typing import Callable, Dict, Tuple

import pytest

from blogly import create_app
from blogly.datastore import DataStore
from blogly.stores import Post, User


PASSWORD = "pa55word!"


@pytest.fixture
def datastore(tmp_path):
    store = DataStore(tmp_path / "data")
    yield store
    store.close()


@pytest.fixture
def make_user(datastore) -> Callable[..., User]:
    counter = itertools.count(1)

    def _make(name: str = "") -> User:
        n = next(counter)
        return datastore.users.insert(User(name=name or f"user{n}", email=f"user{n}@example.com"), PASSWORD)

    return _make


@pytest.fixture
def make_post(datastore) -> Callable[..., Post]:
    def _make(user: User, title: str = "A", content: str = "B") -> Post:
        return datastore.posts.insert(Post(user_id=user.id, title=title, content=content))

    return _make


@pytest.fixture
def app(tmp_path):
    app = create_app({"TESTING": True, "DATA_PATH": str(tmp_path / "api")})
    yield app
    app.extensions["datastore"].close()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def api_user(app) -> Callable[[str], Tuple[User, Dict[str, str]]]:
    """Create a user directly in the store and return it with bearer headers."""
    datastore: DataStore = app.extensions["datastore"]

    def _make(name: str) -> Tuple[User, Dict[str, str]]:
        user = datastore.users.insert(User(name=name, email=f"{name}@example.com"), PASSWORD)
        token, _ = datastore.tokens.new_token(user.id, timedelta(hours=1))
        return user, {"Authorization": f"Bearer {token}"}

    return _make
