from __future__ import annotations

import logging
from pathlib import Path

from .db import DEFAULT_QUERY_TIMEOUT, Database
from .stores import CommentStore, PostStore, PostTagStore, TagStore, TokenStore, UserStore


logger = logging.getLogger(__name__)


class DataStore:
    """Every resource store, sharing one SQLite database under ``base_path``."""

    def __init__(self, base_path: Path, *, query_timeout: float = DEFAULT_QUERY_TIMEOUT):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.db_path = self.base_path / "blogly.sqlite3"
        self.db = Database(self.db_path, query_timeout=query_timeout)
        self.posts = PostStore(self.db)
        self.comments = CommentStore(self.db)
        self.tags = TagStore(self.db)
        self.post_tags = PostTagStore(self.db)
        self.users = UserStore(self.db)
        self.tokens = TokenStore(self.db)
        logger.debug("Datastore ready at %s (query timeout %.1fs)", self.db_path, query_timeout)

    def close(self) -> None:
        self.db.close()
