from __future__ import annotations

import hashlib
import logging
import secrets
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from .db import Database, Deadline, format_timestamp, parse_timestamp, utcnow
from .errors import DuplicateEntry, NotFound
from .filters import Filters, Metadata, calculate_metadata
from .guards import ConditionalWrite, next_version
from .validator import EMAIL_RE, Validator, byte_length, matches


logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_TITLE_BYTES = 500
MAX_CONTENT_BYTES = 3000
MAX_NAME_BYTES = 500


def _iso(value: Optional[datetime]) -> Optional[str]:
    return format_timestamp(value) if value is not None else None


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _text_match(column: str, terms: str) -> Tuple[List[str], List[Any]]:
    """Every whitespace separated word must appear in ``column``, ignoring case.

    Both sides go through Python's ``str.casefold`` (registered on each
    connection in db.py); SQLite's ``lower()`` only folds ASCII.
    """
    clauses: List[str] = []
    params: List[Any] = []
    for word in (terms or "").split():
        clauses.append(f"casefold({column}) LIKE ? ESCAPE '\\'")
        params.append(f"%{_escape_like(word.casefold())}%")
    return clauses, params


def _where(clauses: Sequence[str]) -> str:
    return " AND ".join(clauses) if clauses else "1 = 1"


# Entities ---------------------------------------------------------


@dataclass
class Post:
    user_id: int
    title: str
    content: str
    id: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Post":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            content=row["content"],
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "content": self.content,
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class Comment:
    post_id: int
    user_id: int
    content: str
    id: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Comment":
        return cls(
            id=row["id"],
            post_id=row["post_id"],
            user_id=row["user_id"],
            content=row["content"],
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "post_id": self.post_id,
            "user_id": self.user_id,
            "content": self.content,
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class Tag:
    name: str
    id: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Tag":
        return cls(
            id=row["id"],
            name=row["name"],
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    def to_record(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "updated_at": _iso(self.updated_at)}


@dataclass
class PostTag:
    post_id: int
    tag_id: int
    id: int = 0

    def to_record(self) -> Dict[str, Any]:
        return {"id": self.id, "post_id": self.post_id, "tag_id": self.tag_id}


@dataclass
class User(UserMixin):
    name: str
    email: str
    password_hash: str = ""
    id: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def get_id(self) -> str:  # type: ignore[override]
        return str(self.id)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "User":
        return cls(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            password_hash=row["password_hash"],
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


# Validation -------------------------------------------------------


def validate_post(v: Validator, post: Post) -> None:
    v.check(post.title != "", "title", "must be provided")
    v.check(byte_length(post.title) <= MAX_TITLE_BYTES, "title", f"must not be more than {MAX_TITLE_BYTES} bytes long")
    v.check(post.content != "", "content", "must be provided")
    v.check(byte_length(post.content) <= MAX_CONTENT_BYTES, "content", f"must not be more than {MAX_CONTENT_BYTES} bytes long")


def validate_comment(v: Validator, comment: Comment) -> None:
    v.check(comment.post_id > 0, "post_id", "must be greater than zero")
    v.check(comment.user_id > 0, "user_id", "must be greater than zero")
    v.check(comment.content != "", "content", "must be provided")
    v.check(byte_length(comment.content) <= MAX_CONTENT_BYTES, "content", f"must not be more than {MAX_CONTENT_BYTES} bytes long")


def validate_tag(v: Validator, tag: Tag) -> None:
    v.check(tag.name != "", "name", "must be provided")
    v.check(byte_length(tag.name) <= MAX_NAME_BYTES, "name", f"must not be more than {MAX_NAME_BYTES} bytes long")


def validate_post_tag(v: Validator, post_id: int, tag_id: int) -> None:
    v.check(post_id > 0, "post_id", "must be greater than zero")
    v.check(tag_id > 0, "tag_id", "must be greater than zero")


def validate_email(v: Validator, email: str) -> None:
    v.check(email != "", "email", "must be provided")
    v.check(matches(email, EMAIL_RE), "email", "must be a valid email address")


def validate_password(v: Validator, password: str) -> None:
    v.check(password != "", "password", "must be provided")
    v.check(len(password) >= 8, "password", "must be at least 8 characters long")


def validate_user(v: Validator, user: User, password: Optional[str]) -> None:
    """Check a user's fields; ``password`` is only checked when one is being set."""
    v.check(user.name != "", "name", "must be provided")
    v.check(byte_length(user.name) <= MAX_NAME_BYTES, "name", f"must not be more than {MAX_NAME_BYTES} bytes long")
    validate_email(v, user.email)
    if password is not None:
        validate_password(v, password)


# Stores -----------------------------------------------------------


class _Store:
    def __init__(self, db: Database):
        self.db = db

    def _page(
        self,
        sql: str,
        params: Sequence[Any],
        filters: Filters,
        build: Callable[[sqlite3.Row], T],
        deadline: Optional[Deadline],
    ) -> Tuple[List[T], Metadata]:
        with self.db.round_trip(deadline) as conn:
            rows = conn.execute(sql, [*params, filters.limit(), filters.offset()]).fetchall()
        total_records = rows[0]["total_records"] if rows else 0
        return [build(row) for row in rows], calculate_metadata(total_records, filters.page, filters.page_size)

    def _conditional(
        self,
        write: ConditionalWrite,
        statement: str,
        params: Sequence[Any],
        probe: str,
        probe_params: Sequence[Any],
        deadline: Optional[Deadline],
    ) -> None:
        with self.db.round_trip(deadline) as conn:
            rowcount = conn.execute(statement, params).rowcount
        if write.record_rowcount(rowcount):
            return
        with self.db.round_trip(deadline) as conn:
            row = conn.execute(probe, probe_params).fetchone()
        raise write.resolve(row)


class PostStore(_Store):
    COLUMNS = "posts.id, posts.user_id, posts.title, posts.content, posts.created_at, posts.updated_at"

    def insert(self, post: Post, *, deadline: Optional[Deadline] = None) -> Post:
        timestamp = utcnow()
        with self.db.round_trip(deadline) as conn:
            cursor = conn.execute(
                """
                INSERT INTO posts (user_id, title, content, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (post.user_id, post.title, post.content, format_timestamp(timestamp), format_timestamp(timestamp)),
            )
        post.id = cursor.lastrowid or 0
        post.created_at = timestamp
        post.updated_at = timestamp
        logger.info("Post %s created by user %s", post.id, post.user_id)
        return post

    def get(self, post_id: int, *, deadline: Optional[Deadline] = None) -> Post:
        if post_id < 1:
            raise NotFound("post not found")
        with self.db.round_trip(deadline) as conn:
            row = conn.execute(f"SELECT {self.COLUMNS} FROM posts WHERE id = ?", (post_id,)).fetchone()
        if not row:
            raise NotFound("post not found")
        return Post.from_row(row)

    def update(self, post: Post, *, user_id: Optional[int] = None, deadline: Optional[Deadline] = None) -> datetime:
        """Write ``post`` back if its ``updated_at`` is still current.

        With ``user_id`` the write is also owner-scoped, so a non-owner gets
        ``Unauthorized`` whatever version they present.
        """
        if post.updated_at is None:
            raise ValueError("post has not been read from the store")
        version = next_version(post.updated_at)
        clauses = ["id = ?", "updated_at = ?"]
        params: List[Any] = [post.title, post.content, format_timestamp(version), post.id, format_timestamp(post.updated_at)]
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        self._conditional(
            ConditionalWrite("post", owner_id=user_id, versioned=True),
            f"UPDATE posts SET title = ?, content = ?, updated_at = ? WHERE {_where(clauses)}",
            params,
            "SELECT user_id AS owner_id FROM posts WHERE id = ?",
            (post.id,),
            deadline,
        )
        post.updated_at = version
        return version

    def delete(self, post_id: int, user_id: int, *, deadline: Optional[Deadline] = None) -> None:
        if post_id < 1:
            raise NotFound("post not found")
        self._conditional(
            ConditionalWrite("post", owner_id=user_id),
            "DELETE FROM posts WHERE id = ? AND user_id = ?",
            (post_id, user_id),
            "SELECT user_id AS owner_id FROM posts WHERE id = ?",
            (post_id,),
            deadline,
        )
        logger.info("Post %s deleted by user %s", post_id, user_id)

    def list(
        self,
        filters: Filters,
        *,
        user_id: int = 0,
        title: str = "",
        content: str = "",
        deadline: Optional[Deadline] = None,
    ) -> Tuple[List[Post], Metadata]:
        clauses: List[str] = []
        params: List[Any] = []
        for column, terms in (("posts.title", title), ("posts.content", content)):
            extra_clauses, extra_params = _text_match(column, terms)
            clauses.extend(extra_clauses)
            params.extend(extra_params)
        if user_id:
            clauses.append("posts.user_id = ?")
            params.append(user_id)
        sql = f"""
            SELECT count(*) OVER() AS total_records, {self.COLUMNS}
            FROM posts
            WHERE {_where(clauses)}
            ORDER BY {filters.order_by("posts")}
            LIMIT ? OFFSET ?
        """
        return self._page(sql, params, filters, Post.from_row, deadline)

    def list_for_user(self, user_id: int, filters: Filters, *, deadline: Optional[Deadline] = None) -> Tuple[List[Post], Metadata]:
        return self.list(filters, user_id=user_id, deadline=deadline)


class CommentStore(_Store):
    COLUMNS = "comments.id, comments.post_id, comments.user_id, comments.content, comments.created_at, comments.updated_at"

    def insert(self, comment: Comment, *, deadline: Optional[Deadline] = None) -> Comment:
        timestamp = utcnow()
        with self.db.round_trip(deadline) as conn:
            cursor = conn.execute(
                """
                INSERT INTO comments (post_id, user_id, content, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (comment.post_id, comment.user_id, comment.content, format_timestamp(timestamp), format_timestamp(timestamp)),
            )
        comment.id = cursor.lastrowid or 0
        comment.created_at = timestamp
        comment.updated_at = timestamp
        return comment

    def get(self, post_id: int, comment_id: int, *, deadline: Optional[Deadline] = None) -> Comment:
        if post_id < 1 or comment_id < 1:
            raise NotFound("comment not found")
        with self.db.round_trip(deadline) as conn:
            row = conn.execute(
                f"SELECT {self.COLUMNS} FROM comments WHERE post_id = ? AND id = ?",
                (post_id, comment_id),
            ).fetchone()
        if not row:
            raise NotFound("comment not found")
        return Comment.from_row(row)

    def update(self, comment: Comment, *, user_id: Optional[int] = None, deadline: Optional[Deadline] = None) -> datetime:
        if comment.updated_at is None:
            raise ValueError("comment has not been read from the store")
        version = next_version(comment.updated_at)
        clauses = ["id = ?", "post_id = ?", "updated_at = ?"]
        params: List[Any] = [
            comment.content,
            format_timestamp(version),
            comment.id,
            comment.post_id,
            format_timestamp(comment.updated_at),
        ]
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        self._conditional(
            ConditionalWrite("comment", owner_id=user_id, versioned=True),
            f"UPDATE comments SET content = ?, updated_at = ? WHERE {_where(clauses)}",
            params,
            "SELECT user_id AS owner_id FROM comments WHERE id = ? AND post_id = ?",
            (comment.id, comment.post_id),
            deadline,
        )
        comment.updated_at = version
        return version

    def delete(self, comment_id: int, user_id: int, post_id: int, *, deadline: Optional[Deadline] = None) -> None:
        if comment_id < 1:
            raise NotFound("comment not found")
        self._conditional(
            ConditionalWrite("comment", owner_id=user_id),
            "DELETE FROM comments WHERE id = ? AND user_id = ? AND post_id = ?",
            (comment_id, user_id, post_id),
            "SELECT user_id AS owner_id FROM comments WHERE id = ? AND post_id = ?",
            (comment_id, post_id),
            deadline,
        )

    def list_for_post(self, post_id: int, filters: Filters, *, deadline: Optional[Deadline] = None) -> Tuple[List[Comment], Metadata]:
        sql = f"""
            SELECT count(*) OVER() AS total_records, {self.COLUMNS}
            FROM comments
            WHERE comments.post_id = ?
            ORDER BY {filters.order_by("comments")}
            LIMIT ? OFFSET ?
        """
        return self._page(sql, [post_id], filters, Comment.from_row, deadline)

    def list_by_user(self, user_id: int, filters: Filters, *, deadline: Optional[Deadline] = None) -> Tuple[List[Comment], Metadata]:
        sql = f"""
            SELECT count(*) OVER() AS total_records, {self.COLUMNS}
            FROM comments
            WHERE comments.user_id = ?
            ORDER BY {filters.order_by("comments")}
            LIMIT ? OFFSET ?
        """
        return self._page(sql, [user_id], filters, Comment.from_row, deadline)


class TagStore(_Store):
    COLUMNS = "tags.id, tags.name, tags.created_at, tags.updated_at"

    def insert(self, tag: Tag, *, deadline: Optional[Deadline] = None) -> Tag:
        timestamp = utcnow()
        try:
            with self.db.round_trip(deadline) as conn:
                cursor = conn.execute(
                    "INSERT INTO tags (name, created_at, updated_at) VALUES (?, ?, ?)",
                    (tag.name, format_timestamp(timestamp), format_timestamp(timestamp)),
                )
        except DuplicateEntry as exc:
            raise DuplicateEntry("a tag with this name already exists", field="name") from exc
        tag.id = cursor.lastrowid or 0
        tag.created_at = timestamp
        tag.updated_at = timestamp
        return tag

    def get(self, tag_id: int, *, deadline: Optional[Deadline] = None) -> Tag:
        if tag_id < 1:
            raise NotFound("tag not found")
        with self.db.round_trip(deadline) as conn:
            row = conn.execute(f"SELECT {self.COLUMNS} FROM tags WHERE id = ?", (tag_id,)).fetchone()
        if not row:
            raise NotFound("tag not found")
        return Tag.from_row(row)

    def update(self, tag: Tag, *, deadline: Optional[Deadline] = None) -> datetime:
        if tag.updated_at is None:
            raise ValueError("tag has not been read from the store")
        version = next_version(tag.updated_at)
        try:
            self._conditional(
                ConditionalWrite("tag", versioned=True),
                "UPDATE tags SET name = ?, updated_at = ? WHERE id = ? AND updated_at = ?",
                (tag.name, format_timestamp(version), tag.id, format_timestamp(tag.updated_at)),
                "SELECT NULL AS owner_id FROM tags WHERE id = ?",
                (tag.id,),
                deadline,
            )
        except DuplicateEntry as exc:
            raise DuplicateEntry("a tag with this name already exists", field="name") from exc
        tag.updated_at = version
        return version

    def delete(self, tag_id: int, *, deadline: Optional[Deadline] = None) -> None:
        if tag_id < 1:
            raise NotFound("tag not found")
        with self.db.round_trip(deadline) as conn:
            result = conn.execute("DELETE FROM tags WHERE id = ?", (tag_id,))
        if result.rowcount == 0:
            raise NotFound("tag not found")

    def list(
        self,
        filters: Filters,
        *,
        post_id: int = 0,
        name: str = "",
        deadline: Optional[Deadline] = None,
    ) -> Tuple[List[Tag], Metadata]:
        join = ""
        clauses, params = _text_match("tags.name", name)
        if post_id:
            join = "INNER JOIN post_tags ON post_tags.tag_id = tags.id"
            clauses.append("post_tags.post_id = ?")
            params.append(post_id)
        sql = f"""
            SELECT count(*) OVER() AS total_records, {self.COLUMNS}
            FROM tags
            {join}
            WHERE {_where(clauses)}
            ORDER BY {filters.order_by("tags")}
            LIMIT ? OFFSET ?
        """
        return self._page(sql, params, filters, Tag.from_row, deadline)


class PostTagStore(_Store):
    """Links between posts and tags; each (post, tag) pair exists at most once."""

    def exists(self, post_id: int, tag_id: int, *, deadline: Optional[Deadline] = None) -> bool:
        with self.db.round_trip(deadline) as conn:
            row = conn.execute(
                "SELECT 1 FROM post_tags WHERE post_id = ? AND tag_id = ?",
                (post_id, tag_id),
            ).fetchone()
        return row is not None

    def insert(self, post_id: int, tag_id: int, *, deadline: Optional[Deadline] = None) -> PostTag:
        if post_id < 1 or tag_id < 1:
            raise NotFound("post or tag not found")
        # The pre-check only saves a write; the UNIQUE constraint is what
        # actually settles two concurrent inserts of the same pair.
        if self.exists(post_id, tag_id, deadline=deadline):
            raise DuplicateEntry("tag already added to post")
        try:
            with self.db.round_trip(deadline) as conn:
                cursor = conn.execute(
                    "INSERT INTO post_tags (post_id, tag_id) VALUES (?, ?)",
                    (post_id, tag_id),
                )
        except DuplicateEntry as exc:
            logger.info("Concurrent link of tag %s to post %s rejected by constraint", tag_id, post_id)
            raise DuplicateEntry("tag already added to post") from exc
        return PostTag(id=cursor.lastrowid or 0, post_id=post_id, tag_id=tag_id)

    def delete(self, post_id: int, tag_id: int, *, deadline: Optional[Deadline] = None) -> None:
        with self.db.round_trip(deadline) as conn:
            result = conn.execute(
                "DELETE FROM post_tags WHERE post_id = ? AND tag_id = ?",
                (post_id, tag_id),
            )
        if result.rowcount == 0:
            raise NotFound("tag is not attached to post")


class UserStore(_Store):
    COLUMNS = "users.id, users.name, users.email, users.password_hash, users.created_at, users.updated_at"
    DUPLICATE_EMAIL = "a user with this email address already exists"

    def insert(self, user: User, password: str, *, deadline: Optional[Deadline] = None) -> User:
        timestamp = utcnow()
        user.password_hash = generate_password_hash(password)
        try:
            with self.db.round_trip(deadline) as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO users (name, email, password_hash, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (user.name, user.email, user.password_hash, format_timestamp(timestamp), format_timestamp(timestamp)),
                )
        except DuplicateEntry as exc:
            raise DuplicateEntry(self.DUPLICATE_EMAIL, field="email") from exc
        user.id = cursor.lastrowid or 0
        user.created_at = timestamp
        user.updated_at = timestamp
        logger.info("User %s registered", user.id)
        return user

    def update(
        self,
        user: User,
        *,
        user_id: int,
        password: Optional[str] = None,
        deadline: Optional[Deadline] = None,
    ) -> datetime:
        """Write ``user`` back; only the account itself (``user_id``) may do so.

        A new ``password`` replaces the stored hash in the same statement.
        """
        if user.updated_at is None:
            raise ValueError("user has not been read from the store")
        if password is not None:
            user.password_hash = generate_password_hash(password)
        version = next_version(user.updated_at)
        try:
            self._conditional(
                ConditionalWrite("user", owner_id=user_id, versioned=True),
                """
                UPDATE users SET name = ?, email = ?, password_hash = ?, updated_at = ?
                WHERE id = ? AND updated_at = ? AND id = ?
                """,
                (
                    user.name,
                    user.email,
                    user.password_hash,
                    format_timestamp(version),
                    user.id,
                    format_timestamp(user.updated_at),
                    user_id,
                ),
                "SELECT id AS owner_id FROM users WHERE id = ?",
                (user.id,),
                deadline,
            )
        except DuplicateEntry as exc:
            raise DuplicateEntry(self.DUPLICATE_EMAIL, field="email") from exc
        user.updated_at = version
        return version

    def delete(self, user_id: int, acting_user_id: int, *, deadline: Optional[Deadline] = None) -> None:
        if user_id < 1:
            raise NotFound("user not found")
        self._conditional(
            ConditionalWrite("user", owner_id=acting_user_id),
            "DELETE FROM users WHERE id = ? AND id = ?",
            (user_id, acting_user_id),
            "SELECT id AS owner_id FROM users WHERE id = ?",
            (user_id,),
            deadline,
        )
        logger.info("User %s deleted", user_id)

    def list(self, filters: Filters, *, name: str = "", deadline: Optional[Deadline] = None) -> Tuple[List[User], Metadata]:
        clauses, params = _text_match("users.name", name)
        sql = f"""
            SELECT count(*) OVER() AS total_records, {self.COLUMNS}
            FROM users
            WHERE {_where(clauses)}
            ORDER BY {filters.order_by("users")}
            LIMIT ? OFFSET ?
        """
        return self._page(sql, params, filters, User.from_row, deadline)

    def get(self, user_id: int, *, deadline: Optional[Deadline] = None) -> User:
        if user_id < 1:
            raise NotFound("user not found")
        with self.db.round_trip(deadline) as conn:
            row = conn.execute(f"SELECT {self.COLUMNS} FROM users WHERE id = ?", (user_id,)).fetchone()
        if not row:
            raise NotFound("user not found")
        return User.from_row(row)

    def get_by_email(self, email: str, *, deadline: Optional[Deadline] = None) -> Optional[User]:
        with self.db.round_trip(deadline) as conn:
            row = conn.execute(f"SELECT {self.COLUMNS} FROM users WHERE email = ?", (email,)).fetchone()
        return User.from_row(row) if row else None

    def authenticate(self, email: str, password: str, *, deadline: Optional[Deadline] = None) -> Optional[User]:
        user = self.get_by_email(email, deadline=deadline)
        if user is None or not check_password_hash(user.password_hash, password):
            return None
        return user


class TokenStore(_Store):
    @staticmethod
    def _digest(plaintext: str) -> str:
        return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()

    def new_token(self, user_id: int, ttl: timedelta, *, deadline: Optional[Deadline] = None) -> Tuple[str, datetime]:
        plaintext = secrets.token_urlsafe(32)
        expiry = utcnow() + ttl
        with self.db.round_trip(deadline) as conn:
            conn.execute(
                "INSERT INTO tokens (hash, user_id, expiry) VALUES (?, ?, ?)",
                (self._digest(plaintext), user_id, format_timestamp(expiry)),
            )
        return plaintext, expiry

    def get_user_for_token(self, plaintext: str, *, deadline: Optional[Deadline] = None) -> Optional[User]:
        with self.db.round_trip(deadline) as conn:
            row = conn.execute(
                f"""
                SELECT {UserStore.COLUMNS}
                FROM users
                INNER JOIN tokens ON tokens.user_id = users.id
                WHERE tokens.hash = ? AND tokens.expiry > ?
                """,
                (self._digest(plaintext), format_timestamp(utcnow())),
            ).fetchone()
        return User.from_row(row) if row else None

    def delete_all_for_user(self, user_id: int, *, deadline: Optional[Deadline] = None) -> int:
        with self.db.round_trip(deadline) as conn:
            result = conn.execute("DELETE FROM tokens WHERE user_id = ?", (user_id,))
        return result.rowcount
