from __future__ import annotations

import re
from typing import Dict, Iterable, Optional

from .errors import ValidationError


EMAIL_RE = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$")


class Validator:
    """Collects field errors; the first message recorded for a field wins."""

    def __init__(self) -> None:
        self.errors: Dict[str, str] = {}

    def valid(self) -> bool:
        return not self.errors

    def add_error(self, key: str, message: str) -> None:
        self.errors.setdefault(key, message)

    def check(self, ok: bool, key: str, message: str) -> None:
        if not ok:
            self.add_error(key, message)

    def raise_if_invalid(self) -> None:
        if self.errors:
            raise ValidationError(self.errors)


def permitted_value(value: Optional[str], permitted: Iterable[str]) -> bool:
    return value in set(permitted)


def byte_length(value: str) -> int:
    return len(value.encode("utf-8"))


def matches(value: str, pattern: re.Pattern[str]) -> bool:
    return bool(pattern.match(value))
