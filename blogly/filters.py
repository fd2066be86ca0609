from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

from .validator import Validator, permitted_value


MAX_PAGE = 10_000_000
MAX_PAGE_SIZE = 100
DESCENDING_MARKER = "-"


@dataclass
class Filters:
    """Pagination and ordering requested by a client.

    ``sort_safelist`` holds bare column names; ``sort`` may carry a leading
    ``-`` to ask for descending order.
    """

    page: int = 1
    page_size: int = 20
    sort: str = "id"
    sort_safelist: Tuple[str, ...] = field(default_factory=tuple)

    def _bare_sort(self) -> str:
        return self.sort[len(DESCENDING_MARKER):] if self.sort.startswith(DESCENDING_MARKER) else self.sort

    def sort_column(self) -> str:
        column = self._bare_sort()
        if column not in self.sort_safelist:
            raise ValueError(f"unsafe sort parameter: {self.sort!r}")
        return column

    def sort_direction(self) -> str:
        return "DESC" if self.sort.startswith(DESCENDING_MARKER) else "ASC"

    def limit(self) -> int:
        return self.page_size

    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    def order_by(self, table: str) -> str:
        # Ties always fall back to the primary key so pages never overlap.
        return f"{table}.{self.sort_column()} {self.sort_direction()}, {table}.id ASC"


def validate_filters(v: Validator, filters: Filters) -> None:
    v.check(filters.page > 0, "page", "must be greater than zero")
    v.check(filters.page <= MAX_PAGE, "page", "must be a maximum of 10 million")
    v.check(filters.page_size > 0, "page_size", "must be greater than zero")
    v.check(filters.page_size <= MAX_PAGE_SIZE, "page_size", f"must be a maximum of {MAX_PAGE_SIZE}")
    v.check(permitted_value(filters._bare_sort(), filters.sort_safelist), "sort", "invalid sort value")


@dataclass
class Metadata:
    current_page: int = 0
    page_size: int = 0
    first_page: int = 0
    last_page: int = 0
    total_records: int = 0

    def to_record(self) -> Dict[str, Any]:
        return {
            "current_page": self.current_page,
            "page_size": self.page_size,
            "first_page": self.first_page,
            "last_page": self.last_page,
            "total_records": self.total_records,
        }


def calculate_metadata(total_records: int, page: int, page_size: int) -> Metadata:
    if total_records == 0:
        return Metadata()
    return Metadata(
        current_page=page,
        page_size=page_size,
        first_page=1,
        last_page=math.ceil(total_records / page_size),
        total_records=total_records,
    )
