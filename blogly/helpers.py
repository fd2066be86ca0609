from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional, Sequence

from flask import g, request
from werkzeug.datastructures import MultiDict
from werkzeug.exceptions import BadRequest

from .db import Deadline, format_timestamp
from .errors import EditConflict
from .filters import Filters, validate_filters
from .validator import Validator


EXPECTED_VERSION_HEADER = "X-Expected-Version"


def request_deadline() -> Optional[Deadline]:
    return g.get("deadline")


def read_string(args: MultiDict, key: str, default: str) -> str:
    value = args.get(key, "")
    return value if value != "" else default


def read_int(args: MultiDict, key: str, default: int, v: Validator) -> int:
    value = args.get(key, "")
    if value == "":
        return default
    try:
        return int(value)
    except ValueError:
        v.add_error(key, "must be an integer value")
        return default


def read_filters(args: MultiDict, v: Validator, *, default_sort: str, safelist: Sequence[str]) -> Filters:
    filters = Filters(
        page=read_int(args, "page", 1, v),
        page_size=read_int(args, "page_size", 20, v),
        sort=read_string(args, "sort", default_sort),
        sort_safelist=tuple(safelist),
    )
    validate_filters(v, filters)
    return filters


def read_json() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        raise BadRequest("body must contain a valid JSON object")
    if not isinstance(data, dict):
        raise BadRequest("body must contain a single JSON object")
    return data


def json_string(data: Dict[str, Any], key: str, default: str = "") -> str:
    value = data.get(key, default)
    if not isinstance(value, str):
        raise BadRequest(f"body contains incorrect JSON type for field {key!r}")
    return value


def check_expected_version(current: Optional[datetime]) -> None:
    expected = request.headers.get(EXPECTED_VERSION_HEADER)
    if expected is None or current is None:
        return
    if expected != format_timestamp(current):
        raise EditConflict()
