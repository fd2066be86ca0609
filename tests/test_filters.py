import pytest

from blogly.filters import Filters, Metadata, calculate_metadata, validate_filters
from blogly.validator import Validator


SAFELIST = ("id", "title", "updated_at")


def _validate(filters: Filters) -> Validator:
    v = Validator()
    validate_filters(v, filters)
    return v


def test_valid_filters_produce_limit_offset_and_order():
    filters = Filters(page=3, page_size=25, sort="-title", sort_safelist=SAFELIST)
    assert _validate(filters).valid()
    assert filters.limit() == 25
    assert filters.offset() == 50
    assert filters.sort_column() == "title"
    assert filters.sort_direction() == "DESC"
    assert filters.order_by("posts") == "posts.title DESC, posts.id ASC"


def test_ascending_sort_without_marker():
    filters = Filters(sort="updated_at", sort_safelist=SAFELIST)
    assert filters.sort_direction() == "ASC"
    assert filters.order_by("tags") == "tags.updated_at ASC, tags.id ASC"


def test_errors_are_collected_for_every_field():
    v = _validate(Filters(page=0, page_size=101, sort="password", sort_safelist=SAFELIST))
    assert v.errors == {
        "page": "must be greater than zero",
        "page_size": "must be a maximum of 100",
        "sort": "invalid sort value",
    }


@pytest.mark.parametrize(
    "page,page_size,field",
    [
        (10_000_001, 20, "page"),
        (-1, 20, "page"),
        (1, 0, "page_size"),
        (1, -5, "page_size"),
    ],
)
def test_out_of_range_pagination(page, page_size, field):
    v = _validate(Filters(page=page, page_size=page_size, sort="id", sort_safelist=SAFELIST))
    assert field in v.errors


def test_marker_alone_or_doubled_is_not_a_column():
    assert "sort" in _validate(Filters(sort="-", sort_safelist=SAFELIST)).errors
    assert "sort" in _validate(Filters(sort="--id", sort_safelist=SAFELIST)).errors


def test_unsafe_sort_never_reaches_sql():
    filters = Filters(sort="id; DROP TABLE posts", sort_safelist=SAFELIST)
    with pytest.raises(ValueError):
        filters.sort_column()
    with pytest.raises(ValueError):
        filters.order_by("posts")


def test_metadata_for_empty_result_is_all_zero():
    assert calculate_metadata(0, 1, 20) == Metadata()
    assert Metadata().to_record() == {
        "current_page": 0,
        "page_size": 0,
        "first_page": 0,
        "last_page": 0,
        "total_records": 0,
    }


def test_metadata_rounds_last_page_up():
    metadata = calculate_metadata(45, 2, 20)
    assert metadata == Metadata(current_page=2, page_size=20, first_page=1, last_page=3, total_records=45)
    assert calculate_metadata(40, 1, 20).last_page == 2
    assert calculate_metadata(1, 1, 100).last_page == 1
