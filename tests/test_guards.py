from datetime import datetime, timedelta, timezone

import pytest

from blogly.errors import EditConflict, NotFound, Unauthorized
from blogly.guards import ConditionalWrite, WritePhase, next_version


def test_next_version_advances_past_a_future_timestamp():
    future = datetime.now(timezone.utc) + timedelta(hours=1)
    assert next_version(future) > future
    assert next_version(future) - future == timedelta(microseconds=1)


def test_next_version_uses_current_time():
    past = datetime(2020, 1, 1, tzinfo=timezone.utc)
    version = next_version(past)
    assert version > past
    assert version.year >= 2024


def test_applied_write_resolves_immediately():
    write = ConditionalWrite("post", owner_id=1, versioned=True)
    assert write.record_rowcount(1) is True
    assert write.phase is WritePhase.RESOLVED
    assert write.outcome is None


def test_missing_row_is_not_found():
    write = ConditionalWrite("post", owner_id=1)
    assert write.record_rowcount(0) is False
    assert write.phase is WritePhase.DISAMBIGUATING
    assert isinstance(write.resolve(None), NotFound)
    assert write.phase is WritePhase.RESOLVED


def test_foreign_owner_is_unauthorized_even_for_versioned_writes():
    write = ConditionalWrite("comment", owner_id=1, versioned=True)
    write.record_rowcount(0)
    assert isinstance(write.resolve({"owner_id": 2}), Unauthorized)


def test_owned_row_that_did_not_match_is_a_conflict():
    write = ConditionalWrite("post", owner_id=1, versioned=True)
    write.record_rowcount(0)
    assert isinstance(write.resolve({"owner_id": 1}), EditConflict)


def test_unowned_resource_only_reports_conflict_or_not_found():
    write = ConditionalWrite("tag", versioned=True)
    write.record_rowcount(0)
    assert isinstance(write.resolve({"owner_id": None}), EditConflict)


def test_phases_cannot_be_replayed():
    write = ConditionalWrite("post")
    with pytest.raises(RuntimeError):
        write.resolve(None)
    write.record_rowcount(0)
    write.resolve(None)
    with pytest.raises(RuntimeError):
        write.record_rowcount(1)
    with pytest.raises(RuntimeError):
        write.resolve(None)


def test_unversioned_write_on_a_permitted_row_is_an_inconsistency():
    write = ConditionalWrite("post", owner_id=1)
    write.record_rowcount(0)
    with pytest.raises(RuntimeError):
        write.resolve({"owner_id": 1})
    assert write.outcome is None
