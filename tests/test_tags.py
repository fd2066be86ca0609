from dataclasses import replace

import pytest

from blogly.errors import DuplicateEntry, EditConflict, NotFound
from blogly.filters import Filters
from blogly.stores import Tag


TAG_SAFELIST = ("id", "name", "updated_at")


def _filters(**kwargs) -> Filters:
    kwargs.setdefault("sort_safelist", TAG_SAFELIST)
    return Filters(**kwargs)


def test_duplicate_name_is_reported_on_the_name_field(datastore):
    datastore.tags.insert(Tag(name="go"))
    with pytest.raises(DuplicateEntry) as excinfo:
        datastore.tags.insert(Tag(name="go"))
    assert excinfo.value.field == "name"


def test_rename_into_an_existing_name_is_a_duplicate(datastore):
    datastore.tags.insert(Tag(name="go"))
    rust = datastore.tags.insert(Tag(name="rust"))
    with pytest.raises(DuplicateEntry):
        datastore.tags.update(replace(rust, name="go"))
    assert datastore.tags.get(rust.id).name == "rust"


def test_update_conflicts_and_missing(datastore):
    tag = datastore.tags.insert(Tag(name="python"))
    renamed = replace(tag, name="python3")
    assert datastore.tags.update(renamed) > tag.updated_at

    with pytest.raises(EditConflict):
        datastore.tags.update(replace(tag, name="py"))

    datastore.tags.delete(tag.id)
    with pytest.raises(NotFound):
        datastore.tags.update(renamed)


def test_delete_missing_tag(datastore):
    with pytest.raises(NotFound):
        datastore.tags.delete(12)
    with pytest.raises(NotFound):
        datastore.tags.delete(0)


def test_post_scope_returns_only_that_posts_tags(datastore, make_user, make_post):
    user = make_user()
    p1, p2 = make_post(user, title="P1"), make_post(user, title="P2")
    go = datastore.tags.insert(Tag(name="go"))
    rust = datastore.tags.insert(Tag(name="rust"))
    datastore.tags.insert(Tag(name="haskell"))
    datastore.post_tags.insert(p1.id, go.id)
    datastore.post_tags.insert(p1.id, rust.id)
    datastore.post_tags.insert(p2.id, go.id)

    tags, metadata = datastore.tags.list(_filters(sort="name"), post_id=p1.id)
    assert [tag.name for tag in tags] == ["go", "rust"]
    assert metadata.total_records == 2

    tags, _ = datastore.tags.list(_filters(), post_id=p2.id)
    assert [tag.name for tag in tags] == ["go"]

    tags, metadata = datastore.tags.list(_filters())
    assert metadata.total_records == 3


def test_name_search_combines_with_post_scope(datastore, make_user, make_post):
    user = make_user()
    post = make_post(user)
    for name in ["rust", "rustlang", "go"]:
        datastore.post_tags.insert(post.id, datastore.tags.insert(Tag(name=name)).id)
    datastore.tags.insert(Tag(name="trusty"))

    tags, _ = datastore.tags.list(_filters(sort="-name"), post_id=post.id, name="RUST")
    assert [tag.name for tag in tags] == ["rustlang", "rust"]

    tags, _ = datastore.tags.list(_filters(sort="name"), name="rust")
    assert [tag.name for tag in tags] == ["rust", "rustlang", "trusty"]


def test_name_search_folds_non_ascii_letters(datastore):
    datastore.tags.insert(Tag(name="Ünicode"))
    datastore.tags.insert(Tag(name="unicode"))

    for term in ["Ünicode", "ÜNICODE", "ünic"]:
        tags, _ = datastore.tags.list(_filters(), name=term)
        assert [tag.name for tag in tags] == ["Ünicode"]
