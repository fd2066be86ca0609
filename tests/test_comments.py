from dataclasses import replace

import pytest

from blogly.errors import EditConflict, NotFound, Unauthorized
from blogly.filters import Filters, Metadata
from blogly.stores import Comment


POST_COMMENT_SAFELIST = ("id", "created_at", "user_id")
USER_COMMENT_SAFELIST = ("created_at", "updated_at")


@pytest.fixture
def post_with_owner(make_user, make_post):
    owner = make_user()
    return owner, make_post(owner)


def _comment(datastore, post, user, content="hi") -> Comment:
    return datastore.comments.insert(Comment(post_id=post.id, user_id=user.id, content=content))


def test_listing_comments_of_a_quiet_post(datastore, post_with_owner):
    _, post = post_with_owner
    comments, metadata = datastore.comments.list_for_post(
        post.id, Filters(page=1, page_size=20, sort="id", sort_safelist=POST_COMMENT_SAFELIST)
    )
    assert comments == []
    assert metadata == Metadata(0, 0, 0, 0, 0)


def test_comment_on_missing_post_is_not_found(datastore, make_user):
    user = make_user()
    with pytest.raises(NotFound):
        datastore.comments.insert(Comment(post_id=404, user_id=user.id, content="hello?"))


def test_get_is_scoped_to_the_parent_post(datastore, make_user, make_post, post_with_owner):
    owner, post = post_with_owner
    other_post = make_post(owner, title="other")
    comment = _comment(datastore, post, owner)

    assert datastore.comments.get(post.id, comment.id) == comment
    with pytest.raises(NotFound):
        datastore.comments.get(other_post.id, comment.id)
    with pytest.raises(NotFound):
        datastore.comments.get(post.id, 0)


def test_update_by_author_then_stale_and_foreign(datastore, make_user, post_with_owner):
    owner, post = post_with_owner
    stranger = make_user()
    comment = _comment(datastore, post, owner)
    original = comment.updated_at

    with pytest.raises(Unauthorized):
        datastore.comments.update(replace(comment, content="mine now"), user_id=stranger.id)

    edited = replace(comment, content="edited")
    assert datastore.comments.update(edited, user_id=owner.id) > original

    with pytest.raises(EditConflict):
        datastore.comments.update(replace(comment, content="late"), user_id=owner.id)
    assert datastore.comments.get(post.id, comment.id).content == "edited"


def test_update_under_the_wrong_post_is_not_found(datastore, make_post, post_with_owner):
    owner, post = post_with_owner
    other_post = make_post(owner)
    comment = _comment(datastore, post, owner)
    with pytest.raises(NotFound):
        datastore.comments.update(replace(comment, post_id=other_post.id, content="moved"), user_id=owner.id)


def test_delete_outcomes(datastore, make_user, make_post, post_with_owner):
    owner, post = post_with_owner
    stranger = make_user()
    other_post = make_post(owner)
    comment = _comment(datastore, post, owner)

    with pytest.raises(Unauthorized):
        datastore.comments.delete(comment.id, stranger.id, post.id)
    with pytest.raises(NotFound):
        datastore.comments.delete(comment.id, owner.id, other_post.id)
    with pytest.raises(NotFound):
        datastore.comments.delete(0, owner.id, post.id)

    datastore.comments.delete(comment.id, owner.id, post.id)
    with pytest.raises(NotFound):
        datastore.comments.get(post.id, comment.id)


def test_post_and_author_listings_are_independent(datastore, make_user, make_post, post_with_owner):
    owner, post = post_with_owner
    other = make_user()
    second_post = make_post(other)
    mine = [_comment(datastore, post, owner, f"c{i}") for i in range(3)]
    _comment(datastore, post, other, "theirs")
    _comment(datastore, second_post, owner, "elsewhere")

    comments, metadata = datastore.comments.list_for_post(
        post.id, Filters(sort="-id", sort_safelist=POST_COMMENT_SAFELIST)
    )
    assert metadata.total_records == 4
    assert [c.id for c in comments] == sorted((c.id for c in comments), reverse=True)

    comments, metadata = datastore.comments.list_by_user(
        owner.id, Filters(sort="created_at", sort_safelist=USER_COMMENT_SAFELIST)
    )
    assert metadata.total_records == 4
    assert [c.content for c in comments][:3] == [c.content for c in mine]
    assert {c.post_id for c in comments} == {post.id, second_post.id}
