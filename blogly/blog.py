from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request, url_for
from flask_login import current_user, login_required

from .datastore import DataStore
from .errors import Unauthorized
from .helpers import (
    check_expected_version,
    json_string,
    read_filters,
    read_int,
    read_json,
    read_string,
    request_deadline,
)
from .stores import Comment, Post, validate_comment, validate_post
from .validator import Validator


bp = Blueprint("blog", __name__)

POST_SORT_SAFELIST = ("id", "user_id", "title", "content", "updated_at")
POST_COMMENT_SORT_SAFELIST = ("id", "created_at", "user_id")
USER_COMMENT_SORT_SAFELIST = ("created_at", "updated_at")


def get_datastore() -> DataStore:
    return current_app.extensions["datastore"]


# Posts ------------------------------------------------------------


@bp.get("/posts")
def list_posts():
    v = Validator()
    user_id = read_int(request.args, "user_id", 0, v)
    title = read_string(request.args, "title", "")
    content = read_string(request.args, "content", "")
    filters = read_filters(request.args, v, default_sort="id", safelist=POST_SORT_SAFELIST)
    v.raise_if_invalid()
    posts, metadata = get_datastore().posts.list(
        filters,
        user_id=user_id,
        title=title,
        content=content,
        deadline=request_deadline(),
    )
    return jsonify({"posts": [post.to_record() for post in posts], "metadata": metadata.to_record()})


@bp.get("/users/<int:user_id>/posts")
def list_user_posts(user_id: int):
    v = Validator()
    filters = read_filters(request.args, v, default_sort="id", safelist=POST_SORT_SAFELIST)
    v.raise_if_invalid()
    posts, metadata = get_datastore().posts.list_for_user(user_id, filters, deadline=request_deadline())
    return jsonify({"posts": [post.to_record() for post in posts], "metadata": metadata.to_record()})


@bp.get("/posts/<int:post_id>")
def show_post(post_id: int):
    post = get_datastore().posts.get(post_id, deadline=request_deadline())
    return jsonify({"post": post.to_record()})


@bp.post("/posts")
@login_required
def create_post():
    data = read_json()
    post = Post(
        user_id=current_user.id,
        title=json_string(data, "title"),
        content=json_string(data, "content"),
    )
    v = Validator()
    validate_post(v, post)
    v.raise_if_invalid()
    get_datastore().posts.insert(post, deadline=request_deadline())
    response = jsonify({"post": post.to_record()})
    response.status_code = 201
    response.headers["Location"] = url_for("blog.show_post", post_id=post.id)
    return response


@bp.patch("/posts/<int:post_id>")
@login_required
def update_post(post_id: int):
    datastore = get_datastore()
    post = datastore.posts.get(post_id, deadline=request_deadline())
    if post.user_id != current_user.id:
        raise Unauthorized()
    check_expected_version(post.updated_at)
    data = read_json()
    if "title" in data:
        post.title = json_string(data, "title")
    if "content" in data:
        post.content = json_string(data, "content")
    v = Validator()
    validate_post(v, post)
    v.raise_if_invalid()
    datastore.posts.update(post, user_id=current_user.id, deadline=request_deadline())
    return jsonify({"post": post.to_record()})


@bp.delete("/posts/<int:post_id>")
@login_required
def delete_post(post_id: int):
    get_datastore().posts.delete(post_id, current_user.id, deadline=request_deadline())
    return jsonify({"message": "post successfully deleted"})


# Comments ---------------------------------------------------------


@bp.get("/posts/<int:post_id>/comments")
def list_post_comments(post_id: int):
    v = Validator()
    filters = read_filters(request.args, v, default_sort="id", safelist=POST_COMMENT_SORT_SAFELIST)
    v.raise_if_invalid()
    comments, metadata = get_datastore().comments.list_for_post(post_id, filters, deadline=request_deadline())
    return jsonify({"comments": [comment.to_record() for comment in comments], "metadata": metadata.to_record()})


@bp.get("/users/<int:user_id>/comments")
def list_user_comments(user_id: int):
    v = Validator()
    filters = read_filters(request.args, v, default_sort="created_at", safelist=USER_COMMENT_SORT_SAFELIST)
    v.raise_if_invalid()
    comments, metadata = get_datastore().comments.list_by_user(user_id, filters, deadline=request_deadline())
    return jsonify({"comments": [comment.to_record() for comment in comments], "metadata": metadata.to_record()})


@bp.get("/posts/<int:post_id>/comments/<int:comment_id>")
def show_comment(post_id: int, comment_id: int):
    comment = get_datastore().comments.get(post_id, comment_id, deadline=request_deadline())
    return jsonify({"comment": comment.to_record()})


@bp.post("/posts/<int:post_id>/comments")
@login_required
def create_comment(post_id: int):
    data = read_json()
    comment = Comment(post_id=post_id, user_id=current_user.id, content=json_string(data, "content"))
    v = Validator()
    validate_comment(v, comment)
    v.raise_if_invalid()
    get_datastore().comments.insert(comment, deadline=request_deadline())
    response = jsonify({"comment": comment.to_record()})
    response.status_code = 201
    response.headers["Location"] = url_for("blog.show_comment", post_id=post_id, comment_id=comment.id)
    return response


@bp.patch("/posts/<int:post_id>/comments/<int:comment_id>")
@login_required
def update_comment(post_id: int, comment_id: int):
    datastore = get_datastore()
    comment = datastore.comments.get(post_id, comment_id, deadline=request_deadline())
    if comment.user_id != current_user.id:
        raise Unauthorized()
    check_expected_version(comment.updated_at)
    data = read_json()
    if "content" in data:
        comment.content = json_string(data, "content")
    v = Validator()
    validate_comment(v, comment)
    v.raise_if_invalid()
    datastore.comments.update(comment, user_id=current_user.id, deadline=request_deadline())
    return jsonify({"comment": comment.to_record()})


@bp.delete("/posts/<int:post_id>/comments/<int:comment_id>")
@login_required
def delete_comment(post_id: int, comment_id: int):
    get_datastore().comments.delete(comment_id, current_user.id, post_id, deadline=request_deadline())
    return jsonify({"message": "comment successfully deleted"})
