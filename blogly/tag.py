from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request, url_for
from flask_login import login_required

from .datastore import DataStore
from .helpers import (
    check_expected_version,
    json_string,
    read_filters,
    read_json,
    read_string,
    read_int,
    request_deadline,
)
from .stores import Tag, validate_post_tag, validate_tag
from .validator import Validator


bp = Blueprint("tag", __name__)

TAG_SORT_SAFELIST = ("id", "name", "updated_at")


def get_datastore() -> DataStore:
    return current_app.extensions["datastore"]


@bp.get("/tags")
def list_tags():
    v = Validator()
    name = read_string(request.args, "name", "")
    post_id = read_int(request.args, "post_id", 0, v)
    filters = read_filters(request.args, v, default_sort="id", safelist=TAG_SORT_SAFELIST)
    v.raise_if_invalid()
    tags, metadata = get_datastore().tags.list(filters, post_id=post_id, name=name, deadline=request_deadline())
    return jsonify({"tags": [tag.to_record() for tag in tags], "metadata": metadata.to_record()})


@bp.get("/tags/<int:tag_id>")
def show_tag(tag_id: int):
    tag = get_datastore().tags.get(tag_id, deadline=request_deadline())
    return jsonify({"tag": tag.to_record()})


@bp.post("/tags")
@login_required
def create_tag():
    data = read_json()
    tag = Tag(name=json_string(data, "name"))
    v = Validator()
    validate_tag(v, tag)
    v.raise_if_invalid()
    get_datastore().tags.insert(tag, deadline=request_deadline())
    response = jsonify({"tag": tag.to_record()})
    response.status_code = 201
    response.headers["Location"] = url_for("tag.show_tag", tag_id=tag.id)
    return response


@bp.patch("/tags/<int:tag_id>")
@login_required
def update_tag(tag_id: int):
    datastore = get_datastore()
    tag = datastore.tags.get(tag_id, deadline=request_deadline())
    check_expected_version(tag.updated_at)
    data = read_json()
    if "name" in data:
        tag.name = json_string(data, "name")
    v = Validator()
    validate_tag(v, tag)
    v.raise_if_invalid()
    datastore.tags.update(tag, deadline=request_deadline())
    return jsonify({"tag": tag.to_record()})


@bp.delete("/tags/<int:tag_id>")
@login_required
def delete_tag(tag_id: int):
    get_datastore().tags.delete(tag_id, deadline=request_deadline())
    return jsonify({"message": "tag successfully deleted"})


# Post tags --------------------------------------------------------


@bp.get("/posts/<int:post_id>/tags")
def list_post_tags(post_id: int):
    v = Validator()
    name = read_string(request.args, "name", "")
    filters = read_filters(request.args, v, default_sort="id", safelist=TAG_SORT_SAFELIST)
    v.raise_if_invalid()
    tags, metadata = get_datastore().tags.list(filters, post_id=post_id, name=name, deadline=request_deadline())
    return jsonify({"tags": [tag.to_record() for tag in tags], "metadata": metadata.to_record()})


@bp.post("/posts/<int:post_id>/tags/<int:tag_id>")
@login_required
def add_post_tag(post_id: int, tag_id: int):
    v = Validator()
    validate_post_tag(v, post_id, tag_id)
    v.raise_if_invalid()
    link = get_datastore().post_tags.insert(post_id, tag_id, deadline=request_deadline())
    response = jsonify({"post_tag": link.to_record(), "message": "tag successfully added to post"})
    response.status_code = 201
    return response


@bp.delete("/posts/<int:post_id>/tags/<int:tag_id>")
@login_required
def delete_post_tag(post_id: int, tag_id: int):
    get_datastore().post_tags.delete(post_id, tag_id, deadline=request_deadline())
    return jsonify({"message": "tag successfully removed from post"})
