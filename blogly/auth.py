from __future__ import annotations

import logging
from datetime import timedelta

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from .datastore import DataStore
from .db import format_timestamp
from .errors import Unauthorized
from .helpers import (
    check_expected_version,
    json_string,
    read_filters,
    read_json,
    read_string,
    request_deadline,
)
from .stores import User, validate_email, validate_password, validate_user
from .validator import Validator


bp = Blueprint("auth", __name__)

USER_SORT_SAFELIST = ("id", "name", "created_at")


def get_datastore() -> DataStore:
    return current_app.extensions["datastore"]


logger = logging.getLogger(__name__)


@bp.post("/users")
def register():
    data = read_json()
    password = json_string(data, "password")
    user = User(name=json_string(data, "name"), email=json_string(data, "email"))
    v = Validator()
    validate_user(v, user, password)
    v.raise_if_invalid()
    get_datastore().users.insert(user, password, deadline=request_deadline())
    response = jsonify({"user": user.to_record()})
    response.status_code = 201
    return response


@bp.get("/users")
def list_users():
    v = Validator()
    name = read_string(request.args, "name", "")
    filters = read_filters(request.args, v, default_sort="id", safelist=USER_SORT_SAFELIST)
    v.raise_if_invalid()
    users, metadata = get_datastore().users.list(filters, name=name, deadline=request_deadline())
    return jsonify({"users": [user.to_record() for user in users], "metadata": metadata.to_record()})


@bp.get("/users/<int:user_id>")
def show_user(user_id: int):
    user = get_datastore().users.get(user_id, deadline=request_deadline())
    return jsonify({"user": user.to_record()})


@bp.patch("/users/<int:user_id>")
@login_required
def update_user(user_id: int):
    if user_id != current_user.id:
        raise Unauthorized()
    datastore = get_datastore()
    user = datastore.users.get(user_id, deadline=request_deadline())
    check_expected_version(user.updated_at)
    data = read_json()
    if "name" in data:
        user.name = json_string(data, "name")
    if "email" in data:
        user.email = json_string(data, "email")
    password = json_string(data, "password") if "password" in data else None
    v = Validator()
    validate_user(v, user, password)
    v.raise_if_invalid()
    datastore.users.update(user, user_id=current_user.id, password=password, deadline=request_deadline())
    if password is not None:
        revoked = datastore.tokens.delete_all_for_user(user.id, deadline=request_deadline())
        logger.info("Password changed for user %s, revoked %s tokens", user.id, revoked)
    return jsonify({"user": user.to_record()})


@bp.delete("/users/<int:user_id>")
@login_required
def delete_user(user_id: int):
    get_datastore().users.delete(user_id, current_user.id, deadline=request_deadline())
    return jsonify({"message": "user successfully deleted"})


@bp.post("/tokens/authentication")
def create_authentication_token():
    data = read_json()
    email = json_string(data, "email")
    password = json_string(data, "password")
    v = Validator()
    validate_email(v, email)
    validate_password(v, password)
    v.raise_if_invalid()

    datastore = get_datastore()
    user = datastore.users.authenticate(email, password, deadline=request_deadline())
    if user is None:
        logger.info("Rejected authentication attempt for %s", email)
        return jsonify({"error": "invalid authentication credentials"}), 401

    ttl = timedelta(hours=current_app.config["TOKEN_TTL_HOURS"])
    token, expiry = datastore.tokens.new_token(user.id, ttl, deadline=request_deadline())
    response = jsonify({"authentication_token": {"token": token, "expiry": format_timestamp(expiry)}})
    response.status_code = 201
    return response
