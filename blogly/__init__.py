import os
from pathlib import Path
from typing import Any, Mapping, Optional

from flask import Flask, current_app, g, jsonify, request
from flask_login import LoginManager
from werkzeug.exceptions import HTTPException

from .datastore import DataStore
from .db import DEFAULT_QUERY_TIMEOUT, Deadline
from .errors import (
    DuplicateEntry,
    EditConflict,
    NotFound,
    TransientStoreFailure,
    Unauthorized,
    ValidationError,
)


__version__ = "1.0.0"

login_manager = LoginManager()


def create_app(test_config: Optional[Mapping[str, Any]] = None) -> Flask:
    app = Flask(__name__)

    app.config.from_mapping(
        SECRET_KEY=os.getenv("SECRET_KEY", "dev-secret-key"),
        DATA_PATH=os.getenv("BLOGLY_DATA_PATH", str(Path(app.root_path).parent / "data")),
        QUERY_TIMEOUT=float(os.getenv("BLOGLY_QUERY_TIMEOUT", DEFAULT_QUERY_TIMEOUT)),
        REQUEST_TIMEOUT=float(os.getenv("BLOGLY_REQUEST_TIMEOUT", "10")),
        TOKEN_TTL_HOURS=float(os.getenv("BLOGLY_TOKEN_TTL_HOURS", "24")),
        LOG_LEVEL=os.getenv("BLOGLY_LOG_LEVEL", "INFO"),
        ENVIRONMENT=os.getenv("BLOGLY_ENV", "development"),
    )
    if test_config:
        app.config.update(test_config)
    app.logger.setLevel(app.config["LOG_LEVEL"])

    datastore = DataStore(Path(app.config["DATA_PATH"]), query_timeout=app.config["QUERY_TIMEOUT"])
    app.extensions["datastore"] = datastore

    login_manager.init_app(app)

    from .auth import bp as auth_bp
    from .blog import bp as blog_bp
    from .tag import bp as tag_bp

    app.register_blueprint(auth_bp, url_prefix="/v1")
    app.register_blueprint(blog_bp, url_prefix="/v1")
    app.register_blueprint(tag_bp, url_prefix="/v1")

    @app.before_request
    def start_deadline():
        g.deadline = Deadline.after(current_app.config["REQUEST_TIMEOUT"])

    @app.teardown_request
    def cancel_deadline(exc: Optional[BaseException]):
        deadline = g.pop("deadline", None)
        if deadline is not None:
            deadline.cancel()

    @app.after_request
    def log_request(response):
        current_app.logger.debug("%s %s -> %s", request.method, request.path, response.status_code)
        return response

    @app.get("/v1/healthcheck")
    def healthcheck():
        return jsonify(
            {
                "status": "available",
                "system_info": {
                    "environment": current_app.config["ENVIRONMENT"],
                    "version": __version__,
                },
            }
        )

    _register_error_handlers(app)
    return app


def _error_response(status: int, message: Any):
    return jsonify({"error": message}), status


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(NotFound)
    def not_found(exc: NotFound):
        return _error_response(404, "the requested resource could not be found")

    @app.errorhandler(EditConflict)
    def edit_conflict(exc: EditConflict):
        return _error_response(409, "unable to update the record due to an edit conflict, please try again")

    @app.errorhandler(Unauthorized)
    def not_permitted(exc: Unauthorized):
        return _error_response(403, "your user account doesn't have the necessary permissions to access this resource")

    @app.errorhandler(DuplicateEntry)
    def duplicate_entry(exc: DuplicateEntry):
        if exc.field:
            return _error_response(422, {exc.field: str(exc)})
        return _error_response(409, str(exc))

    @app.errorhandler(ValidationError)
    def failed_validation(exc: ValidationError):
        return _error_response(422, exc.errors)

    @app.errorhandler(TransientStoreFailure)
    def server_error(exc: TransientStoreFailure):
        current_app.logger.exception("Store failure on %s %s", request.method, request.path)
        return _error_response(500, "the server encountered a problem and could not process your request")

    @app.errorhandler(HTTPException)
    def http_error(exc: HTTPException):
        return _error_response(exc.code or 500, exc.description)


@login_manager.request_loader
def load_user_from_request(req):
    scheme, _, token = req.headers.get("Authorization", "").partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return None
    datastore: Optional[DataStore] = current_app.extensions.get("datastore")
    if not datastore:
        return None
    return datastore.tokens.get_user_for_token(token, deadline=g.get("deadline"))


@login_manager.unauthorized_handler
def unauthorized():
    return _error_response(401, "you must be authenticated to access this resource")
