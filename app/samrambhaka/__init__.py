import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from app.samrambhaka.config import load_config
from app.samrambhaka.db import init_db, teardown_db_session
from app.samrambhaka.errors import ServiceError
from app.samrambhaka.models import Base
from app.samrambhaka.routes import bp as routes_bp
from app.samrambhaka.auth import bp as auth_bp, load_current_user
from app.samrambhaka.admin import bp as admin_bp
from app.samrambhaka.modules.profiles.routes import bp as profiles_bp
from app.samrambhaka.modules.follows.routes import bp as follows_bp
from app.samrambhaka.modules.posts.routes import bp as posts_bp
from app.samrambhaka.modules.communities.routes import bp as communities_bp
from app.samrambhaka.modules.businesses.routes import bp as businesses_bp
from app.samrambhaka.modules.messaging.routes import bp as messaging_bp
from app.samrambhaka.modules.notifications.routes import bp as notifications_bp
from app.samrambhaka.modules.moderation.routes import bp as reports_bp
from app.samrambhaka.modules.moderation.admin import bp as moderation_admin_bp
from app.samrambhaka.modules.content.routes import bp as content_bp
from app.samrambhaka.modules.content.admin import bp as content_admin_bp
from app.samrambhaka.security import UNGUARDED_PREFIXES, csrf_guard
from app.samrambhaka.storage import StorageError


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    app.before_request(csrf_guard)

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Storage config check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = []
        for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
            if not app.config.get(key):
                missing_s3.append(key)
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(moderation_admin_bp, url_prefix="/admin")
    app.register_blueprint(content_admin_bp, url_prefix="/admin")
    app.register_blueprint(profiles_bp, url_prefix="/api/profiles")
    app.register_blueprint(follows_bp, url_prefix="/api/follows")
    app.register_blueprint(posts_bp, url_prefix="/api/posts")
    app.register_blueprint(communities_bp, url_prefix="/api/communities")
    app.register_blueprint(businesses_bp, url_prefix="/api/businesses")
    app.register_blueprint(messaging_bp, url_prefix="/api/messages")
    app.register_blueprint(notifications_bp, url_prefix="/api/notifications")
    app.register_blueprint(reports_bp, url_prefix="/api/reports")
    app.register_blueprint(content_bp, url_prefix="/api")

    def _load_user_wrapper():
        if request.path.startswith(UNGUARDED_PREFIXES):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    # Schema health (lean): log tables the models expect but the database lacks.
    def _run_schema_health_check() -> None:
        try:
            existing = set(sa_inspect(app.extensions["sqlalchemy_engine"]).get_table_names())
        except SQLAlchemyError as e:
            app.logger.error("Schema health check failed: %s", e)
            return
        missing = sorted(set(Base.metadata.tables) - existing)
        app.config["_schema_health_missing"] = missing
        if missing:
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing tables: %s", ", ".join(missing))

    _run_schema_health_check()

    @app.errorhandler(ServiceError)
    def _err_service(e: ServiceError):  # type: ignore[no-redef]
        if e.status_code >= 500:
            app.logger.error("Service error (request_id=%s): %s", getattr(g, "request_id", None), e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(StorageError)
    def _err_storage(e: StorageError):  # type: ignore[no-redef]
        app.logger.exception("Storage failure (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "File storage failed. Please try again."}), 500

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        return jsonify({"error": "Internal server error", "request_id": rid}), 500

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        body = {"error": "Forbidden"}
        if missing:
            body["missing_permission"] = missing
        return jsonify(body), 403

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        return jsonify({"error": "File too large. Maximum upload size is 10MB."}), 413

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        messages = {401: "Authentication required", 404: "Not found", 405: "Method not allowed"}
        return jsonify({"error": messages.get(e.code or 0, e.name)}), e.code

    # Startup logging
    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
