# app.py - specialty-scoped resource library (Flask app factory)
from __future__ import annotations

import logging
import os
from datetime import timedelta
from typing import Mapping, Optional
from urllib.parse import urlparse, urlunparse, parse_qs, urlencode

from dotenv import load_dotenv
from flask import Flask, jsonify, session
from sqlalchemy import text
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

# === Extensions (db, login_manager) ===
from extensions import db, login_manager

# -------------------------------------------------------------------
# Environnement
# -------------------------------------------------------------------
load_dotenv()

DEFAULT_PAGE_SIZE = 10


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


# -------------------------------------------------------------------
# DB / SQLAlchemy + psycopg3
# -------------------------------------------------------------------
def _normalize_pg_uri(uri: str) -> str:
    """Normalise a Postgres URI for SQLAlchemy + psycopg3 and add sslmode=require when missing."""
    if not uri:
        return uri
    # Heroku/Render sometimes hand out 'postgres://'
    if uri.startswith("postgres://"):
        uri = "postgresql://" + uri[len("postgres://"):]
    # force psycopg3
    if uri.startswith("postgresql+psycopg2://"):
        uri = "postgresql+psycopg://" + uri[len("postgresql+psycopg2://"):]
    elif uri.startswith("postgresql://"):
        uri = "postgresql+psycopg://" + uri[len("postgresql://"):]
    parsed = urlparse(uri)
    q = parse_qs(parsed.query)
    if parsed.scheme.startswith("postgresql+psycopg") and "sslmode" not in q:
        q["sslmode"] = ["require"]
        uri = urlunparse(parsed._replace(query=urlencode({k: v[0] for k, v in q.items()})))
    return uri


def _database_uri(overrides: Mapping) -> str:
    db_url = (
        overrides.get("SQLALCHEMY_DATABASE_URI")
        or os.getenv("SQLALCHEMY_DATABASE_URI")
        or os.getenv("DATABASE_URL")
        or os.getenv("POSTGRES_URL")
    )
    if not db_url:
        raise RuntimeError("Missing DATABASE_URL or SQLALCHEMY_DATABASE_URI environment variable")
    return _normalize_pg_uri(db_url)


def _configure_logging(app: Flask) -> None:
    level_name = str(app.config.get("LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    # engine modules log through logging.getLogger(__name__)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app.logger.setLevel(level)


# -------------------------------------------------------------------
# Factory
# -------------------------------------------------------------------
def create_app(config_overrides: Optional[Mapping] = None) -> Flask:
    overrides = dict(config_overrides or {})
    app = Flask(__name__)

    # Security & cookies / sessions
    app.config.update(
        SECRET_KEY=os.environ.get("SECRET_KEY", "dev-change-me"),
        PREFERRED_URL_SCHEME="https",
        SESSION_PERMANENT=True,
        PERMANENT_SESSION_LIFETIME=timedelta(days=30),
        SESSION_COOKIE_SECURE=_env_bool("SESSION_COOKIE_SECURE", True),
        SESSION_COOKIE_SAMESITE="Lax",
        REMEMBER_COOKIE_NAME="library_remember",
        REMEMBER_COOKIE_DURATION=timedelta(days=60),
        REMEMBER_COOKIE_SECURE=_env_bool("SESSION_COOKIE_SECURE", True),
        REMEMBER_COOKIE_SAMESITE="Lax",
        LIBRARY_PAGE_SIZE=_env_int("LIBRARY_PAGE_SIZE", DEFAULT_PAGE_SIZE),
        AUTO_CREATE_TABLES=_env_bool("AUTO_CREATE_TABLES", True),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )

    db_url = _database_uri(overrides)
    app.config["SQLALCHEMY_DATABASE_URI"] = db_url
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    if db_url.startswith("postgresql"):
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
            **app.config.get("SQLALCHEMY_ENGINE_OPTIONS", {}),
            "pool_pre_ping": True,
            "pool_recycle": 1800,
            "pool_size": 5,
            "max_overflow": 10,
        }

    app.config.update(overrides)
    app.config["SQLALCHEMY_DATABASE_URI"] = db_url
    _configure_logging(app)

    # Proxy (Render/Cloudflare)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1)

    db.init_app(app)

    # -------------------------------------------------------------------
    # Login manager
    # -------------------------------------------------------------------
    login_manager.init_app(app)

    from models import User

    @login_manager.user_loader
    def _load_user(user_id: str):
        try:
            return db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None

    @login_manager.unauthorized_handler
    def _unauthorized():
        return jsonify({"error": "Sign in required."}), 401

    @app.before_request
    def _keep_session_permanent():
        session.permanent = True

    # -------------------------------------------------------------------
    # Scope gate (latest resolution per viewer wins)
    # -------------------------------------------------------------------
    from scope_resolver import ScopeRequestGate

    app.extensions["scope_gate"] = ScopeRequestGate()

    # -------------------------------------------------------------------
    # Blueprints
    # -------------------------------------------------------------------
    from library_portal import library_bp
    from admin_server import admin_bp

    app.register_blueprint(library_bp, url_prefix="/library")
    app.register_blueprint(admin_bp, url_prefix="/admin")

    from cli import register_cli

    register_cli(app)

    # =========================
    #   HEALTH / ERRORS
    # =========================
    @app.route("/health", endpoint="health")
    def health():
        try:
            db.session.execute(text("SELECT 1"))
            return jsonify({"status": "ok"})
        except Exception as e:
            db.session.rollback()
            app.logger.warning("[HEALTH] database check failed: %s", e)
            return jsonify({"status": "degraded"}), 503

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({"error": e.description or e.name}), e.code

    @app.errorhandler(500)
    def server_error(e):
        original = getattr(e, "original_exception", None) or e
        app.logger.exception("[APP] unhandled error: %s", original)
        return jsonify({"error": "Internal server error."}), 500

    # =========================
    #   BOOT
    # =========================
    if app.config.get("AUTO_CREATE_TABLES"):
        with app.app_context():
            import models  # noqa: F401  (registers every table before create_all)

            db.create_all()
            app.logger.info("[BOOT] tables ensured on %s", urlparse(db_url).scheme)

    return app
