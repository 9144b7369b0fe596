"""
PharmaTrack Manufacturing Tracking Backend
Flask Application Factory.

Usage:
    from pharmatrack import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from pharmatrack.config import config
from pharmatrack.models import db
from pharmatrack.middleware.logging_config import configure_logging
from pharmatrack.middleware.timing import init_request_timing
from pharmatrack.middleware.jwt_auth import init_jwt_middleware
from pharmatrack.middleware.rate_limiter import init_rate_limits
from pharmatrack.services import cache_events, cache_service, cache_warming, revocation_store

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())
    os.makedirs(app.instance_path, exist_ok=True)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing + JWT auth middleware ─────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)

    # ── Cache, token blocklist, invalidation consumer ────────────────────
    cache_service.init(app.config)
    revocation_store.init(app.config)
    cache_events.init(app.config)

    # ── Import all models so create_all sees them ────────────────────────
    from pharmatrack.models import auth as _auth_models              # noqa: F401
    from pharmatrack.models import production as _production_models  # noqa: F401
    from pharmatrack.models import audit as _audit_models            # noqa: F401

    with app.app_context():
        db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from pharmatrack.blueprints.audit_bp import audit_bp
    from pharmatrack.blueprints.auth_bp import auth_bp
    from pharmatrack.blueprints.health_bp import health_bp
    from pharmatrack.blueprints.process_bp import process_bp
    from pharmatrack.blueprints.production_line_bp import production_line_bp
    from pharmatrack.blueprints.user_bp import user_bp

    app.register_blueprint(production_line_bp)
    app.register_blueprint(process_bp)
    app.register_blueprint(user_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-admin")
    @click.option("--email", required=True)
    @click.option("--password", required=True)
    def seed_admin_cmd(email, password):
        """Create the first ADMIN user."""
        from pharmatrack.services.user_service import seed_admin
        user = seed_admin(email, password)
        click.echo(f"Administrator created: {user.id}")

    @app.cli.command("warm-cache")
    def warm_cache_cmd():
        """Run one cache warming pass."""
        result = cache_warming.warm_cache()
        click.echo(result["message"])

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Cache warming (startup pass + optional background refresh) ───────
    cache_warming.init_app(app)

    return app
