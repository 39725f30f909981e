"""
CivicTrack workflow engine
Flask Application Factory.

Usage:
    from civictrack import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
    app = create_app("testing", clock=FrozenClock(), id_factory=counter)
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_migrate import Migrate
from sqlalchemy import event

from civictrack.config import config
from civictrack.core.clock import CLOCK_EXTENSION, ID_FACTORY_EXTENSION, SystemClock, uuid_factory
from civictrack.middleware.actor_context import init_actor_context
from civictrack.middleware.logging_config import configure_logging
from civictrack.middleware.timing import init_request_timing
from civictrack.models import db
from civictrack.services.entity_locks import init_lock_registry

logger = logging.getLogger(__name__)

migrate = Migrate()


def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_app(config_name=None, *, clock=None, id_factory=None, overrides=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
        clock: Object with ``now()`` / ``today()``; defaults to the UTC wall clock.
        id_factory: Zero-argument callable returning new entity ids.
        overrides: Extra config values applied after the config class.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])
    if overrides:
        app.config.update(overrides)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Injected time / id sources ───────────────────────────────────────
    app.extensions[CLOCK_EXTENSION] = clock or SystemClock()
    app.extensions[ID_FACTORY_EXTENSION] = id_factory or uuid_factory

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    init_lock_registry(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing, then actor resolution ────────────────────────────
    init_request_timing(app)
    init_actor_context(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from civictrack.models import audit as _audit_models            # noqa: F401
    from civictrack.models import department as _department_models  # noqa: F401
    from civictrack.models import issue as _issue_models            # noqa: F401
    from civictrack.models import tender as _tender_models          # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ──
    os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        if app.config.get("SQLITE_FOREIGN_KEYS") and db.engine.dialect.name == "sqlite":
            event.listen(db.engine, "connect", _enable_sqlite_fk)
        db.create_all()
        app.logger.debug("db.create_all() completed")

    # ── Blueprints ───────────────────────────────────────────────────────
    from civictrack.blueprints.workflow_bp import workflow_bp

    app.register_blueprint(workflow_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-departments")
    def seed_departments_cmd():
        """Seed the default municipal departments."""
        from civictrack.models.department import seed_default_departments
        count = seed_default_departments()
        db.session.commit()
        logger.info("Seeded %s new departments.", count)

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "CivicTrack"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    return app
