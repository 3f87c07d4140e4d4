"""
Job Stage Progression Engine
Flask Application Factory.

Usage:
    from jobflow import create_app
    app = create_app()           # defaults to APP_ENV, else "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_migrate import Migrate

from jobflow.config import config
from jobflow.models import db
from jobflow.middleware.logging_config import configure_logging
from jobflow.middleware.timing import init_request_timing

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


migrate = Migrate()


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
    config_class = config[config_name]
    app.config.from_object(config_class() if config_name == "production" else config_class)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from jobflow.models import auth as _auth_models               # noqa: F401
    from jobflow.models import workflow as _workflow_models       # noqa: F401
    from jobflow.models import job as _job_models                 # noqa: F401
    from jobflow.models import progression as _progression_models  # noqa: F401

    # ── Blueprints ───────────────────────────────────────────────────────
    from jobflow.blueprints.progression_bp import progression_bp
    from jobflow.blueprints.catalog_bp import catalog_bp
    from jobflow.blueprints.health_bp import health_bp

    app.register_blueprint(progression_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-stages")
    @click.option("--tenant-id", type=int, default=None,
                  help="Seed a tenant-specific catalog instead of the global one.")
    def seed_stages_cmd(tenant_id):
        """Seed the default 12-stage construction workflow."""
        from jobflow.services.default_catalog import seed_default_catalog
        counts = seed_default_catalog(tenant_id)
        if counts["created"]:
            logger.info("Seeded %s stages, %s questions, %s transitions, %s task templates.",
                        counts["stages"], counts["questions"],
                        counts["transitions"], counts["task_templates"])
        else:
            logger.info("Stage catalog already present; nothing seeded.")

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    return app
