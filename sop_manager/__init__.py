"""
SOP Document Manager
Flask Application Factory.

Usage:
    from sop_manager import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from sop_manager.config import config
from sop_manager.middleware.jwt_auth import init_jwt_middleware
from sop_manager.middleware.logging_config import configure_logging
from sop_manager.middleware.timing import init_request_timing
from sop_manager.models import db

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()

DEFAULT_DEPARTMENTS = (
    "Finance", "Human Resources", "Operations", "Information Technology",
    "Legal", "Procurement", "Quality", "Health and Safety",
)
DEFAULT_COUNTRIES = (
    ("Saudi Arabia", "SA"), ("United Arab Emirates", "AE"), ("Egypt", "EG"),
    ("Jordan", "JO"), ("United Kingdom", "GB"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: "development", "testing" or "production".
                     Defaults to APP_ENV, or "development" if unset.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])

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

    # ── Request timing + JWT actor ───────────────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from sop_manager.models import audit as _audit_models                 # noqa: F401
    from sop_manager.models import change_request as _cr_models           # noqa: F401
    from sop_manager.models import document as _document_models           # noqa: F401
    from sop_manager.models import notification as _notification_models   # noqa: F401
    from sop_manager.models import reference as _reference_models         # noqa: F401
    from sop_manager.models import user as _user_models                   # noqa: F401

    # ── Auto-create tables for SQLite (tests manage their own schema) ────
    if not app.testing and app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            try:
                db.create_all()
                app.logger.info("db.create_all() completed successfully")
            except Exception as e:
                app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from sop_manager.blueprints.auth_bp import auth_bp
    from sop_manager.blueprints.change_request_bp import change_request_bp
    from sop_manager.blueprints.dashboard_bp import dashboard_bp
    from sop_manager.blueprints.document_bp import document_bp
    from sop_manager.blueprints.health_bp import health_bp
    from sop_manager.blueprints.notification_bp import notification_bp
    from sop_manager.blueprints.reference_bp import reference_bp
    from sop_manager.blueprints.user_bp import user_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(user_bp)
    app.register_blueprint(document_bp)
    app.register_blueprint(change_request_bp)
    app.register_blueprint(reference_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(health_bp)

    _register_cli(app)

    # ── App-level error handlers (routing errors never reach blueprints) ─
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error on %s", request.path, exc_info=True)
        return {"error": "Internal server error"}, 500

    return app


def _register_cli(app):

    @app.cli.command("create-user")
    @click.option("--email", required=True)
    @click.option("--name", required=True)
    @click.option("--role", default="admin", show_default=True)
    @click.option("--department", default=None)
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    def create_user_cmd(email, name, role, department, password):
        """Create a directory user (first admin, service accounts)."""
        from sop_manager.services.user_service import create_user

        user = create_user(email=email, name=name, password=password, role=role,
                           department=department, created_by="cli")
        click.echo(f"Created {user.email} ({user.role}) id={user.id}")

    @app.cli.command("seed-reference")
    def seed_reference_cmd():
        """Seed default departments and countries (idempotent)."""
        from sop_manager.models.reference import Country, Department

        added = 0
        for name in DEFAULT_DEPARTMENTS:
            if not Department.query.filter_by(name=name).first():
                db.session.add(Department(name=name, code=name[:3].upper()))
                added += 1
        for name, code in DEFAULT_COUNTRIES:
            if not Country.query.filter_by(name=name).first():
                db.session.add(Country(name=name, code=code))
                added += 1
        db.session.commit()
        logger.info("Seeded %s reference rows.", added)
        click.echo(f"Seeded {added} reference rows.")
