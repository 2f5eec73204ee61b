"""
PermitDesk
Flask Application Factory.

Usage:
    from permitdesk import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_migrate import Migrate

from permitdesk.config import config
from permitdesk.models import db
from permitdesk.middleware.logging_config import configure_logging
from permitdesk.middleware.jwt_auth import init_jwt_middleware
from permitdesk.middleware.rate_limiter import init_rate_limits, principal_or_remote_addr
from permitdesk.utils.errors import E, api_error, register_error_handlers

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
limiter = Limiter(
    key_func=principal_or_remote_addr,
    default_limits=[],                     # no global limit, applied per-blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
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
    app.config.from_object(config[config_name])

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── JWT auth middleware (sets g.principal_id) ────────────────────────
    init_jwt_middleware(app)

    # ── Error handlers ───────────────────────────────────────────────────
    register_error_handlers(app)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests",
                         details={"retry_after": e.description})

    # ── Import all models so Alembic can detect them ─────────────────────
    from permitdesk.models import auth as _auth_models               # noqa: F401
    from permitdesk.models import permit as _permit_models           # noqa: F401
    from permitdesk.models import document as _document_models       # noqa: F401
    from permitdesk.models import activity as _activity_models       # noqa: F401
    from permitdesk.models import workflow as _workflow_models       # noqa: F401
    from permitdesk.models import notification as _notification_models  # noqa: F401
    from permitdesk.models import inspection as _inspection_models   # noqa: F401
    from permitdesk.models import message as _message_models         # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from permitdesk.blueprints.health_bp import health_bp
    from permitdesk.blueprints.permits_bp import permits_bp
    from permitdesk.blueprints.parties_bp import parties_bp
    from permitdesk.blueprints.milestones_bp import milestones_bp
    from permitdesk.blueprints.documents_bp import documents_bp
    from permitdesk.blueprints.activity_bp import activity_bp
    from permitdesk.blueprints.workflows_bp import workflows_bp
    from permitdesk.blueprints.inspections_bp import inspections_bp
    from permitdesk.blueprints.notifications_bp import notifications_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(permits_bp)
    app.register_blueprint(parties_bp)
    app.register_blueprint(milestones_bp)
    app.register_blueprint(documents_bp)
    app.register_blueprint(activity_bp)
    app.register_blueprint(workflows_bp)
    app.register_blueprint(inspections_bp)
    app.register_blueprint(notifications_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-workflow-templates")
    def seed_workflow_templates_cmd():
        """Seed the built-in workflow templates (one default per permit type)."""
        from permitdesk.services.workflow_template_service import seed_default_templates
        count = seed_default_templates()
        db.session.commit()
        logger.info("Seeded %s new workflow templates.", count)

    @app.cli.command("dispatch-notifications")
    def dispatch_notifications_cmd():
        """Deliver pending notification outbox rows once."""
        from permitdesk.services.notification_dispatcher import drain_outbox
        result = drain_outbox(app.config.get("NOTIFICATION_BATCH_SIZE", 50))
        logger.info(
            "Outbox: processed=%s sent=%s failed=%s",
            result["processed"], result["sent"], result["failed"],
        )

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Notification worker (registered, never started here) ─────────────
    from permitdesk.services.notification_dispatcher import NotificationWorker
    app.extensions["notification_worker"] = NotificationWorker(app)

    @app.cli.command("notification-worker")
    def notification_worker_cmd():
        """Drain the notification outbox in the foreground until interrupted."""
        worker = app.extensions["notification_worker"]
        try:
            worker.run_forever()
        except KeyboardInterrupt:
            worker.stop()
        logger.info("Notification worker stopped.")

    return app
