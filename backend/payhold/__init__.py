import os
import subprocess
from datetime import datetime
from pathlib import Path

import click
from flask import Flask, jsonify, request
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from payhold.errors import EscrowError
from payhold.extensions import cors, db, migrate
from payhold.segments.segment_carrier_webhooks import carrier_webhooks_bp
from payhold.segments.segment_cron import cron_bp
from payhold.segments.segment_orders_api import orders_bp
from payhold.utils.observability import (
    configure_logging,
    error_payload,
    init_otel,
    init_sentry,
    install_request_observers,
)


def _resolve_alembic_head() -> str:
    try:
        from alembic.config import Config
        from alembic.script import ScriptDirectory

        migrations_dir = Path(__file__).resolve().parents[1] / "migrations"
        cfg = Config(str(migrations_dir / "alembic.ini"))
        cfg.set_main_option("script_location", str(migrations_dir))
        heads = ScriptDirectory.from_config(cfg).get_heads()
        return heads[0] if heads else "unknown"
    except Exception:
        return "unknown"


def _resolve_git_sha() -> str:
    val = (os.getenv("GIT_SHA") or "").strip()
    if val:
        return val
    try:
        out = subprocess.check_output(
            ["git", "rev-parse", "HEAD"],
            cwd=str(Path(__file__).resolve().parents[1]),
            stderr=subprocess.DEVNULL,
        )
        return out.decode().strip()
    except (OSError, subprocess.CalledProcessError):
        return "unknown"


def _env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        value = int(raw) if raw else int(default)
    except ValueError:
        value = int(default)
    return max(minimum, min(value, maximum))


def create_app():
    app = Flask(__name__)
    configure_logging(app)
    init_sentry(app)

    env = (os.getenv("PAYHOLD_ENV", "dev") or "dev").strip().lower()

    # Production safety checks
    if env in ("prod", "production"):
        secret = (os.getenv("SECRET_KEY") or "").strip()
        if not secret or len(secret) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")
        if not (os.getenv("DATABASE_URL") or "").strip() and not (os.getenv("SQLALCHEMY_DATABASE_URI") or "").strip():
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")
        if not (os.getenv("CRON_SECRET") or "").strip():
            app.logger.warning("cron_secret_missing cron endpoints will refuse every call")

    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    instance_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "instance"))
    os.makedirs(instance_dir, exist_ok=True)

    database_url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{os.path.join(instance_dir, 'payhold.db').replace(os.sep, '/')}"
    if database_url.startswith("postgres://"):
        database_url = "postgresql://" + database_url[len("postgres://"):]
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    engine_options = {
        "pool_pre_ping": True,
        "pool_reset_on_return": "rollback",
        "pool_recycle": _env_int("DB_POOL_RECYCLE_SECONDS", 1800, minimum=60, maximum=86400),
    }
    if not database_url.startswith("sqlite://"):
        engine_options.update(
            {
                "pool_size": _env_int("DB_POOL_SIZE", 10, minimum=1, maximum=200),
                "max_overflow": _env_int("DB_MAX_OVERFLOW", 20, minimum=0, maximum=500),
                "pool_timeout": _env_int("DB_POOL_TIMEOUT_SECONDS", 30, minimum=1, maximum=300),
            }
        )
        app.logger.info(
            "db_pooling_enabled pool_size=%s max_overflow=%s pool_timeout=%s pool_recycle=%s",
            engine_options["pool_size"],
            engine_options["max_overflow"],
            engine_options["pool_timeout"],
            engine_options["pool_recycle"],
        )
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options

    cors_origins = (os.getenv("CORS_ORIGINS") or "").strip()
    if env in ("prod", "production"):
        origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    else:
        origins = ["*"] if not cors_origins else [o.strip() for o in cors_origins.split(",") if o.strip()]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})

    db.init_app(app)
    migrate.init_app(app, db)
    install_request_observers(app)
    with app.app_context():
        init_otel(app, enabled=(os.getenv("OTEL_ENABLED") or "").strip() == "1")

    @app.errorhandler(EscrowError)
    def _escrow_error(error: EscrowError):
        if error.http_status >= 500:
            app.logger.error("escrow_error code=%s order_id=%s msg=%s", error.code, error.order_id, error.message)
        else:
            app.logger.info("escrow_rejected code=%s order_id=%s", error.code, error.order_id)
        extra = {"retryable": True} if error.retryable else {}
        return jsonify(error_payload(error.code, error.message, error.http_status, **extra)), error.http_status

    @app.errorhandler(HTTPException)
    def _api_http_exception(error: HTTPException):
        if not request.path.startswith("/api/"):
            return error
        status = int(error.code or 500)
        return jsonify(error_payload(error.name, error.description or error.name, status)), status

    @app.errorhandler(Exception)
    def _api_unhandled_exception(error: Exception):
        app.logger.exception("unhandled_exception path=%s", request.path)
        db.session.rollback()
        return jsonify(error_payload("InternalServerError", "Internal server error", 500)), 500

    app.register_blueprint(orders_bp)
    app.register_blueprint(carrier_webhooks_bp)
    app.register_blueprint(cron_bp)

    @app.get("/api/health")
    def health():
        db_state = "ok"
        db_error = None
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            db_state = "fail"
            db_error = str(e)[:300]
        payload = {
            "ok": True,
            "service": "payhold",
            "env": env,
            "db": db_state,
            "git_sha": _resolve_git_sha(),
            "alembic_head": _resolve_alembic_head(),
        }
        if db_error:
            payload["db_error"] = db_error
        return jsonify(payload)

    @app.get("/api/integrations/health")
    def integrations_health():
        from payhold.integrations.email.factory import email_health
        from payhold.integrations.payments.factory import payment_health
        from payhold.utils.settings import get_settings

        settings = get_settings()
        return jsonify({"ok": True, "payments": payment_health(settings), "email": email_health(settings)})

    @app.teardown_request
    def _cleanup_db_session(exc):
        try:
            if exc is not None:
                db.session.rollback()
        finally:
            db.session.remove()

    @app.cli.command("run-auto-release")
    @click.option("--limit", type=int, default=None, help="Stop after this many orders")
    def run_auto_release_command(limit: int | None):
        from payhold.jobs.escrow_runner import run_auto_release

        result = run_auto_release(limit=limit)
        click.echo(
            "auto_release processed={processed} released={released} already_processed={already_processed} "
            "failed={failed}".format(**result)
        )
        if not result.get("ok"):
            raise click.ClickException(str(result.get("error") or "auto_release_disabled"))

    @app.cli.command("send-release-reminders")
    @click.option("--now", "now_raw", default=None, help="ISO timestamp to evaluate reminders at (UTC)")
    def send_release_reminders_command(now_raw: str | None):
        from payhold.jobs.reminder_runner import run_release_reminders

        now = datetime.fromisoformat(now_raw) if now_raw else None
        result = run_release_reminders(now)
        click.echo("release_reminders sent={sent} failed={failed} skipped={skipped}".format(**result))
        if not result.get("ok"):
            raise click.ClickException("release_reminders_disabled")

    return app
