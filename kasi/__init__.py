import os

import click
from flask import Flask, g, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from kasi.extensions import cors, db, migrate
from kasi.integrations.payments.factory import payment_health
from kasi.models import Store, User
from kasi.segments.segment_admin import admin_bp
from kasi.segments.segment_agent import agent_bp
from kasi.segments.segment_auth import auth_bp
from kasi.segments.segment_changes import changes_bp
from kasi.segments.segment_geo import geo_bp
from kasi.segments.segment_orders_api import orders_bp
from kasi.segments.segment_payments import payments_bp, webhooks_bp
from kasi.segments.segment_reconciliation_admin import recon_bp
from kasi.segments.segment_store_orders import store_bp
from kasi.segments.segment_stores import stores_bp
from kasi.segments.segment_uploads import uploads_bp
from kasi.services.errors import DomainError
from kasi.utils.jwt_utils import decode_token, get_bearer_token
from kasi.utils.observability import init_sentry, install_request_observers
from kasi.utils.rate_limit import check_request, rate_limit_enabled


def _env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        value = int(default)
    else:
        try:
            value = int(raw)
        except ValueError:
            value = int(default)
    return max(minimum, min(value, maximum))


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return float(default)
    try:
        return float(raw)
    except ValueError:
        return float(default)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in ("1", "true", "yes", "on")


def _error_payload(error: str, message: str, status: int) -> dict:
    payload = {"ok": False, "error": error, "message": message, "status": int(status)}
    rid = (getattr(g, "request_id", "") or "").strip()
    if rid:
        payload["trace_id"] = rid
    return payload


def create_app():
    app = Flask(__name__)
    init_sentry(app)

    env = (os.getenv("KASI_ENV", "dev") or "dev").strip().lower()

    # Production safety checks
    if env in ("prod", "production"):
        secret = (os.getenv("SECRET_KEY") or "").strip()
        if not secret or len(secret) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")
        if not (os.getenv("DATABASE_URL") or "").strip() and not (os.getenv("SQLALCHEMY_DATABASE_URI") or "").strip():
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")

    # Basic config
    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret-change-me")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["KASI_ENV"] = env

    # Database config
    instance_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "instance"))
    database_url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL")
    if not database_url:
        os.makedirs(instance_dir, exist_ok=True)
        database_url = f"sqlite:///{os.path.join(instance_dir, 'kasi.db').replace(os.sep, '/')}"
    if database_url.startswith("postgres://"):
        database_url = "postgresql://" + database_url[len("postgres://"):]
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    engine_options = {
        "pool_pre_ping": True,
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
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options

    # Marketplace settings
    app.config["DEFAULT_DELIVERY_FEE"] = _env_float("DEFAULT_DELIVERY_FEE", 15.0)
    app.config["DEFAULT_CASH_LIMIT"] = _env_float("DEFAULT_CASH_LIMIT", 500.0)
    app.config["CASH_APPROVAL_REQUIRED"] = _env_bool("CASH_APPROVAL_REQUIRED", False)
    app.config["LOCAL_UTC_OFFSET_HOURS"] = _env_float("LOCAL_UTC_OFFSET_HOURS", 2.0)

    # Integrations
    app.config["PAYMENTS_PROVIDER"] = (os.getenv("PAYMENTS_PROVIDER") or "mock").strip().lower()
    app.config["YOCO_SECRET_KEY"] = (os.getenv("YOCO_SECRET_KEY") or "").strip()
    app.config["YOCO_WEBHOOK_SECRET"] = (os.getenv("YOCO_WEBHOOK_SECRET") or "").strip()
    app.config["YOCO_WEBHOOK_QUEUE"] = _env_bool("YOCO_WEBHOOK_QUEUE", False)
    app.config["APP_URL"] = (os.getenv("APP_URL") or "http://localhost:3000").strip()
    app.config["MAPBOX_ACCESS_TOKEN"] = (os.getenv("MAPBOX_ACCESS_TOKEN") or "").strip()
    app.config["STORAGE_PROVIDER"] = (os.getenv("STORAGE_PROVIDER") or "local").strip().lower()
    app.config["UPLOAD_ROOT"] = (os.getenv("UPLOAD_ROOT") or os.path.join(instance_dir, "uploads")).strip()
    app.config["PUBLIC_BASE_URL"] = (os.getenv("PUBLIC_BASE_URL") or "").strip()
    app.config["MAX_CONTENT_LENGTH"] = _env_int("MAX_UPLOAD_BYTES", 6 * 1024 * 1024, minimum=1024, maximum=50 * 1024 * 1024)

    # CORS configuration
    cors_origins = (os.getenv("CORS_ORIGINS") or "").strip()
    if env in ("prod", "production"):
        origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    else:
        origins = ["*"] if not cors_origins else [o.strip() for o in cors_origins.split(",") if o.strip()]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}}, expose_headers=["X-Request-Id"])

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db)
    install_request_observers(app)

    @app.errorhandler(DomainError)
    def _domain_error(error: DomainError):
        db.session.rollback()
        app.logger.info("domain_error code=%s path=%s message=%s", error.code, request.path, error.message)
        return jsonify(error.to_dict()), int(error.http_status)

    @app.errorhandler(HTTPException)
    def _api_http_exception(error: HTTPException):
        # API failures are always JSON.
        if not request.path.startswith("/api/"):
            return error
        code = int(error.code or 500)
        return jsonify(_error_payload(error.name, error.description or error.name, code)), code

    @app.errorhandler(Exception)
    def _api_unhandled_exception(error: Exception):
        db.session.rollback()
        app.logger.exception("unhandled_exception path=%s", request.path)
        return jsonify(_error_payload("InternalServerError", "Internal server error", 500)), 500

    @app.before_request
    def _capture_auth_context():
        g.auth_user_id = None
        g.auth_store_id = None
        g.auth_role = None
        token = get_bearer_token(request.headers.get("Authorization", ""))
        if not token:
            return None
        payload = decode_token(token)
        if not payload:
            return None
        try:
            sub = int(payload.get("sub"))
        except (TypeError, ValueError):
            return None

        if payload.get("type") == "store":
            store = db.session.get(Store, sub)
            if store is None:
                return None
            g.auth_store_id = sub
            g.auth_role = "store"
            if (store.status or "active") != "active" and request.path.startswith("/api/"):
                return jsonify(_error_payload("STORE_INACTIVE", "This store is not active", 403)), 403
            return None

        user = db.session.get(User, sub)
        if user is None:
            return None
        g.auth_user_id = sub
        g.auth_role = (user.role or "customer").strip().lower()
        if not user.is_active and request.path.startswith("/api/"):
            return jsonify(_error_payload("ACCOUNT_SUSPENDED", "This account is not active", 403)), 403
        return None

    def _rate_limited_response(retry_after_seconds: int):
        retry_after = int(max(1, retry_after_seconds or 1))
        resp = jsonify(_error_payload("RATE_LIMITED", "Too many requests", 429))
        resp.status_code = 429
        resp.headers["Retry-After"] = str(retry_after)
        return resp

    @app.before_request
    def _global_rate_limit_guard():
        if bool(app.config.get("TESTING")) and not _env_bool("RATE_LIMIT_IN_TESTS", False):
            return None
        if not rate_limit_enabled(True):
            return None
        ok, retry_after = check_request(
            request,
            user_id=getattr(g, "auth_user_id", None),
            store_id=getattr(g, "auth_store_id", None),
        )
        if not ok:
            return _rate_limited_response(retry_after)
        return None

    @app.teardown_request
    def _cleanup_db_session(exc):
        try:
            if exc is not None:
                db.session.rollback()
        finally:
            db.session.remove()

    # Register API routes
    app.register_blueprint(auth_bp)
    app.register_blueprint(stores_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(agent_bp)
    app.register_blueprint(store_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(recon_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(geo_bp)
    app.register_blueprint(changes_bp)
    app.register_blueprint(uploads_bp)

    # Health check
    @app.get("/api/health")
    def health():
        db_state = "ok"
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            app.logger.warning("health_db_failed err=%s", e)
            db_state = "fail"
        return jsonify({
            "ok": db_state == "ok",
            "service": "kasi-backend",
            "env": env,
            "db": db_state,
            "payments": payment_health(app.config),
            "git_sha": (os.getenv("GIT_SHA") or "unknown"),
        }), 200 if db_state == "ok" else 503

    @app.cli.command("bootstrap-admin")
    def bootstrap_admin():
        allow = _env_bool("ALLOW_ADMIN_BOOTSTRAP", False)
        if env not in ("dev", "development", "local", "test") and not allow:
            raise click.ClickException("Admin bootstrap disabled. Set ALLOW_ADMIN_BOOTSTRAP=1 or KASI_ENV=dev.")

        email = (os.getenv("ADMIN_EMAIL") or "").strip().lower()
        password = (os.getenv("ADMIN_PASSWORD") or "").strip()
        if not email or not password:
            raise click.ClickException("ADMIN_EMAIL and ADMIN_PASSWORD must be set.")

        u = User.query.filter_by(email=email).first()
        if u:
            u.set_password(password)
            u.role = "admin"
            u.status = "active"
        else:
            u = User(full_name=email.split("@")[0], email=email, role="admin", status="active")
            u.set_password(password)
            db.session.add(u)
        db.session.commit()
        click.echo(f"admin_bootstrap_ok {u.email}")

    @app.cli.command("create-agent")
    @click.option("--email", required=True, help="Agent login email")
    @click.option("--password", required=True, help="Initial password")
    @click.option("--name", "full_name", default="", help="Display name")
    @click.option("--phone", "phone_number", default=None, help="Phone number")
    def create_agent_command(email: str, password: str, full_name: str, phone_number: str | None):
        from kasi.services.agent_service import create_agent

        try:
            agent = create_agent(email=email, password=password, full_name=full_name, phone_number=phone_number)
        except IntegrityError:
            db.session.rollback()
            raise click.ClickException("A user with that email already exists.")
        click.echo(f"agent_created id={agent.id} email={agent.email}")

    return app
