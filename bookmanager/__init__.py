import logging
import os
import secrets
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

from flask import Flask, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import LoginManager
from flask_migrate import Migrate, upgrade
from flask_wtf.csrf import CSRFProtect

from .config import config_by_name
from .models import db

login_manager = LoginManager()
login_manager.session_protection = "strong"

# In-memory storage; counters reset on process restart. Acceptable for
# single-worker SQLite deployments. For multi-worker setups use Redis storage.
limiter = Limiter(key_func=get_remote_address)
migrate = Migrate()
csrf = CSRFProtect()


def create_app(config_name=None):
    # Load .env so gunicorn (production) picks up env vars too
    from dotenv import load_dotenv

    load_dotenv(Path(__file__).resolve().parent.parent / ".env")

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    config_cls = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_cls)
    if hasattr(config_cls, "init_app"):
        config_cls.init_app(app)

    if app.config.get("TRUST_PROXY"):
        from werkzeug.middleware.proxy_fix import ProxyFix

        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    _configure_logging(app)

    # Init extensions
    db.init_app(app)
    login_manager.init_app(app)
    limiter.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)

    from .models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, user_id)

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Unauthorized", "message": "Authentication required"}), 401

    # Register blueprints
    from .admin.routes import admin_bp
    from .auth.routes import auth_bp
    from .catalog.routes import catalog_bp
    from .circulation.routes import circulation_bp
    from .dashboard.routes import dashboard_bp
    from .ownership.routes import ownership_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(ownership_bp)
    app.register_blueprint(circulation_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(dashboard_bp)

    # Register error handlers
    from .errors import register_error_handlers

    register_error_handlers(app)

    # Security headers
    @app.after_request
    def set_security_headers(response):
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        if not app.debug:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        if request.path.startswith("/api/"):
            response.headers["Cache-Control"] = "private, no-store"
        return response

    # Start scheduler for due-date reminders
    if app.config.get("SCHEDULER_ENABLED"):
        from .circulation.scheduler import init_scheduler

        init_scheduler(app)

    # Health check endpoints
    @app.route("/ping")
    def ping():
        return {
            "status": "ok",
            "timestamp": datetime.now(UTC).isoformat(),
        }, 200

    @app.route("/health")
    def health():
        result = {"timestamp": datetime.now(UTC).isoformat()}

        # Check scheduler liveness
        scheduler = getattr(app, "scheduler", None)
        scheduler_ok = True
        if scheduler is not None:
            try:
                result["scheduler"] = _scheduler_status(app, scheduler)
                scheduler_ok = result["scheduler"]["running"] and not result["scheduler"]["failing_jobs"]
            except Exception:
                app.logger.exception("Health check scheduler probe failed.")
                result["scheduler"] = {"running": False, "reason": "probe_failed"}
                scheduler_ok = False
        else:
            result["scheduler"] = {"running": False, "reason": "disabled"}

        # Check database connectivity
        try:
            db.session.execute(db.text("SELECT 1"))
            result["database"] = {"status": "ok"}
        except Exception:
            app.logger.exception("Health check database probe failed.")
            db.session.rollback()
            result["database"] = {"status": "error", "error": "unavailable"}

        db_ok = result["database"]["status"] == "ok"
        all_ok = scheduler_ok and db_ok
        result["status"] = "ok" if all_ok else "degraded"
        return result, 200 if all_ok else 503

    # Apply pending Alembic migrations and seed admin on first run
    with app.app_context():
        upgrade()

        _seed_admin_if_needed(app)

    return app


def _scheduler_status(app, scheduler):
    max_failures = int(app.config.get("SCHEDULER_MAX_CONSECUTIVE_FAILURES", 3))
    state = getattr(app, "scheduler_state", None) or {}
    lock = getattr(app, "scheduler_state_lock", None)
    if lock is not None:
        with lock:
            job_state = {job_id: dict(entry) for job_id, entry in state.get("jobs", {}).items()}
    else:
        job_state = {job_id: dict(entry) for job_id, entry in state.get("jobs", {}).items()}

    jobs = []
    failing_jobs = []
    for job in scheduler.get_jobs():
        job_info = {"id": job.id, "next_run": job.next_run_time.isoformat() if job.next_run_time else None}
        job_info.update(job_state.get(job.id, {}))
        if int(job_info.get("consecutive_failures", 0)) >= max_failures:
            failing_jobs.append(job.id)
        jobs.append(job_info)
    return {"running": bool(scheduler.running), "jobs": jobs, "failing_jobs": failing_jobs}


def _configure_logging(app):
    """Set up file-based logging with rotation for production."""
    if app.debug or app.testing:
        return

    log_dir = Path(app.root_path).parent / "logs"
    log_dir.mkdir(exist_ok=True)

    file_handler = RotatingFileHandler(
        log_dir / "bookmanager.log",
        maxBytes=5 * 1024 * 1024,  # 5 MB
        backupCount=5,
    )
    file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    file_handler.setLevel(logging.INFO)
    app.logger.addHandler(file_handler)
    app.logger.setLevel(logging.INFO)


_PLACEHOLDER_MARKERS = ("changeme", "change-this", "password", "admin", "example", "default")


def _check_seed_admin_password(password):
    lowered = password.lower()
    if (
        len(password) < 12
        or any(marker in lowered for marker in _PLACEHOLDER_MARKERS)
        or not any(c.isdigit() for c in password)
        or not any(c.isalpha() for c in password)
    ):
        raise RuntimeError(
            "ADMIN_PASSWORD for first-run admin account is too weak. "
            "Use at least 12 characters mixing letters and digits, with no placeholder words."
        )


def _seed_admin_if_needed(app):
    from .constants import ROLE_ADMIN
    from .models import User

    admin = User.query.filter_by(role=ROLE_ADMIN).first()
    if admin is not None:
        return

    admin_email = os.environ.get("ADMIN_EMAIL", "admin@bookmanager.example.org").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD")
    generated = False
    if not admin_password:
        if not app.debug:
            raise RuntimeError("ADMIN_PASSWORD must be set to create the first admin account outside debug mode.")
        admin_password = secrets.token_urlsafe(16)
        generated = True
    elif not app.debug:
        _check_seed_admin_password(admin_password)

    admin = User(email=admin_email, name="Administrator", role=ROLE_ADMIN)
    admin.set_password(admin_password)
    db.session.add(admin)
    db.session.commit()
    app.logger.info("Default admin account created: %s", admin_email)
    if generated:
        app.logger.warning(
            "ADMIN_PASSWORD not set -- a random password was generated. Set ADMIN_PASSWORD env var before deploying."
        )
        # Write to a temporary file instead of stdout
        pw_file = Path(app.instance_path) / ".admin_password"
        pw_file.parent.mkdir(parents=True, exist_ok=True)
        pw_file.write_text(f"Email:    {admin_email}\nPassword: {admin_password}\n")
        pw_file.chmod(0o600)
        app.logger.info("Generated admin credentials written to %s", pw_file)
