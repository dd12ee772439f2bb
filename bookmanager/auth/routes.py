from datetime import UTC, datetime, timedelta
from functools import cache

import bcrypt
from flask import Blueprint, current_app, jsonify, session
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf

from .. import limiter
from ..api_utils import load_form
from ..audit import log_event
from ..errors import AccountLocked, AuthenticationFailed
from ..models import User, as_utc, db
from .forms import LoginForm

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@cache
def _dummy_hash():
    return bcrypt.hashpw(b"dummy-password", bcrypt.gensalt(rounds=12))


def _record_failed_login(user):
    # Atomic increment of failed login count
    User.query.filter_by(id=user.id).update({"failed_login_count": db.func.coalesce(User.failed_login_count, 0) + 1})
    db.session.commit()
    db.session.refresh(user)

    max_failures = current_app.config.get("MAX_FAILED_LOGINS", 5)
    if user.failed_login_count >= max_failures:
        lockout_minutes = current_app.config.get("ACCOUNT_LOCKOUT_MINUTES", 15)
        user.locked_until = datetime.now(UTC) + timedelta(minutes=lockout_minutes)
        db.session.commit()
        log_event(
            "account_locked",
            "user",
            user.id,
            detail=f"Locked for {lockout_minutes} minutes after {user.failed_login_count} failed attempts",
        )


@auth_bp.route("/login", methods=["POST"])
@limiter.limit("5 per minute")
def login():
    form = load_form(LoginForm)
    email = form.email.data
    user = User.query.filter_by(email=email).first()

    if user and user.locked_until and as_utc(user.locked_until) > datetime.now(UTC):
        # Same bcrypt cost as a real check so lockout is not observable by timing
        bcrypt.checkpw(b"dummy-password", _dummy_hash())
        log_event("login_locked", "user", user.id)
        raise AccountLocked()

    if user is None:
        bcrypt.checkpw(form.password.data.encode("utf-8"), _dummy_hash())
        log_event("login_failed", detail=f"email={email}")
        raise AuthenticationFailed()

    if not user.check_password(form.password.data):
        _record_failed_login(user)
        log_event("login_failed", detail=f"email={email}")
        raise AuthenticationFailed()

    user.failed_login_count = 0
    user.locked_until = None
    user.last_login_at = datetime.now(UTC)
    login_user(user, remember=form.remember_me.data)
    session["login_time"] = datetime.now(UTC).isoformat()
    db.session.commit()

    log_event("login_success", "user", user.id)
    return jsonify({"message": "Login successful", "user": user.to_dict()})


@auth_bp.route("/logout", methods=["POST"])
@login_required
@limiter.limit("10 per minute")
def logout():
    log_event("logout", "user", current_user.id)
    logout_user()
    session.clear()
    return jsonify({"message": "Logged out successfully"})


@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify({"user": current_user.to_dict()})


@auth_bp.route("/csrf", methods=["GET"])
def csrf_token():
    return jsonify({"csrf_token": generate_csrf()})
