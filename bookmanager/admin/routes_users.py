from flask import jsonify, request
from flask_login import current_user

from .. import limiter
from ..api_utils import json_body, load_form, page_args, pagination_meta, supplied_data
from ..audit import log_event
from ..constants import ROLE_ADMIN
from ..errors import Conflict, NotFound, StateError, ValidationError
from ..models import User, db
from .common import admin_bp, admin_required
from .forms import PasswordChangeForm, UserCreateForm, UserSearchForm, UserUpdateForm

# ── Users ──────────────────────────────────────────────────────────


def _get_user_or_404(user_id):
    user = db.session.get(User, user_id)
    if not user:
        raise NotFound("User not found.")
    return user


def _is_last_admin(user):
    """Return True if *user* is the only admin account."""
    return user.role == ROLE_ADMIN and User.query.filter_by(role=ROLE_ADMIN).count() <= 1


def _email_taken(email, exclude_id=None):
    query = User.query.filter(User.email == email)
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    return db.session.query(query.exists()).scalar()


@admin_bp.route("", methods=["GET"])
@admin_required
def users():
    form = UserSearchForm(request.args)
    if not form.validate():
        raise ValidationError(details=form.errors)
    page, limit = page_args()
    query = User.query

    if form.q.data:
        search = f"%{form.q.data.strip()}%"
        query = query.filter(db.or_(User.email.ilike(search), User.name.ilike(search)))

    query = query.order_by(User.created_at.desc(), User.id)
    pagination = query.paginate(page=page, per_page=min(limit or 25, 100), error_out=False)
    return jsonify(
        {
            "users": [user.to_dict() for user in pagination.items],
            "pagination": pagination_meta(pagination),
        }
    )


@admin_bp.route("", methods=["POST"])
@admin_required
@limiter.limit("30 per minute")
def user_create():
    form = load_form(UserCreateForm)
    email = form.email.data
    if _email_taken(email):
        raise Conflict("A user with this email already exists.", details={"field": "email"})

    user = User(name=form.name.data, email=email, role=form.role.data)
    user.set_password(form.password.data)
    db.session.add(user)
    db.session.commit()
    log_event("user_created", target_type="user", target_id=user.id, detail=f"Created {email} as {user.role}")
    return jsonify({"message": "User created successfully", "user": user.to_dict()}), 201


@admin_bp.route("/<user_id>", methods=["GET"])
@admin_required
def user_detail(user_id):
    return jsonify({"user": _get_user_or_404(user_id).to_dict()})


@admin_bp.route("/<user_id>", methods=["PUT", "PATCH"])
@admin_required
@limiter.limit("30 per minute")
def user_update(user_id):
    user = _get_user_or_404(user_id)
    body = json_body()
    form = load_form(UserUpdateForm, body)
    changes = {k: v for k, v in supplied_data(form, body, ("name", "email", "role")).items() if v}

    new_email = changes.get("email")
    if new_email and _email_taken(new_email, exclude_id=user.id):
        raise Conflict("Email is already taken by another user.", details={"field": "email"})

    old_role = user.role
    new_role = changes.get("role", old_role)
    if old_role == ROLE_ADMIN and new_role != ROLE_ADMIN and _is_last_admin(user):
        raise StateError("Cannot demote the only admin account.")

    for field, value in changes.items():
        setattr(user, field, value)
    db.session.commit()

    detail = f"Updated {', '.join(sorted(changes))}" if changes else "No changes"
    if new_role != old_role:
        detail += f" (role {old_role} -> {new_role})"
    log_event("user_updated", target_type="user", target_id=user.id, detail=detail)
    return jsonify({"message": "User updated successfully", "user": user.to_dict()})


@admin_bp.route("/<user_id>/password", methods=["PUT"])
@admin_required
@limiter.limit("10 per minute")
def user_change_password(user_id):
    user = _get_user_or_404(user_id)
    form = load_form(PasswordChangeForm)
    user.set_password(form.password.data)
    user.failed_login_count = 0
    user.locked_until = None
    db.session.commit()
    log_event(
        "user_password_changed",
        target_type="user",
        target_id=user.id,
        detail=f"Password changed by {current_user.email}",
    )
    return jsonify({"message": "Password updated successfully"})
