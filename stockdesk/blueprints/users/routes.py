"""
stockdesk/blueprints/users/routes.py

Authentication, own profile and user administration.

Routes:
- POST /api/users/register, POST /api/users/login        (public, return a token)
- GET/PUT /api/users/profile                             (any authenticated user)
- GET /api/users, GET/PUT/DELETE /api/users/<id>         (admin)
- GET/POST /api/users/<id>/permissions                   (admin, grants)
- DELETE /api/users/<id>/permissions/<permission_id>     (admin, revoke)

Audit:
- CREATE / UPDATE / DELETE of users, GRANT / REVOKE of permissions.
"""

from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, jsonify
from flask_login import current_user, login_required

from ...audit import log_action, serialize_model
from ...errors import NotFoundError, UnauthorizedError, ValidationError
from ...extensions import db
from ...models import ROLES, Permission, User, UserPermission
from ...security import admin_required, issue_token
from ...utils import clean_str, get_json_body, load_or_404, parse_bool, parse_choice, parse_int, require_str

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _normalize_email(value) -> str | None:
    email = clean_str(value)
    return email.lower() if email else None


def _ensure_email_free(email: str, exclude_id: int | None = None) -> None:
    q = User.query.filter(User.email == email)
    if exclude_id is not None:
        q = q.filter(User.id != exclude_id)
    if q.first() is not None:
        raise ValidationError("User already exists")


def _detailed_permissions(user: User) -> list[dict]:
    """
    Permissions as the client renders them.

    Admins see the whole catalog flagged isAdminOverride; everyone else sees
    their active grants.
    """
    if user.is_admin:
        rows = []
        for permission in Permission.query.order_by(Permission.name.asc()).all():
            data = permission.to_dict()
            data.update({"granted": True, "isAdminOverride": True, "grantedAt": None, "grantedBy": None})
            rows.append(data)
        return rows

    rows = []
    for grant in user.active_grants():
        data = grant.to_dict()
        data["isAdminOverride"] = False
        rows.append(data)
    return rows


def _auth_payload(user: User, with_token: bool = True) -> dict:
    data = user.to_dict()
    data["permissions"] = _detailed_permissions(user)
    if with_token:
        data["token"] = issue_token(user)
    return data


# ---------------------------------------------------------------------
# Public auth
# ---------------------------------------------------------------------
@users_bp.route("/register", methods=["POST"])
def register():
    data = get_json_body()
    name = require_str(data, "name", "Name")
    email = _normalize_email(data.get("email"))
    password = data.get("password") or ""

    if not email:
        raise ValidationError("Email is required")
    if not password:
        raise ValidationError("Password is required")

    _ensure_email_free(email)

    user = User(name=name, email=email, role="user", is_active=True)
    user.set_password(password)
    db.session.add(user)
    db.session.flush()

    log_action(user, "CREATE", actor=user, after=serialize_model(user))
    db.session.commit()

    current_app.logger.info("Registered user %s", user.email)
    return jsonify(_auth_payload(user)), 201


@users_bp.route("/login", methods=["POST"])
def login():
    data = get_json_body()
    email = _normalize_email(data.get("email"))
    password = data.get("password") or ""

    user = User.query.filter_by(email=email).first() if email else None
    if user is None or not user.check_password(password):
        current_app.logger.warning("Failed login for %s", email)
        raise UnauthorizedError("Invalid email or password")
    if not user.is_active:
        raise UnauthorizedError("User account is deactivated")

    return jsonify(_auth_payload(user))


# ---------------------------------------------------------------------
# Own profile
# ---------------------------------------------------------------------
@users_bp.route("/profile", methods=["GET"])
@login_required
def get_profile():
    return jsonify(_auth_payload(current_user, with_token=False))


@users_bp.route("/profile", methods=["PUT"])
@login_required
def update_profile():
    data = get_json_body()
    user = current_user._get_current_object()
    before = serialize_model(user)

    name = clean_str(data.get("name"))
    if name:
        user.name = name

    email = _normalize_email(data.get("email"))
    if email and email != user.email:
        _ensure_email_free(email, exclude_id=user.id)
        user.email = email

    if data.get("password"):
        user.set_password(data["password"])

    log_action(user, "UPDATE", actor=user, before=before, after=serialize_model(user))
    db.session.commit()
    return jsonify(_auth_payload(user))


# ---------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------
@users_bp.route("", methods=["GET"])
@admin_required
def list_users():
    users = User.query.order_by(User.name.asc()).all()
    return jsonify([u.to_dict() for u in users])


@users_bp.route("/<int:user_id>", methods=["GET"])
@admin_required
def get_user(user_id: int):
    user = load_or_404(User, user_id, "User")
    return jsonify(_auth_payload(user, with_token=False))


@users_bp.route("/<int:user_id>", methods=["PUT"])
@admin_required
def update_user(user_id: int):
    user = load_or_404(User, user_id, "User")
    data = get_json_body()
    before = serialize_model(user)

    name = clean_str(data.get("name"))
    if name:
        user.name = name

    email = _normalize_email(data.get("email"))
    if email and email != user.email:
        _ensure_email_free(email, exclude_id=user.id)
        user.email = email

    if "role" in data:
        role = parse_choice(data.get("role"), ROLES, "Role")
        if user.id == current_user.id and role != "admin":
            raise ValidationError("You cannot remove your own admin role")
        user.role = role

    if "isActive" in data:
        is_active = parse_bool(data.get("isActive"))
        if user.id == current_user.id and not is_active:
            raise ValidationError("You cannot deactivate your own account")
        user.is_active = is_active

    if data.get("password"):
        user.set_password(data["password"])

    log_action(user, "UPDATE", actor=current_user, before=before, after=serialize_model(user))
    db.session.commit()

    current_app.logger.info("User %s updated by %s", user.email, current_user.email)
    return jsonify(user.to_dict())


@users_bp.route("/<int:user_id>", methods=["DELETE"])
@admin_required
def delete_user(user_id: int):
    user = load_or_404(User, user_id, "User")
    if user.id == current_user.id:
        raise ValidationError("You cannot delete your own account")

    log_action(user, "DELETE", actor=current_user, before=serialize_model(user))
    db.session.delete(user)
    db.session.commit()

    current_app.logger.info("User %s deleted by %s", user.email, current_user.email)
    return jsonify({"message": "User removed"})


# ---------------------------------------------------------------------
# Permission grants
# ---------------------------------------------------------------------
def _load_grant_target(user_id: int) -> User:
    user = load_or_404(User, user_id, "User")
    if user.is_admin:
        raise ValidationError("Cannot modify permissions of admin users")
    return user


@users_bp.route("/<int:user_id>/permissions", methods=["GET"])
@admin_required
def list_user_permissions(user_id: int):
    user = load_or_404(User, user_id, "User")
    return jsonify(_detailed_permissions(user))


@users_bp.route("/<int:user_id>/permissions", methods=["POST"])
@admin_required
def grant_permission(user_id: int):
    user = _load_grant_target(user_id)
    data = get_json_body()
    permission_id = parse_int(data.get("permissionId"), "permissionId")
    permission = load_or_404(Permission, permission_id, "Permission")

    grant = UserPermission.query.filter_by(user_id=user.id, permission_id=permission.id).first()
    if grant is None:
        grant = UserPermission(user_id=user.id, permission_id=permission.id)
        db.session.add(grant)

    grant.granted = True
    grant.revoked_at = None
    grant.granted_at = datetime.utcnow()
    grant.granted_by_id = current_user.id
    db.session.flush()

    log_action(grant, "GRANT", actor=current_user, after=serialize_model(grant))
    db.session.commit()

    current_app.logger.info("Granted %s to %s by %s", permission.name, user.email, current_user.email)
    return jsonify(grant.to_dict()), 201


@users_bp.route("/<int:user_id>/permissions/<int:permission_id>", methods=["DELETE"])
@admin_required
def revoke_permission(user_id: int, permission_id: int):
    user = _load_grant_target(user_id)

    grant = UserPermission.query.filter_by(user_id=user.id, permission_id=permission_id).first()
    if grant is None or not grant.granted:
        raise NotFoundError("Permission grant not found")

    before = serialize_model(grant)
    grant.granted = False
    grant.revoked_at = datetime.utcnow()

    log_action(grant, "REVOKE", actor=current_user, before=before, after=serialize_model(grant))
    db.session.commit()

    current_app.logger.info("Revoked %s from %s by %s", grant.permission.name, user.email, current_user.email)
    return jsonify({"message": "Permission revoked"})
