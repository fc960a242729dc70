"""
stockdesk/blueprints/permissions/routes.py

Permission catalog (admin) and the per-route permission check used by the
client to show or hide screens.
"""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify
from flask_login import current_user, login_required

from ...audit import log_action, serialize_model
from ...errors import ValidationError
from ...extensions import db
from ...models import Permission
from ...security import admin_required, has_permission
from ...utils import clean_str, get_json_body, load_or_404, require_str

permissions_bp = Blueprint("permissions", __name__, url_prefix="/api/permissions")


def _normalize_route(value: str) -> str:
    route = value.strip()
    return route if route.startswith("/") else f"/{route}"


def _ensure_unique(name: str, route: str, exclude_id: int | None = None) -> None:
    for column, value, label in ((Permission.name, name, "name"), (Permission.route, route, "route")):
        q = Permission.query.filter(column == value)
        if exclude_id is not None:
            q = q.filter(Permission.id != exclude_id)
        if q.first() is not None:
            raise ValidationError(f"A permission with this {label} already exists")


@permissions_bp.route("", methods=["GET"])
@admin_required
def list_permissions():
    permissions = Permission.query.order_by(Permission.name.asc()).all()
    return jsonify([p.to_dict() for p in permissions])


@permissions_bp.route("", methods=["POST"])
@admin_required
def create_permission():
    data = get_json_body()
    name = require_str(data, "name", "Name")
    route = _normalize_route(require_str(data, "route", "Route"))
    _ensure_unique(name, route)

    permission = Permission(name=name, route=route, description=clean_str(data.get("description")))
    db.session.add(permission)
    db.session.flush()

    log_action(permission, "CREATE", actor=current_user, after=serialize_model(permission))
    db.session.commit()
    return jsonify(permission.to_dict()), 201


@permissions_bp.route("/<int:permission_id>", methods=["PUT"])
@admin_required
def update_permission(permission_id: int):
    permission = load_or_404(Permission, permission_id, "Permission")
    data = get_json_body()
    before = serialize_model(permission)

    name = clean_str(data.get("name")) or permission.name
    route = _normalize_route(clean_str(data.get("route")) or permission.route)
    _ensure_unique(name, route, exclude_id=permission.id)

    permission.name = name
    permission.route = route
    if "description" in data:
        permission.description = clean_str(data.get("description"))

    log_action(permission, "UPDATE", actor=current_user, before=before, after=serialize_model(permission))
    db.session.commit()
    return jsonify(permission.to_dict())


@permissions_bp.route("/<int:permission_id>", methods=["DELETE"])
@admin_required
def delete_permission(permission_id: int):
    permission = load_or_404(Permission, permission_id, "Permission")

    log_action(permission, "DELETE", actor=current_user, before=serialize_model(permission))
    db.session.delete(permission)
    db.session.commit()

    current_app.logger.info("Permission %s removed by %s", permission.name, current_user.email)
    return jsonify({"message": "Permission removed"})


@permissions_bp.route("/check/<path:route>", methods=["GET"])
@login_required
def check_permission(route: str):
    """{hasPermission: bool} for a client route (leading slash optional) or permission name."""
    allowed = has_permission(current_user, _normalize_route(route)) or has_permission(current_user, route)
    return jsonify({"hasPermission": allowed})
