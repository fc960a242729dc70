"""
stockdesk/security.py

Access control helpers for StockDesk.

Key rules:
- The client is never trusted; all permission checks are server-side.
- Identity comes from a bearer JWT (HS256, sub = user id) resolved by
  Flask-Login's request loader, so routes keep using current_user and
  login_required.
- Authorization is one capability-set resolution for every role:
    admin   -> wildcard
    manager -> a small hand-picked set (deletions)
    user    -> nothing by default
  plus the name and route of every granted, non-revoked UserPermission.

IMPORTANT:
- Decorators must preserve wrapped function metadata to avoid Flask endpoint collisions.
  We use functools.wraps everywhere.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Any, Callable, Optional

import jwt
from flask import current_app
from flask_login import current_user

from .errors import ForbiddenError, UnauthorizedError
from .extensions import db
from .models import User

WILDCARD = "*"

ROLE_CAPABILITIES: dict[str, frozenset[str]] = {
    "admin": frozenset({WILDCARD}),
    "manager": frozenset(
        {
            "sales-orders:delete",
            "purchase-orders:delete",
            "customers:delete",
        }
    ),
    "user": frozenset(),
}


# ---------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------
def issue_token(user: User) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user.id),
        "iat": now,
        "exp": now + timedelta(days=current_app.config["JWT_EXPIRES_DAYS"]),
    }
    return jwt.encode(payload, current_app.config["JWT_SECRET_KEY"], algorithm="HS256")


def decode_token(token: str) -> int:
    """Return the user id carried by a valid token. Raises UnauthorizedError."""
    try:
        payload = jwt.decode(token, current_app.config["JWT_SECRET_KEY"], algorithms=["HS256"])
        return int(payload["sub"])
    except (jwt.InvalidTokenError, KeyError, TypeError, ValueError):
        raise UnauthorizedError("Not authorized, token failed")


def load_user_from_request(request) -> Optional[User]:
    """
    Flask-Login request loader.

    Returns None when there is no bearer token (login_required then answers
    401 via the unauthorized handler). A present but invalid token, an unknown
    user or a deactivated account raise 401 directly.
    """
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None

    token = header.split(" ", 1)[1].strip()
    if not token:
        return None

    user = db.session.get(User, decode_token(token))
    if user is None:
        raise UnauthorizedError("User not found")
    if not user.is_active:
        raise UnauthorizedError("User account is deactivated")
    return user


# ---------------------------------------------------------------------
# Capability resolution
# ---------------------------------------------------------------------
def capabilities_for(user: User) -> set[str]:
    """Effective capability set: role capabilities plus granted permissions."""
    caps = set(ROLE_CAPABILITIES.get(user.role, frozenset()))
    for grant in user.active_grants():
        caps.add(grant.permission.name)
        caps.add(grant.permission.route)
    return caps


def has_permission(user: User | None, permission: str) -> bool:
    """True if `permission` (a permission name or route) is granted to `user`."""
    if user is None or not getattr(user, "is_authenticated", False):
        return False
    caps = capabilities_for(user)
    return WILDCARD in caps or permission in caps


# ---------------------------------------------------------------------
# Decorators
# ---------------------------------------------------------------------
def _require_authenticated():
    if not current_user.is_authenticated:
        raise UnauthorizedError("Not authenticated")


def admin_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator: admin-only."""
    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        _require_authenticated()
        if not current_user.is_admin:
            raise ForbiddenError("Not authorized as an admin")
        return view_func(*args, **kwargs)

    return wrapper


def manager_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator: manager or admin."""
    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        _require_authenticated()
        if not current_user.is_manager():
            raise ForbiddenError("Not authorized as a manager")
        return view_func(*args, **kwargs)

    return wrapper


def permission_required(permission: str) -> Callable[..., Any]:
    """
    Decorator factory: require a capability.

    Usage:
        @permission_required("sales-orders:delete")
        def delete_sales_order(order_id): ...
    """
    def decorator(view_func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view_func)
        def wrapper(*args: Any, **kwargs: Any):
            _require_authenticated()
            if not has_permission(current_user, permission):
                raise ForbiddenError(f"Access denied. Required permission: {permission}")
            return view_func(*args, **kwargs)

        return wrapper

    return decorator
