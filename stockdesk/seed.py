"""
stockdesk/seed.py

Seed the permission catalog and bootstrap an admin account.

Rules:
- Safe to run multiple times (idempotent).
- Permissions are matched by name; route/description are kept in sync.
- Routes are the client screens a grant unlocks; route checks go through
  GET /api/permissions/check/<route>.
"""

from __future__ import annotations

from .extensions import db
from .models import Permission, User


DEFAULT_PERMISSIONS = [
    # name, route, description
    ("SKU Management", "/skus", "Create, edit and browse SKUs"),
    ("Suppliers", "/suppliers", "Supplier master data"),
    ("Customers", "/customers", "Customer master data"),
    ("Warehouses", "/warehouses", "Warehouse master data"),
    ("Stock Adjustments", "/inventory/adjustments", "Manual stock corrections"),
    ("Reports", "/reports", "Reporting screens"),
    ("Purchase Dashboard", "/purchase/dashboard", "Purchasing overview"),
    ("Purchase Orders", "/purchase/orders", "Create and manage purchase orders"),
    ("Purchase Indent", "/purchase/indent", "Raise purchase indents"),
    ("Indent Approval", "/purchase/indent-approval", "Approve or reject purchase indents"),
    ("Sales Dashboard", "/sales/dashboard", "Sales overview"),
    ("Sales Orders", "/sales/orders", "Create and manage sales orders"),
    ("Dispatch", "/sales/dispatch", "Dispatch confirmed sales orders"),
]


def seed_default_permissions() -> int:
    """
    Create missing catalog permissions. Returns the number of rows created.
    """
    created = 0
    for name, route, description in DEFAULT_PERMISSIONS:
        exists = Permission.query.filter_by(name=name).first()
        if exists:
            exists.route = route
            exists.description = description
            continue

        db.session.add(Permission(name=name, route=route, description=description))
        created += 1

    db.session.commit()
    return created


def create_admin(name: str, email: str, password: str) -> User:
    """
    Create an admin user, or promote (and reactivate) an existing account
    with the same email.
    """
    email = email.strip().lower()
    user = User.query.filter_by(email=email).first()
    if user is None:
        user = User(name=name, email=email)
        db.session.add(user)

    user.role = "admin"
    user.is_active = True
    user.set_password(password)
    db.session.commit()
    return user
