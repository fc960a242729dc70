"""
Shared pytest fixtures.

The app runs against in-memory SQLite (Flask-SQLAlchemy keeps one static
connection for it, so data survives across app contexts). No app context is
left pushed while requests run: Flask-Login caches the resolved user on `g`,
and each request must resolve its own bearer token.
"""

from decimal import Decimal

import pytest

from stockdesk import create_app
from stockdesk.extensions import db
from stockdesk.models import SKU, Customer, Permission, Supplier, User, Warehouse
from stockdesk.security import issue_token


@pytest.fixture
def app():
    app = create_app("config.TestingConfig")
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def _create_user(app, name, email, role, password="secret123", is_active=True):
    with app.app_context():
        user = User(name=name, email=email, role=role, is_active=is_active)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return {
            "id": user.id,
            "email": email,
            "password": password,
            "headers": {"Authorization": f"Bearer {issue_token(user)}"},
        }


@pytest.fixture
def admin(app):
    return _create_user(app, "Admin", "admin@example.com", "admin")


@pytest.fixture
def manager(app):
    return _create_user(app, "Manager", "manager@example.com", "manager")


@pytest.fixture
def staff(app):
    return _create_user(app, "Staff", "staff@example.com", "user")


@pytest.fixture
def make_user(app):
    def _make(name, email, role="user", **kwargs):
        return _create_user(app, name, email, role, **kwargs)

    return _make


class Factory:
    """Direct-to-database builders for master data. Every method returns the new row id."""

    def __init__(self, app):
        self.app = app
        self._seq = 0

    def _next(self):
        self._seq += 1
        return self._seq

    def warehouse(self, **kwargs):
        n = self._next()
        with self.app.app_context():
            warehouse = Warehouse(name=kwargs.pop("name", f"Warehouse {n}"), code=kwargs.pop("code", f"WH{n}"), **kwargs)
            db.session.add(warehouse)
            db.session.commit()
            return warehouse.id

    def supplier(self, **kwargs):
        n = self._next()
        with self.app.app_context():
            supplier = Supplier(name=kwargs.pop("name", f"Supplier {n}"), code=kwargs.pop("code", f"SUP{n}"), **kwargs)
            db.session.add(supplier)
            db.session.commit()
            return supplier.id

    def sku(self, stock=10, selling_price="100.00", cost_price="80.00", **kwargs):
        warehouse_id = kwargs.pop("warehouse_id", None) or self.warehouse()
        supplier_id = kwargs.pop("supplier_id", None) or self.supplier()
        n = self._next()
        with self.app.app_context():
            sku = SKU(
                sku=kwargs.pop("sku", f"SKU-{n}"),
                name=kwargs.pop("name", f"Item {n}"),
                category=kwargs.pop("category", "General"),
                cost_price=Decimal(cost_price),
                selling_price=Decimal(selling_price),
                initial_stock=stock,
                current_stock=stock,
                warehouse_id=warehouse_id,
                supplier_id=supplier_id,
                **kwargs,
            )
            db.session.add(sku)
            db.session.commit()
            return sku.id

    def customer(self, phone=None, **kwargs):
        n = self._next()
        with self.app.app_context():
            customer = Customer(
                customer_code=kwargs.pop("customer_code", f"C-{n:03d}"),
                name=kwargs.pop("name", f"Customer {n}"),
                phone=phone or f"90000000{n:02d}",
                **kwargs,
            )
            db.session.add(customer)
            db.session.commit()
            return customer.id

    def permission(self, name, route):
        with self.app.app_context():
            permission = Permission(name=name, route=route)
            db.session.add(permission)
            db.session.commit()
            return permission.id


@pytest.fixture
def factory(app):
    return Factory(app)


@pytest.fixture
def get(app):
    """Fetch a fresh row by primary key and return fn(row) evaluated inside an app context."""

    def _get(model, pk, fn=lambda row: row.to_dict()):
        with app.app_context():
            row = db.session.get(model, pk)
            return None if row is None else fn(row)

    return _get
