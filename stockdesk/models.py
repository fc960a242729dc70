"""
StockDesk – Domain Models

Covers:
- Users, permission catalog and per-user grants
- Master data: warehouses, suppliers, SKUs, customers
- Purchasing: indents and purchase orders
- Sales: orders, stock allocations, dispatched items, dispatch logs
- Sequence counters (business identifiers) and the audit log

Stock model:
- SKU.current_stock is the on-hand counter.
- StockAllocation rows are the reservation ledger; SKU.reserved_stock is
  derived from them and is never written directly.

IMPORTANT:
- The API is never trusted. Validation happens server-side in the blueprints.
- JSON payloads use camelCase keys (see to_dict methods).
"""

from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from flask_login import UserMixin
from sqlalchemy import event, func, select
from sqlalchemy.orm import column_property
from werkzeug.security import generate_password_hash, check_password_hash

from .extensions import db


# ---------------------------------------------------------------------
# Status vocabularies
# ---------------------------------------------------------------------
ROLES = ("user", "manager", "admin")

INDENT_PENDING = "Pending"
INDENT_APPROVED = "Approved"
INDENT_PO_PENDING = "PO Pending"
INDENT_PO_CREATED = "PO Created"
INDENT_REJECTED = "Rejected"
INDENT_DELETED = "Deleted"
INDENT_STATUSES = (
    INDENT_PENDING,
    INDENT_APPROVED,
    INDENT_PO_PENDING,
    INDENT_PO_CREATED,
    INDENT_REJECTED,
    INDENT_DELETED,
)

PO_STATUSES = ("pending", "approved", "ordered", "received", "cancelled")

SO_DRAFT = "draft"
SO_CONFIRMED = "confirmed"
SO_PROCESSING = "processing"
SO_PENDING_DISPATCH = "pending_dispatch"
SO_DISPATCHED = "dispatched"
SO_SHIPPED = "shipped"
SO_OUT_FOR_DELIVERY = "out_for_delivery"
SO_DELIVERED = "delivered"
SO_CANCELLED = "cancelled"
SO_RETURNED = "returned"
SO_STATUSES = (
    SO_DRAFT,
    SO_CONFIRMED,
    SO_PROCESSING,
    SO_PENDING_DISPATCH,
    SO_DISPATCHED,
    SO_SHIPPED,
    SO_OUT_FOR_DELIVERY,
    SO_DELIVERED,
    SO_CANCELLED,
    SO_RETURNED,
)
# Orders whose amount counts as earned revenue.
SO_REVENUE_STATUSES = (SO_SHIPPED, SO_DELIVERED)

DISPATCH_PENDING = "pending"
DISPATCH_PARTIAL = "partial"
DISPATCH_COMPLETED = "completed"

DISPATCH_LOG_FULL = "full"
DISPATCH_LOG_PARTIALLY = "partially"
DISPATCH_LOG_PENDING = "pending"

PAYMENT_STATUSES = ("pending", "paid", "partially_paid", "refunded", "failed")
SHIPPING_METHODS = ("standard", "express", "overnight", "pickup")
ORDER_SOURCES = ("website", "mobile_app", "marketplace", "social_commerce", "phone", "in_store")


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _to_decimal(value) -> Decimal:
    """Convert Numeric/None to Decimal safely."""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value))


def _money(x: Decimal) -> Decimal:
    return x.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _num(value) -> float:
    """Decimal -> float for JSON output."""
    return float(_to_decimal(value))


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _user_ref(user: "User | None") -> dict | None:
    if user is None:
        return None
    return {"id": user.id, "name": user.name, "email": user.email}


def _sku_ref(sku: "SKU | None") -> dict | None:
    if sku is None:
        return None
    return {"id": sku.id, "name": sku.name, "sku": sku.sku}


def _supplier_ref(supplier: "Supplier | None") -> dict | None:
    if supplier is None:
        return None
    return {"id": supplier.id, "name": supplier.name, "email": supplier.email}


# ---------------------------------------------------------------------
# Users & permissions
# ---------------------------------------------------------------------
class User(UserMixin, db.Model):
    """API user. Role drives the capability set (see security.py)."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(20), nullable=False, default="user", index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    permission_grants = db.relationship(
        "UserPermission",
        back_populates="user",
        foreign_keys="UserPermission.user_id",
        cascade="all, delete-orphan",
    )

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def is_manager(self) -> bool:
        return self.role in ("manager", "admin")

    def active_grants(self) -> list["UserPermission"]:
        return [g for g in self.permission_grants if g.granted and g.revoked_at is None]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "isActive": self.is_active,
            "isAdmin": self.is_admin,
            "createdAt": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<User {self.email}>"


class Permission(db.Model):
    """Static catalog of protectable routes."""

    __tablename__ = "permissions"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False, unique=True, index=True)
    route = db.Column(db.String(255), nullable=False, unique=True, index=True)
    description = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "route": self.route,
            "description": self.description,
        }


class UserPermission(db.Model):
    """Per-user grant/revoke record for a catalog permission."""

    __tablename__ = "user_permissions"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    permission_id = db.Column(
        db.Integer,
        db.ForeignKey("permissions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    granted = db.Column(db.Boolean, default=True, nullable=False)
    granted_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    granted_at = db.Column(db.DateTime, default=datetime.utcnow)
    revoked_at = db.Column(db.DateTime, nullable=True)

    user = db.relationship("User", back_populates="permission_grants", foreign_keys=[user_id])
    granted_by = db.relationship("User", foreign_keys=[granted_by_id])
    permission = db.relationship(
        "Permission",
        backref=db.backref("grants", lazy=True, cascade="all, delete-orphan"),
    )

    __table_args__ = (
        db.UniqueConstraint("user_id", "permission_id", name="uq_user_permission"),
    )

    def to_dict(self) -> dict:
        data = self.permission.to_dict()
        data.update(
            {
                "granted": self.granted,
                "grantedAt": _iso(self.granted_at),
                "revokedAt": _iso(self.revoked_at),
                "grantedBy": _user_ref(self.granted_by),
            }
        )
        return data


# ---------------------------------------------------------------------
# Master data
# ---------------------------------------------------------------------
class Warehouse(db.Model):
    __tablename__ = "warehouses"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(50), nullable=False, unique=True, index=True)

    address = db.Column(db.String(255))
    contact_person = db.Column(db.String(120))
    contact_phone = db.Column(db.String(30))
    contact_email = db.Column(db.String(255))

    capacity = db.Column(db.Integer, nullable=False, default=0)
    current_utilization = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "address": self.address,
            "contactPerson": self.contact_person,
            "contactPhone": self.contact_phone,
            "contactEmail": self.contact_email,
            "capacity": self.capacity,
            "currentUtilization": self.current_utilization,
            "isActive": self.is_active,
            "createdAt": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Warehouse {self.code}>"


class Supplier(db.Model):
    __tablename__ = "suppliers"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(50), nullable=False, unique=True, index=True)

    email = db.Column(db.String(255))
    phone = db.Column(db.String(30))
    gstin = db.Column(db.String(30))
    address = db.Column(db.String(255))
    payment_terms = db.Column(db.String(120))

    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "email": self.email,
            "phone": self.phone,
            "gstin": self.gstin,
            "address": self.address,
            "paymentTerms": self.payment_terms,
            "isActive": self.is_active,
            "createdAt": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Supplier {self.code} - {self.name}>"


sku_alternate_suppliers = db.Table(
    "sku_alternate_suppliers",
    db.Column("sku_id", db.Integer, db.ForeignKey("skus.id", ondelete="CASCADE"), primary_key=True),
    db.Column("supplier_id", db.Integer, db.ForeignKey("suppliers.id", ondelete="CASCADE"), primary_key=True),
)


class SKU(db.Model):
    """
    Catalog item with its own stock counters.

    reserved_stock is a column_property over StockAllocation (declared below
    the allocation model). It is refreshed whenever the row is (re)loaded.
    """

    __tablename__ = "skus"

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(80), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    barcode = db.Column(db.String(80))
    brand = db.Column(db.String(120))
    description = db.Column(db.Text)
    category = db.Column(db.String(120), nullable=False, index=True)
    subcategory = db.Column(db.String(120))

    cost_price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    selling_price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    profit_margin = db.Column(db.Numeric(7, 2), nullable=False, default=Decimal("0.00"))

    initial_stock = db.Column(db.Integer, nullable=False, default=0)
    current_stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock_level = db.Column(db.Integer, nullable=False, default=0)
    max_stock_level = db.Column(db.Integer, nullable=False, default=0)

    location = db.Column(db.String(120))
    notes = db.Column(db.Text)

    warehouse_id = db.Column(
        db.Integer,
        db.ForeignKey("warehouses.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    supplier_id = db.Column(
        db.Integer,
        db.ForeignKey("suppliers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    warehouse = db.relationship("Warehouse", backref=db.backref("skus", lazy=True))
    supplier = db.relationship("Supplier", foreign_keys=[supplier_id])
    alternate_suppliers = db.relationship("Supplier", secondary=sku_alternate_suppliers, lazy="selectin")
    created_by = db.relationship("User", foreign_keys=[created_by_id])

    def recalc_profit_margin(self):
        cost = _to_decimal(self.cost_price)
        selling = _to_decimal(self.selling_price)
        if not cost or not selling:
            return
        self.profit_margin = _money((selling - cost) / selling * Decimal("100"))

    @property
    def available_stock(self) -> int:
        return int(self.current_stock or 0) - int(self.reserved_stock or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "barcode": self.barcode,
            "brand": self.brand,
            "description": self.description,
            "category": self.category,
            "subcategory": self.subcategory,
            "costPrice": _num(self.cost_price),
            "sellingPrice": _num(self.selling_price),
            "profitMargin": _num(self.profit_margin),
            "initialStock": self.initial_stock,
            "currentStock": self.current_stock,
            "reservedStock": int(self.reserved_stock or 0),
            "availableStock": self.available_stock,
            "minStockLevel": self.min_stock_level,
            "maxStockLevel": self.max_stock_level,
            "location": self.location,
            "notes": self.notes,
            "warehouse": {"id": self.warehouse.id, "name": self.warehouse.name, "code": self.warehouse.code}
            if self.warehouse
            else None,
            "supplier": _supplier_ref(self.supplier),
            "alternateSuppliers": [_supplier_ref(s) for s in self.alternate_suppliers],
            "isActive": self.is_active,
            "createdAt": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<SKU {self.sku}>"


@event.listens_for(SKU, "before_insert")
@event.listens_for(SKU, "before_update")
def _sku_profit_margin(mapper, connection, target):
    """profitMargin is recomputed on every save."""
    target.recalc_profit_margin()


class Customer(db.Model):
    __tablename__ = "customers"

    id = db.Column(db.Integer, primary_key=True)

    customer_code = db.Column(db.String(30), unique=True, nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=True, index=True)
    phone = db.Column(db.String(30), unique=True, nullable=False, index=True)
    alternate_phone = db.Column(db.String(30))

    company_name = db.Column(db.String(255))
    contact_person = db.Column(db.String(120))
    contact_person_phone = db.Column(db.String(30))
    gstin = db.Column(db.String(30))

    # {street, city, state, pincode, country}
    address = db.Column(db.JSON, nullable=True)
    billing_address = db.Column(db.JSON, nullable=True)
    shipping_address = db.Column(db.JSON, nullable=True)

    customer_type = db.Column(db.String(50))
    credit_limit = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    payment_terms = db.Column(db.String(120))

    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)
    notes = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customerCode": self.customer_code,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "alternatePhone": self.alternate_phone,
            "companyName": self.company_name,
            "contactPerson": self.contact_person,
            "contactPersonPhone": self.contact_person_phone,
            "gstin": self.gstin,
            "address": self.address,
            "billingAddress": self.billing_address,
            "shippingAddress": self.shipping_address,
            "customerType": self.customer_type,
            "creditLimit": _num(self.credit_limit),
            "paymentTerms": self.payment_terms,
            "isActive": self.is_active,
            "notes": self.notes,
            "createdAt": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Customer {self.customer_code} - {self.name}>"


# ---------------------------------------------------------------------
# Purchasing
# ---------------------------------------------------------------------
class PurchaseIndent(db.Model):
    """Internal request to purchase goods, precursor to a PurchaseOrder."""

    __tablename__ = "purchase_indents"

    id = db.Column(db.Integer, primary_key=True)

    indent_id = db.Column(db.String(30), unique=True, nullable=False, index=True)
    status = db.Column(db.String(30), nullable=False, default=INDENT_PENDING, index=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = db.Column(db.DateTime, nullable=True, index=True)
    approval_remarks = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    created_by = db.relationship("User", foreign_keys=[created_by_id])
    approved_by = db.relationship("User", foreign_keys=[approved_by_id])

    items = db.relationship(
        "PurchaseIndentItem",
        back_populates="indent",
        cascade="all, delete-orphan",
        order_by="PurchaseIndentItem.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "indentId": self.indent_id,
            "status": self.status,
            "items": [item.to_dict() for item in self.items],
            "createdBy": _user_ref(self.created_by),
            "approvedBy": _user_ref(self.approved_by),
            "approvedAt": _iso(self.approved_at),
            "approvalRemarks": self.approval_remarks,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<PurchaseIndent {self.indent_id} {self.status}>"


class PurchaseIndentItem(db.Model):
    __tablename__ = "purchase_indent_items"

    id = db.Column(db.Integer, primary_key=True)

    indent_id = db.Column(
        db.Integer,
        db.ForeignKey("purchase_indents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    department = db.Column(db.String(120), nullable=False)
    vendor_id = db.Column(db.Integer, db.ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True, index=True)

    indent = db.relationship("PurchaseIndent", back_populates="items")
    sku = db.relationship("SKU")
    vendor = db.relationship("Supplier")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": _sku_ref(self.sku),
            "quantity": self.quantity,
            "department": self.department,
            "vendor": _supplier_ref(self.vendor),
        }


class PurchaseOrder(db.Model):
    __tablename__ = "purchase_orders"

    id = db.Column(db.Integer, primary_key=True)

    po_number = db.Column(db.String(30), unique=True, nullable=False, index=True)

    indent_id = db.Column(db.Integer, db.ForeignKey("purchase_indents.id"), nullable=False, index=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)

    expected_delivery_date = db.Column(db.DateTime, nullable=True)
    payment_terms = db.Column(db.String(120))
    notes = db.Column(db.Text)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total_tax = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    status = db.Column(db.String(20), nullable=False, default="pending", index=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    indent = db.relationship("PurchaseIndent", backref=db.backref("purchase_orders", lazy=True))
    vendor = db.relationship("Supplier")
    created_by = db.relationship("User")

    items = db.relationship(
        "PurchaseOrderItem",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderItem.id",
    )

    def recalc_totals(self):
        subtotal = Decimal("0.00")
        total_tax = Decimal("0.00")
        for line in self.items:
            line.recalc_total()
            subtotal += _to_decimal(line.quantity) * _to_decimal(line.unit_price)
            total_tax += _to_decimal(line.tax)

        self.subtotal = _money(subtotal)
        self.total_tax = _money(total_tax)
        self.total_amount = _money(subtotal + total_tax)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "poNumber": self.po_number,
            "indent": {"id": self.indent.id, "indentId": self.indent.indent_id, "status": self.indent.status}
            if self.indent
            else None,
            "vendor": _supplier_ref(self.vendor),
            "expectedDeliveryDate": _iso(self.expected_delivery_date),
            "paymentTerms": self.payment_terms,
            "notes": self.notes,
            "items": [item.to_dict() for item in self.items],
            "subtotal": _num(self.subtotal),
            "totalTax": _num(self.total_tax),
            "totalAmount": _num(self.total_amount),
            "status": self.status,
            "createdBy": _user_ref(self.created_by),
            "createdAt": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<PurchaseOrder {self.po_number}>"


class PurchaseOrderItem(db.Model):
    __tablename__ = "purchase_order_items"

    id = db.Column(db.Integer, primary_key=True)

    purchase_order_id = db.Column(
        db.Integer,
        db.ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    tax = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    purchase_order = db.relationship("PurchaseOrder", back_populates="items")
    sku = db.relationship("SKU")

    def recalc_total(self):
        self.total_amount = _money(
            _to_decimal(self.quantity) * _to_decimal(self.unit_price) + _to_decimal(self.tax)
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": _sku_ref(self.sku),
            "quantity": self.quantity,
            "unitPrice": _num(self.unit_price),
            "tax": _num(self.tax),
            "totalAmount": _num(self.total_amount),
        }


# ---------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------
class SalesOrder(db.Model):
    __tablename__ = "sales_orders"

    id = db.Column(db.Integer, primary_key=True)

    order_number = db.Column(db.String(30), unique=True, nullable=False, index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    order_date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    expected_delivery_date = db.Column(db.DateTime, nullable=True)
    expected_shipment_date = db.Column(db.DateTime, nullable=True)
    dispatch_date = db.Column(db.DateTime, nullable=True)

    delivery_method = db.Column(db.String(80))
    sales_person = db.Column(db.String(120))
    shipping_method = db.Column(db.String(20), nullable=False, default="standard")
    order_source = db.Column(db.String(30), nullable=False, default="website")
    payment_status = db.Column(db.String(20), nullable=False, default="pending")
    tracking_number = db.Column(db.String(120), nullable=False, default="")
    shipping_cost = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    billing_address = db.Column(db.JSON, nullable=True)
    shipping_address = db.Column(db.JSON, nullable=True)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total_discount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total_tax = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    status = db.Column(db.String(30), nullable=False, default=SO_DRAFT, index=True)
    dispatch_status = db.Column(db.String(20), nullable=False, default=DISPATCH_PENDING, index=True)

    notes = db.Column(db.Text)
    customer_notes = db.Column(db.Text)
    internal_notes = db.Column(db.Text)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    customer = db.relationship("Customer", backref=db.backref("sales_orders", lazy=True))
    created_by = db.relationship("User", foreign_keys=[created_by_id])
    approved_by = db.relationship("User", foreign_keys=[approved_by_id])

    items = db.relationship(
        "SalesOrderItem",
        back_populates="sales_order",
        cascade="all, delete-orphan",
        order_by="SalesOrderItem.id",
    )
    allocations = db.relationship(
        "StockAllocation",
        back_populates="sales_order",
        cascade="all, delete-orphan",
    )
    dispatched_items = db.relationship(
        "SalesOrderDispatchedItem",
        back_populates="sales_order",
        cascade="all, delete-orphan",
        order_by="SalesOrderDispatchedItem.id",
    )

    def recalc_totals(self):
        subtotal = Decimal("0.00")
        total_discount = Decimal("0.00")
        total_tax = Decimal("0.00")
        for line in self.items:
            line.recalc_total()
            subtotal += _to_decimal(line.quantity) * _to_decimal(line.unit_price)
            total_discount += _to_decimal(line.discount)
            total_tax += _to_decimal(line.tax)

        self.subtotal = _money(subtotal)
        self.total_discount = _money(total_discount)
        self.total_tax = _money(total_tax)
        self.total_amount = _money(subtotal - total_discount + total_tax)

    def allocated_quantity(self, sku_id: int) -> int:
        return sum(a.quantity for a in self.allocations if a.sku_id == sku_id)

    def to_dict(self) -> dict:
        customer = self.customer
        return {
            "id": self.id,
            "orderNumber": self.order_number,
            "customer": {"id": customer.id, "name": customer.name, "email": customer.email, "phone": customer.phone}
            if customer
            else None,
            "orderDate": _iso(self.order_date),
            "expectedDeliveryDate": _iso(self.expected_delivery_date),
            "expectedShipmentDate": _iso(self.expected_shipment_date),
            "dispatchDate": _iso(self.dispatch_date),
            "deliveryMethod": self.delivery_method,
            "salesPerson": self.sales_person,
            "shippingMethod": self.shipping_method,
            "orderSource": self.order_source,
            "paymentStatus": self.payment_status,
            "trackingNumber": self.tracking_number,
            "shippingCost": _num(self.shipping_cost),
            "billingAddress": self.billing_address,
            "shippingAddress": self.shipping_address,
            "items": [item.to_dict() for item in self.items],
            "subtotal": _num(self.subtotal),
            "totalDiscount": _num(self.total_discount),
            "totalTax": _num(self.total_tax),
            "totalAmount": _num(self.total_amount),
            "status": self.status,
            "dispatchStatus": self.dispatch_status,
            "allocatedStock": [a.to_dict() for a in self.allocations],
            "dispatchedItems": [d.to_dict() for d in self.dispatched_items],
            "notes": self.notes,
            "customerNotes": self.customer_notes,
            "internalNotes": self.internal_notes,
            "createdBy": _user_ref(self.created_by),
            "approvedBy": _user_ref(self.approved_by),
            "approvedAt": _iso(self.approved_at),
            "createdAt": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<SalesOrder {self.order_number} {self.status}>"


class SalesOrderItem(db.Model):
    __tablename__ = "sales_order_items"

    id = db.Column(db.Integer, primary_key=True)

    sales_order_id = db.Column(
        db.Integer,
        db.ForeignKey("sales_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    discount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    tax = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    sales_order = db.relationship("SalesOrder", back_populates="items")
    sku = db.relationship("SKU")

    def recalc_total(self):
        self.total_amount = _money(
            _to_decimal(self.quantity) * _to_decimal(self.unit_price)
            - _to_decimal(self.discount)
            + _to_decimal(self.tax)
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": _sku_ref(self.sku),
            "quantity": self.quantity,
            "unitPrice": _num(self.unit_price),
            "discount": _num(self.discount),
            "tax": _num(self.tax),
            "totalAmount": _num(self.total_amount),
        }


class StockAllocation(db.Model):
    """Reservation ledger row: quantity of a SKU earmarked for a sales order."""

    __tablename__ = "stock_allocations"

    id = db.Column(db.Integer, primary_key=True)

    sales_order_id = db.Column(
        db.Integer,
        db.ForeignKey("sales_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    sales_order = db.relationship("SalesOrder", back_populates="allocations")
    sku = db.relationship("SKU")

    __table_args__ = (
        db.UniqueConstraint("sales_order_id", "sku_id", name="uq_allocation_order_sku"),
        db.CheckConstraint("quantity > 0", name="ck_allocation_quantity_positive"),
    )

    def to_dict(self) -> dict:
        return {"sku": _sku_ref(self.sku), "quantity": self.quantity}


SKU.reserved_stock = column_property(
    select(func.coalesce(func.sum(StockAllocation.quantity), 0))
    .where(StockAllocation.sku_id == SKU.id)
    .correlate_except(StockAllocation)
    .scalar_subquery()
)


class SalesOrderDispatchedItem(db.Model):
    __tablename__ = "sales_order_dispatched_items"

    id = db.Column(db.Integer, primary_key=True)

    sales_order_id = db.Column(
        db.Integer,
        db.ForeignKey("sales_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    dispatched_at = db.Column(db.DateTime, default=datetime.utcnow)

    sales_order = db.relationship("SalesOrder", back_populates="dispatched_items")
    sku = db.relationship("SKU")

    def to_dict(self) -> dict:
        return {
            "sku": _sku_ref(self.sku),
            "quantity": self.quantity,
            "dispatchedAt": _iso(self.dispatched_at),
        }


class DispatchLog(db.Model):
    """Append-only record of one dispatch action. Never updated."""

    __tablename__ = "dispatch_logs"

    id = db.Column(db.Integer, primary_key=True)

    sales_order_id = db.Column(db.Integer, db.ForeignKey("sales_orders.id"), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default=DISPATCH_LOG_PENDING)
    dispatch_date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    dispatched_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    notes = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    sales_order = db.relationship("SalesOrder", backref=db.backref("dispatch_logs", lazy=True))
    dispatched_by = db.relationship("User")
    items = db.relationship(
        "DispatchLogItem",
        back_populates="dispatch_log",
        cascade="all, delete-orphan",
        order_by="DispatchLogItem.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "salesOrder": self.sales_order_id,
            "dispatchedItems": [item.to_dict() for item in self.items],
            "status": self.status,
            "dispatchDate": _iso(self.dispatch_date),
            "dispatchedBy": _user_ref(self.dispatched_by),
            "notes": self.notes,
            "createdAt": _iso(self.created_at),
        }


class DispatchLogItem(db.Model):
    __tablename__ = "dispatch_log_items"

    id = db.Column(db.Integer, primary_key=True)

    dispatch_log_id = db.Column(
        db.Integer,
        db.ForeignKey("dispatch_logs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sku_id = db.Column(db.Integer, db.ForeignKey("skus.id"), nullable=False, index=True)

    # name snapshot at time of dispatch
    name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    stock_before_dispatch = db.Column(db.Integer, nullable=False)
    stock_after_dispatch = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=True)

    dispatch_log = db.relationship("DispatchLog", back_populates="items")
    sku = db.relationship("SKU")

    def to_dict(self) -> dict:
        return {
            "sku": _sku_ref(self.sku),
            "name": self.name,
            "quantity": self.quantity,
            "stockBeforeDispatch": self.stock_before_dispatch,
            "stockAfterDispatch": self.stock_after_dispatch,
            "unitPrice": _num(self.unit_price) if self.unit_price is not None else None,
        }


@event.listens_for(DispatchLog, "before_update")
@event.listens_for(DispatchLogItem, "before_update")
def _dispatch_log_immutable(mapper, connection, target):
    raise RuntimeError(f"{target.__class__.__name__} rows are append-only")


# ---------------------------------------------------------------------
# Identifiers & audit
# ---------------------------------------------------------------------
class SequenceCounter(db.Model):
    """Last issued number per business-identifier prefix (IND, PO, SO, CUST)."""

    __tablename__ = "sequence_counters"

    name = db.Column(db.String(20), primary_key=True)
    value = db.Column(db.Integer, nullable=False, default=0)


class AuditLog(db.Model):
    """
    Append-only event log.

    Purchase indents use it as their single trail: CREATE / UPDATE (field
    snapshots) / APPROVE / REJECT / DELETE / STATUS, keyed by entity id.
    """

    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    user_name_snapshot = db.Column(db.String(150), nullable=True)

    entity_type = db.Column(db.String(50), nullable=False, index=True)
    entity_id = db.Column(db.Integer, nullable=False, index=True)

    action = db.Column(db.String(20), nullable=False, index=True)

    before_data = db.Column(db.Text, nullable=True)
    after_data = db.Column(db.Text, nullable=True)
    remarks = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "action": self.action,
            "user": _user_ref(self.user) or (
                {"id": None, "name": self.user_name_snapshot, "email": None} if self.user_name_snapshot else None
            ),
            "before": json.loads(self.before_data) if self.before_data else None,
            "after": json.loads(self.after_data) if self.after_data else None,
            "remarks": self.remarks,
            "createdAt": _iso(self.created_at),
        }
