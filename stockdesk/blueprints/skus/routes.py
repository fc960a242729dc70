"""
stockdesk/blueprints/skus/routes.py

SKU catalog.

Includes:
- CRUD (delete only deactivates)
- Low-stock listing (currentStock <= minStockLevel)
- Manual stock adjustment (manager/admin), audited with its reason

IMPORTANT:
- currentStock is never edited through PUT; it moves through sales dispatch
  and adjust-stock only. profitMargin is recomputed by the model on save.
"""

from __future__ import annotations

from decimal import Decimal

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy import or_

from ...audit import log_action, serialize_model
from ...errors import NotFoundError, ValidationError
from ...extensions import db
from ...models import SKU, Supplier, Warehouse
from ...security import manager_required
from ...stock import adjust_stock
from ...utils import (
    clean_str,
    get_json_body,
    load_or_404,
    paginate,
    parse_bool,
    parse_decimal,
    parse_int,
    require_str,
)

skus_bp = Blueprint("skus", __name__, url_prefix="/api/skus")

TEXT_FIELDS = {
    "barcode": "barcode",
    "brand": "brand",
    "description": "description",
    "subcategory": "subcategory",
    "location": "location",
    "notes": "notes",
}


# ---------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------
def _load_reference(model, value, label: str):
    if isinstance(value, dict):
        value = value.get("id")
    if value is None or value == "":
        raise ValidationError(f"{label} is required")
    return load_or_404(model, value, label)


def _parse_alternates(value) -> list[Supplier]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError("alternateSuppliers must be a list")
    suppliers = []
    for ref in value:
        supplier = _load_reference(Supplier, ref, "Supplier")
        if supplier not in suppliers:
            suppliers.append(supplier)
    return suppliers


def _ensure_code_free(code: str, exclude_id: int | None = None) -> None:
    q = SKU.query.filter(SKU.sku == code)
    if exclude_id is not None:
        q = q.filter(SKU.id != exclude_id)
    if q.first() is not None:
        raise ValidationError("SKU with this code already exists")


# ---------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------
@skus_bp.route("", methods=["GET"])
@login_required
def list_skus():
    """Paginated list. Filters: search, category, warehouse, supplier, includeInactive."""
    q = SKU.query

    if not parse_bool(request.args.get("includeInactive", "")):
        q = q.filter(SKU.is_active.is_(True))

    search = clean_str(request.args.get("search"))
    if search:
        like = f"%{search}%"
        q = q.filter(or_(SKU.name.ilike(like), SKU.sku.ilike(like), SKU.barcode.ilike(like)))

    category = clean_str(request.args.get("category"))
    if category:
        q = q.filter(SKU.category == category)

    warehouse_id = request.args.get("warehouse", type=int)
    if warehouse_id:
        q = q.filter(SKU.warehouse_id == warehouse_id)

    supplier_id = request.args.get("supplier", type=int)
    if supplier_id:
        q = q.filter(SKU.supplier_id == supplier_id)

    return jsonify(paginate(q.order_by(SKU.name.asc()), "skus"))


@skus_bp.route("/low-stock", methods=["GET"])
@login_required
def low_stock():
    skus = (
        SKU.query.filter(SKU.is_active.is_(True), SKU.current_stock <= SKU.min_stock_level)
        .order_by(SKU.current_stock.asc(), SKU.name.asc())
        .all()
    )
    return jsonify([s.to_dict() for s in skus])


@skus_bp.route("/<int:sku_id>", methods=["GET"])
@login_required
def get_sku(sku_id: int):
    return jsonify(load_or_404(SKU, sku_id, "SKU").to_dict())


@skus_bp.route("", methods=["POST"])
@login_required
def create_sku():
    data = get_json_body()
    code = require_str(data, "sku", "SKU code").upper()
    name = require_str(data, "name", "Name")
    category = require_str(data, "category", "Category")
    _ensure_code_free(code)

    warehouse = _load_reference(Warehouse, data.get("warehouse"), "Warehouse")
    supplier = _load_reference(Supplier, data.get("supplier"), "Supplier")

    initial_stock = parse_int(data.get("initialStock") or 0, "Initial stock", minimum=0)
    current_stock = data.get("currentStock")
    current_stock = initial_stock if current_stock is None else parse_int(current_stock, "Current stock", minimum=0)

    sku = SKU(
        sku=code,
        name=name,
        category=category,
        warehouse=warehouse,
        supplier=supplier,
        cost_price=parse_decimal(data.get("costPrice"), "Cost price", default=Decimal("0.00")),
        selling_price=parse_decimal(data.get("sellingPrice"), "Selling price", default=Decimal("0.00")),
        initial_stock=initial_stock,
        current_stock=current_stock,
        min_stock_level=parse_int(data.get("minStockLevel") or 0, "Min stock level", minimum=0),
        max_stock_level=parse_int(data.get("maxStockLevel") or 0, "Max stock level", minimum=0),
        created_by_id=current_user.id,
        is_active=True,
    )
    for key, attr in TEXT_FIELDS.items():
        setattr(sku, attr, clean_str(data.get(key)))
    sku.alternate_suppliers = _parse_alternates(data.get("alternateSuppliers"))

    db.session.add(sku)
    db.session.flush()

    log_action(sku, "CREATE", actor=current_user, after=serialize_model(sku))
    db.session.commit()

    current_app.logger.info("SKU %s created by %s", sku.sku, current_user.email)
    return jsonify(sku.to_dict()), 201


@skus_bp.route("/<int:sku_id>", methods=["PUT"])
@login_required
def update_sku(sku_id: int):
    sku = load_or_404(SKU, sku_id, "SKU")
    data = get_json_body()
    before = serialize_model(sku)

    if data.get("currentStock") is not None and parse_int(data["currentStock"], "Current stock") != sku.current_stock:
        raise ValidationError("currentStock cannot be edited directly; use adjust-stock")

    code = clean_str(data.get("sku"))
    if code and code.upper() != sku.sku:
        _ensure_code_free(code.upper(), exclude_id=sku.id)
        sku.sku = code.upper()

    sku.name = clean_str(data.get("name")) or sku.name
    sku.category = clean_str(data.get("category")) or sku.category
    for key, attr in TEXT_FIELDS.items():
        if key in data:
            setattr(sku, attr, clean_str(data.get(key)))

    if data.get("warehouse") is not None:
        sku.warehouse = _load_reference(Warehouse, data["warehouse"], "Warehouse")
    if data.get("supplier") is not None:
        sku.supplier = _load_reference(Supplier, data["supplier"], "Supplier")
    if "alternateSuppliers" in data:
        sku.alternate_suppliers = _parse_alternates(data.get("alternateSuppliers"))

    if data.get("costPrice") is not None:
        sku.cost_price = parse_decimal(data["costPrice"], "Cost price")
    if data.get("sellingPrice") is not None:
        sku.selling_price = parse_decimal(data["sellingPrice"], "Selling price")
    if data.get("minStockLevel") is not None:
        sku.min_stock_level = parse_int(data["minStockLevel"], "Min stock level", minimum=0)
    if data.get("maxStockLevel") is not None:
        sku.max_stock_level = parse_int(data["maxStockLevel"], "Max stock level", minimum=0)
    if data.get("isActive") is not None:
        sku.is_active = parse_bool(data["isActive"])

    db.session.flush()
    log_action(sku, "UPDATE", actor=current_user, before=before, after=serialize_model(sku))
    db.session.commit()
    return jsonify(sku.to_dict())


@skus_bp.route("/<int:sku_id>", methods=["DELETE"])
@manager_required
def delete_sku(sku_id: int):
    sku = load_or_404(SKU, sku_id, "SKU")
    if not sku.is_active:
        raise NotFoundError("SKU not found")

    before = serialize_model(sku)
    sku.is_active = False

    log_action(sku, "DELETE", actor=current_user, before=before, after=serialize_model(sku))
    db.session.commit()
    return jsonify({"message": "SKU deactivated"})


@skus_bp.route("/<int:sku_id>/adjust-stock", methods=["POST"])
@manager_required
def adjust_sku_stock(sku_id: int):
    """Body: {quantity: signed int, reason: str}."""
    sku = load_or_404(SKU, sku_id, "SKU")
    data = get_json_body()
    quantity = parse_int(data.get("quantity"), "Quantity")
    reason = require_str(data, "reason", "Reason")

    before, after = adjust_stock(sku, quantity)

    log_action(
        sku,
        "ADJUST",
        actor=current_user,
        before={"current_stock": before},
        after={"current_stock": after},
        remarks=reason,
    )
    db.session.commit()

    current_app.logger.info(
        "Stock of %s adjusted %+d (%d -> %d) by %s: %s", sku.sku, quantity, before, after, current_user.email, reason
    )
    payload = sku.to_dict()
    payload["adjustment"] = {"quantity": quantity, "stockBefore": before, "stockAfter": after, "reason": reason}
    return jsonify(payload)
