"""
stockdesk/blueprints/master_data/routes.py

Warehouses and suppliers.

Rules:
- code is unique per entity (duplicate -> 400).
- A warehouse is removed only when no SKU is stored in it.
- Supplier delete is a soft deactivation (SKUs and POs keep their reference).
- Deletions require manager or admin.
"""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from ...audit import log_action, serialize_model
from ...errors import ValidationError
from ...extensions import db
from ...models import SKU, Supplier, Warehouse
from ...security import manager_required
from ...utils import clean_str, get_json_body, load_or_404, parse_bool, parse_int, require_str

warehouses_bp = Blueprint("warehouses", __name__, url_prefix="/api/warehouses")
suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


def _ensure_code_free(model, code: str, exclude_id: int | None = None) -> None:
    q = model.query.filter(model.code == code)
    if exclude_id is not None:
        q = q.filter(model.id != exclude_id)
    if q.first() is not None:
        raise ValidationError(f"{model.__name__} with this code already exists")


def _apply_text(instance, data: dict, fields: dict) -> None:
    for key, attr in fields.items():
        if key in data:
            setattr(instance, attr, clean_str(data.get(key)))


# ---------------------------------------------------------------------
# Warehouses
# ---------------------------------------------------------------------
WAREHOUSE_TEXT = {
    "address": "address",
    "contactPerson": "contact_person",
    "contactPhone": "contact_phone",
    "contactEmail": "contact_email",
}


@warehouses_bp.route("", methods=["GET"])
@login_required
def list_warehouses():
    q = Warehouse.query
    if request.args.get("active"):
        q = q.filter(Warehouse.is_active.is_(parse_bool(request.args["active"])))
    return jsonify([w.to_dict() for w in q.order_by(Warehouse.name.asc()).all()])


@warehouses_bp.route("/<int:warehouse_id>", methods=["GET"])
@login_required
def get_warehouse(warehouse_id: int):
    return jsonify(load_or_404(Warehouse, warehouse_id, "Warehouse").to_dict())


@warehouses_bp.route("", methods=["POST"])
@login_required
def create_warehouse():
    data = get_json_body()
    name = require_str(data, "name", "Name")
    code = require_str(data, "code", "Code").upper()
    _ensure_code_free(Warehouse, code)

    warehouse = Warehouse(
        name=name,
        code=code,
        capacity=parse_int(data.get("capacity") or 0, "Capacity", minimum=0),
        current_utilization=parse_int(data.get("currentUtilization") or 0, "Current utilization", minimum=0),
        is_active=True,
    )
    _apply_text(warehouse, data, WAREHOUSE_TEXT)
    db.session.add(warehouse)
    db.session.flush()

    log_action(warehouse, "CREATE", actor=current_user, after=serialize_model(warehouse))
    db.session.commit()
    return jsonify(warehouse.to_dict()), 201


@warehouses_bp.route("/<int:warehouse_id>", methods=["PUT"])
@login_required
def update_warehouse(warehouse_id: int):
    warehouse = load_or_404(Warehouse, warehouse_id, "Warehouse")
    data = get_json_body()
    before = serialize_model(warehouse)

    code = clean_str(data.get("code"))
    if code and code.upper() != warehouse.code:
        _ensure_code_free(Warehouse, code.upper(), exclude_id=warehouse.id)
        warehouse.code = code.upper()

    warehouse.name = clean_str(data.get("name")) or warehouse.name
    _apply_text(warehouse, data, WAREHOUSE_TEXT)
    if data.get("capacity") is not None:
        warehouse.capacity = parse_int(data["capacity"], "Capacity", minimum=0)
    if data.get("currentUtilization") is not None:
        warehouse.current_utilization = parse_int(data["currentUtilization"], "Current utilization", minimum=0)
    if data.get("isActive") is not None:
        warehouse.is_active = parse_bool(data["isActive"])

    log_action(warehouse, "UPDATE", actor=current_user, before=before, after=serialize_model(warehouse))
    db.session.commit()
    return jsonify(warehouse.to_dict())


@warehouses_bp.route("/<int:warehouse_id>", methods=["DELETE"])
@manager_required
def delete_warehouse(warehouse_id: int):
    warehouse = load_or_404(Warehouse, warehouse_id, "Warehouse")
    if SKU.query.filter_by(warehouse_id=warehouse.id).first() is not None:
        raise ValidationError("Warehouse still has SKUs assigned")

    log_action(warehouse, "DELETE", actor=current_user, before=serialize_model(warehouse))
    db.session.delete(warehouse)
    db.session.commit()
    return jsonify({"message": "Warehouse deleted successfully"})


# ---------------------------------------------------------------------
# Suppliers
# ---------------------------------------------------------------------
SUPPLIER_TEXT = {
    "email": "email",
    "phone": "phone",
    "gstin": "gstin",
    "address": "address",
    "paymentTerms": "payment_terms",
}


@suppliers_bp.route("", methods=["GET"])
@login_required
def list_suppliers():
    q = Supplier.query
    if request.args.get("active"):
        q = q.filter(Supplier.is_active.is_(parse_bool(request.args["active"])))
    return jsonify([s.to_dict() for s in q.order_by(Supplier.name.asc()).all()])


@suppliers_bp.route("/<int:supplier_id>", methods=["GET"])
@login_required
def get_supplier(supplier_id: int):
    return jsonify(load_or_404(Supplier, supplier_id, "Supplier").to_dict())


@suppliers_bp.route("", methods=["POST"])
@login_required
def create_supplier():
    data = get_json_body()
    name = require_str(data, "name", "Name")
    code = require_str(data, "code", "Code").upper()
    _ensure_code_free(Supplier, code)

    supplier = Supplier(name=name, code=code, is_active=True)
    _apply_text(supplier, data, SUPPLIER_TEXT)
    db.session.add(supplier)
    db.session.flush()

    log_action(supplier, "CREATE", actor=current_user, after=serialize_model(supplier))
    db.session.commit()
    return jsonify(supplier.to_dict()), 201


@suppliers_bp.route("/<int:supplier_id>", methods=["PUT"])
@login_required
def update_supplier(supplier_id: int):
    supplier = load_or_404(Supplier, supplier_id, "Supplier")
    data = get_json_body()
    before = serialize_model(supplier)

    code = clean_str(data.get("code"))
    if code and code.upper() != supplier.code:
        _ensure_code_free(Supplier, code.upper(), exclude_id=supplier.id)
        supplier.code = code.upper()

    supplier.name = clean_str(data.get("name")) or supplier.name
    _apply_text(supplier, data, SUPPLIER_TEXT)
    if data.get("isActive") is not None:
        supplier.is_active = parse_bool(data["isActive"])

    log_action(supplier, "UPDATE", actor=current_user, before=before, after=serialize_model(supplier))
    db.session.commit()
    return jsonify(supplier.to_dict())


@suppliers_bp.route("/<int:supplier_id>", methods=["DELETE"])
@manager_required
def delete_supplier(supplier_id: int):
    supplier = load_or_404(Supplier, supplier_id, "Supplier")
    before = serialize_model(supplier)
    supplier.is_active = False

    log_action(supplier, "DELETE", actor=current_user, before=before, after=serialize_model(supplier))
    db.session.commit()
    return jsonify({"message": "Supplier deactivated"})
