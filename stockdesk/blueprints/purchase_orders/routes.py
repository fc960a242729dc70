"""
stockdesk/blueprints/purchase_orders/routes.py

Purchase orders raised from approved indents.

Rules:
- The indent must be Approved; creating the PO moves it to "PO Pending".
- Line total = quantity * unitPrice + tax; order totals are recomputed on every save.
- Items, dates and notes are editable only while the PO is pending. Status
  moves along PO_TRANSITIONS; leaving pending moves the indent to
  "PO Created" (or back to Approved on cancellation).
- Delete only while pending (manager/admin); the indent returns to Approved.
- No stock is received here.
"""

from __future__ import annotations

from decimal import Decimal

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from ...audit import log_action, serialize_model
from ...errors import ConflictError, ValidationError
from ...extensions import db
from ...lifecycle import change_po_status, ensure_indent_ready_for_po, on_po_created, on_po_deleted
from ...models import (
    INDENT_APPROVED,
    PO_STATUSES,
    SKU,
    PurchaseIndent,
    PurchaseIndentItem,
    PurchaseOrder,
    PurchaseOrderItem,
    Supplier,
)
from ...security import permission_required
from ...sequences import PURCHASE_ORDER, next_identifier, preview_identifier
from ...utils import (
    clean_str,
    get_json_body,
    load_or_404,
    paginate,
    parse_choice,
    parse_datetime,
    parse_decimal,
    parse_int,
)

purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")

EDITABLE_FIELDS = ("items", "vendor", "expectedDeliveryDate", "paymentTerms", "notes")


# ---------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------
def _ref_id(value):
    return value.get("id") if isinstance(value, dict) else value


def _parse_items(raw_items) -> list[PurchaseOrderItem]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("At least one item is required")

    items = []
    for idx, raw in enumerate(raw_items, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"Item {idx} must be an object")
        sku_ref = _ref_id(raw.get("sku"))
        sku = load_or_404(SKU, sku_ref, f"SKU {sku_ref}")
        items.append(
            PurchaseOrderItem(
                sku=sku,
                quantity=parse_int(raw.get("quantity"), f"Quantity for {sku.name}", minimum=1),
                unit_price=parse_decimal(raw.get("unitPrice"), f"Unit price for {sku.name}", default=Decimal("0.00")),
                tax=parse_decimal(raw.get("tax"), f"Tax for {sku.name}", default=Decimal("0.00")),
            )
        )
    return items


def _snapshot(po: PurchaseOrder) -> dict:
    data = serialize_model(po)
    data["items"] = [
        {"sku": item.sku.id, "quantity": item.quantity, "unit_price": str(item.unit_price), "tax": str(item.tax)}
        for item in po.items
    ]
    return data


# ---------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------
@purchase_orders_bp.route("", methods=["GET"])
@login_required
def list_purchase_orders():
    """Paginated, newest first. Filters: status, vendor."""
    q = PurchaseOrder.query

    status = clean_str(request.args.get("status"))
    if status:
        q = q.filter(PurchaseOrder.status == parse_choice(status, PO_STATUSES, "Status"))

    vendor_id = request.args.get("vendor", type=int)
    if vendor_id:
        q = q.filter(PurchaseOrder.vendor_id == vendor_id)

    q = q.order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc())
    return jsonify(paginate(q, "purchaseOrders"))


@purchase_orders_bp.route("/next-po-number", methods=["GET"])
@login_required
def next_po_number():
    return jsonify({"nextPoNumber": preview_identifier(PURCHASE_ORDER)})


@purchase_orders_bp.route("/approved-items/<int:vendor_id>", methods=["GET"])
@login_required
def approved_items_for_vendor(vendor_id: int):
    """Lines of Approved indents assigned to this vendor (PO candidates)."""
    vendor = load_or_404(Supplier, vendor_id, "Vendor")
    lines = (
        PurchaseIndentItem.query.join(PurchaseIndent)
        .filter(PurchaseIndent.status == INDENT_APPROVED, PurchaseIndentItem.vendor_id == vendor.id)
        .order_by(PurchaseIndent.id.asc(), PurchaseIndentItem.id.asc())
        .all()
    )
    return jsonify(
        [
            {
                "id": line.id,
                "sku": {"id": line.sku.id, "name": line.sku.name, "sku": line.sku.sku},
                "quantity": line.quantity,
                "department": line.department,
                "indentId": line.indent.indent_id,
                "indent": line.indent.id,
            }
            for line in lines
        ]
    )


@purchase_orders_bp.route("/<int:po_id>", methods=["GET"])
@login_required
def get_purchase_order(po_id: int):
    return jsonify(load_or_404(PurchaseOrder, po_id, "Purchase order").to_dict())


@purchase_orders_bp.route("", methods=["POST"])
@login_required
def create_purchase_order():
    data = get_json_body()

    indent = load_or_404(PurchaseIndent, _ref_id(data.get("indent")), "Purchase indent")
    ensure_indent_ready_for_po(indent)

    items = _parse_items(data.get("items"))
    vendor = load_or_404(Supplier, _ref_id(data.get("vendor")), "Vendor")

    po = PurchaseOrder(
        po_number=next_identifier(PURCHASE_ORDER),
        indent=indent,
        vendor=vendor,
        expected_delivery_date=parse_datetime(data.get("expectedDeliveryDate"), "Expected delivery date"),
        payment_terms=clean_str(data.get("paymentTerms")),
        notes=clean_str(data.get("notes")),
        status="pending",
        created_by_id=current_user.id,
        items=items,
    )
    po.recalc_totals()
    db.session.add(po)
    db.session.flush()

    on_po_created(po, actor=current_user)
    log_action(po, "CREATE", actor=current_user, after=_snapshot(po))
    db.session.commit()

    current_app.logger.info(
        "Purchase order %s created from %s by %s", po.po_number, indent.indent_id, current_user.email
    )
    return jsonify(po.to_dict()), 201


@purchase_orders_bp.route("/<int:po_id>", methods=["PUT"])
@login_required
def update_purchase_order(po_id: int):
    po = load_or_404(PurchaseOrder, po_id, "Purchase order")
    data = get_json_body()

    if po.status != "pending" and any(field in data for field in EDITABLE_FIELDS):
        raise ConflictError("Cannot update confirmed purchase order")

    before = _snapshot(po)

    if "items" in data:
        po.items = _parse_items(data.get("items"))
    if "vendor" in data:
        po.vendor = load_or_404(Supplier, _ref_id(data.get("vendor")), "Vendor")
    if "expectedDeliveryDate" in data:
        po.expected_delivery_date = parse_datetime(data.get("expectedDeliveryDate"), "Expected delivery date")
    if "paymentTerms" in data:
        po.payment_terms = clean_str(data.get("paymentTerms"))
    if "notes" in data:
        po.notes = clean_str(data.get("notes"))
    po.recalc_totals()

    status = clean_str(data.get("status"))
    if status:
        change_po_status(po, status, actor=current_user)

    db.session.flush()
    log_action(po, "UPDATE", actor=current_user, before=before, after=_snapshot(po))
    db.session.commit()
    return jsonify(po.to_dict())


@purchase_orders_bp.route("/<int:po_id>", methods=["DELETE"])
@permission_required("purchase-orders:delete")
def delete_purchase_order(po_id: int):
    po = load_or_404(PurchaseOrder, po_id, "Purchase order")
    if po.status != "pending":
        raise ConflictError("Cannot delete confirmed purchase order")

    on_po_deleted(po, actor=current_user)
    log_action(po, "DELETE", actor=current_user, before=_snapshot(po))
    db.session.delete(po)
    db.session.commit()

    current_app.logger.info("Purchase order %s deleted by %s", po.po_number, current_user.email)
    return jsonify({"message": "Purchase order deleted successfully"})
