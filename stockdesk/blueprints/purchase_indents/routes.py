"""
stockdesk/blueprints/purchase_indents/routes.py

Purchase indents and their approval workflow.

Routes:
- CRUD /api/purchase-indents (update/delete while Pending; delete -> Deleted)
- GET  /api/purchase-indents/next-indent-id
- GET  /api/purchase-indents/sku/<skuId>/vendors
- GET  /api/purchase-indents/approval/pending | approved
- PUT  /api/purchase-indents/approval/<id>/approve | reject
- GET  /api/purchase-indents/approval/<id>/history

NOTES:
- Every indent event (CREATE, UPDATE, APPROVE, REJECT, DELETE, STATUS) is an
  AuditLog entry written in the same transaction as the change it describes.
- Deciding an indent requires the "/purchase/indent-approval" permission
  (admins hold every permission).
"""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from ...audit import diff_snapshots, history_for, log_action
from ...errors import ConflictError, NotFoundError, ValidationError
from ...extensions import db
from ...lifecycle import approve_indent, reject_indent
from ...models import (
    INDENT_APPROVED,
    INDENT_DELETED,
    INDENT_PENDING,
    INDENT_REJECTED,
    INDENT_STATUSES,
    SKU,
    PurchaseIndent,
    PurchaseIndentItem,
    Supplier,
)
from ...security import permission_required
from ...sequences import INDENT, next_identifier, preview_identifier
from ...utils import clean_str, get_json_body, load_or_404, paginate, parse_choice, parse_int

purchase_indents_bp = Blueprint("purchase_indents", __name__, url_prefix="/api/purchase-indents")

APPROVAL_PERMISSION = "/purchase/indent-approval"


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _ref_id(value):
    return value.get("id") if isinstance(value, dict) else value


def _parse_items(raw_items) -> list[PurchaseIndentItem]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("At least one item is required")

    items = []
    for idx, raw in enumerate(raw_items, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"Item {idx} must be an object")

        sku = load_or_404(SKU, _ref_id(raw.get("sku")), "SKU")
        quantity = parse_int(raw.get("quantity"), f"Quantity for item {idx}", minimum=1)
        department = clean_str(raw.get("department"))
        if not department:
            raise ValidationError(f"Department is required for item {idx}")

        vendor_id = _ref_id(raw.get("vendor"))
        vendor = load_or_404(Supplier, vendor_id, "Vendor") if vendor_id not in (None, "") else None

        items.append(PurchaseIndentItem(sku=sku, quantity=quantity, department=department, vendor=vendor))
    return items


def _snapshot(indent: PurchaseIndent) -> dict:
    return {
        "status": indent.status,
        "items": [
            {
                "sku": item.sku_id if item.sku_id is not None else item.sku.id,
                "quantity": item.quantity,
                "department": item.department,
                "vendor": item.vendor.id if item.vendor is not None else None,
            }
            for item in indent.items
        ],
    }


def _ensure_pending(indent: PurchaseIndent, verb: str) -> None:
    if indent.status != INDENT_PENDING:
        raise ConflictError(f"Only pending indents can be {verb}. Indent {indent.indent_id} is {indent.status}")


# ---------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------
@purchase_indents_bp.route("", methods=["GET"])
@login_required
def list_indents():
    """Paginated, newest first. ?status= filters; Deleted indents are hidden unless asked for."""
    q = PurchaseIndent.query
    status = clean_str(request.args.get("status"))
    if status:
        q = q.filter(PurchaseIndent.status == parse_choice(status, INDENT_STATUSES, "Status"))
    else:
        q = q.filter(PurchaseIndent.status != INDENT_DELETED)
    q = q.order_by(PurchaseIndent.created_at.desc(), PurchaseIndent.id.desc())
    return jsonify(paginate(q, "indents"))


@purchase_indents_bp.route("/next-indent-id", methods=["GET"])
@login_required
def next_indent_id():
    return jsonify({"nextIndentId": preview_identifier(INDENT)})


@purchase_indents_bp.route("/sku/<int:sku_id>/vendors", methods=["GET"])
@login_required
def vendors_for_sku(sku_id: int):
    """Active suppliers that can fill the SKU: primary first, then alternates."""
    sku = load_or_404(SKU, sku_id, "SKU")
    vendors: list[Supplier] = []
    for supplier in [sku.supplier, *sorted(sku.alternate_suppliers, key=lambda s: s.name)]:
        if supplier is not None and supplier.is_active and supplier not in vendors:
            vendors.append(supplier)
    if not vendors:
        raise NotFoundError("No vendors found for this SKU")

    return jsonify(
        [
            {"id": v.id, "name": v.name, "email": v.email, "isPrimary": v.id == sku.supplier_id}
            for v in vendors
        ]
    )


@purchase_indents_bp.route("/<int:indent_id>", methods=["GET"])
@login_required
def get_indent(indent_id: int):
    return jsonify(load_or_404(PurchaseIndent, indent_id, "Purchase indent").to_dict())


@purchase_indents_bp.route("", methods=["POST"])
@login_required
def create_indent():
    data = get_json_body()
    items = _parse_items(data.get("items"))

    indent = PurchaseIndent(
        indent_id=next_identifier(INDENT),
        status=INDENT_PENDING,
        created_by_id=current_user.id,
        items=items,
    )
    db.session.add(indent)
    db.session.flush()

    log_action(indent, "CREATE", actor=current_user, after=_snapshot(indent))
    db.session.commit()

    current_app.logger.info("Indent %s raised by %s", indent.indent_id, current_user.email)
    return jsonify(indent.to_dict()), 201


@purchase_indents_bp.route("/<int:indent_id>", methods=["PUT"])
@login_required
def update_indent(indent_id: int):
    indent = load_or_404(PurchaseIndent, indent_id, "Purchase indent")
    _ensure_pending(indent, "updated")

    data = get_json_body()
    before = _snapshot(indent)
    indent.items = _parse_items(data.get("items"))
    db.session.flush()

    log_action(indent, "UPDATE", actor=current_user, before=before, after=_snapshot(indent))
    db.session.commit()
    return jsonify(indent.to_dict())


@purchase_indents_bp.route("/<int:indent_id>", methods=["DELETE"])
@login_required
def delete_indent(indent_id: int):
    indent = load_or_404(PurchaseIndent, indent_id, "Purchase indent")
    _ensure_pending(indent, "deleted")

    indent.status = INDENT_DELETED
    log_action(
        indent,
        "DELETE",
        actor=current_user,
        before={"status": INDENT_PENDING},
        after={"status": INDENT_DELETED},
    )
    db.session.commit()
    return jsonify({"message": f"Indent {indent.indent_id} deleted"})


# ---------------------------------------------------------------------
# Approval
# ---------------------------------------------------------------------
@purchase_indents_bp.route("/approval/pending", methods=["GET"])
@permission_required(APPROVAL_PERMISSION)
def pending_indents():
    """Oldest first, so the queue is worked in arrival order."""
    q = PurchaseIndent.query.filter(PurchaseIndent.status == INDENT_PENDING).order_by(
        PurchaseIndent.created_at.asc(), PurchaseIndent.id.asc()
    )
    return jsonify(paginate(q, "indents"))


@purchase_indents_bp.route("/approval/approved", methods=["GET"])
@permission_required(APPROVAL_PERMISSION)
def decided_indents():
    """Approved and rejected indents, most recently decided first. ?status= narrows to one."""
    statuses = [INDENT_APPROVED, INDENT_REJECTED]
    status = clean_str(request.args.get("status"))
    if status:
        statuses = [parse_choice(status, statuses, "Status")]
    q = PurchaseIndent.query.filter(PurchaseIndent.status.in_(statuses)).order_by(
        PurchaseIndent.approved_at.desc(), PurchaseIndent.id.desc()
    )
    return jsonify(paginate(q, "indents"))


@purchase_indents_bp.route("/approval/<int:indent_id>/approve", methods=["PUT"])
@permission_required(APPROVAL_PERMISSION)
def approve(indent_id: int):
    indent = load_or_404(PurchaseIndent, indent_id, "Purchase indent")
    data = get_json_body()
    approve_indent(indent, actor=current_user, remarks=clean_str(data.get("remarks")))
    db.session.commit()
    return jsonify(indent.to_dict())


@purchase_indents_bp.route("/approval/<int:indent_id>/reject", methods=["PUT"])
@permission_required(APPROVAL_PERMISSION)
def reject(indent_id: int):
    indent = load_or_404(PurchaseIndent, indent_id, "Purchase indent")
    data = get_json_body()
    reject_indent(indent, actor=current_user, remarks=clean_str(data.get("remarks")))
    db.session.commit()
    return jsonify(indent.to_dict())


@purchase_indents_bp.route("/approval/<int:indent_id>/history", methods=["GET"])
@login_required
def indent_history(indent_id: int):
    """Event trail, newest first. UPDATE events carry a field-level `changes` map."""
    indent = load_or_404(PurchaseIndent, indent_id, "Purchase indent")
    events = []
    for entry in history_for("PurchaseIndent", indent.id):
        data = entry.to_dict()
        if entry.action == "UPDATE":
            data["changes"] = diff_snapshots(data["before"] or {}, data["after"] or {})
        events.append(data)
    return jsonify(events)
