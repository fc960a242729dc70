"""
stockdesk/lifecycle.py

State machines for indents, purchase orders and sales orders.

Indent:
    Pending -> Approved -> PO Pending -> PO Created
    Pending -> Rejected | Deleted
    PO Pending -> Approved          (its pending PO was deleted or cancelled)

Sales order (see SO_TRANSITIONS):
    draft -> confirmed -> processing -> pending_dispatch -> dispatched
          -> shipped -> out_for_delivery -> delivered -> returned
    cancelled is reachable from every state before dispatch.

NOTES:
- Functions mutate the session only; the calling route commits once.
- Every indent transition is written to the audit log in the same
  transaction (the indent history is read back from there).
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from .audit import log_action
from .errors import ConflictError, ValidationError
from .models import (
    INDENT_APPROVED,
    INDENT_PENDING,
    INDENT_PO_CREATED,
    INDENT_PO_PENDING,
    INDENT_REJECTED,
    SO_CANCELLED,
    SO_CONFIRMED,
    SO_DELIVERED,
    SO_DISPATCHED,
    SO_DRAFT,
    SO_OUT_FOR_DELIVERY,
    SO_PENDING_DISPATCH,
    SO_PROCESSING,
    SO_RETURNED,
    SO_SHIPPED,
    PurchaseIndent,
    PurchaseOrder,
    SalesOrder,
    User,
)
from .stock import release_allocations, reserve_order


# ---------------------------------------------------------------------
# Purchase indents
# ---------------------------------------------------------------------
def _decide_indent(indent: PurchaseIndent, new_status: str, action: str, *, actor: User, remarks: str | None):
    if indent.status != INDENT_PENDING:
        raise ConflictError(f"Indent {indent.indent_id} is already {indent.status}")

    previous = indent.status
    indent.status = new_status
    indent.approved_by_id = actor.id
    indent.approved_at = datetime.utcnow()
    indent.approval_remarks = remarks

    log_action(
        indent,
        action,
        actor=actor,
        before={"status": previous},
        after={"status": new_status},
        remarks=remarks,
    )
    current_app.logger.info("Indent %s %s by %s", indent.indent_id, new_status.lower(), actor.email)
    return indent


def approve_indent(indent: PurchaseIndent, *, actor: User, remarks: str | None = None) -> PurchaseIndent:
    return _decide_indent(indent, INDENT_APPROVED, "APPROVE", actor=actor, remarks=remarks)


def reject_indent(indent: PurchaseIndent, *, actor: User, remarks: str | None = None) -> PurchaseIndent:
    return _decide_indent(indent, INDENT_REJECTED, "REJECT", actor=actor, remarks=remarks)


def set_indent_status(indent: PurchaseIndent, new_status: str, *, actor: User, remarks: str | None = None):
    """System-driven indent status change (PO side effects)."""
    if indent.status == new_status:
        return
    previous = indent.status
    indent.status = new_status
    log_action(
        indent,
        "STATUS",
        actor=actor,
        before={"status": previous},
        after={"status": new_status},
        remarks=remarks,
    )


# ---------------------------------------------------------------------
# Purchase orders
# ---------------------------------------------------------------------
PO_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"approved", "ordered", "cancelled"}),
    "approved": frozenset({"ordered", "cancelled"}),
    "ordered": frozenset({"received", "cancelled"}),
    "received": frozenset(),
    "cancelled": frozenset(),
}


def ensure_indent_ready_for_po(indent: PurchaseIndent) -> None:
    if indent.status != INDENT_APPROVED:
        raise ValidationError(
            f"Purchase orders can only be created from approved indents. "
            f"Indent {indent.indent_id} is {indent.status}"
        )


def on_po_created(po: PurchaseOrder, *, actor: User) -> None:
    set_indent_status(po.indent, INDENT_PO_PENDING, actor=actor, remarks=f"{po.po_number} created")


def change_po_status(po: PurchaseOrder, new_status: str, *, actor: User) -> None:
    if new_status == po.status:
        return
    if new_status not in PO_TRANSITIONS:
        raise ValidationError(f"Invalid purchase order status: {new_status}")
    if new_status not in PO_TRANSITIONS[po.status]:
        raise ValidationError(f"Cannot change purchase order status from {po.status} to {new_status}")

    previous = po.status
    po.status = new_status

    if previous == "pending":
        if new_status == "cancelled":
            set_indent_status(po.indent, INDENT_APPROVED, actor=actor, remarks=f"{po.po_number} cancelled")
        else:
            set_indent_status(po.indent, INDENT_PO_CREATED, actor=actor, remarks=f"{po.po_number} {new_status}")


def on_po_deleted(po: PurchaseOrder, *, actor: User) -> None:
    if po.indent is not None and po.indent.status == INDENT_PO_PENDING:
        set_indent_status(po.indent, INDENT_APPROVED, actor=actor, remarks=f"{po.po_number} deleted")


# ---------------------------------------------------------------------
# Sales orders
# ---------------------------------------------------------------------
SO_TRANSITIONS: dict[str, frozenset[str]] = {
    SO_DRAFT: frozenset({SO_CONFIRMED, SO_CANCELLED}),
    SO_CONFIRMED: frozenset({SO_PROCESSING, SO_PENDING_DISPATCH, SO_CANCELLED}),
    SO_PROCESSING: frozenset({SO_PENDING_DISPATCH, SO_CANCELLED}),
    SO_PENDING_DISPATCH: frozenset({SO_CANCELLED}),
    SO_DISPATCHED: frozenset({SO_SHIPPED}),
    SO_SHIPPED: frozenset({SO_OUT_FOR_DELIVERY, SO_DELIVERED}),
    SO_OUT_FOR_DELIVERY: frozenset({SO_DELIVERED}),
    SO_DELIVERED: frozenset({SO_RETURNED}),
    SO_CANCELLED: frozenset(),
    SO_RETURNED: frozenset(),
}


def confirm_order(order: SalesOrder, *, actor: User) -> None:
    """draft -> confirmed: stamp the approver and reserve every line."""
    reserve_order(order)
    order.status = SO_CONFIRMED
    order.approved_by_id = actor.id
    order.approved_at = datetime.utcnow()


def change_order_status(order: SalesOrder, new_status: str, *, actor: User) -> None:
    """
    Apply one sales order transition.

    `dispatched` is only reachable through dispatch_order(); it needs the
    dispatched quantities.
    """
    if new_status == order.status:
        return
    if new_status not in SO_TRANSITIONS:
        raise ValidationError(f"Invalid sales order status: {new_status}")
    if new_status == SO_DISPATCHED:
        raise ValidationError("Use the dispatch endpoint to dispatch an order")
    if new_status not in SO_TRANSITIONS[order.status]:
        raise ValidationError(f"Cannot change order status from {order.status} to {new_status}")

    previous = order.status
    if new_status == SO_CONFIRMED:
        confirm_order(order, actor=actor)
    else:
        if new_status == SO_CANCELLED:
            release_allocations(order)
        order.status = new_status

    current_app.logger.info(
        "Sales order %s: %s -> %s by %s", order.order_number, previous, new_status, actor.email
    )
