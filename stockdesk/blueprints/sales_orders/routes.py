"""
stockdesk/blueprints/sales_orders/routes.py

Sales orders: entry, confirmation (stock reservation), status lifecycle,
dispatch and dispatch history.

Rules:
- Creation checks on-hand stock per line; nothing is reserved while draft.
- Only draft orders can be edited or deleted (delete: manager/admin).
- draft -> confirmed reserves every line against available stock.
- Dispatch runs in one transaction: stock decrement, DispatchLog, order
  status and reservation release commit together or not at all.
"""

from __future__ import annotations

from decimal import Decimal

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from ...audit import log_action, serialize_model
from ...errors import ConflictError, InternalError, ValidationError
from ...extensions import db
from ...lifecycle import change_order_status
from ...models import (
    ORDER_SOURCES,
    PAYMENT_STATUSES,
    SHIPPING_METHODS,
    SKU,
    SO_DRAFT,
    SO_REVENUE_STATUSES,
    SO_STATUSES,
    Customer,
    DispatchLog,
    SalesOrder,
    SalesOrderItem,
)
from ...security import permission_required
from ...sequences import SALES_ORDER, next_identifier
from ...stock import dispatch_order, ensure_in_stock
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

sales_orders_bp = Blueprint("sales_orders", __name__, url_prefix="/api/sales-orders")

TEXT_FIELDS = {
    "deliveryMethod": "delivery_method",
    "salesPerson": "sales_person",
    "notes": "notes",
    "customerNotes": "customer_notes",
    "internalNotes": "internal_notes",
}


# ---------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------
def _ref_id(value):
    return value.get("id") if isinstance(value, dict) else value


def _parse_items(raw_items) -> list[SalesOrderItem]:
    """Validate order lines and check on-hand stock for each."""
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("Order must contain at least one item")

    items = []
    seen: set[int] = set()
    for idx, raw in enumerate(raw_items, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"Item {idx} must be an object")

        sku_ref = _ref_id(raw.get("sku"))
        sku = load_or_404(SKU, sku_ref, f"SKU {sku_ref}")
        if sku.id in seen:
            raise ValidationError(f"SKU {sku.name} is listed more than once")
        seen.add(sku.id)

        quantity = parse_int(raw.get("quantity"), f"Quantity for {sku.name}", minimum=1)
        ensure_in_stock(sku, quantity)

        items.append(
            SalesOrderItem(
                sku=sku,
                quantity=quantity,
                unit_price=parse_decimal(raw.get("unitPrice"), f"Unit price for {sku.name}", default=sku.selling_price),
                discount=parse_decimal(raw.get("discount"), f"Discount for {sku.name}", default=Decimal("0.00")),
                tax=parse_decimal(raw.get("tax"), f"Tax for {sku.name}", default=Decimal("0.00")),
            )
        )
    return items


def _parse_address(value, fallback):
    if value is None:
        return dict(fallback) if fallback else None
    if not isinstance(value, dict):
        raise ValidationError("Address must be an object")
    return value


def _apply_optional_fields(order: SalesOrder, data: dict) -> None:
    for key, attr in TEXT_FIELDS.items():
        if key in data:
            setattr(order, attr, clean_str(data.get(key)))

    if "expectedDeliveryDate" in data:
        order.expected_delivery_date = parse_datetime(data.get("expectedDeliveryDate"), "Expected delivery date")
    if "expectedShipmentDate" in data:
        order.expected_shipment_date = parse_datetime(data.get("expectedShipmentDate"), "Expected shipment date")
    if data.get("shippingMethod"):
        order.shipping_method = parse_choice(data["shippingMethod"], SHIPPING_METHODS, "Shipping method")
    if data.get("orderSource"):
        order.order_source = parse_choice(data["orderSource"], ORDER_SOURCES, "Order source")
    if data.get("paymentStatus"):
        order.payment_status = parse_choice(data["paymentStatus"], PAYMENT_STATUSES, "Payment status")
    if "trackingNumber" in data:
        order.tracking_number = clean_str(data.get("trackingNumber")) or ""
    if data.get("shippingCost") is not None:
        order.shipping_cost = parse_decimal(data["shippingCost"], "Shipping cost")


# ---------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------
@sales_orders_bp.route("", methods=["GET"])
@login_required
def list_sales_orders():
    """Paginated, newest first. Filters: status, customer, startDate, endDate (orderDate)."""
    q = SalesOrder.query

    status = clean_str(request.args.get("status"))
    if status:
        q = q.filter(SalesOrder.status == parse_choice(status, SO_STATUSES, "Status"))

    customer_id = request.args.get("customer", type=int)
    if customer_id:
        q = q.filter(SalesOrder.customer_id == customer_id)

    start = parse_datetime(request.args.get("startDate"), "startDate")
    if start:
        q = q.filter(SalesOrder.order_date >= start)
    end = parse_datetime(request.args.get("endDate"), "endDate")
    if end:
        q = q.filter(SalesOrder.order_date <= end)

    q = q.order_by(SalesOrder.created_at.desc(), SalesOrder.id.desc())
    return jsonify(paginate(q, "salesOrders"))


@sales_orders_bp.route("/stats", methods=["GET"])
@login_required
def sales_order_stats():
    """Count and amount per status; revenue over shipped and delivered orders."""
    rows = db.session.execute(
        select(SalesOrder.status, func.count(SalesOrder.id), func.coalesce(func.sum(SalesOrder.total_amount), 0))
        .group_by(SalesOrder.status)
        .order_by(SalesOrder.status)
    ).all()

    breakdown = [
        {"status": status, "count": count, "totalAmount": float(Decimal(str(amount)))}
        for status, count, amount in rows
    ]
    return jsonify(
        {
            "statusBreakdown": breakdown,
            "totalOrders": sum(row["count"] for row in breakdown),
            "totalRevenue": sum(row["totalAmount"] for row in breakdown if row["status"] in SO_REVENUE_STATUSES),
        }
    )


@sales_orders_bp.route("/<int:order_id>", methods=["GET"])
@login_required
def get_sales_order(order_id: int):
    return jsonify(load_or_404(SalesOrder, order_id, "Sales order").to_dict())


@sales_orders_bp.route("", methods=["POST"])
@login_required
def create_sales_order():
    data = get_json_body()

    customer = load_or_404(Customer, _ref_id(data.get("customer")), "Customer")
    items = _parse_items(data.get("items"))

    order = SalesOrder(
        order_number=next_identifier(SALES_ORDER),
        customer=customer,
        status=SO_DRAFT,
        items=items,
        billing_address=_parse_address(data.get("billingAddress"), customer.billing_address),
        shipping_address=_parse_address(data.get("shippingAddress"), customer.shipping_address),
        created_by_id=current_user.id,
    )
    order_date = parse_datetime(data.get("orderDate"), "Order date")
    if order_date:
        order.order_date = order_date
    _apply_optional_fields(order, data)
    order.recalc_totals()

    db.session.add(order)
    db.session.flush()

    log_action(order, "CREATE", actor=current_user, after=serialize_model(order))
    db.session.commit()

    current_app.logger.info(
        "Sales order %s created for %s by %s (total %s)",
        order.order_number,
        customer.customer_code,
        current_user.email,
        order.total_amount,
    )
    return jsonify(order.to_dict()), 201


@sales_orders_bp.route("/<int:order_id>", methods=["PUT"])
@login_required
def update_sales_order(order_id: int):
    """Edit a draft order. A `status` of confirmed/cancelled is applied last."""
    order = load_or_404(SalesOrder, order_id, "Sales order")
    if order.status != SO_DRAFT:
        raise ConflictError("Cannot update confirmed sales order")

    data = get_json_body()
    before = serialize_model(order)

    if data.get("customer") is not None:
        order.customer = load_or_404(Customer, _ref_id(data["customer"]), "Customer")
    if "items" in data:
        order.items = _parse_items(data.get("items"))
    if "billingAddress" in data:
        order.billing_address = _parse_address(data.get("billingAddress"), None)
    if "shippingAddress" in data:
        order.shipping_address = _parse_address(data.get("shippingAddress"), None)
    _apply_optional_fields(order, data)
    order.recalc_totals()

    status = clean_str(data.get("status"))
    if status:
        change_order_status(order, status, actor=current_user)

    db.session.flush()
    log_action(order, "UPDATE", actor=current_user, before=before, after=serialize_model(order))
    db.session.commit()
    return jsonify(order.to_dict())


@sales_orders_bp.route("/<int:order_id>", methods=["DELETE"])
@permission_required("sales-orders:delete")
def delete_sales_order(order_id: int):
    order = load_or_404(SalesOrder, order_id, "Sales order")
    if order.status != SO_DRAFT:
        raise ConflictError("Cannot delete confirmed sales order")

    log_action(order, "DELETE", actor=current_user, before=serialize_model(order))
    db.session.delete(order)
    db.session.commit()

    current_app.logger.info("Sales order %s deleted by %s", order.order_number, current_user.email)
    return jsonify({"message": "Sales order deleted successfully"})


# ---------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------
@sales_orders_bp.route("/<int:order_id>/status", methods=["PUT"])
@login_required
def update_sales_order_status(order_id: int):
    order = load_or_404(SalesOrder, order_id, "Sales order")
    data = get_json_body()
    status = clean_str(data.get("status"))
    if not status:
        raise ValidationError("Status is required")

    previous = order.status
    change_order_status(order, status, actor=current_user)
    if data.get("trackingNumber") is not None:
        order.tracking_number = clean_str(data.get("trackingNumber")) or ""

    log_action(
        order,
        "STATUS",
        actor=current_user,
        before={"status": previous},
        after={"status": order.status},
    )
    db.session.commit()
    return jsonify(order.to_dict())


@sales_orders_bp.route("/<int:order_id>/dispatch", methods=["PUT"])
@login_required
def dispatch(order_id: int):
    """Body: {dispatchedItems: [{sku, quantity}], notes}."""
    order = load_or_404(SalesOrder, order_id, "Sales order")
    data = get_json_body()
    order_number = order.order_number

    try:
        log = dispatch_order(order, data.get("dispatchedItems"), actor=current_user, notes=clean_str(data.get("notes")))
        log_action(
            order,
            "DISPATCH",
            actor=current_user,
            after={"status": order.status, "dispatch_status": order.dispatch_status, "dispatch_log": log.id},
        )
        db.session.commit()
    except SQLAlchemyError:
        current_app.logger.exception("Dispatch of %s could not be saved", order_number)
        raise InternalError(f"Dispatch of {order_number} could not be saved")

    return jsonify(
        {
            "message": f"Order dispatched {log.status}",
            "order": order.to_dict(),
            "dispatchLog": log.to_dict(),
        }
    )


@sales_orders_bp.route("/<int:order_id>/dispatch-logs", methods=["GET"])
@login_required
def dispatch_logs(order_id: int):
    """Dispatch history of one order, newest first."""
    order = load_or_404(SalesOrder, order_id, "Sales order")
    logs = (
        DispatchLog.query.filter_by(sales_order_id=order.id)
        .order_by(DispatchLog.created_at.desc(), DispatchLog.id.desc())
        .all()
    )
    return jsonify([log.to_dict() for log in logs])
