"""
stockdesk/blueprints/reports/routes.py

Read-only business reports (sales, financial, inventory, customers,
suppliers, purchasing).

Rules:
- Figures come from SQL aggregates; Python only combines the grouped rows.
- Cancelled sales and purchase orders are left out of totals; breakdowns by
  status still list them.
- Sales, financial and purchase reports accept ?startDate=&endDate= (ISO-8601).
  A date-only endDate covers that whole day.
- Money is returned as float rounded to 2 places.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from flask import Blueprint, jsonify, request
from flask_login import login_required
from sqlalchemy import and_, case, extract, func, select

from ...errors import ValidationError
from ...extensions import db
from ...models import (
    SKU,
    SO_CANCELLED,
    SO_REVENUE_STATUSES,
    Customer,
    PurchaseOrder,
    SalesOrder,
    SalesOrderItem,
    Supplier,
)
from ...utils import parse_datetime

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")

PO_CANCELLED = "cancelled"
PO_PENDING = "pending"

# Payment states that leave nothing to collect.
SETTLED_PAYMENTS = ("paid", "refunded")


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _money(value) -> float:
    return float(Decimal(str(value or 0)).quantize(Decimal("0.01")))


def _date_range() -> tuple:
    """(start, end_exclusive) from the query string; either may be None."""
    start = parse_datetime(request.args.get("startDate"), "Start date")
    raw_end = request.args.get("endDate")
    end = parse_datetime(raw_end, "End date")
    if end is not None and "T" not in str(raw_end):
        end = end + timedelta(days=1)
    if start is not None and end is not None and start >= end:
        raise ValidationError("Start date must be before end date")
    return start, end


def _in_range(stmt, column, start, end):
    if start is not None:
        stmt = stmt.where(column >= start)
    if end is not None:
        stmt = stmt.where(column < end)
    return stmt


def _stock_value():
    return func.coalesce(func.sum(SKU.current_stock * SKU.cost_price), 0)


# ---------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------
@reports_bp.route("/sales", methods=["GET"])
@login_required
def sales_report():
    start, end = _date_range()
    stmt = select(
        SalesOrder.status,
        func.count(SalesOrder.id),
        func.coalesce(func.sum(SalesOrder.total_amount), 0),
    )
    stmt = _in_range(stmt, SalesOrder.order_date, start, end)
    rows = db.session.execute(stmt.group_by(SalesOrder.status).order_by(SalesOrder.status)).all()

    by_status = [{"status": status, "count": count, "totalAmount": _money(amount)} for status, count, amount in rows]
    booked = [row for row in by_status if row["status"] != SO_CANCELLED]
    total_orders = sum(row["count"] for row in booked)
    total_amount = round(sum(row["totalAmount"] for row in booked), 2)

    return jsonify(
        {
            "summary": {
                "totalOrders": total_orders,
                "totalAmount": total_amount,
                "averageOrderValue": round(total_amount / total_orders, 2) if total_orders else 0.0,
            },
            "salesByStatus": by_status,
        }
    )


@reports_bp.route("/financial", methods=["GET"])
@login_required
def financial_report():
    """Sales, collections, purchases and gross profit over the period."""
    start, end = _date_range()

    payments = _in_range(
        select(
            SalesOrder.payment_status,
            func.count(SalesOrder.id),
            func.coalesce(func.sum(SalesOrder.total_amount), 0),
        ).where(SalesOrder.status != SO_CANCELLED),
        SalesOrder.order_date,
        start,
        end,
    )
    payment_rows = db.session.execute(
        payments.group_by(SalesOrder.payment_status).order_by(SalesOrder.payment_status)
    ).all()
    breakdown = [
        {"paymentStatus": status, "count": count, "totalAmount": _money(amount)} for status, count, amount in payment_rows
    ]

    revenue = db.session.execute(
        _in_range(
            select(func.coalesce(func.sum(SalesOrder.total_amount), 0)).where(
                SalesOrder.status.in_(SO_REVENUE_STATUSES)
            ),
            SalesOrder.order_date,
            start,
            end,
        )
    ).scalar_one()

    cost_of_goods = db.session.execute(
        _in_range(
            select(func.coalesce(func.sum(SalesOrderItem.quantity * SKU.cost_price), 0))
            .select_from(SalesOrderItem)
            .join(SalesOrder, SalesOrderItem.sales_order_id == SalesOrder.id)
            .join(SKU, SalesOrderItem.sku_id == SKU.id)
            .where(SalesOrder.status.in_(SO_REVENUE_STATUSES)),
            SalesOrder.order_date,
            start,
            end,
        )
    ).scalar_one()

    purchases = db.session.execute(
        _in_range(
            select(func.coalesce(func.sum(PurchaseOrder.total_amount), 0)).where(PurchaseOrder.status != PO_CANCELLED),
            PurchaseOrder.created_at,
            start,
            end,
        )
    ).scalar_one()

    total_revenue = _money(revenue)
    cost = _money(cost_of_goods)
    return jsonify(
        {
            "totalSales": round(sum(row["totalAmount"] for row in breakdown), 2),
            "totalRevenue": total_revenue,
            "amountReceived": round(sum(r["totalAmount"] for r in breakdown if r["paymentStatus"] == "paid"), 2),
            "outstandingAmount": round(
                sum(r["totalAmount"] for r in breakdown if r["paymentStatus"] not in SETTLED_PAYMENTS), 2
            ),
            "costOfGoodsSold": cost,
            "grossProfit": round(total_revenue - cost, 2),
            "totalPurchases": _money(purchases),
            "paymentBreakdown": breakdown,
        }
    )


@reports_bp.route("/inventory", methods=["GET"])
@login_required
def inventory_report():
    """Stock position of active SKUs. Low stock means at or below the minimum level."""
    active = SKU.is_active.is_(True)
    low = SKU.current_stock <= SKU.min_stock_level

    total, low_count, out_count, value = db.session.execute(
        select(
            func.count(SKU.id),
            func.coalesce(func.sum(case((low, 1), else_=0)), 0),
            func.coalesce(func.sum(case((SKU.current_stock <= 0, 1), else_=0)), 0),
            _stock_value(),
        ).where(active)
    ).one()

    categories = db.session.execute(
        select(SKU.category, func.count(SKU.id), func.coalesce(func.sum(SKU.current_stock), 0), _stock_value())
        .where(active)
        .group_by(SKU.category)
        .order_by(SKU.category)
    ).all()

    skus = db.session.execute(
        select(SKU.id, SKU.sku, SKU.name, SKU.category, SKU.current_stock, SKU.min_stock_level)
        .where(active)
        .order_by(SKU.category, SKU.name)
    ).all()

    return jsonify(
        {
            "summary": {
                "totalSKUs": total,
                "lowStockItems": int(low_count),
                "outOfStockItems": int(out_count),
                "totalInventoryValue": _money(value),
            },
            "stockByCategory": [
                {"category": category, "skuCount": count, "totalStock": int(stock), "totalValue": _money(amount)}
                for category, count, stock, amount in categories
            ],
            "skus": [
                {
                    "id": sku_id,
                    "sku": code,
                    "name": name,
                    "category": category,
                    "currentStock": current,
                    "minStock": minimum,
                    "lowStock": current <= minimum,
                }
                for sku_id, code, name, category, current, minimum in skus
            ],
        }
    )


@reports_bp.route("/customers", methods=["GET"])
@login_required
def customer_report():
    """Active customers by total spent (cancelled orders excluded)."""
    spent = func.coalesce(func.sum(SalesOrder.total_amount), 0).label("total_spent")
    outstanding = func.coalesce(
        func.sum(case((SalesOrder.payment_status.notin_(SETTLED_PAYMENTS), SalesOrder.total_amount), else_=0)), 0
    )
    rows = db.session.execute(
        select(Customer.id, Customer.customer_code, Customer.name, Customer.email, func.count(SalesOrder.id), spent, outstanding)
        .outerjoin(SalesOrder, and_(SalesOrder.customer_id == Customer.id, SalesOrder.status != SO_CANCELLED))
        .where(Customer.is_active.is_(True))
        .group_by(Customer.id, Customer.customer_code, Customer.name, Customer.email)
        .order_by(spent.desc(), Customer.name)
    ).all()

    return jsonify(
        [
            {
                "id": customer_id,
                "customerCode": code,
                "name": name,
                "email": email,
                "totalOrders": orders,
                "totalSpent": _money(total),
                "outstandingAmount": _money(due),
            }
            for customer_id, code, name, email, orders, total, due in rows
        ]
    )


@reports_bp.route("/suppliers", methods=["GET"])
@login_required
def supplier_report():
    """Active suppliers: SKUs they primarily supply and purchase volume."""
    value = _stock_value().label("inventory_value")
    rows = db.session.execute(
        select(Supplier.id, Supplier.name, Supplier.email, Supplier.phone, func.count(SKU.id), value)
        .outerjoin(SKU, and_(SKU.supplier_id == Supplier.id, SKU.is_active.is_(True)))
        .where(Supplier.is_active.is_(True))
        .group_by(Supplier.id, Supplier.name, Supplier.email, Supplier.phone)
        .order_by(value.desc(), Supplier.name)
    ).all()

    purchases = {
        vendor_id: (count, amount)
        for vendor_id, count, amount in db.session.execute(
            select(PurchaseOrder.vendor_id, func.count(PurchaseOrder.id), func.coalesce(func.sum(PurchaseOrder.total_amount), 0))
            .where(PurchaseOrder.status != PO_CANCELLED)
            .group_by(PurchaseOrder.vendor_id)
        ).all()
    }

    report = []
    for supplier_id, name, email, phone, sku_count, stock_value in rows:
        po_count, po_amount = purchases.get(supplier_id, (0, 0))
        report.append(
            {
                "id": supplier_id,
                "name": name,
                "email": email,
                "phone": phone,
                "totalSKUs": sku_count,
                "totalInventoryValue": _money(stock_value),
                "totalPurchaseOrders": po_count,
                "totalPurchaseAmount": _money(po_amount),
            }
        )
    return jsonify(report)


@reports_bp.route("/purchase", methods=["GET"])
@login_required
def purchase_report():
    start, end = _date_range()

    by_status = db.session.execute(
        _in_range(
            select(PurchaseOrder.status, func.count(PurchaseOrder.id), func.coalesce(func.sum(PurchaseOrder.total_amount), 0)),
            PurchaseOrder.created_at,
            start,
            end,
        )
        .group_by(PurchaseOrder.status)
        .order_by(PurchaseOrder.status)
    ).all()
    statuses = [{"status": status, "count": count, "totalAmount": _money(amount)} for status, count, amount in by_status]
    booked = [row for row in statuses if row["status"] != PO_CANCELLED]

    year = extract("year", PurchaseOrder.created_at)
    month = extract("month", PurchaseOrder.created_at)
    monthly = db.session.execute(
        _in_range(
            select(year, month, func.count(PurchaseOrder.id), func.coalesce(func.sum(PurchaseOrder.total_amount), 0))
            .where(PurchaseOrder.status != PO_CANCELLED),
            PurchaseOrder.created_at,
            start,
            end,
        )
        .group_by(year, month)
        .order_by(year, month)
    ).all()

    return jsonify(
        {
            "summary": {
                "totalPurchaseOrders": sum(row["count"] for row in booked),
                "totalAmount": round(sum(row["totalAmount"] for row in booked), 2),
                "pendingOrders": sum(row["count"] for row in statuses if row["status"] == PO_PENDING),
            },
            "purchasesByStatus": statuses,
            "monthlyPurchases": [
                {"month": f"{int(y):04d}-{int(m):02d}", "orders": count, "amount": _money(amount)}
                for y, m, count, amount in monthly
            ],
        }
    )
