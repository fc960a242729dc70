"""
stockdesk/stock.py

Stock ledger operations.

- currentStock lives on the SKU row and only moves through single conditional
  UPDATE statements (never read-modify-write in Python).
- Reservations are StockAllocation rows; SKU.reserved_stock is their sum.
- Anything that compares stock against reservations first locks the SKU
  rows (SELECT ... FOR UPDATE, id order) for the rest of the transaction.
- Dispatch records an immutable DispatchLog per call.

IMPORTANT:
- Nothing here commits. Callers run inside the request transaction and the
  error handler rolls back on any raised exception, so a failed dispatch leaves
  no partial stock movement behind.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func, select, update

from .errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from .extensions import db
from .models import (
    DISPATCH_COMPLETED,
    DISPATCH_LOG_FULL,
    DISPATCH_LOG_PARTIALLY,
    DISPATCH_PARTIAL,
    SKU,
    SO_DISPATCHED,
    SO_PENDING_DISPATCH,
    DispatchLog,
    DispatchLogItem,
    SalesOrder,
    SalesOrderDispatchedItem,
    StockAllocation,
    User,
)
from .utils import parse_int


# ---------------------------------------------------------------------
# Reservation ledger
# ---------------------------------------------------------------------
def reserved_quantity(sku_id: int) -> int:
    """Sum of allocations for a SKU (pending session changes included)."""
    return db.session.execute(
        select(func.coalesce(func.sum(StockAllocation.quantity), 0)).where(StockAllocation.sku_id == sku_id)
    ).scalar_one()


def sku_lock_statement(sku_ids):
    """SELECT ... FOR UPDATE over the SKU rows, always in id order."""
    return select(SKU.id).where(SKU.id.in_(sorted(set(sku_ids)))).order_by(SKU.id).with_for_update()


def lock_skus(skus) -> None:
    """
    Row-lock the SKUs until the request transaction ends, then reload them.

    Reservation checks on a SKU run only while holding its lock. Locks are
    taken in id order. SQLite renders no FOR UPDATE; its writer lock
    serializes the transactions instead.
    """
    skus = list({sku.id: sku for sku in skus}.values())
    if not skus:
        return
    db.session.execute(sku_lock_statement(sku.id for sku in skus))
    for sku in skus:
        db.session.refresh(sku)


def ensure_in_stock(sku: SKU, quantity: int) -> None:
    """Order-entry check: on-hand stock must cover the requested quantity."""
    current = int(sku.current_stock or 0)
    if current < quantity:
        raise InsufficientStockError(sku.name, current, quantity)


def reserve_order(order: SalesOrder) -> None:
    """
    Write one allocation per order line.

    Each line is checked against available stock (current minus every
    existing reservation). The first shortfall raises before anything is
    added, so a failed confirmation leaves the ledger untouched.
    """
    lock_skus(item.sku for item in order.items)
    for item in order.items:
        available = int(item.sku.current_stock or 0) - reserved_quantity(item.sku.id)
        if available < item.quantity:
            raise InsufficientStockError(item.sku.name, available, item.quantity)

    for item in order.items:
        order.allocations.append(StockAllocation(sku=item.sku, quantity=item.quantity))

    current_app.logger.info(
        "Reserved stock for %s (%d line(s))", order.order_number, len(order.items)
    )


def release_allocations(order: SalesOrder) -> int:
    """Drop every allocation of the order. Returns the released unit count."""
    released = sum(a.quantity for a in order.allocations)
    order.allocations.clear()
    if released:
        current_app.logger.info("Released %d reserved unit(s) of %s", released, order.order_number)
    return released


# ---------------------------------------------------------------------
# On-hand counter
# ---------------------------------------------------------------------
def decrement_stock(sku: SKU, quantity: int) -> tuple[int, int]:
    """
    Atomically take `quantity` units off the shelf.

    Returns (stock_before, stock_after). Zero affected rows means a concurrent
    request got there first and the shelf no longer covers the quantity.
    """
    result = db.session.execute(
        update(SKU)
        .where(SKU.id == sku.id, SKU.current_stock >= quantity)
        .values(current_stock=SKU.current_stock - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.session.refresh(sku)
        raise InsufficientStockError(sku.name, int(sku.current_stock or 0), quantity)

    db.session.refresh(sku)
    after = int(sku.current_stock)
    return after + quantity, after


def adjust_stock(sku: SKU, delta: int) -> tuple[int, int]:
    """
    Manual correction of the on-hand counter by a signed delta.

    The result may go below neither zero nor the reserved quantity.
    Returns (stock_before, stock_after).
    """
    if delta == 0:
        raise ValidationError("Adjustment quantity cannot be zero")

    lock_skus([sku])
    floor = reserved_quantity(sku.id)
    stmt = (
        update(SKU)
        .where(SKU.id == sku.id)
        .values(current_stock=SKU.current_stock + delta)
        .execution_options(synchronize_session=False)
    )
    if delta < 0:
        stmt = stmt.where(SKU.current_stock + delta >= floor)

    result = db.session.execute(stmt)
    db.session.refresh(sku)
    if result.rowcount == 0:
        raise ValidationError(
            f"Cannot reduce stock of {sku.name} by {-delta}. "
            f"Current: {sku.current_stock}, Reserved: {floor}"
        )

    after = int(sku.current_stock)
    return after - delta, after


# ---------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------
def _parse_dispatch_lines(order: SalesOrder, lines) -> list[tuple[SKU, int]]:
    if not isinstance(lines, list) or not lines:
        raise ValidationError("No items to dispatch")

    ordered_sku_ids = {item.sku_id for item in order.items}
    parsed: list[tuple[SKU, int]] = []
    seen: set[int] = set()

    for raw in lines:
        if not isinstance(raw, dict):
            raise ValidationError("Each dispatched item must be an object")

        sku_ref = raw.get("sku")
        if isinstance(sku_ref, dict):
            sku_ref = sku_ref.get("id")
        try:
            sku_id = int(sku_ref)
        except (TypeError, ValueError):
            raise NotFoundError(f"SKU {sku_ref} not found")
        sku = db.session.get(SKU, sku_id)
        if sku is None:
            raise NotFoundError(f"SKU {sku_ref} not found")

        quantity = parse_int(raw.get("quantity"), f"Dispatch quantity for {sku.name}", minimum=1)

        if sku.id not in ordered_sku_ids:
            raise ValidationError(f"SKU {sku.name} is not part of order {order.order_number}")
        if sku.id in seen:
            raise ValidationError(f"SKU {sku.name} is listed more than once")
        seen.add(sku.id)

        parsed.append((sku, quantity))

    return parsed


def _is_full_dispatch(order: SalesOrder, dispatched: dict[int, int]) -> bool:
    if len(dispatched) != len(order.items):
        return False
    return all(dispatched.get(item.sku_id, 0) >= item.quantity for item in order.items)


def dispatch_order(order: SalesOrder, lines, *, actor: User, notes: str | None = None) -> DispatchLog:
    """
    Ship goods for an order in `pending_dispatch`.

    Per line: validate, check the shelf (ignoring this order's own
    reservation), decrement atomically and snapshot the before/after counts.
    Then write the DispatchLog, mark the order dispatched and drop its
    remaining reservation.
    """
    if order.status != SO_PENDING_DISPATCH:
        raise ConflictError(f"Order is not ready for dispatch. Current status: {order.status}")

    parsed = _parse_dispatch_lines(order, lines)
    lock_skus(sku for sku, _ in parsed)
    unit_prices = {item.sku_id: item.unit_price for item in order.items}
    now = datetime.utcnow()

    log = DispatchLog(
        sales_order_id=order.id,
        dispatched_by_id=actor.id,
        dispatch_date=now,
        notes=notes or f"Dispatch for Sales Order {order.order_number}",
    )

    dispatched: dict[int, int] = {}
    for sku, quantity in parsed:
        others_reserved = reserved_quantity(sku.id) - order.allocated_quantity(sku.id)
        available = int(sku.current_stock or 0) - others_reserved
        if available < quantity:
            raise InsufficientStockError(sku.name, available, quantity)

        before, after = decrement_stock(sku, quantity)
        log.items.append(
            DispatchLogItem(
                sku_id=sku.id,
                name=sku.name,
                quantity=quantity,
                stock_before_dispatch=before,
                stock_after_dispatch=after,
                unit_price=unit_prices.get(sku.id),
            )
        )
        dispatched[sku.id] = quantity

        existing = next((d for d in order.dispatched_items if d.sku_id == sku.id), None)
        if existing is not None:
            existing.quantity += quantity
            existing.dispatched_at = now
        else:
            order.dispatched_items.append(
                SalesOrderDispatchedItem(sku_id=sku.id, quantity=quantity, dispatched_at=now)
            )

    full = _is_full_dispatch(order, dispatched)
    log.status = DISPATCH_LOG_FULL if full else DISPATCH_LOG_PARTIALLY
    db.session.add(log)

    order.status = SO_DISPATCHED
    order.dispatch_status = DISPATCH_COMPLETED if full else DISPATCH_PARTIAL
    order.dispatch_date = now
    release_allocations(order)

    db.session.flush()
    current_app.logger.info(
        "Dispatched %s (%s) by %s: %s",
        order.order_number,
        log.status,
        actor.email,
        ", ".join(f"{sku.sku} x{qty}" for sku, qty in parsed),
    )
    return log
