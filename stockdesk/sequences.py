"""
stockdesk/sequences.py

Human-readable business identifiers (IND-001, PO-0001, SO-0001, CUST-0001).

Each prefix owns one SequenceCounter row. Allocation is a single atomic
UPDATE ... SET value = value + 1 issued inside the caller's transaction, so two
concurrent requests can never read the same "latest" number. A rolled back
request also rolls back its increment.
"""

from __future__ import annotations

from sqlalchemy import select, update

from .extensions import db
from .models import SequenceCounter

INDENT = ("IND", 3)
PURCHASE_ORDER = ("PO", 4)
SALES_ORDER = ("SO", 4)
CUSTOMER = ("CUST", 4)


def format_identifier(prefix: str, number: int, width: int) -> str:
    return f"{prefix}-{number:0{width}d}"


def next_value(name: str) -> int:
    """Atomically increment and return the counter for `name` (starts at 1)."""
    result = db.session.execute(
        update(SequenceCounter)
        .where(SequenceCounter.name == name)
        .values(value=SequenceCounter.value + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        # First identifier of this kind. The primary key rejects a concurrent
        # first insert; that request fails instead of issuing a duplicate.
        db.session.add(SequenceCounter(name=name, value=1))
        db.session.flush()
        return 1

    return db.session.execute(
        select(SequenceCounter.value).where(SequenceCounter.name == name)
    ).scalar_one()


def peek_value(name: str) -> int:
    """Number the next call to next_value() would issue. Does not consume it."""
    current = db.session.execute(
        select(SequenceCounter.value).where(SequenceCounter.name == name)
    ).scalar_one_or_none()
    return (current or 0) + 1


def next_identifier(kind: tuple[str, int]) -> str:
    prefix, width = kind
    return format_identifier(prefix, next_value(prefix), width)


def preview_identifier(kind: tuple[str, int]) -> str:
    prefix, width = kind
    return format_identifier(prefix, peek_value(prefix), width)
