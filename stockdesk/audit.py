"""
stockdesk/audit.py

Audit logging helper utilities.

Goals:
- Capture WHO did WHAT to WHICH entity, with BEFORE/AFTER snapshots.
- Store a name snapshot to preserve identity even if the user is renamed later.
- Store IP address for traceability.

IMPORTANT:
- This helper ADDS AuditLog entries to the current SQLAlchemy session.
  The calling route controls transaction boundaries (commit/rollback), so the
  entry and the data change it describes are committed together.
- Purchase indents use these entries as their only event trail
  (see history_for()).
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, Optional

from flask import has_request_context, request

from .extensions import db
from .models import AuditLog, User


def _safe_str(value: Any) -> Optional[str]:
    """
    Convert a value to a stable string representation suitable for JSON and DB storage.

    - For Decimal/datetime/etc: str(value) is typically safe.
    - For None: return None.
    """
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    return str(value)


def serialize_model(instance: Any, exclude: Iterable[str] = ("password_hash",)) -> Dict[str, Optional[str]]:
    """
    Convert a SQLAlchemy model instance to a dict snapshot based on table columns.

    NOTES:
    - Captures only scalar column values (not relationships).
    - Values are converted to string for JSON safety.
    """
    data: Dict[str, Optional[str]] = {}
    for column in instance.__table__.columns:
        if column.name in exclude:
            continue
        data[column.name] = _safe_str(getattr(instance, column.name))
    return data


def diff_snapshots(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Field-level changes between two snapshots: {field: {"old": ..., "new": ...}}."""
    changes = {}
    for key in sorted(set(before) | set(after)):
        if key in ("updated_at",):
            continue
        if before.get(key) != after.get(key):
            changes[key] = {"old": before.get(key), "new": after.get(key)}
    return changes


def log_action(
    entity: Any,
    action: str,
    *,
    actor: User | None,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
    remarks: str | None = None,
) -> AuditLog:
    """
    Add an AuditLog entry to the current db session.

    Parameters:
        entity: SQLAlchemy model instance with .id (flush first for new rows)
        action: CREATE / UPDATE / DELETE / APPROVE / REJECT / STATUS / ...
        actor: acting user (None for system actions)
        before: dict snapshot (optional)
        after: dict snapshot (optional)
        remarks: free text (approval remarks, adjustment reason)
    """
    entity_id = getattr(entity, "id", None)
    if entity_id is None:
        raise ValueError("log_action entity must have an 'id' attribute (after flush).")

    entry = AuditLog(
        user_id=actor.id if actor is not None else None,
        user_name_snapshot=actor.name if actor is not None else None,
        entity_type=entity.__class__.__name__,
        entity_id=int(entity_id),
        action=str(action),
        before_data=json.dumps(before, ensure_ascii=False) if before else None,
        after_data=json.dumps(after, ensure_ascii=False) if after else None,
        remarks=remarks,
        ip_address=request.remote_addr if has_request_context() else None,
    )
    db.session.add(entry)
    return entry


def history_for(entity_type: str, entity_id: int, actions: Iterable[str] | None = None) -> list[AuditLog]:
    """Events for one entity, newest first."""
    q = AuditLog.query.filter_by(entity_type=entity_type, entity_id=entity_id)
    if actions:
        q = q.filter(AuditLog.action.in_(list(actions)))
    return q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).all()
