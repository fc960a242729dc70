"""
Utility functions shared across the blueprints. This includes:
- JSON body / field parsing that raises ValidationError with a readable message
- load_or_404: primary-key lookup raising NotFoundError
- paginate: page/limit handling for list endpoints
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Type

from flask import current_app, request

from .errors import NotFoundError, ValidationError
from .extensions import db


def get_json_body() -> dict:
    """Return the request JSON object (empty dict for an empty body)."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def clean_str(value: Any) -> str | None:
    """Strip strings; empty -> None."""
    if value is None:
        return None
    raw = str(value).strip()
    return raw or None


def require_str(data: dict, key: str, label: str | None = None) -> str:
    value = clean_str(data.get(key))
    if not value:
        raise ValidationError(f"{label or key} is required")
    return value


def parse_int(value: Any, label: str, minimum: int | None = None) -> int:
    """Parse an integer field. Booleans and fractional numbers are rejected."""
    if isinstance(value, bool) or value is None or value == "":
        raise ValidationError(f"{label} must be an integer")
    try:
        if isinstance(value, float):
            if not value.is_integer():
                raise ValueError
            parsed = int(value)
        else:
            parsed = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be an integer")

    if minimum is not None and parsed < minimum:
        raise ValidationError(f"{label} must be at least {minimum}")
    return parsed


def parse_optional_int(value: Any, label: str, minimum: int | None = None) -> int | None:
    if value is None or value == "":
        return None
    return parse_int(value, label, minimum=minimum)


def parse_decimal(value: Any, label: str, default: Decimal | None = None, minimum: Decimal | None = Decimal("0")) -> Decimal:
    """Parse a money/amount field (accepts comma or dot as decimal separator)."""
    if value is None or value == "":
        if default is not None:
            return default
        raise ValidationError(f"{label} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a number")
    raw = str(value).strip().replace(",", ".")
    try:
        parsed = Decimal(raw)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{label} must be a number")
    if not parsed.is_finite():
        raise ValidationError(f"{label} must be a number")
    if minimum is not None and parsed < minimum:
        raise ValidationError(f"{label} must be at least {minimum}")
    return parsed


def parse_datetime(value: Any, label: str) -> datetime | None:
    """Parse an ISO-8601 date or datetime. Timezone information is dropped (UTC assumed)."""
    if value is None or value == "":
        return None
    raw = str(value).strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        raise ValidationError(f"{label} must be an ISO-8601 date")
    return parsed.replace(tzinfo=None)


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def parse_choice(value: Any, choices, label: str) -> str:
    raw = clean_str(value)
    if raw not in choices:
        raise ValidationError(f"{label} must be one of: {', '.join(choices)}")
    return raw


def load_or_404(model: Type[db.Model], object_id: Any, label: str):
    """Primary-key lookup. Malformed ids behave like unknown ids."""
    try:
        pk = int(object_id)
    except (TypeError, ValueError):
        raise NotFoundError(f"{label} not found")
    instance = db.session.get(model, pk)
    if instance is None:
        raise NotFoundError(f"{label} not found")
    return instance


def paginate(query, key: str):
    """
    Apply ?page=&limit= to a query and return the JSON envelope used by list endpoints:
        {key: [...], "currentPage": n, "totalPages": n, "total": n}
    """
    default_limit = current_app.config.get("DEFAULT_PAGE_SIZE", 50)
    max_limit = current_app.config.get("MAX_PAGE_SIZE", 200)

    page = request.args.get("page", default=1, type=int) or 1
    limit = request.args.get("limit", default=default_limit, type=int) or default_limit
    page = max(page, 1)
    limit = min(max(limit, 1), max_limit)

    pagination = query.paginate(page=page, per_page=limit, error_out=False)
    return {
        key: [item.to_dict() for item in pagination.items],
        "currentPage": page,
        "totalPages": pagination.pages,
        "total": pagination.total,
    }
