"""
stockdesk/errors.py

Domain error taxonomy.

Every handler raises one of these; the app factory registers JSON error
handlers that render {"message": ...} with the matching HTTP status and roll
back the current session. Anything else surfaces as a 500 with a generic message.

NOTE:
- Conflict (state precondition violated) maps to 400 to match the public API
  contract ("order not draft", "indent not pending").
"""

from __future__ import annotations


class ApiError(Exception):
    """Base class for errors that map directly to an HTTP response."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self) -> dict:
        return {"message": self.message}


class ValidationError(ApiError):
    """Missing/malformed required field or duplicate unique key."""

    status_code = 400
    default_message = "Invalid request data"


class ConflictError(ApiError):
    """Status/state precondition violated."""

    status_code = 400
    default_message = "Operation not allowed in the current state"


class InsufficientStockError(ApiError):
    status_code = 400
    default_message = "Insufficient stock"

    def __init__(self, sku_name: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for {sku_name}. Available: {available}, Required: {requested}"
        )
        self.sku_name = sku_name
        self.available = available
        self.requested = requested


class UnauthorizedError(ApiError):
    status_code = 401
    default_message = "Not authorized"


class ForbiddenError(ApiError):
    status_code = 403
    default_message = "Access denied"


class NotFoundError(ApiError):
    status_code = 404
    default_message = "Not found"


class InternalError(ApiError):
    """Unexpected persistence failure."""

    status_code = 500
