"""
stockdesk/blueprints/sales_orders/__init__.py

Blueprint package export.

IMPORTANT:
- Must expose sales_orders_bp for app factory registration.
- Keep import minimal to avoid side effects.
"""

from __future__ import annotations

from .routes import sales_orders_bp  # noqa: F401
