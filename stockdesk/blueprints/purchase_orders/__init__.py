"""
stockdesk/blueprints/purchase_orders/__init__.py

Blueprint package export.

IMPORTANT:
- Must expose purchase_orders_bp for app factory registration.
- Keep import minimal to avoid side effects.
"""

from __future__ import annotations

from .routes import purchase_orders_bp  # noqa: F401
