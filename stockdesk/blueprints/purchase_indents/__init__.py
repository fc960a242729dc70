"""
stockdesk/blueprints/purchase_indents/__init__.py

Blueprint package export.

IMPORTANT:
- Must expose purchase_indents_bp for app factory registration.
- Keep import minimal to avoid side effects.
"""

from __future__ import annotations

from .routes import purchase_indents_bp  # noqa: F401
