"""
stockdesk/blueprints/reports/__init__.py

Blueprint package export.

IMPORTANT:
- Must expose reports_bp for app factory registration.
- Keep import minimal to avoid side effects.
"""

from __future__ import annotations

from .routes import reports_bp  # noqa: F401
