"""
stockdesk/blueprints/permissions/__init__.py

Blueprint package export.

IMPORTANT:
- Must expose permissions_bp for app factory registration.
- Keep import minimal to avoid side effects.
"""

from __future__ import annotations

from .routes import permissions_bp  # noqa: F401
