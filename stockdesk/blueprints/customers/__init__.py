"""
Customers blueprint package.

This file just exposes the Blueprint object to be imported in stockdesk.__init__.
"""

from .routes import customers_bp  # noqa: F401
