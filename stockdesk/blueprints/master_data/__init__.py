"""
Master data blueprint package (warehouses, suppliers).

This file just exposes the Blueprint objects to be imported in stockdesk.__init__.
The actual routes are in routes.py.
"""

from .routes import suppliers_bp, warehouses_bp  # noqa: F401
