"""
Users blueprint package (auth, profile, user administration, grants).

Exposes users_bp for stockdesk.__init__; routes are in routes.py.
"""

from .routes import users_bp  # noqa: F401
