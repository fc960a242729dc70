"""SKU catalog blueprint."""

from .routes import skus_bp  # noqa: F401
