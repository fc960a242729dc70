"""
Application configuration.
This module defines the configuration settings for the Flask application, including database connection, secret keys,
token lifetime and logging. It uses environment variables for sensitive information and defaults for development.
In production, make sure to set the appropriate environment variables and secure both secret keys.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


class Config:
    """Base configuration shared by all environments."""

    # IMPORTANT: change this in production
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me-please")

    # Database: SQLite for development (simple file in project folder)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{BASE_DIR / 'stockdesk.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Bearer tokens (HS256). Falls back to SECRET_KEY when not set.
    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", SECRET_KEY)
    JWT_EXPIRES_DAYS = int(os.environ.get("JWT_EXPIRES_DAYS", "30"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # List endpoints
    DEFAULT_PAGE_SIZE = 50
    MAX_PAGE_SIZE = 200

    # Default country for customer addresses
    DEFAULT_COUNTRY = "India"


class TestingConfig(Config):
    """In-memory database, used by the pytest suite."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    JWT_SECRET_KEY = "test-secret-key-with-enough-length-for-hs256"
    LOG_LEVEL = "WARNING"
