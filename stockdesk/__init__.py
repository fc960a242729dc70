"""
stockdesk/__init__.py

Flask application factory for StockDesk (inventory, purchasing and sales orders).

Requirements:
- JSON API only; every response body is JSON with camelCase keys.
- PostgreSQL-ready (SQLAlchemy + migrations) but SQLite is used for dev.
- The client is never trusted; access control is enforced server-side.
- One transaction per request: handlers commit once, errors roll back.
"""

from __future__ import annotations

import logging

import click
from flask import Flask, jsonify
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.exceptions import HTTPException

from .errors import ApiError, UnauthorizedError
from .extensions import db, login_manager, migrate
from .models import User
from .security import load_user_from_request

# Blueprint imports kept inside create_app() to reduce import side effects.


def create_app(config_object: str = "config.Config") -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id: str) -> User | None:
        """Session loader (unused by bearer clients, required by Flask-Login)."""
        try:
            return db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None

    login_manager.request_loader(load_user_from_request)

    @login_manager.unauthorized_handler
    def unauthorized():
        raise UnauthorizedError("Not authorized, no token")

    # ----------------------------------------------------------------------
    # Error handlers
    # ----------------------------------------------------------------------
    @app.errorhandler(ApiError)
    def handle_api_error(error: ApiError):
        db.session.rollback()
        if error.status_code >= 500:
            app.logger.error("%s: %s", error.__class__.__name__, error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(error: IntegrityError):
        db.session.rollback()
        app.logger.warning("Integrity error: %s", error.orig)
        return jsonify({"message": "Duplicate value or invalid reference"}), 400

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(error: SQLAlchemyError):
        db.session.rollback()
        app.logger.exception("Database error")
        return jsonify({"message": "Internal server error"}), 500

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return jsonify({"message": error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        db.session.rollback()
        app.logger.exception("Unhandled error")
        return jsonify({"message": "Internal server error"}), 500

    # ----------------------------------------------------------------------
    # Blueprints
    # ----------------------------------------------------------------------
    from .blueprints.users import users_bp
    from .blueprints.permissions import permissions_bp
    from .blueprints.customers import customers_bp
    from .blueprints.master_data import warehouses_bp, suppliers_bp
    from .blueprints.skus import skus_bp
    from .blueprints.purchase_indents import purchase_indents_bp
    from .blueprints.purchase_orders import purchase_orders_bp
    from .blueprints.sales_orders import sales_orders_bp
    from .blueprints.reports import reports_bp

    app.register_blueprint(users_bp)
    app.register_blueprint(permissions_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(warehouses_bp)
    app.register_blueprint(suppliers_bp)
    app.register_blueprint(skus_bp)
    app.register_blueprint(purchase_indents_bp)
    app.register_blueprint(purchase_orders_bp)
    app.register_blueprint(sales_orders_bp)
    app.register_blueprint(reports_bp)

    # ----------------------------------------------------------------------
    # CLI
    # ----------------------------------------------------------------------
    @app.cli.command("seed-permissions")
    def seed_permissions_command():
        """Seed the default permission catalog."""
        from .seed import seed_default_permissions

        created = seed_default_permissions()
        click.echo(f"Permission catalog seeded ({created} new).")

    @app.cli.command("create-admin")
    @click.option("--name", prompt=True)
    @click.option("--email", prompt=True)
    @click.password_option()
    def create_admin_command(name: str, email: str, password: str):
        """Create (or promote) an admin account."""
        from .seed import create_admin

        user = create_admin(name, email, password)
        click.echo(f"Admin ready: {user.email}")

    # ----------------------------------------------------------------------
    # Health
    # ----------------------------------------------------------------------
    @app.route("/api/health")
    def health():
        return jsonify({"status": "ok"})

    return app
