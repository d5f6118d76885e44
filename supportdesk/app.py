"""Flask application factory for SupportDesk."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

from flask import Flask, jsonify

from .config import DEFAULT_SECRET_KEY, AppConfig, load_config
from .errors import register_error_handlers
from .extensions import db
from .migrations import run_migrations


def create_app(config_path: Optional[str | Path] = None) -> Flask:
    """Create and configure the Flask application."""

    app = Flask(__name__, instance_relative_config=True)
    app_config: AppConfig = load_config(config_path)

    app.config["SECRET_KEY"] = app_config.secret_key
    app.config["SQLALCHEMY_DATABASE_URI"] = app_config.database_uri
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["APP_CONFIG"] = app_config
    app.json.sort_keys = False

    app.logger.setLevel(app_config.logging.numeric_level())

    db.init_app(app)

    with app.app_context():
        # Import models so SQLAlchemy registers them, then create tables if needed.
        from . import models  # noqa: F401

        db.create_all()
        run_migrations()

    if app_config.secret_key == DEFAULT_SECRET_KEY:
        app.logger.warning("Using the default secret key; set SUPPORTDESK_SECRET_KEY in production.")

    from .views.auth import auth_bp
    from .views.clients import clients_bp
    from .views.email import email_bp
    from .views.roles import roles_bp
    from .views.tickets import tickets_bp
    from .views.users import users_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(clients_bp)
    app.register_blueprint(email_bp)
    app.register_blueprint(roles_bp)
    app.register_blueprint(tickets_bp)
    app.register_blueprint(users_bp)
    register_error_handlers(app)

    @app.route("/api/v1/health", methods=["GET"])
    def health():
        return jsonify({"success": True, "status": "ok"})

    return app


if __name__ == "__main__":
    application = create_app()
    application.run(debug=True)
