"""Flask application factory for the refund claims service."""
import os
from typing import Optional

import click
from dotenv import load_dotenv
from flask import Flask, jsonify, request
from flask_wtf.csrf import CSRFError
from sqlalchemy import create_engine, text
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from extensions import csrf, db, login_manager, migrate
from utils.errors import AppError, InfrastructureError
from utils.identity_provider import (
    IdentityProviderNotConfigured,
    IdentityProviderUnavailable,
    init_identity_provider,
)
from utils.logger import init_logging
from utils.security import apply_security_headers, check_session_secret
from utils.session_store import DatabaseSessionInterface, purge_expired_sessions

GENERIC_ERROR = "We are experiencing technical difficulties. Please try again later."


def _json_error(message: str, status: int):
    return jsonify({"success": False, "message": message}), status


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(AppError)
    def app_error(error: AppError):
        if isinstance(error, InfrastructureError):
            app.logger.error("Infrastructure failure", extra={"detail": error.detail, "path": request.path})
        elif error.status_code >= 400:
            app.logger.info(
                "Request rejected",
                extra={"status": error.status_code, "reason": error.message, "path": request.path},
            )
        return jsonify(error.to_payload()), error.status_code

    @app.errorhandler(CSRFError)
    def csrf_error(error):
        app.logger.warning("CSRF validation failed", extra={"path": request.path, "reason": error.description})
        return _json_error("Invalid or missing security token. Refresh the page and try again.", 403)

    @app.errorhandler(IdentityProviderUnavailable)
    def provider_unavailable(error):
        app.logger.error("Identity provider unreachable", extra={"path": request.path, "detail": str(error)})
        return _json_error("The sign-in service is not responding. Please try again in a moment.", 503)

    @app.errorhandler(IdentityProviderNotConfigured)
    def provider_not_configured(error):
        app.logger.error("Identity provider not configured", extra={"path": request.path})
        return _json_error(GENERIC_ERROR, 500)

    @app.errorhandler(SQLAlchemyError)
    def database_error(error):
        db.session.rollback()
        app.logger.exception("Unhandled database error", extra={"path": request.path})
        return _json_error(GENERIC_ERROR, 500)

    @app.errorhandler(400)
    def bad_request(error):
        return _json_error("Bad request", 400)

    @app.errorhandler(401)
    def unauthorized(error):
        return _json_error("Not authenticated", 401)

    @app.errorhandler(403)
    def forbidden(error):
        app.logger.warning("403 Forbidden", extra={"path": request.path, "method": request.method})
        return _json_error("Access denied", 403)

    @app.errorhandler(404)
    def not_found_error(error):
        app.logger.warning("404 Not Found", extra={"path": request.path, "method": request.method})
        return _json_error("Not found", 404)

    @app.errorhandler(405)
    def method_not_allowed(error):
        return _json_error("Method not allowed", 405)

    @app.errorhandler(413)
    def too_large(error):
        return _json_error("File size too large. Maximum size is 5MB.", 413)

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.exception("500 Internal Server Error")
        return _json_error(GENERIC_ERROR, 500)


def ensure_default_admin(app: Flask) -> None:
    """Create the bootstrap admin from configuration; an existing account is left untouched."""
    from models import AdminUser  # Local import to avoid circular dependency
    from utils.credential_store import hash_password

    username = (app.config.get("DEFAULT_ADMIN_USERNAME") or "").strip()
    password = app.config.get("DEFAULT_ADMIN_PASSWORD") or ""
    if not username or not password:
        return
    if AdminUser.query.filter_by(username=username).first():
        return

    db.session.add(AdminUser(username=username, password_hash=hash_password(password)))
    db.session.commit()
    app.logger.info("Default admin account created", extra={"username": username})


def ensure_database_exists(database_uri: str) -> None:
    """Create the target database if it does not exist (PostgreSQL + SQLite support)."""
    url = make_url(database_uri)

    if url.drivername.startswith("sqlite"):
        # For SQLite just make sure the parent directory exists.
        if url.database and url.database != ":memory:":
            os.makedirs(os.path.dirname(url.database) or ".", exist_ok=True)
        return

    if url.drivername.startswith("postgres"):
        db_name = url.database
        admin_url = url.set(database=os.getenv("POSTGRES_DB_ADMIN", "postgres"))
        engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")
        try:
            with engine.connect() as conn:
                exists = conn.execute(
                    text("SELECT 1 FROM pg_database WHERE datname = :name"), {"name": db_name}
                ).scalar()
                if not exists:
                    conn.execute(text(f'CREATE DATABASE "{db_name}"'))
        except OperationalError:
            # If we cannot connect/create, let the normal app startup fail loudly later.
            pass
        finally:
            engine.dispose()


def register_cli(app: Flask) -> None:
    from models import AdminUser
    from utils.credential_store import hash_password
    from utils.security import password_meets_policy

    def _checked_password(password: str) -> str:
        ok, reason = password_meets_policy(password)
        if not ok:
            raise click.ClickException(reason)
        return password

    @app.cli.command("create-admin")
    @click.argument("username")
    @click.argument("password")
    def create_admin(username, password):
        """Create an administrator account."""
        username = username.strip()
        if AdminUser.query.filter_by(username=username).first():
            raise click.ClickException(f"Admin '{username}' already exists.")
        db.session.add(AdminUser(username=username, password_hash=hash_password(_checked_password(password))))
        db.session.commit()
        click.echo(f"Admin '{username}' created.")

    @app.cli.command("reset-admin-password")
    @click.argument("username")
    @click.argument("password")
    def reset_admin_password(username, password):
        """Replace an administrator's password with a freshly hashed one."""
        admin = AdminUser.query.filter_by(username=username.strip()).first()
        if admin is None:
            raise click.ClickException(f"Admin '{username}' not found.")
        admin.password_hash = hash_password(_checked_password(password))
        db.session.commit()
        click.echo(f"Password for admin '{admin.username}' has been reset.")

    @app.cli.command("purge-sessions")
    def purge_sessions():
        """Delete expired server-side sessions (schedule this via cron)."""
        removed = purge_expired_sessions()
        click.echo(f"Removed {removed} expired session(s).")


def create_app(config_name: Optional[str] = None) -> Flask:
    """Application factory with environment-aware configuration."""
    load_dotenv()

    app = Flask(__name__, instance_relative_config=True)

    # Resolve configuration
    from config import DevelopmentConfig, ProductionConfig, TestingConfig

    config_key = (config_name or os.getenv("FLASK_CONFIG") or os.getenv("FLASK_ENV") or "production").lower()
    config_map = {
        "development": DevelopmentConfig,
        "dev": DevelopmentConfig,
        "production": ProductionConfig,
        "prod": ProductionConfig,
        "testing": TestingConfig,
        "test": TestingConfig,
    }
    config_class = config_map.get(config_key, ProductionConfig)
    app.config.from_object(config_class())

    ensure_database_exists(app.config["SQLALCHEMY_DATABASE_URI"])

    # Optional instance-specific overrides
    app.config.from_pyfile("config.py", silent=True)
    os.makedirs(app.instance_path, exist_ok=True)
    os.makedirs(app.config["CLAIM_UPLOAD_FOLDER"], exist_ok=True)

    # Initialize logging early
    logger = init_logging(app)
    app.logger = logger
    check_session_secret(app.config.get("SECRET_KEY"), app.config.get("ENV") == "production", logger)

    # Initialize extensions
    csrf.init_app(app)
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    login_manager.session_protection = "strong"
    app.session_interface = DatabaseSessionInterface()
    init_identity_provider(app)

    @login_manager.user_loader
    def load_principal(principal_id):
        from models import ADMIN_PRINCIPAL, USER_PRINCIPAL, AdminUser, User

        kind, _, raw_id = (principal_id or "").partition(":")
        if kind == USER_PRINCIPAL and raw_id:
            return db.session.get(User, raw_id)
        if kind == ADMIN_PRINCIPAL and raw_id.isdigit():
            return db.session.get(AdminUser, int(raw_id))
        return None

    @login_manager.unauthorized_handler
    def unauthorized():
        return _json_error("Not authenticated", 401)

    # Blueprints
    from routes import admin_bp, auth_bp, claims_bp, main_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(claims_bp)
    app.register_blueprint(admin_bp)

    register_cli(app)

    # Error handlers
    register_error_handlers(app)

    @app.after_request
    def _after_request(response):
        return apply_security_headers(response, force_https=app.config.get("PREFERRED_URL_SCHEME") == "https")

    # Ensure tables exist so first run creates the database structure automatically.
    with app.app_context():
        db.create_all()
        ensure_default_admin(app)

    return app


# Expose the Flask application for WSGI servers (e.g., gunicorn app:app).
app = create_app()


if __name__ == "__main__":
    port = int(os.getenv("PORT", 5000))
    app.run(host="0.0.0.0", port=port, use_reloader=False)
