"""
Flask route blueprints for DiplomaIssuerWeb.

All endpoints speak JSON:
- auth: sign-up, sign-in, sign-out, session, password reset
- wallet: wallet bridge connection
- issuance: recipients -> asset -> confirm -> mint -> status
- billing: balance, transaction history, fee quotes
- students: student roster
- settings: school profile
- dashboard: school totals
- api: health check

Each blueprint is registered with the Flask app in create_app().
Application errors are mapped to JSON responses by register_error_handlers().
"""

from flask import Flask
from werkzeug.exceptions import RequestEntityTooLarge

from core.exceptions import (
    ConcurrencyError,
    ConfigurationError,
    DiplomaIssuerError,
    DuplicateEmailError,
    ExternalServiceError,
    InvalidCredentialsError,
    InvalidTransitionError,
    MalformedRecordError,
    PreconditionError,
    ValidationError,
)
from logging_config import get_logger

from .api import api_bp
from .auth import auth_bp
from .billing import billing_bp
from .dashboard import dashboard_bp
from .issuance import issuance_bp
from .settings import settings_bp
from .students import students_bp
from .wallet import wallet_bp

__all__ = [
    "api_bp",
    "auth_bp",
    "billing_bp",
    "dashboard_bp",
    "issuance_bp",
    "settings_bp",
    "students_bp",
    "wallet_bp",
    "register_blueprints",
    "register_error_handlers",
]


# Module logger
logger = get_logger(__name__)

# Checked in order; the first matching class wins (subclasses first)
ERROR_STATUS_CODES = (
    (ValidationError, 400),
    (InvalidCredentialsError, 401),
    (DuplicateEmailError, 409),
    (ConcurrencyError, 409),
    (InvalidTransitionError, 409),
    (PreconditionError, 422),
    (MalformedRecordError, 502),
    (ExternalServiceError, 502),
    (ConfigurationError, 503),
)


def register_blueprints(app: Flask) -> None:
    """
    Register all blueprints with the Flask app.

    Args:
        app: Flask application instance
    """
    app.register_blueprint(api_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(wallet_bp)
    app.register_blueprint(issuance_bp)
    app.register_blueprint(billing_bp)
    app.register_blueprint(students_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(dashboard_bp)


def status_code_for(error: DiplomaIssuerError) -> int:
    for error_class, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_class):
            return status_code
    return 500


def register_error_handlers(app: Flask) -> None:
    """Map application errors to JSON responses."""

    @app.errorhandler(DiplomaIssuerError)
    def handle_app_error(e: DiplomaIssuerError):
        status_code = status_code_for(e)
        if status_code >= 500:
            logger.error(f"{type(e).__name__}: {e}")
        else:
            logger.info(f"{type(e).__name__}: {e.message}")

        body = {"error": e.message, "type": type(e).__name__}
        field = getattr(e, "field", None)
        if field:
            body["field"] = field
        service = e.details.get("service")
        if service:
            body["service"] = service
        return body, status_code

    @app.errorhandler(RequestEntityTooLarge)
    def handle_file_too_large(e):
        max_mb = app.config.get("MAX_CONTENT_LENGTH", 16 * 1024 * 1024) / (1024 * 1024)
        return {"error": f"File too large. Maximum upload size is {max_mb:.0f} MB."}, 413

    @app.errorhandler(404)
    def handle_not_found(e):
        return {"error": "Not found."}, 404

    @app.errorhandler(405)
    def handle_method_not_allowed(e):
        return {"error": "Method not allowed."}, 405

    @app.errorhandler(500)
    def handle_server_error(e):
        logger.error(f"500 error: {e}", exc_info=True)
        return {"error": "An unexpected error occurred. Please try again."}, 500
