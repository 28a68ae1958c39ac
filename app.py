"""
DiplomaIssuerWeb - Flask Application Entry Point.

This is a slim app factory that:
1. Validates required settings (fail-fast, Supabase is mandatory)
2. Creates the shared HTTP connection pool and collaborator clients
3. Creates the issuance service (thread-per-batch)
4. Creates the per-browser session registry
5. Registers route blueprints and JSON error handlers

ARCHITECTURE:
    Main Thread
    ├── Flask request handling
    └── Cleanup on shutdown (wait for mint threads, close HTTP pool)

    Session resolve threads (one per cached-session check)
    └── Bounded by SESSION_RESOLVE_TIMEOUT_SECONDS

    Mint Threads (one per started batch)
    └── Sequential upload -> submit -> confirm -> persist per recipient

Browser sessions never share state: each sid gets its own AuthGate,
wallet connection, issuance workflow and billing ledger view.
"""

from __future__ import annotations

import atexit
import logging
import os
import sys
import uuid
from pathlib import Path
from typing import Optional

import httpx
from dotenv import load_dotenv
from flask import Flask, session

from logging_config import setup_logging, get_logger
from core.blockfrost_client import BlockfrostClient
from core.exceptions import ConfigurationError
from core.supabase_client import SupabaseClient
from models.pricing import to_decimal
from services.auth_gate import AuthGate
from services.auth_service import AuthService
from services.billing_service import BillingService
from services.issuance_service import IssuanceService
from services.session_registry import SessionRegistry
from services.storage_service import StorageService
from routes import register_blueprints, register_error_handlers


# Module logger (configured after setup_logging)
logger = get_logger(__name__)


def _get_base_path() -> Path:
    """
    Get the base path for the application.

    In PyInstaller bundle: Returns the directory containing the executable
    In development: Returns the directory containing app.py
    """
    if getattr(sys, 'frozen', False):
        return Path(sys.executable).parent
    else:
        return Path(__file__).parent


def create_app(config_object: str = "config.Config", http_client: Optional[httpx.Client] = None) -> Flask:
    """
    Application factory - creates and configures Flask app.

    FAIL-FAST: Without SUPABASE_URL and SUPABASE_ANON_KEY the app will not
    start. A missing Blockfrost project id only disables minting.

    Args:
        config_object: Import path of the config class
        http_client: Shared httpx.Client for every collaborator (created if
            not provided)

    Returns:
        Configured Flask application

    Raises:
        ConfigurationError: If a required setting is missing
    """
    # Load .env from base path (next to executable in production)
    # Use override=True so .env file always takes precedence over shell environment
    base_path = _get_base_path()
    env_file = base_path / '.env'
    if env_file.exists():
        load_dotenv(env_file, override=True)
    else:
        load_dotenv(override=True)  # Default behavior

    # Create Flask app
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Configure logging
    log_level = logging.DEBUG if app.config.get("DEBUG") else logging.INFO
    enable_file_logging = app.config.get("ENVIRONMENT") == "production"

    root_logger = setup_logging(
        log_level=log_level,
        enable_file_logging=enable_file_logging
    )

    # Set Flask's logger to use our configured logger
    app.logger.handlers = root_logger.handlers
    app.logger.setLevel(log_level)

    logger.info(f"Starting DiplomaIssuerWeb in {app.config.get('ENVIRONMENT')} mode")

    # =========================================================================
    # CONFIGURATION CHECKS (FAIL-FAST)
    # =========================================================================

    for setting in ("SUPABASE_URL", "SUPABASE_ANON_KEY"):
        if not app.config.get(setting):
            logger.error(f"FATAL: Cannot start application - {setting} is not configured")
            raise ConfigurationError(setting)

    if not app.config.get("BLOCKFROST_PROJECT_ID"):
        logger.warning("BLOCKFROST_PROJECT_ID is not configured - IPFS upload and minting are disabled")

    default_unit_network_fee = to_decimal(
        app.config["DEFAULT_NETWORK_FEE_PER_DIPLOMA"], "DEFAULT_NETWORK_FEE_PER_DIPLOMA"
    )
    default_diploma_price = to_decimal(app.config["DEFAULT_DIPLOMA_PRICE"], "DEFAULT_DIPLOMA_PRICE")
    app.config["DEFAULT_UNIT_NETWORK_FEE"] = default_unit_network_fee

    # =========================================================================
    # COLLABORATOR CLIENTS
    # =========================================================================

    # One connection pool shared by every client and thread
    owns_http_client = http_client is None
    if http_client is None:
        http_client = httpx.Client(timeout=app.config["HTTP_TIMEOUT_SECONDS"])
    app.config["HTTP_CLIENT"] = http_client

    supabase_client = SupabaseClient(
        app.config["SUPABASE_URL"],
        app.config["SUPABASE_ANON_KEY"],
        http_client=http_client,
        logger=get_logger("core.supabase_client"),
    )
    app.config["SUPABASE_CLIENT"] = supabase_client

    app.config["BLOCKFROST_CLIENT"] = BlockfrostClient(
        app.config["BLOCKFROST_PROJECT_ID"],
        network=app.config["BLOCKFROST_NETWORK"],
        ipfs_project_id=app.config.get("BLOCKFROST_IPFS_PROJECT_ID") or None,
        http_client=http_client,
        logger=get_logger("core.blockfrost_client"),
    )

    # =========================================================================
    # SERVICES INITIALIZATION
    # =========================================================================

    storage_service = StorageService(supabase_client, default_base_price=default_diploma_price)
    app.config["STORAGE_SERVICE"] = storage_service

    app.config["AUTH_SERVICE"] = AuthService(
        supabase_client,
        storage_service,
        password_reset_redirect_url=app.config.get("PASSWORD_RESET_REDIRECT_URL"),
    )

    app.config["BILLING_SERVICE"] = BillingService(default_unit_network_fee)

    # Create issuance service (manages mint threads)
    issuance_service = IssuanceService()
    app.config["ISSUANCE_SERVICE"] = issuance_service
    logger.info("Issuance service initialized")

    def gate_factory(session_id: str) -> AuthGate:
        # Looked up per call so a replaced auth service is picked up
        return AuthGate(
            app.config["AUTH_SERVICE"],
            timeout_seconds=app.config["SESSION_RESOLVE_TIMEOUT_SECONDS"],
            refresh_margin_seconds=app.config["SESSION_REFRESH_MARGIN_SECONDS"],
            session_key=session_id,
        )

    session_registry = SessionRegistry(gate_factory)
    app.config["SESSION_REGISTRY"] = session_registry

    # =========================================================================
    # CLEANUP REGISTRATION
    # =========================================================================

    def cleanup():
        """Cleanup on application shutdown."""
        logger.info("Shutting down...")

        # Wait for mint threads
        issuance_service.shutdown()

        session_registry.clear()

        if owns_http_client:
            http_client.close()

        logger.info("Shutdown complete")

    atexit.register(cleanup)

    # =========================================================================
    # SESSION ID
    # =========================================================================

    @app.before_request
    def ensure_session_id():
        """Give every browser an opaque id for its server-side state."""
        if "sid" not in session:
            session["sid"] = uuid.uuid4().hex
            session.permanent = True

    # =========================================================================
    # REGISTER BLUEPRINTS + ERROR HANDLERS
    # =========================================================================

    register_blueprints(app)
    register_error_handlers(app)

    logger.info("Application initialized successfully")
    return app


if __name__ == "__main__":
    app = create_app()
    debug_mode = os.environ.get("FLASK_DEBUG", "1") == "1"
    app.run(debug=debug_mode)
