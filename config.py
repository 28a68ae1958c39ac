"""
Configuration for DiplomaIssuerWeb.

Supabase (auth + relational storage) is required: the application fails
fast at startup without it. Blockfrost and the wallet bridge are only
needed for minting and are checked when first used.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file early so environment variables are available for Config class
load_dotenv(override=True)

# Base directory (where this file lives)
BASE_DIR = Path(__file__).resolve().parent


class Config:
    """Default configuration for the Flask application."""

    # Flask settings
    SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", "dev-secret-key")
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16 MB diploma images
    SESSION_COOKIE_NAME = "diploma_issuer_session"
    ENVIRONMENT = os.environ.get("FLASK_ENV", "development")

    # Debug mode
    DEBUG = os.environ.get("FLASK_DEBUG", "1") == "1"
    TESTING = False

    # ==========================================================================
    # Backend-as-a-Service (auth + storage)
    # ==========================================================================
    SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
    SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY", "")
    PASSWORD_RESET_REDIRECT_URL = os.environ.get(
        "PASSWORD_RESET_REDIRECT_URL", "http://localhost:5000/auth/password-reset/confirm"
    )

    # ==========================================================================
    # Blockchain collaborators
    # ==========================================================================
    # Project ids start with the network name ("preprod...", "mainnet...").
    BLOCKFROST_PROJECT_ID = os.environ.get("BLOCKFROST_PROJECT_ID", "")
    BLOCKFROST_NETWORK = os.environ.get("BLOCKFROST_NETWORK", "preprod")
    # IPFS uses its own project id on Blockfrost; falls back to the chain one.
    BLOCKFROST_IPFS_PROJECT_ID = os.environ.get("BLOCKFROST_IPFS_PROJECT_ID", "")
    WALLET_BRIDGE_URL = os.environ.get("WALLET_BRIDGE_URL", "http://localhost:8090")

    HTTP_TIMEOUT_SECONDS = float(os.environ.get("HTTP_TIMEOUT_SECONDS", "20"))

    # ==========================================================================
    # Workflow tuning
    # ==========================================================================
    # Session resolution never blocks longer than this; past it the visitor
    # is treated as signed out.
    SESSION_RESOLVE_TIMEOUT_SECONDS = float(
        os.environ.get("SESSION_RESOLVE_TIMEOUT_SECONDS", "5")
    )
    # Access tokens this close to expiry are refreshed before use
    SESSION_REFRESH_MARGIN_SECONDS = float(
        os.environ.get("SESSION_REFRESH_MARGIN_SECONDS", "60")
    )
    MIN_WALLET_BALANCE_ADA = float(os.environ.get("MIN_WALLET_BALANCE_ADA", "5"))
    CONFIRMATION_MAX_ATTEMPTS = int(os.environ.get("CONFIRMATION_MAX_ATTEMPTS", "20"))
    CONFIRMATION_INTERVAL_SECONDS = float(
        os.environ.get("CONFIRMATION_INTERVAL_SECONDS", "3")
    )

    # ==========================================================================
    # Pricing fallbacks
    # ==========================================================================
    # Used only when no price_config row exists.
    # Formula with a config: network = base_price x percent / 100 per diploma,
    # storage = price_per_1000 / 1000 per diploma above the free tier.
    DEFAULT_NETWORK_FEE_PER_DIPLOMA = os.environ.get("DEFAULT_NETWORK_FEE_PER_DIPLOMA", "0.50")
    DEFAULT_DIPLOMA_PRICE = os.environ.get("DEFAULT_DIPLOMA_PRICE", "25.00")


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    PERMANENT_SESSION_LIFETIME = 3600  # 1 hour


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    """Testing configuration."""
    DEBUG = False
    TESTING = True
    SECRET_KEY = "test-secret-key"
    SUPABASE_URL = "https://test-project.supabase.co"
    SUPABASE_ANON_KEY = "test-anon-key"
    BLOCKFROST_PROJECT_ID = "preprodTestProject"
    SESSION_RESOLVE_TIMEOUT_SECONDS = 1.0
    CONFIRMATION_MAX_ATTEMPTS = 2
    CONFIRMATION_INTERVAL_SECONDS = 0.0
