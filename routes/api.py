"""
Operational endpoints.

Handles:
- /health - Health check endpoint
"""

from flask import Blueprint, current_app

from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

api_bp = Blueprint("api", __name__)


@api_bp.route("/health", methods=["GET"])
def health():
    """Health check endpoint with service status."""
    health_status = {
        "status": "ok",
        "environment": current_app.config.get("ENVIRONMENT", "unknown"),
        "checks": {}
    }

    # Auth + storage are required at startup, so presence is enough here
    if current_app.config.get("SUPABASE_CLIENT"):
        health_status["checks"]["supabase"] = "configured"
    else:
        health_status["checks"]["supabase"] = "not_configured"
        health_status["status"] = "degraded"

    # Blockfrost is only needed to mint
    blockfrost = current_app.config.get("BLOCKFROST_CLIENT")
    if blockfrost and blockfrost.is_configured:
        health_status["checks"]["blockfrost"] = "configured"
    else:
        health_status["checks"]["blockfrost"] = "not_configured"
        health_status["status"] = "degraded"

    issuance_service = current_app.config.get("ISSUANCE_SERVICE")
    if issuance_service:
        health_status["checks"]["issuance_service"] = "ok"
        health_status["active_batches"] = issuance_service.active_count
    else:
        health_status["checks"]["issuance_service"] = "not_available"
        health_status["status"] = "degraded"

    registry = current_app.config.get("SESSION_REGISTRY")
    health_status["sessions"] = len(registry) if registry is not None else 0

    status_code = 200 if health_status["status"] == "ok" else 503
    return health_status, status_code
