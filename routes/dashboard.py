"""
Dashboard route.

Handles:
- GET /dashboard - School totals and the most recent diplomas
"""

from flask import Blueprint, current_app, g

from logging_config import get_logger

from .guards import login_required, session_storage


# Module logger
logger = get_logger(__name__)

dashboard_bp = Blueprint("dashboard", __name__)

RECENT_DIPLOMA_COUNT = 5


@dashboard_bp.route("/dashboard", methods=["GET"])
@login_required
def dashboard():
    billing_service = current_app.config["BILLING_SERVICE"]
    storage = session_storage()
    school_id = g.auth_context.school_id

    return {
        "school_profile": g.auth_context.school_profile.to_dict(),
        "stats": billing_service.school_stats(storage, school_id),
        "recent_diplomas": [
            d.to_dict() for d in billing_service.recent_diplomas(storage, school_id, RECENT_DIPLOMA_COUNT)
        ],
    }
