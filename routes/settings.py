"""
School settings routes.

Handles:
- GET   /settings - Current school profile
- PATCH /settings - Update the school profile

Profile updates go through the auth service so the USER_UPDATED event
refreshes the session context of every browser signed in as this user.
"""

import bleach
from flask import Blueprint, current_app, g, request

from services.storage_service import SCHOOL_PROFILE_EDITABLE
from logging_config import get_logger

from .guards import login_required


# Module logger
logger = get_logger(__name__)

settings_bp = Blueprint("settings", __name__, url_prefix="/settings")

MAX_FIELD_LENGTH = 500


def _sanitize_text(text: str, max_length: int = None) -> str:
    """Sanitize user input text."""
    if not text:
        return ""
    text = str(text).strip()
    text = bleach.clean(text, tags=[], strip=True)
    if max_length and len(text) > max_length:
        text = text[:max_length]
    return text


@settings_bp.route("", methods=["GET"])
@login_required
def profile():
    return {"school_profile": g.auth_context.school_profile.to_dict()}


@settings_bp.route("", methods=["PATCH", "POST"])
@login_required
def update_profile():
    data = request.get_json(silent=True) or request.form.to_dict()
    values = {
        key: _sanitize_text(data[key], MAX_FIELD_LENGTH)
        for key in SCHOOL_PROFILE_EDITABLE
        if key in data
    }
    if not values:
        return {"error": "No editable fields supplied."}, 400
    if "name" in values and not values["name"]:
        return {"error": "School name cannot be empty.", "field": "name"}, 400

    context = g.auth_context
    auth_service = current_app.config["AUTH_SERVICE"]
    updated = auth_service.update_school_profile(
        context.user,
        context.tokens,
        context.school_id,
        values,
        origin=g.session_state.session_id,
    )
    logger.info(f"School profile {updated.id} updated: {', '.join(sorted(values))}")
    return {"school_profile": updated.to_dict()}
