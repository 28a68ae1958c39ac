"""
Authentication routes.

Handles:
- POST /auth/signup                  - Register a school
- POST /auth/signin                  - Email + password sign-in
- POST /auth/signout                 - Revoke the session everywhere
- GET  /auth/session                 - Current session verdict
- POST /auth/password-reset          - Send a reset link
- POST /auth/password-reset/confirm  - Set a new password from the link

Tokens are cached in the cookie session under ``auth``; the AuthGate of
this browser picks up every change through the auth service's listeners.
"""

import bleach
from flask import Blueprint, current_app, request, session

from models.session import SessionTokens
from logging_config import get_logger

from .guards import AUTH_SESSION_KEY, current_context, current_session_state


# Module logger
logger = get_logger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

MAX_SCHOOL_NAME_LENGTH = 200
MAX_EMAIL_LENGTH = 320


def _sanitize_text(text: str, max_length: int = None) -> str:
    """Sanitize user input text."""
    if not text:
        return ""
    text = str(text).strip()
    text = bleach.clean(text, tags=[], strip=True)
    if max_length and len(text) > max_length:
        text = text[:max_length]
    return text


def _payload() -> dict:
    """Request fields from a JSON body or a form post."""
    return request.get_json(silent=True) or request.form.to_dict()


def _password(data: dict) -> str:
    """Password exactly as typed; a non-text value counts as missing."""
    password = data.get("password", "")
    return password if isinstance(password, str) else ""


@auth_bp.route("/signup", methods=["POST"])
def signup():
    data = _payload()
    auth_service = current_app.config["AUTH_SERVICE"]
    state = current_session_state()

    result = auth_service.sign_up(
        _sanitize_text(data.get("email", ""), MAX_EMAIL_LENGTH),
        _password(data),
        _sanitize_text(data.get("school_name", ""), MAX_SCHOOL_NAME_LENGTH),
        origin=state.session_id,
    )

    if result.tokens is not None:
        session[AUTH_SESSION_KEY] = result.tokens.to_dict()

    return {
        "user": {"id": result.user.id, "email": result.user.email},
        "needs_confirmation": result.needs_confirmation,
        "school_profile": result.school_profile.to_dict() if result.school_profile else None,
    }, 201


@auth_bp.route("/signin", methods=["POST"])
def signin():
    data = _payload()
    auth_service = current_app.config["AUTH_SERVICE"]
    state = current_session_state()

    change = auth_service.sign_in(
        _sanitize_text(data.get("email", ""), MAX_EMAIL_LENGTH),
        _password(data),
        origin=state.session_id,
    )
    session[AUTH_SESSION_KEY] = change.tokens.to_dict()

    # The gate was updated synchronously by the SIGNED_IN event
    return {"session": current_context(state).to_dict()}


@auth_bp.route("/signout", methods=["POST"])
def signout():
    auth_service = current_app.config["AUTH_SERVICE"]
    state = current_session_state()
    context = state.gate.context

    try:
        auth_service.sign_out(context.user, context.tokens, origin=state.session_id)
    finally:
        session.pop(AUTH_SESSION_KEY, None)
        state.drop_school_state()

    return {"session": state.gate.context.to_dict()}


@auth_bp.route("/session", methods=["GET"])
def current_session():
    return {"session": current_context().to_dict()}


@auth_bp.route("/password-reset", methods=["POST"])
def password_reset():
    data = _payload()
    auth_service = current_app.config["AUTH_SERVICE"]
    auth_service.request_password_reset(_sanitize_text(data.get("email", ""), MAX_EMAIL_LENGTH))

    # Same answer whether or not the address is registered
    return {"status": "sent", "message": "If the address is registered, a reset link is on its way."}, 202


@auth_bp.route("/password-reset/confirm", methods=["POST"])
def password_reset_confirm():
    """
    Set a new password.

    The reset link carries a short-lived recovery session; the browser
    forwards its ``access_token`` here together with the new password.
    """
    data = _payload()
    tokens = SessionTokens.from_dict(data)
    if tokens is None:
        return {"error": "The reset link is invalid or has expired."}, 400

    auth_service = current_app.config["AUTH_SERVICE"]
    state = current_session_state()
    user = auth_service.confirm_password_reset(tokens, _password(data), origin=state.session_id)
    logger.info(f"Password updated for user {user.id}")
    return {"status": "updated"}
