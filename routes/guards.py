"""
Request guards shared by the blueprints.

Every browser carries an opaque ``sid`` in its cookie session. The guard
maps it to the server-side SessionState, lets the AuthGate reach a
verdict (bounded by SESSION_RESOLVE_TIMEOUT_SECONDS) and only then runs
the protected view.
"""

from functools import wraps
from typing import Optional

from flask import current_app, g, session

from models.session import SessionContext, SessionTokens
from services.issuance_workflow import IssuanceWorkflow
from services.session_registry import SessionState
from services.storage_service import StorageService
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

AUTH_SESSION_KEY = "auth"


def current_session_state() -> SessionState:
    """SessionState of the calling browser (created on first use)."""
    registry = current_app.config["SESSION_REGISTRY"]
    return registry.get_or_create(session["sid"])


def current_context(state: Optional[SessionState] = None) -> SessionContext:
    """
    Resolved session context of the calling browser.

    Never returns LOADING. Tokens close to expiry are refreshed and the
    cookie follows the gate. A resolution that ends unauthenticated also
    drops the cached tokens, so the next request does not retry them.
    """
    state = state or current_session_state()
    context = state.gate.context
    if not context.is_resolved:
        context = state.gate.resolve(SessionTokens.from_dict(session.get(AUTH_SESSION_KEY)))
    if state.gate.needs_refresh():
        context = state.gate.refresh()

    if not context.is_authenticated:
        if session.pop(AUTH_SESSION_KEY, None) is not None:
            logger.info("Cached session rejected - cleared from cookie")
        if state.workflow is not None or state.ledger is not None:
            state.drop_school_state()
        return context

    if context.tokens is not None and SessionTokens.from_dict(session.get(AUTH_SESSION_KEY)) != context.tokens:
        session[AUTH_SESSION_KEY] = context.tokens.to_dict()

    # Profile switched underneath us (different school signed in)
    if state.workflow is not None and state.workflow.school_id != context.school_id:
        logger.info("School changed - discarding previous issuance and ledger state")
        state.drop_school_state()
    elif state.ledger is not None and state.ledger.school_id != context.school_id:
        state.ledger = None

    return context


def login_required(view):
    """
    Require an authenticated school session.

    Returns 401 JSON when unauthenticated and 403 when the account has no
    school profile. On success ``g.session_state`` and ``g.auth_context``
    are set for the view.
    """

    @wraps(view)
    def wrapped(*args, **kwargs):
        state = current_session_state()
        context = current_context(state)

        if not context.is_authenticated:
            return {
                "error": "Authentication required. Please sign in.",
                "status": context.status.value,
            }, 401

        if context.school_profile is None:
            return {"error": "This account has no school profile."}, 403

        g.session_state = state
        g.auth_context = context
        return view(*args, **kwargs)

    return wrapped


def session_storage() -> StorageService:
    """Storage service scoped to the signed-in user's token."""
    storage = current_app.config["STORAGE_SERVICE"]
    return storage.for_session(g.auth_context.access_token)


def current_workflow() -> IssuanceWorkflow:
    """
    The session's issuance workflow, created on first use.

    An existing workflow is handed the storage service for the current
    access token, which changes whenever the session is refreshed.
    """
    state = g.session_state
    if state.workflow is not None:
        state.workflow.rebind(session_storage())
    else:
        config = current_app.config
        state.workflow = IssuanceWorkflow(
            g.auth_context,
            session_storage(),
            config["BLOCKFROST_CLIENT"],
            confirmation_attempts=config["CONFIRMATION_MAX_ATTEMPTS"],
            confirmation_interval_seconds=config["CONFIRMATION_INTERVAL_SECONDS"],
            default_unit_network_fee=config["DEFAULT_UNIT_NETWORK_FEE"],
        )
        logger.info(f"Issuance workflow created for school {state.workflow.school_id}")
    return state.workflow
