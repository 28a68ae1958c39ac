"""
Billing routes.

Handles:
- GET /billing       - Refresh and return balance + transaction history
- GET /billing/quote - Fee quote for issuing ``quantity`` more diplomas
"""

from flask import Blueprint, current_app, g, request

from services.billing_service import BillingLedgerView
from logging_config import get_logger

from .guards import login_required, session_storage


# Module logger
logger = get_logger(__name__)

billing_bp = Blueprint("billing", __name__, url_prefix="/billing")


@billing_bp.route("", methods=["GET"])
@login_required
def ledger():
    """
    Balance and history.

    Each request re-issues both fetches. A failed fetch keeps the last good
    dataset and reports its own error next to it.
    """
    state = g.session_state
    storage = session_storage()
    if state.ledger is None:
        state.ledger = BillingLedgerView(storage, g.auth_context.school_id)
    else:
        state.ledger.rebind(storage)

    snapshot = state.ledger.refresh()
    return {"ledger": snapshot.to_dict(), "is_stale": snapshot.is_stale}


@billing_bp.route("/quote", methods=["GET"])
@login_required
def quote():
    quantity = request.args.get("quantity", type=int)
    if quantity is None:
        return {"error": "quantity must be a whole number.", "field": "quantity"}, 400

    billing_service = current_app.config["BILLING_SERVICE"]
    fee_quote = billing_service.quote(session_storage(), g.auth_context.school_id, quantity)
    return {"quote": fee_quote.to_display()}
