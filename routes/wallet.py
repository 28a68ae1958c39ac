"""
Wallet connection routes.

Handles:
- POST /wallet/connect    - Open a wallet bridge session for an address
- POST /wallet/disconnect - Forget the wallet session
- GET  /wallet/balance    - Spendable balance of the connected wallet
"""

import bleach
from flask import Blueprint, current_app, g, request

from core.wallet_client import WalletClient
from logging_config import get_logger

from .guards import login_required


# Module logger
logger = get_logger(__name__)

wallet_bp = Blueprint("wallet", __name__, url_prefix="/wallet")

LOVELACE_PER_ADA = 1_000_000
MAX_ADDRESS_LENGTH = 200


@wallet_bp.route("/connect", methods=["POST"])
@login_required
def connect():
    data = request.get_json(silent=True) or request.form.to_dict()
    address = data.get("address") or ""
    if not isinstance(address, str):
        return {"error": "address must be a string.", "field": "address"}, 400
    address = bleach.clean(address.strip(), tags=[], strip=True)[:MAX_ADDRESS_LENGTH]
    if not address:
        address = g.auth_context.school_profile.public_wallet
    if not address:
        return {"error": "A wallet address is required.", "field": "address"}, 400

    state = g.session_state
    if state.workflow is not None and state.workflow.state.is_minting:
        return {"error": "Cannot change wallets while a batch is minting."}, 409

    config = current_app.config
    wallet = WalletClient(
        config["WALLET_BRIDGE_URL"],
        http_client=config["HTTP_CLIENT"],
        logger=get_logger("core.wallet_client"),
    )
    connected_address = wallet.connect(address)

    if state.wallet is not None:
        state.wallet.disconnect()
    state.wallet = wallet

    return {"connected": True, "address": connected_address}


@wallet_bp.route("/disconnect", methods=["POST"])
@login_required
def disconnect():
    state = g.session_state
    if state.workflow is not None and state.workflow.state.is_minting:
        return {"error": "Cannot disconnect while a batch is minting."}, 409
    if state.wallet is not None:
        state.wallet.disconnect()
        state.wallet = None
    return {"connected": False}


@wallet_bp.route("/balance", methods=["GET"])
@login_required
def balance():
    wallet = g.session_state.wallet
    if wallet is None or not wallet.is_connected:
        return {"connected": False, "lovelace": None, "ada": None}

    lovelace = wallet.get_balance()
    minimum_ada = current_app.config["MIN_WALLET_BALANCE_ADA"]
    return {
        "connected": True,
        "address": wallet.address,
        "lovelace": lovelace,
        "ada": f"{lovelace / LOVELACE_PER_ADA:.2f}",
        "minimum_ada": f"{minimum_ada:.2f}",
        "can_mint": lovelace >= int(minimum_ada * LOVELACE_PER_ADA),
    }
