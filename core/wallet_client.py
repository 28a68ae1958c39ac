"""
Wallet collaborator client.

Keys, coin selection, transaction building and signing belong to an
external wallet bridge (a CIP-30 relay or a managed-wallet sidecar built
on the chain SDK). This client only speaks its HTTP contract:

    POST /wallets/connect                       {"address"}        -> {"session", "address"}
    GET  /wallets/{session}/balance                                 -> {"lovelace"}
    GET  /wallets/{session}/utxos                                   -> {"utxos": [...]}
    POST /wallets/{session}/policy                                  -> {"policy_id", "script"}
    POST /wallets/{session}/mint/build  {"policy_id", "asset_name", "metadata", "utxos"}
                                                                    -> {"unsigned_tx"}
    POST /wallets/{session}/sign        {"tx"}                      -> {"signed_tx"}
    POST /wallets/{session}/submit      {"tx"}                      -> {"tx_hash"}

PRECONDITION:
    Every call except connect() requires a connected wallet and raises
    WalletNotConnectedError otherwise.

Thread Safety:
    One WalletClient belongs to one browser session. The mint thread for
    that session is the only caller while a batch is minting.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from .exceptions import WalletNotConnectedError, WalletServiceError


class WalletClient:
    """
    Connection to one school wallet through the wallet bridge.

    Attributes:
        address: Connected wallet address (None until connected)
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 20.0,
        http_client: Optional[httpx.Client] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._http = http_client or httpx.Client(timeout=timeout_seconds)
        self._logger = logger or logging.getLogger("diploma_issuer.core.wallet_client")
        self._session: Optional[str] = None
        self.address: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        """True once connect() succeeded."""
        return self._session is not None

    def connect(self, address: str) -> str:
        """
        Open a wallet session for ``address``.

        Returns:
            The address reported by the bridge

        Raises:
            WalletServiceError: Bridge refused or is unreachable
        """
        body = self._call("POST", "/wallets/connect", json={"address": address})
        try:
            self._session = body["session"]
        except KeyError:
            raise WalletServiceError("Wallet bridge returned no session")
        self.address = body.get("address", address)
        self._logger.info(f"Wallet connected: {self.address}")
        return self.address

    def disconnect(self) -> None:
        """Forget the wallet session (local only)."""
        self._session = None
        self.address = None

    def get_balance(self) -> int:
        """Spendable balance in lovelace."""
        body = self._session_call("GET", "/balance")
        try:
            return int(body["lovelace"])
        except (KeyError, TypeError, ValueError):
            raise WalletServiceError(f"Wallet bridge returned an unreadable balance: {body!r}")

    def get_utxos(self) -> List[Dict[str, Any]]:
        """Spendable outputs, opaque to this application."""
        body = self._session_call("GET", "/utxos")
        return list(body.get("utxos", []))

    def derive_policy(self) -> Dict[str, Any]:
        """
        Ask the bridge for a signature-based minting policy for this wallet.

        Returns:
            {"policy_id": str, "script": dict}
        """
        body = self._session_call("POST", "/policy")
        if "policy_id" not in body:
            raise WalletServiceError("Wallet bridge returned no policy id")
        return body

    def build_mint_transaction(
        self,
        policy_id: str,
        asset_name: str,
        metadata: Dict[str, Any],
        utxos: List[Dict[str, Any]],
    ) -> str:
        """Build an unsigned transaction minting one NFT. Returns CBOR hex."""
        body = self._session_call(
            "POST",
            "/mint/build",
            json={
                "policy_id": policy_id,
                "asset_name": asset_name,
                "metadata": metadata,
                "utxos": utxos,
            },
        )
        return self._field(body, "unsigned_tx")

    def sign_transaction(self, unsigned_tx: str) -> str:
        """Sign a transaction. Returns signed CBOR hex."""
        body = self._session_call("POST", "/sign", json={"tx": unsigned_tx})
        return self._field(body, "signed_tx")

    def submit_transaction(self, signed_tx: str) -> str:
        """Submit a signed transaction. Returns the transaction hash."""
        body = self._session_call("POST", "/submit", json={"tx": signed_tx})
        tx_hash = self._field(body, "tx_hash")
        self._logger.info(f"Transaction submitted: {tx_hash}")
        return tx_hash

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _session_call(self, method: str, path: str, json: Optional[Any] = None) -> Dict[str, Any]:
        if self._session is None:
            raise WalletNotConnectedError()
        return self._call(method, f"/wallets/{self._session}{path}", json=json)

    def _call(self, method: str, path: str, json: Optional[Any] = None) -> Dict[str, Any]:
        try:
            response = self._http.request(method, f"{self._base_url}{path}", json=json)
        except httpx.HTTPError as e:
            self._logger.error(f"Wallet bridge {method} {path} failed: {e}")
            raise WalletServiceError(f"Wallet bridge unreachable: {e}")

        if response.status_code >= 400:
            message = self._error_message(response)
            self._logger.error(f"Wallet bridge {method} {path} returned {response.status_code}: {message}")
            raise WalletServiceError(f"Wallet error: {message}", response.status_code)

        try:
            body = response.json()
        except ValueError as e:
            raise WalletServiceError(f"Wallet bridge returned invalid JSON: {e}", response.status_code)
        if not isinstance(body, dict):
            raise WalletServiceError("Wallet bridge returned an unexpected payload", response.status_code)
        return body

    @staticmethod
    def _field(body: Dict[str, Any], key: str) -> str:
        value = body.get(key)
        if not value:
            raise WalletServiceError(f"Wallet bridge response is missing '{key}'")
        return str(value)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if isinstance(body, dict):
            return str(body.get("error") or body.get("message") or body)
        return str(body)
