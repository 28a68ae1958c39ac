"""
Blockfrost client: IPFS uploads and transaction confirmation.

Two Blockfrost surfaces are used:
    - IPFS  (https://ipfs.blockfrost.io/api/v0)       - add + pin content
    - Chain (https://cardano-<network>.blockfrost.io)  - transaction lookup

Pinning internals belong to Blockfrost. From the issuance workflow's point
of view an upload either returns a content address (``ipfs://<cid>``) or
raises ContentStorageError.

Confirmation polling follows a fixed budget: ``max_attempts`` lookups,
``interval_seconds`` apart. A lookup that errors counts as "not yet
confirmed" - the mint is already submitted, so a flaky chain query must
never turn into a failed batch.

Usage:
    client = BlockfrostClient(project_id="preprodXXXX", network="preprod")

    asset_uri = client.upload_bytes(png_bytes, "diploma.png")
    metadata_uri = client.upload_json({"name": "Diploma Batch"})

    client.wait_for_confirmation(tx_hash, max_attempts=20, interval_seconds=3)
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Optional

import httpx

from .exceptions import (
    ChainServiceError,
    ConfigurationError,
    ConfirmationTimeoutError,
    ContentStorageError,
)


IPFS_BASE_URL = "https://ipfs.blockfrost.io/api/v0"
CHAIN_BASE_URL = "https://cardano-{network}.blockfrost.io/api/v0"


class BlockfrostClient:
    """
    Content storage and chain lookup collaborator.

    Attributes:
        network: Cardano network name ("preprod", "preview", "mainnet")
    """

    def __init__(
        self,
        project_id: str,
        network: str = "preprod",
        ipfs_project_id: Optional[str] = None,
        timeout_seconds: float = 20.0,
        http_client: Optional[httpx.Client] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the client.

        Args:
            project_id: Blockfrost chain project id (prefix matches the network)
            network: Cardano network name
            ipfs_project_id: Blockfrost IPFS project id (defaults to project_id)
            timeout_seconds: Per-request timeout
            http_client: Shared httpx.Client (created if not provided)
            logger: Logger instance (creates default if not provided)
        """
        self._project_id = project_id
        self._ipfs_project_id = ipfs_project_id or project_id
        self.network = network
        self._chain_url = CHAIN_BASE_URL.format(network=network)
        self._http = http_client or httpx.Client(timeout=timeout_seconds)
        self._logger = logger or logging.getLogger("diploma_issuer.core.blockfrost_client")

        if project_id and not project_id.startswith(network):
            self._logger.warning(
                f"Blockfrost project id does not start with '{network}' - "
                "check BLOCKFROST_PROJECT_ID and BLOCKFROST_NETWORK"
            )

    @property
    def is_configured(self) -> bool:
        """True when a project id is available."""
        return bool(self._project_id)

    # =========================================================================
    # IPFS
    # =========================================================================

    def upload_bytes(
        self,
        payload: bytes,
        filename: str,
        content_type: str = "application/octet-stream",
    ) -> str:
        """
        Upload raw bytes to IPFS and pin them.

        Args:
            payload: File content
            filename: Name recorded by the IPFS node
            content_type: MIME type of the payload

        Returns:
            Content address ``ipfs://<cid>``

        Raises:
            ConfigurationError: No IPFS project id configured
            ContentStorageError: Upload or pin failed
        """
        self._require_project_id(self._ipfs_project_id, "BLOCKFROST_IPFS_PROJECT_ID")

        self._logger.debug(f"Uploading {len(payload)} bytes to IPFS as {filename}")
        try:
            response = self._http.post(
                f"{IPFS_BASE_URL}/ipfs/add",
                headers={"project_id": self._ipfs_project_id},
                files={"file": (filename, payload, content_type)},
            )
        except httpx.HTTPError as e:
            self._logger.error(f"IPFS upload of {filename} failed: {e}")
            raise ContentStorageError(f"Failed to upload to IPFS: {e}")

        if response.status_code >= 400:
            self._logger.error(
                f"IPFS upload of {filename} rejected: status={response.status_code} {response.text}"
            )
            raise ContentStorageError(
                f"Failed to upload to IPFS (HTTP {response.status_code})",
                response.status_code,
            )

        try:
            ipfs_hash = response.json()["ipfs_hash"]
        except (ValueError, KeyError) as e:
            raise ContentStorageError(f"IPFS upload returned no hash: {e}", response.status_code)

        self._pin(ipfs_hash)
        self._logger.info(f"Uploaded {filename} to IPFS: {ipfs_hash}")
        return f"ipfs://{ipfs_hash}"

    def upload_json(self, document: Dict[str, Any], filename: str = "metadata.json") -> str:
        """
        Upload a JSON document to IPFS.

        Returns:
            Content address ``ipfs://<cid>``
        """
        try:
            payload = json.dumps(document, indent=2, ensure_ascii=False).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise ContentStorageError(f"Metadata is not JSON serializable: {e}")
        return self.upload_bytes(payload, filename, "application/json")

    def _pin(self, ipfs_hash: str) -> None:
        try:
            response = self._http.post(
                f"{IPFS_BASE_URL}/ipfs/pin/add/{ipfs_hash}",
                headers={"project_id": self._ipfs_project_id},
            )
        except httpx.HTTPError as e:
            self._logger.error(f"IPFS pin of {ipfs_hash} failed: {e}")
            raise ContentStorageError(f"Failed to pin IPFS content: {e}")

        if response.status_code >= 400:
            raise ContentStorageError(
                f"Failed to pin IPFS content (HTTP {response.status_code})",
                response.status_code,
            )

    # =========================================================================
    # CHAIN
    # =========================================================================

    def is_transaction_confirmed(self, tx_hash: str) -> bool:
        """
        Check whether a transaction is on chain.

        Blockfrost answers 404 until the transaction is included in a block.

        Raises:
            ConfigurationError: No project id configured
            ChainServiceError: Lookup failed
        """
        self._require_project_id(self._project_id, "BLOCKFROST_PROJECT_ID")

        try:
            response = self._http.get(
                f"{self._chain_url}/txs/{tx_hash}",
                headers={"project_id": self._project_id},
            )
        except httpx.HTTPError as e:
            raise ChainServiceError(f"Transaction lookup failed: {e}")

        if response.status_code == 404:
            return False
        if response.status_code >= 400:
            raise ChainServiceError(
                f"Transaction lookup failed (HTTP {response.status_code})",
                response.status_code,
            )
        return True

    def wait_for_confirmation(
        self,
        tx_hash: str,
        max_attempts: int = 20,
        interval_seconds: float = 3.0,
    ) -> int:
        """
        Poll until the transaction is confirmed or the budget runs out.

        This is a blocking call that runs in the calling (mint) thread.

        Args:
            tx_hash: Submitted transaction hash
            max_attempts: Number of lookups before giving up
            interval_seconds: Fixed pause between lookups

        Returns:
            Number of attempts it took

        Raises:
            ConfirmationTimeoutError: Not confirmed within max_attempts
        """
        self._logger.info(
            f"Waiting for {tx_hash} (attempts={max_attempts}, interval={interval_seconds}s)"
        )

        for attempt in range(1, max_attempts + 1):
            try:
                if self.is_transaction_confirmed(tx_hash):
                    self._logger.info(f"Transaction {tx_hash} confirmed after {attempt} attempt(s)")
                    return attempt
            except ChainServiceError as e:
                self._logger.warning(f"Confirmation check {attempt}/{max_attempts} for {tx_hash} failed: {e}")

            if attempt < max_attempts:
                time.sleep(interval_seconds)

        self._logger.warning(f"Transaction {tx_hash} not confirmed after {max_attempts} attempts")
        raise ConfirmationTimeoutError(tx_hash, max_attempts, interval_seconds)

    @staticmethod
    def _require_project_id(project_id: str, setting: str) -> None:
        if not project_id:
            raise ConfigurationError(
                setting,
                "Blockfrost API key not configured - IPFS and chain features are unavailable",
            )
