"""
Minting collaborators used by the issuance workflow.

PolicyService:
    One persistent minting policy per school. The first mint derives it from
    the school wallet and stores it in ``minting_policies``; every later mint
    reuses the stored policy so all of a school's diplomas share one policy id.

DiplomaMinter:
    One NFT per call: spendable outputs -> unsigned build -> sign -> submit.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from core.exceptions import WalletServiceError
from core.wallet_client import WalletClient
from models.records import MintingPolicy
from logging_config import get_logger

from .storage_service import StorageService


class PolicyService:
    """Get-or-create access to a school's minting policy."""

    def __init__(self, storage: StorageService, logger: Optional[logging.Logger] = None):
        self._storage = storage
        self._logger = logger or get_logger(__name__)

    def get_or_create(self, school_id: str, wallet: WalletClient) -> MintingPolicy:
        """
        Return the school's policy, deriving and storing it on first use.

        Raises:
            WalletNotConnectedError: Wallet not connected (derivation needed)
            WalletServiceError: Derivation failed
            StorageServiceError: Policy could not be read or stored
        """
        existing = self._storage.get_policy(school_id)
        if existing is not None:
            self._logger.debug(f"Using stored policy {existing.policy_id} for school {school_id}")
            return existing

        derived = wallet.derive_policy()
        policy = MintingPolicy(
            school_id=school_id,
            policy_id=derived["policy_id"],
            script=derived.get("script") or {},
        )
        saved = self._storage.save_policy(policy)
        self._logger.info(f"Created minting policy {saved.policy_id} for school {school_id}")
        return saved


class DiplomaMinter:
    """Builds, signs and submits one diploma mint transaction."""

    def __init__(self, wallet: WalletClient, logger: Optional[logging.Logger] = None):
        self._wallet = wallet
        self._logger = logger or get_logger(__name__)

    def mint(self, policy_id: str, asset_name: str, metadata: Dict[str, Any]) -> str:
        """
        Mint one NFT.

        Args:
            policy_id: School policy
            asset_name: On-chain asset name
            metadata: Transaction metadata (CIP-25 envelope)

        Returns:
            Transaction hash

        Raises:
            WalletNotConnectedError: Wallet not connected
            WalletServiceError: No spendable outputs, or build/sign/submit failed
        """
        utxos = self._wallet.get_utxos()
        if not utxos:
            raise WalletServiceError("No UTXOs available. Please fund your wallet with ADA.")

        self._logger.debug(f"Building mint of {asset_name} from {len(utxos)} UTXO(s)")
        unsigned_tx = self._wallet.build_mint_transaction(policy_id, asset_name, metadata, utxos)
        signed_tx = self._wallet.sign_transaction(unsigned_tx)
        return self._wallet.submit_transaction(signed_tx)
