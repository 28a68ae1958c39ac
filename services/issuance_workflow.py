"""
Diploma issuance workflow (state machine).

One workflow instance belongs to one browser session and drives one batch
at a time:

    SELECTING_RECIPIENTS --proceed_to_asset--> SELECTING_ASSET
    SELECTING_ASSET --proceed_to_confirm--> READY_TO_MINT
    READY_TO_MINT --begin_minting--> MINTING_IPFS_UPLOAD
    MINTING_IPFS_UPLOAD -> MINTING_CHAIN_SUBMIT -> MINTING_CONFIRMING
        (submit + confirm repeat per recipient)
    -> COMPLETED | FAILED

    go_back() steps back one pre-minting state.
    cancel() is allowed from the three pre-minting states only.
    reset() leaves COMPLETED / FAILED / CANCELLED for a fresh batch.

Minting order (never reordered):
    1. upload the asset and the batch manifest to IPFS (once per batch)
    2. per recipient, in selection order:
       a. MINTING_CHAIN_SUBMIT - build, sign, submit one mint transaction
          (all recipients share the uploaded asset and the school policy)
       b. MINTING_CONFIRMING  - poll for confirmation, then persist the
          diploma record and its revenue records

Failure policy:
    - Upload or submit failure -> FAILED with a FailureReason. Records
      persisted for earlier recipients stay; nothing is persisted for the
      failing recipient or anyone after it.
    - Confirmation timeout or a failed confirmation lookup -> warning only.
      The record is persisted with ``confirmed=False`` and the batch can
      still end COMPLETED.
    - Record persist failure after a submitted mint -> FAILED; the mint is
      kept in ``unrecorded`` (and its tx hash in the FailureReason) so a
      resumed batch never mints that recipient again.

Thread Safety:
    Every state read or write happens under ``_lock``. Network calls run
    outside it. ``begin_minting`` sets ``_starting`` under the lock before
    reading the wallet balance, so at most one mint is ever in flight per
    workflow.
"""

from __future__ import annotations

import logging
import threading
import uuid
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from core.blockfrost_client import BlockfrostClient
from core.exceptions import (
    ConcurrencyError,
    ConfigurationError,
    ConfirmationTimeoutError,
    DiplomaIssuerError,
    InsufficientFundsError,
    InvalidTransitionError,
    MalformedRecordError,
    PreconditionError,
    StorageServiceError,
    ValidationError,
    WalletNotConnectedError,
)
from core.wallet_client import WalletClient
from models.issuance import (
    PRE_MINTING_STATES,
    TERMINAL_STATES,
    FailureReason,
    ImageAsset,
    IssuanceBatch,
    IssuanceState,
    IssuedDiploma,
    TemplateAsset,
    WorkflowSnapshot,
)
from models.pricing import FeeQuote, PriceConfig
from models.records import DiplomaRecord, DiplomaTemplate, RevenueRecord, StudentProfile
from models.session import SessionContext
from modules.diploma_metadata import (
    asset_name_for,
    build_asset_metadata,
    build_batch_document,
    cip25_envelope,
)
from modules.fee_calculator import DEFAULT_NETWORK_FEE_PER_DIPLOMA, calculate_fees, unit_fees
from modules.image_assets import read_image_payload
from logging_config import get_batch_logger, get_logger

from .minting import DiplomaMinter, PolicyService
from .storage_service import StorageService


IPFS_PREFIX = "ipfs://"
LOVELACE_PER_ADA = 1_000_000


def _strip_ipfs(uri: str) -> str:
    return uri[len(IPFS_PREFIX):] if uri.startswith(IPFS_PREFIX) else uri


class IssuanceWorkflow:
    """
    State machine for one school's diploma issuance.

    Attributes:
        school_id: School the diplomas are issued by
    """

    def __init__(
        self,
        context: SessionContext,
        storage: StorageService,
        content_store: BlockfrostClient,
        confirmation_attempts: int = 20,
        confirmation_interval_seconds: float = 3.0,
        default_unit_network_fee: Decimal = DEFAULT_NETWORK_FEE_PER_DIPLOMA,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize an empty workflow.

        Args:
            context: Session context; must be authenticated with a school profile
            storage: Session-scoped storage service
            content_store: IPFS and chain lookup client
            confirmation_attempts: Confirmation polls per transaction
            confirmation_interval_seconds: Pause between polls
            default_unit_network_fee: Fee fallback when no price config exists
            logger: Logger instance (creates default if not provided)

        Raises:
            PreconditionError: No authenticated session or no school profile
        """
        if not context.is_authenticated or context.school_profile is None:
            raise PreconditionError(
                "Sign in with a school account before issuing diplomas.",
                {"status": context.status.value},
            )

        self._school = context.school_profile
        self._storage = storage
        self._content_store = content_store
        self._confirmation_attempts = confirmation_attempts
        self._confirmation_interval = confirmation_interval_seconds
        self._default_unit_network_fee = default_unit_network_fee
        self._logger = logger or get_logger(__name__)

        self._lock = threading.Lock()
        self._state = IssuanceState.SELECTING_RECIPIENTS
        self._batch = IssuanceBatch(batch_id=str(uuid.uuid4()))
        self._wallet: Optional[WalletClient] = None
        self._running = False
        self._starting = False

    @property
    def school_id(self) -> str:
        return self._school.id

    @property
    def state(self) -> IssuanceState:
        with self._lock:
            return self._state

    @property
    def batch_id(self) -> str:
        with self._lock:
            return self._batch.batch_id

    def rebind(self, storage: StorageService) -> None:
        """Use a storage service carrying a refreshed session token."""
        with self._lock:
            self._storage = storage

    # =========================================================================
    # RECIPIENTS
    # =========================================================================

    def add_recipient(self, student: StudentProfile) -> bool:
        """
        Add a recipient. Returns False if already selected.

        Raises:
            InvalidTransitionError: Not selecting recipients
        """
        with self._lock:
            self._require_state("add recipients", IssuanceState.SELECTING_RECIPIENTS)
            if self._batch.has_recipient(student.user_id):
                return False
            self._batch.recipients.append(student)
            return True

    def remove_recipient(self, student_id: str) -> bool:
        """Remove a recipient. Returns False if it was not selected."""
        with self._lock:
            self._require_state("remove recipients", IssuanceState.SELECTING_RECIPIENTS)
            before = len(self._batch.recipients)
            self._batch.recipients = [r for r in self._batch.recipients if r.user_id != student_id]
            return len(self._batch.recipients) != before

    def set_recipients(self, students: Iterable[StudentProfile]) -> int:
        """Replace the selection (duplicates dropped, order kept). Returns the count."""
        unique: List[StudentProfile] = []
        seen = set()
        for student in students:
            if student.user_id not in seen:
                seen.add(student.user_id)
                unique.append(student)

        with self._lock:
            self._require_state("select recipients", IssuanceState.SELECTING_RECIPIENTS)
            self._batch.recipients = unique
            return len(unique)

    def proceed_to_asset(self) -> None:
        """
        Move on to asset selection.

        Raises:
            ValidationError: No recipient selected (state unchanged)
        """
        with self._lock:
            self._require_state("choose an asset", IssuanceState.SELECTING_RECIPIENTS)
            if not self._batch.recipients:
                raise ValidationError("Select at least one student to continue.", field="recipients")
            self._state = IssuanceState.SELECTING_ASSET

    # =========================================================================
    # ASSET
    # =========================================================================

    def choose_template(self, template: DiplomaTemplate) -> None:
        """Use a school template as the asset (replaces an uploaded image)."""
        with self._lock:
            self._require_state("choose a template", IssuanceState.SELECTING_ASSET)
            if template.school_id != self._school.id:
                raise ValidationError("This template belongs to another school.", field="template_id")
            self._batch.asset = TemplateAsset(template=template)

    def upload_image(self, filename: str, payload: bytes) -> ImageAsset:
        """
        Use an uploaded image as the asset (replaces a chosen template).

        Raises:
            ValidationError: Unreadable image; the previous choice is cleared
        """
        with self._lock:
            self._require_state("upload an image", IssuanceState.SELECTING_ASSET)

        try:
            asset = read_image_payload(filename, payload)
        except ValidationError:
            with self._lock:
                if self._state is IssuanceState.SELECTING_ASSET:
                    self._batch.asset = None
            raise

        with self._lock:
            self._require_state("upload an image", IssuanceState.SELECTING_ASSET)
            self._batch.asset = asset
        self._logger.info(f"Image asset accepted: {asset.filename} ({asset.width}x{asset.height})")
        return asset

    def proceed_to_confirm(self) -> None:
        """
        Move on to confirmation.

        Raises:
            ValidationError: No asset chosen
        """
        with self._lock:
            self._require_state("confirm the batch", IssuanceState.SELECTING_ASSET)
            if self._batch.asset is None:
                raise ValidationError("Choose a template or upload an image to continue.", field="asset")
            self._state = IssuanceState.READY_TO_MINT

    def go_back(self) -> IssuanceState:
        """Step back one pre-minting state."""
        with self._lock:
            if self._state is IssuanceState.SELECTING_ASSET:
                self._state = IssuanceState.SELECTING_RECIPIENTS
            elif self._state is IssuanceState.READY_TO_MINT:
                self._state = IssuanceState.SELECTING_ASSET
            else:
                self._raise_transition("go back")
            return self._state

    # =========================================================================
    # FEES
    # =========================================================================

    def quote_fees(self) -> FeeQuote:
        """
        Fee quote for the current selection.

        The price table is read fresh; if it cannot be read the documented
        default is used.
        """
        with self._lock:
            batch_size = len(self._batch.recipients)

        prior = self._storage.count_diplomas(self._school.id)
        return calculate_fees(
            prior, batch_size, self._load_price_config(), self._default_unit_network_fee
        )

    def _load_price_config(self) -> Optional[PriceConfig]:
        try:
            return self._storage.get_price_config()
        except (StorageServiceError, MalformedRecordError) as e:
            self._logger.warning(f"Price configuration unavailable, falling back to defaults: {e}")
            return None

    # =========================================================================
    # MINTING
    # =========================================================================

    def begin_minting(self, wallet: WalletClient, minimum_balance_lovelace: int) -> str:
        """
        Check minting preconditions and enter MINTING_IPFS_UPLOAD.

        Nothing is changed when a check fails.

        Returns:
            The batch id

        Raises:
            ConcurrencyError: A mint is already in flight or starting
            InvalidTransitionError: Not READY_TO_MINT
            ConfigurationError: No chain project id, so confirmations cannot be checked
            WalletNotConnectedError: No wallet connected
            InsufficientFundsError: Balance below minimum_balance_lovelace
            WalletServiceError: Balance could not be read
        """
        with self._lock:
            if self._state.is_minting or self._starting:
                raise ConcurrencyError(self._batch.batch_id)
            self._require_state("start minting", IssuanceState.READY_TO_MINT)
            if not self._content_store.is_configured:
                raise ConfigurationError(
                    "BLOCKFROST_PROJECT_ID",
                    "Minting is disabled: BLOCKFROST_PROJECT_ID is not configured",
                )
            if wallet is None or not wallet.is_connected:
                raise WalletNotConnectedError()
            self._starting = True

        # Network call, made without the lock
        try:
            balance = wallet.get_balance()
        except BaseException:
            with self._lock:
                self._starting = False
            raise

        with self._lock:
            self._starting = False
            self._require_state("start minting", IssuanceState.READY_TO_MINT)
            if balance < minimum_balance_lovelace:
                raise InsufficientFundsError(balance, minimum_balance_lovelace)

            self._wallet = wallet
            self._batch.mark_started()
            self._state = IssuanceState.MINTING_IPFS_UPLOAD
            batch_id = self._batch.batch_id
            recipient_count = len(self._batch.recipients)

        self._logger.info(
            f"Minting started for batch {batch_id[:8]}: {recipient_count} recipient(s), "
            f"balance {balance / LOVELACE_PER_ADA:.2f} ADA"
        )
        return batch_id

    def run_minting(self) -> WorkflowSnapshot:
        """
        Execute the minting sub-steps for the current batch.

        Blocking; runs on the batch's mint thread. Failures are recorded on
        the workflow, not raised.

        Raises:
            InvalidTransitionError: begin_minting() has not been called
            ConcurrencyError: Another thread is already running this batch
        """
        with self._lock:
            if self._state is not IssuanceState.MINTING_IPFS_UPLOAD or self._wallet is None:
                self._raise_transition("run minting")
            if self._running:
                raise ConcurrencyError(self._batch.batch_id)
            self._running = True
            batch = self._batch
            wallet = self._wallet
            recipients = list(batch.recipients)
            asset = batch.asset

        batch_logger = get_batch_logger(batch.batch_id)
        try:
            self._mint_batch(batch, wallet, recipients, asset, batch_logger)
        finally:
            with self._lock:
                self._running = False
                self._wallet = None
        return self.snapshot()

    def mark_failed(self, error: BaseException) -> None:
        """Record an unexpected error from the mint thread, if still minting."""
        with self._lock:
            if not self._state.is_minting:
                return
            self._batch.failure = FailureReason.from_exception(self._state, error)
            self._batch.mark_finished()
            self._state = IssuanceState.FAILED

    def _mint_batch(self, batch, wallet, recipients, asset, batch_logger) -> None:
        # -----------------------------------------------------------------
        # STEP 1: upload asset + batch manifest
        # -----------------------------------------------------------------
        batch_logger.info(f"Uploading {asset.kind} asset to IPFS...")
        try:
            asset_uri, media_type = self._upload_asset(batch.batch_id, asset)
            manifest = build_batch_document(batch.batch_id, self._school, recipients, asset_uri, asset.kind)
            metadata_uri = self._content_store.upload_json(manifest, f"batch-{batch.batch_id[:8]}.json")
        except DiplomaIssuerError as e:
            self._fail(batch_logger, IssuanceState.MINTING_IPFS_UPLOAD, e)
            return

        asset_hash = _strip_ipfs(asset_uri)
        with self._lock:
            batch.asset_hash = asset_hash
            batch.metadata_hash = _strip_ipfs(metadata_uri)
            self._state = IssuanceState.MINTING_CHAIN_SUBMIT
        batch_logger.info(f"Asset pinned: {asset_hash}")

        # -----------------------------------------------------------------
        # STEP 2: policy (shared by every recipient)
        # -----------------------------------------------------------------
        try:
            policy = PolicyService(self._storage, batch_logger).get_or_create(self._school.id, wallet)
        except DiplomaIssuerError as e:
            self._fail(batch_logger, IssuanceState.MINTING_CHAIN_SUBMIT, e)
            return

        minter = DiplomaMinter(wallet, batch_logger)
        revenue_base = self._revenue_base(batch_logger)
        price_config = self._load_price_config() if revenue_base is not None else None
        template_id = asset.template.id if isinstance(asset, TemplateAsset) else None

        # -----------------------------------------------------------------
        # STEP 3: per recipient submit -> confirm -> persist
        # -----------------------------------------------------------------
        for index, student in enumerate(recipients):
            with self._lock:
                self._state = IssuanceState.MINTING_CHAIN_SUBMIT

            asset_name = asset_name_for(student)
            asset_metadata = build_asset_metadata(student, self._school, asset_uri, media_type)
            batch_logger.info(f"[{index + 1}/{len(recipients)}] Minting {asset_name} for {student.user_id}")
            try:
                tx_hash = minter.mint(
                    policy.policy_id, asset_name, cip25_envelope(policy.policy_id, asset_name, asset_metadata)
                )
            except DiplomaIssuerError as e:
                self._fail(batch_logger, IssuanceState.MINTING_CHAIN_SUBMIT, e, index, student.user_id)
                return

            with self._lock:
                self._state = IssuanceState.MINTING_CONFIRMING
            confirmed = self._await_confirmation(batch, tx_hash, index, student, batch_logger)

            record = DiplomaRecord(
                school_id=self._school.id,
                student_id=student.user_id,
                ipfs_hash=asset_hash,
                transaction_hash=tx_hash,
                template_id=template_id,
                student_name=student.full_name,
                metadata={
                    **asset_metadata,
                    "assetName": asset_name,
                    "policyId": policy.policy_id,
                    "batchId": batch.batch_id,
                    "batchManifest": metadata_uri,
                    "confirmed": confirmed,
                },
            )
            try:
                saved = self._storage.create_diploma(record)
            except DiplomaIssuerError as e:
                batch_logger.error(
                    f"[{index + 1}/{len(recipients)}] Minted {tx_hash} but could not record the diploma"
                )
                # The NFT exists; keep it out of any resumed batch
                with self._lock:
                    batch.unrecorded.append(IssuedDiploma(
                        recipient_id=student.user_id,
                        transaction_hash=tx_hash,
                        asset_hash=asset_hash,
                        confirmed=confirmed,
                    ))
                self._fail(
                    batch_logger, IssuanceState.MINTING_CONFIRMING, e, index, student.user_id, tx_hash
                )
                return

            with self._lock:
                batch.issued.append(IssuedDiploma(
                    recipient_id=student.user_id,
                    transaction_hash=tx_hash,
                    asset_hash=asset_hash,
                    confirmed=confirmed,
                    diploma_id=saved.id,
                ))

            if revenue_base is not None:
                self._record_revenue(batch, revenue_base + index + 1, price_config, saved.id, batch_logger)

        with self._lock:
            batch.mark_finished()
            self._state = IssuanceState.COMPLETED
        batch_logger.info(
            f"Batch completed: {len(batch.issued)} diploma(s) issued, {len(batch.warnings)} warning(s)"
        )

    def _upload_asset(self, batch_id: str, asset) -> Tuple[str, str]:
        if isinstance(asset, ImageAsset):
            uri = self._content_store.upload_bytes(asset.payload, asset.filename, asset.content_type)
            return uri, asset.content_type
        uri = self._content_store.upload_json(
            asset.template.to_document(), f"template-{asset.template.id}.json"
        )
        return uri, "application/json"

    def _await_confirmation(self, batch, tx_hash, index, student, batch_logger) -> bool:
        try:
            self._content_store.wait_for_confirmation(
                tx_hash,
                max_attempts=self._confirmation_attempts,
                interval_seconds=self._confirmation_interval,
            )
            return True
        except ConfirmationTimeoutError as e:
            message = e.message
        except DiplomaIssuerError as e:
            # Already submitted; a failed lookup must not lose the record
            message = f"Confirmation of {tx_hash} could not be checked: {e.message}"

        warning = f"Recipient {index + 1} ({student.full_name}): {message}"
        batch_logger.warning(f"[step={IssuanceState.MINTING_CONFIRMING.value} recipient={index}] {message}")
        with self._lock:
            batch.warnings.append(warning)
        return False

    def _revenue_base(self, batch_logger) -> Optional[int]:
        """Issued count before this batch's first diploma, or None if unknown."""
        try:
            return self._storage.count_diplomas(self._school.id)
        except DiplomaIssuerError as e:
            batch_logger.warning(f"Could not read issued count - revenue records will be skipped: {e}")
            return None

    def _record_revenue(self, batch, global_index, price_config, diploma_id, batch_logger) -> None:
        network_fee, storage_fee = unit_fees(global_index, price_config)
        if price_config is None:
            network_fee = self._default_unit_network_fee
        records = [RevenueRecord(self._school.id, "network_fee", network_fee, diploma_id)]
        if storage_fee > 0:
            records.append(RevenueRecord(self._school.id, "storage_fee", storage_fee, diploma_id))
        try:
            self._storage.create_revenue_records(records)
        except DiplomaIssuerError as e:
            batch_logger.warning(f"Revenue records for diploma {diploma_id} not stored: {e}")
            with self._lock:
                batch.warnings.append(f"Revenue for diploma {diploma_id} was not recorded.")

    def _fail(
        self,
        batch_logger: logging.Logger,
        step: IssuanceState,
        error: DiplomaIssuerError,
        index: Optional[int] = None,
        recipient_id: Optional[str] = None,
        tx_hash: Optional[str] = None,
    ) -> None:
        reason = FailureReason.from_exception(step, error, index, recipient_id, tx_hash)
        batch_logger.error(
            f"Batch failed [step={step.value} recipient_index={index} recipient={recipient_id} "
            f"service={reason.service} tx={tx_hash}]: {error}"
        )
        with self._lock:
            self._batch.failure = reason
            self._batch.mark_finished()
            self._state = IssuanceState.FAILED

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def cancel(self) -> None:
        """
        Abandon the batch.

        Raises:
            ConcurrencyError: Minting has started
            InvalidTransitionError: Batch already finished
        """
        with self._lock:
            if self._state.is_minting:
                raise ConcurrencyError(self._batch.batch_id)
            if self._state not in PRE_MINTING_STATES:
                self._raise_transition("cancel")
            self._state = IssuanceState.CANCELLED
        self._logger.info("Issuance cancelled")

    def reset(self, retain_unissued: bool = False) -> str:
        """
        Start a new batch.

        Args:
            retain_unissued: After a failure, pre-select the recipients that
                did not get a diploma so the batch can be resumed

        Returns:
            The new batch id
        """
        with self._lock:
            if self._state.is_minting:
                raise ConcurrencyError(self._batch.batch_id)
            if self._state not in TERMINAL_STATES:
                self._raise_transition("reset")

            carried: List[StudentProfile] = []
            if retain_unissued and self._state is IssuanceState.FAILED:
                carried = self._batch.unissued_recipients()

            self._batch = IssuanceBatch(batch_id=str(uuid.uuid4()), recipients=carried)
            self._state = IssuanceState.SELECTING_RECIPIENTS
            batch_id = self._batch.batch_id

        self._logger.info(f"Workflow reset to new batch {batch_id[:8]} ({len(carried)} carried over)")
        return batch_id

    def snapshot(self) -> WorkflowSnapshot:
        """Consistent copy of the workflow state."""
        with self._lock:
            batch = self._batch
            return WorkflowSnapshot(
                batch_id=batch.batch_id,
                state=self._state,
                recipients=[{"id": r.user_id, "name": r.full_name} for r in batch.recipients],
                asset=batch.asset.describe() if batch.asset else None,
                issued=list(batch.issued),
                warnings=list(batch.warnings),
                failure=batch.failure,
                asset_hash=batch.asset_hash,
                unrecorded=list(batch.unrecorded),
            )

    # =========================================================================
    # GUARDS
    # =========================================================================

    def _require_state(self, operation: str, *allowed: IssuanceState) -> None:
        """Call with the lock held."""
        if self._state not in allowed:
            self._raise_transition(operation)

    def _raise_transition(self, operation: str) -> None:
        """Call with the lock held."""
        if self._state.is_minting:
            raise ConcurrencyError(self._batch.batch_id)
        raise InvalidTransitionError(operation, self._state.value)
