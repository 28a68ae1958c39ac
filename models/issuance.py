"""
Issuance batch data models.

These models describe one run of the issuance workflow. The batch lives in
memory, belongs to exactly one IssuanceWorkflow (one browser session), and
is discarded on reset.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .records import DiplomaTemplate, StudentProfile


class IssuanceState(Enum):
    """
    State of the issuance workflow.

    Lifecycle:
        SELECTING_RECIPIENTS -> SELECTING_ASSET -> READY_TO_MINT
            -> MINTING_IPFS_UPLOAD -> MINTING_CHAIN_SUBMIT -> MINTING_CONFIRMING
            -> (COMPLETED | FAILED)

        CANCELLED is reachable from the three pre-minting states.
    """

    SELECTING_RECIPIENTS = "selecting_recipients"
    SELECTING_ASSET = "selecting_asset"
    READY_TO_MINT = "ready_to_mint"

    MINTING_IPFS_UPLOAD = "minting_ipfs_upload"
    """Asset and batch metadata are being pinned."""

    MINTING_CHAIN_SUBMIT = "minting_chain_submit"
    """A recipient's mint transaction is being built, signed and submitted."""

    MINTING_CONFIRMING = "minting_confirming"
    """Polling the chain for the current recipient's transaction."""

    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_minting(self) -> bool:
        return self in MINTING_STATES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


MINTING_STATES = frozenset({
    IssuanceState.MINTING_IPFS_UPLOAD,
    IssuanceState.MINTING_CHAIN_SUBMIT,
    IssuanceState.MINTING_CONFIRMING,
})

PRE_MINTING_STATES = frozenset({
    IssuanceState.SELECTING_RECIPIENTS,
    IssuanceState.SELECTING_ASSET,
    IssuanceState.READY_TO_MINT,
})

TERMINAL_STATES = frozenset({
    IssuanceState.COMPLETED,
    IssuanceState.FAILED,
    IssuanceState.CANCELLED,
})


@dataclass(frozen=True)
class TemplateAsset:
    """Asset source: one of the school's diploma templates."""

    template: DiplomaTemplate

    @property
    def kind(self) -> str:
        return "template"

    def describe(self) -> Dict[str, Any]:
        return {"kind": self.kind, "template_id": self.template.id, "name": self.template.name}


@dataclass(frozen=True)
class ImageAsset:
    """Asset source: an uploaded image that Pillow could decode."""

    filename: str
    payload: bytes
    content_type: str
    width: int
    height: int

    @property
    def kind(self) -> str:
        return "image"

    def describe(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "filename": self.filename,
            "content_type": self.content_type,
            "size_bytes": len(self.payload),
            "width": self.width,
            "height": self.height,
        }


AssetSource = Union[TemplateAsset, ImageAsset]


@dataclass(frozen=True)
class IssuedDiploma:
    """
    One diploma persisted during a batch.

    ``confirmed`` is False when confirmation polling ran out of attempts;
    the transaction was submitted and may still confirm later.
    """

    recipient_id: str
    transaction_hash: str
    asset_hash: str
    confirmed: bool = True
    diploma_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipient_id": self.recipient_id,
            "transaction_hash": self.transaction_hash,
            "asset_hash": self.asset_hash,
            "confirmed": self.confirmed,
            "diploma_id": self.diploma_id,
        }


@dataclass(frozen=True)
class FailureReason:
    """Why a batch ended in FAILED, with enough context for triage."""

    step: IssuanceState
    """The minting sub-step that failed."""

    error_type: str
    message: str
    service: Optional[str] = None
    """Collaborator that failed (auth, storage, wallet, ipfs, chain)."""

    recipient_index: Optional[int] = None
    """0-based position in the batch; None for batch-level steps."""

    recipient_id: Optional[str] = None

    transaction_hash: Optional[str] = None
    """Set when the failing recipient's mint was already submitted."""

    @classmethod
    def from_exception(
        cls,
        step: IssuanceState,
        error: BaseException,
        recipient_index: Optional[int] = None,
        recipient_id: Optional[str] = None,
        transaction_hash: Optional[str] = None,
    ) -> "FailureReason":
        return cls(
            step=step,
            error_type=type(error).__name__,
            message=getattr(error, "message", None) or str(error),
            service=getattr(error, "service", None),
            recipient_index=recipient_index,
            recipient_id=recipient_id,
            transaction_hash=transaction_hash,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step.value,
            "error_type": self.error_type,
            "message": self.message,
            "service": self.service,
            "recipient_index": self.recipient_index,
            "recipient_id": self.recipient_id,
            "transaction_hash": self.transaction_hash,
        }


@dataclass
class IssuanceBatch:
    """
    Mutable batch owned by one workflow instance.

    Only the workflow touches this object, and only while holding its lock.
    """

    batch_id: str
    recipients: List[StudentProfile] = field(default_factory=list)
    asset: Optional[AssetSource] = None
    asset_hash: Optional[str] = None
    metadata_hash: Optional[str] = None
    issued: List[IssuedDiploma] = field(default_factory=list)
    unrecorded: List[IssuedDiploma] = field(default_factory=list)
    """Minted on chain but the diploma record could not be stored."""

    warnings: List[str] = field(default_factory=list)
    failure: Optional[FailureReason] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def has_recipient(self, student_id: str) -> bool:
        return any(r.user_id == student_id for r in self.recipients)

    def unissued_recipients(self) -> List[StudentProfile]:
        """
        Recipients with no mint on chain yet, in selection order.

        Unrecorded mints count as issued: their NFT exists, only the
        database row is missing.
        """
        minted_ids = {d.recipient_id for d in self.issued}
        minted_ids.update(d.recipient_id for d in self.unrecorded)
        return [r for r in self.recipients if r.user_id not in minted_ids]

    def mark_started(self) -> None:
        self.started_at = datetime.now(timezone.utc)

    def mark_finished(self) -> None:
        self.finished_at = datetime.now(timezone.utc)


@dataclass(frozen=True)
class WorkflowSnapshot:
    """Read-only copy of the workflow state handed to routes and pollers."""

    batch_id: str
    state: IssuanceState
    recipients: List[Dict[str, Any]]
    asset: Optional[Dict[str, Any]]
    issued: List[IssuedDiploma]
    warnings: List[str]
    failure: Optional[FailureReason]
    asset_hash: Optional[str] = None
    unrecorded: List[IssuedDiploma] = field(default_factory=list)

    @property
    def is_minting(self) -> bool:
        return self.state.is_minting

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "state": self.state.value,
            "is_minting": self.is_minting,
            "recipients": self.recipients,
            "asset": self.asset,
            "asset_hash": self.asset_hash,
            "issued": [d.to_dict() for d in self.issued],
            "unrecorded": [d.to_dict() for d in self.unrecorded],
            "warnings": list(self.warnings),
            "has_warnings": self.has_warnings,
            "failure": self.failure.to_dict() if self.failure else None,
        }
