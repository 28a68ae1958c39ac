"""
Per-browser session state.

Flask's cookie session only carries an opaque session id and the cached
auth tokens. Everything stateful about a browser session lives here,
keyed by that id:

    - the AuthGate (sole writer of the SessionContext)
    - the connected WalletClient
    - the IssuanceWorkflow for the current batch
    - the BillingLedgerView (keeps the last good datasets between refreshes)

State is never shared between session ids.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from core.wallet_client import WalletClient
from logging_config import get_logger

from .auth_gate import AuthGate
from .billing_service import BillingLedgerView
from .issuance_workflow import IssuanceWorkflow


# Module logger
logger = get_logger(__name__)


@dataclass
class SessionState:
    """Server-side state of one browser session."""

    session_id: str
    gate: AuthGate
    wallet: Optional[WalletClient] = None
    workflow: Optional[IssuanceWorkflow] = None
    ledger: Optional[BillingLedgerView] = None

    def drop_school_state(self) -> None:
        """
        Forget everything tied to the signed-in school.

        A batch that is already minting keeps its wallet session and runs
        to completion on its own thread; it is only detached from here.
        """
        minting = self.workflow is not None and self.workflow.state.is_minting
        self.workflow = None
        self.ledger = None
        if self.wallet is not None:
            if not minting:
                self.wallet.disconnect()
            self.wallet = None


class SessionRegistry:
    """
    Thread-safe map of session id -> SessionState.

    Args:
        gate_factory: Builds an AuthGate for a new session id
    """

    def __init__(self, gate_factory: Callable[[str], AuthGate]):
        self._gate_factory = gate_factory
        self._sessions: Dict[str, SessionState] = {}
        self._lock = threading.Lock()

    def get_or_create(self, session_id: str) -> SessionState:
        with self._lock:
            state = self._sessions.get(session_id)
            if state is None:
                state = SessionState(session_id=session_id, gate=self._gate_factory(session_id))
                self._sessions[session_id] = state
                logger.debug(f"Created session state {session_id[:8]}")
            return state

    def get(self, session_id: str) -> Optional[SessionState]:
        with self._lock:
            return self._sessions.get(session_id)

    def discard(self, session_id: str) -> None:
        with self._lock:
            state = self._sessions.pop(session_id, None)
        if state is not None:
            state.drop_school_state()
            state.gate.close()
            logger.debug(f"Discarded session state {session_id[:8]}")

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def clear(self) -> int:
        with self._lock:
            states = list(self._sessions.values())
            self._sessions.clear()
        for state in states:
            state.drop_school_state()
            state.gate.close()
        logger.info(f"Cleared {len(states)} session(s)")
        return len(states)
