"""
Issuance service with thread-per-batch architecture.

Each started batch runs on its own background thread while the browser
polls the workflow snapshot. The request thread only checks preconditions
(``begin_minting``) and returns; it never waits for the chain.

Thread Safety:
    - The workflow guards its own state; this service never touches it
      beyond begin_minting(), run_minting() and mark_failed()
    - Active threads are tracked under ``_threads_lock`` for shutdown

Flow:
    1. Request thread calls issuance_service.start(workflow, wallet, minimum)
    2. begin_minting() raises precondition errors synchronously
    3. Batch thread "Mint-<id>" runs workflow.run_minting()
    4. Browser polls /issuance/status -> workflow.snapshot()

Usage:
    # At app startup
    issuance_service = IssuanceService()

    # On "Mint" (request thread)
    batch_id = issuance_service.start(workflow, wallet, minimum_lovelace)

    # At app shutdown
    issuance_service.shutdown()
"""

from __future__ import annotations

import threading
from typing import Dict

from core.wallet_client import WalletClient
from logging_config import get_batch_logger, get_logger, set_thread_name, short_batch_id

from .issuance_workflow import IssuanceWorkflow


# Module logger
logger = get_logger(__name__)


class IssuanceService:
    """
    Starts mint batches on dedicated threads.

    One thread per batch. Recipients inside a batch are processed one at a
    time on that thread.
    """

    def __init__(self):
        self._active_threads: Dict[str, threading.Thread] = {}
        self._threads_lock = threading.Lock()
        logger.info("IssuanceService initialized")

    def start(
        self,
        workflow: IssuanceWorkflow,
        wallet: WalletClient,
        minimum_balance_lovelace: int,
    ) -> str:
        """
        Check preconditions and start minting in the background.

        Returns:
            batch_id

        Raises:
            ConcurrencyError, InvalidTransitionError, WalletNotConnectedError,
            InsufficientFundsError, WalletServiceError: from begin_minting()
        """
        batch_id = workflow.begin_minting(wallet, minimum_balance_lovelace)

        thread = threading.Thread(
            target=self._batch_thread_main,
            args=(batch_id, workflow),
            name=f"Mint-{short_batch_id(batch_id)}",
            daemon=True,
        )
        with self._threads_lock:
            self._active_threads[batch_id] = thread
        thread.start()

        logger.info(f"Started mint thread for batch {short_batch_id(batch_id)}")
        return batch_id

    def is_batch_running(self, batch_id: str) -> bool:
        with self._threads_lock:
            thread = self._active_threads.get(batch_id)
            return thread is not None and thread.is_alive()

    @property
    def active_count(self) -> int:
        with self._threads_lock:
            return sum(1 for t in self._active_threads.values() if t.is_alive())

    def shutdown(self, timeout_per_thread: float = 5.0) -> None:
        """
        Wait for active mint threads to finish.

        Submitted transactions cannot be withdrawn, so batches are awaited
        rather than interrupted.
        """
        with self._threads_lock:
            active = list(self._active_threads.items())

        if not active:
            logger.info("No active mint threads to wait for")
            return

        logger.info(f"Waiting for {len(active)} mint thread(s) to complete...")
        for batch_id, thread in active:
            if thread.is_alive():
                thread.join(timeout=timeout_per_thread)
                if thread.is_alive():
                    logger.warning(f"Mint thread {short_batch_id(batch_id)} did not complete in time")

        logger.info("Issuance service shutdown complete")

    def _batch_thread_main(self, batch_id: str, workflow: IssuanceWorkflow) -> None:
        set_thread_name(f"Mint-{short_batch_id(batch_id)}")
        batch_logger = get_batch_logger(batch_id)
        batch_logger.info("Mint thread starting")

        try:
            snapshot = workflow.run_minting()
            batch_logger.info(f"Mint thread finished: state={snapshot.state.value}")
        except Exception as e:
            batch_logger.error(f"Mint thread crashed: {e}", exc_info=True)
            workflow.mark_failed(e)
        finally:
            with self._threads_lock:
                self._active_threads.pop(batch_id, None)
            batch_logger.info("Mint thread exiting")
