"""
Auth/Session gate.

The gate owns one browser session's SessionContext and is the only code
that ever replaces it. Everything else reads ``gate.context``.

Resolution:
    begin_resolve(tokens) starts a worker thread that checks the cached
    tokens and fetches the school profile. wait_for_verdict() waits at most
    ``timeout_seconds`` for it. If the worker has not answered by then the
    gate reports UNAUTHENTICATED, and the worker's late answer is dropped.

Refresh:
    Access tokens close to expiry are traded for fresh ones through the
    refresh-token grant, during resolution and through refresh(). A rejected
    refresh token ends the session (UNAUTHENTICATED).

Generations:
    Every resolution and every auth event bumps a generation counter. A
    result is only published if its generation is still current, which is
    how late or superseded answers are discarded.

Usage:
    gate = AuthGate(auth_service, timeout_seconds=5.0, session_key=sid)
    context = gate.resolve(SessionTokens.from_dict(session.get("auth")))
    if context.is_authenticated:
        ...
    gate.close()
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from typing import Optional

from core.exceptions import DiplomaIssuerError
from models.session import SessionContext, SessionStatus, SessionTokens
from logging_config import get_logger

from .auth_service import AuthChange, AuthEvent, AuthService


class AuthGate:
    """
    Single writer of the session context for one browser session.

    Thread Safety:
        ``_lock`` guards the context, the generation counter and the
        deadline. Network calls never run under the lock.
    """

    def __init__(
        self,
        auth_service: AuthService,
        timeout_seconds: float = 5.0,
        session_key: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
        refresh_margin_seconds: float = 60.0,
    ):
        """
        Initialize the gate and subscribe to auth changes.

        Args:
            auth_service: Auth collaborator wrapper
            timeout_seconds: Bound on cached-session resolution
            session_key: Identifier of the browser session (event origin)
            logger: Logger instance (creates default if not provided)
            refresh_margin_seconds: Refresh tokens this close to expiry
        """
        self._auth = auth_service
        self._timeout = timeout_seconds
        self.session_key = session_key
        self._logger = logger or get_logger(__name__)

        self._lock = threading.Lock()
        self._context = SessionContext.loading()
        self._generation = 0
        self._deadline: Optional[float] = None
        self._verdict = threading.Event()
        self._refresh_margin = refresh_margin_seconds
        self._refresh_lock = threading.Lock()

        self._unsubscribe = self._auth.on_auth_state_change(self._on_auth_change)

    @property
    def context(self) -> SessionContext:
        """Current session context (read-only snapshot)."""
        with self._lock:
            return self._context

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def close(self) -> None:
        """Stop listening for auth changes."""
        self._unsubscribe()

    # =========================================================================
    # RESOLUTION
    # =========================================================================

    def resolve(self, cached_tokens: Optional[SessionTokens]) -> SessionContext:
        """Resolve cached tokens and wait (bounded) for the verdict."""
        self.begin_resolve(cached_tokens)
        return self.wait_for_verdict()

    def begin_resolve(self, cached_tokens: Optional[SessionTokens]) -> None:
        """Start resolving cached tokens without waiting for the result."""
        with self._lock:
            self._generation += 1
            generation = self._generation
            self._context = SessionContext.loading()
            self._deadline = time.monotonic() + self._timeout
            self._verdict.clear()

        if cached_tokens is None:
            self._publish(generation, SessionContext.unauthenticated())
            return

        worker = threading.Thread(
            target=self._resolve_worker,
            args=(generation, cached_tokens),
            name=f"SessionResolve-{(self.session_key or 'anon')[:8]}",
            daemon=True,
        )
        worker.start()

    def wait_for_verdict(self) -> SessionContext:
        """
        Block until the gate has a concrete verdict.

        Never returns a LOADING context: when the resolution deadline passes
        the gate settles on UNAUTHENTICATED.
        """
        with self._lock:
            deadline = self._deadline
            generation = self._generation

        remaining = 0.0 if deadline is None else max(0.0, deadline - time.monotonic())
        if self._verdict.wait(timeout=remaining):
            return self.context

        with self._lock:
            if self._generation == generation and not self._context.is_resolved:
                self._logger.warning(
                    f"Session resolution exceeded {self._timeout:.1f}s - treating as unauthenticated"
                )
                # Invalidate the in-flight worker so its answer is dropped
                self._generation += 1
                self._context = SessionContext.unauthenticated()
                self._verdict.set()
            return self._context

    def _resolve_worker(self, generation: int, tokens: SessionTokens) -> None:
        try:
            stale = bool(tokens.refresh_token) and tokens.expires_soon(self._refresh_margin)
            user = None if stale else self._auth.get_session(tokens)
            if user is None and tokens.refresh_token:
                refreshed = self._auth.refresh_session(None, tokens, origin=self.session_key)
                if refreshed is not None:
                    tokens = refreshed
                    user = self._auth.get_session(tokens)

            if user is None:
                self._logger.info("Cached session expired or revoked")
                self._publish(generation, SessionContext.unauthenticated())
                return

            profile = self._auth.get_school_profile(user, tokens.access_token)
            context = SessionContext(
                status=SessionStatus.AUTHENTICATED,
                user=user,
                school_profile=profile,
                tokens=tokens,
            )
            self._publish(generation, context)

        except DiplomaIssuerError as e:
            self._logger.warning(f"Session resolution failed - treating as unauthenticated: {e}")
            self._publish(generation, SessionContext.unauthenticated())

    # =========================================================================
    # REFRESH
    # =========================================================================

    @property
    def refresh_margin_seconds(self) -> float:
        return self._refresh_margin

    def needs_refresh(self) -> bool:
        context = self.context
        return (
            context.is_authenticated
            and context.tokens is not None
            and context.tokens.expires_soon(self._refresh_margin)
        )

    def refresh(self) -> SessionContext:
        """
        Refresh the access token if it is about to expire.

        Concurrent callers are serialized; whoever comes second finds fresh
        tokens and returns without a network call. A rejected refresh token
        publishes UNAUTHENTICATED. A failed refresh call keeps the session
        while the old access token is still valid.
        """
        with self._refresh_lock:
            if not self.needs_refresh():
                return self.context

            current = self.context
            try:
                refreshed = self._auth.refresh_session(current.user, current.tokens, origin=self.session_key)
            except DiplomaIssuerError as e:
                if current.tokens.expires_soon(0.0):
                    self._logger.warning(f"Session refresh failed and token expired - signing out: {e}")
                    self._replace(SessionContext.unauthenticated())
                else:
                    self._logger.warning(f"Session refresh failed - keeping current token: {e}")
                return self.context

            if refreshed is None:
                self._logger.info("Refresh token rejected - session ended")
                self._replace(SessionContext.unauthenticated())
            elif self.context.tokens != refreshed and self.context.is_authenticated:
                # No listener subscription (closed gate); publish directly
                self._replace(replace(self.context, tokens=refreshed))
            return self.context

    def _publish(self, generation: int, context: SessionContext) -> bool:
        with self._lock:
            if generation != self._generation:
                self._logger.debug(
                    f"Discarding stale session result (generation {generation}, current {self._generation})"
                )
                return False
            self._context = context
            self._verdict.set()

        self._logger.info(f"Session verdict: {context.status.value}")
        return True

    # =========================================================================
    # AUTH EVENTS
    # =========================================================================

    def _on_auth_change(self, change: AuthChange) -> None:
        current = self.context
        own_change = change.origin is not None and change.origin == self.session_key
        same_user = (
            change.user is not None
            and current.user is not None
            and change.user.id == current.user.id
        )

        if change.event is AuthEvent.SIGNED_IN and own_change:
            self._replace(SessionContext(
                status=SessionStatus.AUTHENTICATED,
                user=change.user,
                school_profile=change.school_profile,
                tokens=change.tokens,
            ))

        elif change.event is AuthEvent.SIGNED_OUT and (own_change or same_user):
            # Sign-out revokes every session of the user
            self._logger.info("Signed out - detaching school profile")
            self._replace(SessionContext.unauthenticated())

        elif change.event is AuthEvent.TOKEN_REFRESHED and own_change:
            # Tokens are per browser; only the refreshing session takes them
            if current.is_authenticated and change.tokens is not None:
                self._replace(replace(current, tokens=change.tokens))

        elif change.event is AuthEvent.USER_UPDATED and (own_change or same_user):
            if not current.is_authenticated:
                return
            profile = change.school_profile or current.school_profile
            self._replace(SessionContext(
                status=SessionStatus.AUTHENTICATED,
                user=change.user or current.user,
                school_profile=profile,
                tokens=current.tokens if not own_change else (change.tokens or current.tokens),
            ))

    def _replace(self, context: SessionContext) -> None:
        """Publish a context from an auth event, superseding any pending resolution."""
        with self._lock:
            self._generation += 1
            self._context = context
            self._deadline = None
            self._verdict.set()
        self._logger.info(f"Session changed: {context.status.value}")
