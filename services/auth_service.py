"""
Authentication service.

Wraps the auth half of SupabaseClient and keeps the school profile in step
with the auth user:

    - sign_up() creates the auth user and, when a session comes back, the
      school profile. Without a session (email confirmation on) the school
      name is kept in user metadata and the profile is created on first
      sign-in.
    - every state change (sign-in, sign-out, user update, token refresh) is
      announced to subscribers registered with on_auth_state_change().

Listeners are called synchronously in the thread that performed the change.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from core.exceptions import AuthServiceError, ValidationError
from core.supabase_client import SupabaseClient
from models.records import SchoolProfile
from models.session import AuthUser, SessionTokens
from logging_config import get_logger

from .storage_service import StorageService


SCHOOL_NAME_METADATA_KEY = "school_name"
MIN_PASSWORD_LENGTH = 6


class AuthEvent(Enum):
    """Auth state change notifications."""

    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    USER_UPDATED = "USER_UPDATED"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


@dataclass(frozen=True)
class AuthChange:
    """
    One auth state change.

    ``origin`` identifies the browser session that caused the change, so a
    gate can tell its own sign-in apart from someone else's.
    """

    event: AuthEvent
    user: Optional[AuthUser]
    tokens: Optional[SessionTokens] = None
    school_profile: Optional[SchoolProfile] = None
    origin: Optional[str] = None


@dataclass(frozen=True)
class SignUpResult:
    user: AuthUser
    tokens: Optional[SessionTokens]
    school_profile: Optional[SchoolProfile]

    @property
    def needs_confirmation(self) -> bool:
        """True when the user has to confirm their email before signing in."""
        return self.tokens is None


AuthListener = Callable[[AuthChange], None]


class AuthService:
    """
    Sign-up, sign-in, sign-out, session lookup and profile access.

    Thread Safety:
        The listener list is guarded by a lock. Listeners run outside it.
    """

    def __init__(
        self,
        client: SupabaseClient,
        storage: StorageService,
        password_reset_redirect_url: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._client = client
        self._storage = storage
        self._reset_redirect_url = password_reset_redirect_url
        self._logger = logger or get_logger(__name__)
        self._listeners: List[AuthListener] = []
        self._listeners_lock = threading.Lock()

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def on_auth_state_change(self, listener: AuthListener) -> Callable[[], None]:
        """
        Subscribe to auth state changes.

        Returns:
            A callable that removes the subscription
        """
        with self._listeners_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        with self._listeners_lock:
            return len(self._listeners)

    def _emit(self, change: AuthChange) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)

        self._logger.debug(f"Auth event {change.event.value} for {len(listeners)} listener(s)")
        for listener in listeners:
            try:
                listener(change)
            except Exception as e:
                # One broken subscriber must not hide the change from the others
                self._logger.error(f"Auth listener failed on {change.event.value}: {e}", exc_info=True)

    # =========================================================================
    # ACCOUNT OPERATIONS
    # =========================================================================

    def sign_up(
        self,
        email: str,
        password: str,
        school_name: str,
        origin: Optional[str] = None,
    ) -> SignUpResult:
        """
        Register a school.

        Raises:
            ValidationError: Missing email/school name or short password
            DuplicateEmailError: Email already registered
            AuthServiceError: Network or other auth failure
            StorageServiceError: School profile could not be created
        """
        email = (email or "").strip().lower()
        school_name = (school_name or "").strip()
        if not email:
            raise ValidationError("Email is required.", field="email")
        if not school_name:
            raise ValidationError("School name is required.", field="school_name")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters.", field="password"
            )

        result = self._client.sign_up(
            email,
            password,
            metadata={SCHOOL_NAME_METADATA_KEY: school_name, "role": "school"},
        )
        user_payload = result.get("user")
        if not user_payload or "id" not in user_payload:
            raise AuthServiceError("Sign-up returned no user")
        user = AuthUser.from_payload(user_payload)
        self._logger.info(f"Registered school account {user.id}")

        session = result.get("session")
        if not session:
            return SignUpResult(user=user, tokens=None, school_profile=None)

        tokens = SessionTokens.from_session(session)
        profile = self._storage.for_session(tokens.access_token).create_school_profile(
            user.id, school_name, email
        )
        self._emit(AuthChange(AuthEvent.SIGNED_IN, user, tokens, profile, origin))
        return SignUpResult(user=user, tokens=tokens, school_profile=profile)

    def sign_in(self, email: str, password: str, origin: Optional[str] = None) -> AuthChange:
        """
        Sign in with email and password.

        Raises:
            InvalidCredentialsError: Credentials rejected
            AuthServiceError: Network or other auth failure
        """
        session = self._client.sign_in_with_password((email or "").strip().lower(), password or "")
        user_payload = session.get("user") or {}
        if "id" not in user_payload:
            raise AuthServiceError("Sign-in returned no user")

        user = AuthUser.from_payload(user_payload)
        tokens = SessionTokens.from_session(session)
        profile = self.get_school_profile(user, tokens.access_token)
        self._logger.info(f"User {user.id} signed in")

        change = AuthChange(AuthEvent.SIGNED_IN, user, tokens, profile, origin)
        self._emit(change)
        return change

    def sign_out(
        self,
        user: Optional[AuthUser],
        tokens: Optional[SessionTokens],
        origin: Optional[str] = None,
    ) -> None:
        """
        Revoke the session and announce the sign-out.

        The sign-out is announced even when revocation fails, so local
        state never outlives the user's intent to leave.
        """
        try:
            if tokens is not None:
                self._client.sign_out(tokens.access_token)
        finally:
            self._logger.info(f"User {user.id if user else '?'} signed out")
            self._emit(AuthChange(AuthEvent.SIGNED_OUT, user, None, None, origin))

    def get_session(self, tokens: SessionTokens) -> Optional[AuthUser]:
        """User behind cached tokens, or None when the session is gone."""
        payload = self._client.get_user(tokens.access_token)
        if not payload or "id" not in payload:
            return None
        return AuthUser.from_payload(payload)

    def refresh_session(
        self,
        user: Optional[AuthUser],
        tokens: SessionTokens,
        origin: Optional[str] = None,
    ) -> Optional[SessionTokens]:
        """
        Trade the refresh token for a fresh access token.

        Returns:
            The new tokens, or None when there is no refresh token or it was
            rejected. The new tokens are announced as TOKEN_REFRESHED.

        Raises:
            AuthServiceError: Network or unexpected failure
        """
        if not tokens.refresh_token:
            return None

        session = self._client.refresh_session(tokens.refresh_token)
        if not session or not session.get("access_token"):
            return None

        refreshed = SessionTokens.from_session(session)
        if session.get("user") and "id" in session["user"]:
            user = AuthUser.from_payload(session["user"])
        self._logger.info(f"Session refreshed for user {user.id if user else '?'}")
        self._emit(AuthChange(AuthEvent.TOKEN_REFRESHED, user, refreshed, None, origin))
        return refreshed

    # =========================================================================
    # PROFILE
    # =========================================================================

    def get_school_profile(
        self,
        user: AuthUser,
        access_token: str,
    ) -> Optional[SchoolProfile]:
        """
        School profile of a user.

        If the account was created with email confirmation the profile does
        not exist yet; it is created here from the school name recorded at
        sign-up.
        """
        storage = self._storage.for_session(access_token)
        profile = storage.get_school_profile_by_user(user.id)
        if profile is not None:
            return profile

        school_name = user.metadata.get(SCHOOL_NAME_METADATA_KEY)
        if not school_name:
            self._logger.warning(f"User {user.id} has no school profile")
            return None

        self._logger.info(f"Creating deferred school profile for user {user.id}")
        return storage.create_school_profile(user.id, school_name, user.email)

    def update_school_profile(
        self,
        user: AuthUser,
        tokens: SessionTokens,
        school_id: str,
        values: Dict[str, Any],
        origin: Optional[str] = None,
    ) -> SchoolProfile:
        """Update the school profile and announce the new profile."""
        profile = self._storage.for_session(tokens.access_token).update_school_profile(school_id, values)
        self._emit(AuthChange(AuthEvent.USER_UPDATED, user, tokens, profile, origin))
        return profile

    # =========================================================================
    # PASSWORD RESET
    # =========================================================================

    def request_password_reset(self, email: str) -> None:
        email = (email or "").strip().lower()
        if not email:
            raise ValidationError("Email is required.", field="email")
        self._client.request_password_reset(email, self._reset_redirect_url)
        self._logger.info("Password reset requested")

    def confirm_password_reset(
        self,
        tokens: SessionTokens,
        new_password: str,
        origin: Optional[str] = None,
    ) -> AuthUser:
        """
        Set a new password using the recovery session from the reset link.

        Raises:
            ValidationError: Password too short
        """
        if len(new_password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters.", field="password"
            )
        payload = self._client.update_user(tokens.access_token, {"password": new_password})
        user = AuthUser.from_payload(payload)
        self._emit(AuthChange(AuthEvent.USER_UPDATED, user, tokens, None, origin))
        return user
