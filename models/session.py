"""
Session context model.

SessionContext is the single source of truth about who is signed in for one
browser session. It is frozen; the AuthGate replaces it as a whole, never
mutates it in place. Every other component only reads it.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional

from .records import SchoolProfile


class SessionStatus(Enum):
    """
    Verdict of the auth gate.

    LOADING only exists while the cached session is being resolved.
    """

    LOADING = "loading"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


@dataclass(frozen=True)
class AuthUser:
    """The authenticated user as reported by the auth collaborator."""

    id: str
    email: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    """Sign-up metadata (school name, role)."""

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "AuthUser":
        return cls(
            id=str(payload["id"]),
            email=payload.get("email") or "",
            metadata=dict(payload.get("user_metadata") or {}),
        )


@dataclass(frozen=True)
class SessionTokens:
    """Access/refresh tokens cached in the browser's cookie session."""

    access_token: str
    refresh_token: str = ""
    expires_at: Optional[float] = None
    """Unix time the access token expires; None when unknown."""

    @classmethod
    def from_session(cls, session: Dict[str, Any], now: Optional[float] = None) -> "SessionTokens":
        """Tokens from a GoTrue session body (sign-in, sign-up or refresh)."""
        expires_at = session.get("expires_at")
        if expires_at is None and session.get("expires_in") is not None:
            expires_at = (time.time() if now is None else now) + float(session["expires_in"])
        return cls(
            access_token=session["access_token"],
            refresh_token=session.get("refresh_token") or "",
            expires_at=float(expires_at) if expires_at is not None else None,
        )

    def expires_soon(self, margin_seconds: float = 60.0, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        now = time.time() if now is None else now
        return self.expires_at - margin_seconds <= now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["SessionTokens"]:
        if not data or not isinstance(data.get("access_token"), str) or not data["access_token"]:
            return None
        refresh_token = data.get("refresh_token")
        try:
            expires_at = float(data["expires_at"]) if data.get("expires_at") is not None else None
        except (TypeError, ValueError):
            expires_at = None
        return cls(
            access_token=data["access_token"],
            refresh_token=refresh_token if isinstance(refresh_token, str) else "",
            expires_at=expires_at,
        )


@dataclass(frozen=True)
class SessionContext:
    """Immutable view of the current session."""

    status: SessionStatus = SessionStatus.LOADING
    user: Optional[AuthUser] = None
    school_profile: Optional[SchoolProfile] = None
    tokens: Optional[SessionTokens] = None

    @classmethod
    def loading(cls) -> "SessionContext":
        return cls(status=SessionStatus.LOADING)

    @classmethod
    def unauthenticated(cls) -> "SessionContext":
        return cls(status=SessionStatus.UNAUTHENTICATED)

    @property
    def is_authenticated(self) -> bool:
        return self.status is SessionStatus.AUTHENTICATED and self.user is not None

    @property
    def is_resolved(self) -> bool:
        """True once the gate has a concrete verdict."""
        return self.status is not SessionStatus.LOADING

    @property
    def access_token(self) -> Optional[str]:
        return self.tokens.access_token if self.tokens else None

    @property
    def school_id(self) -> Optional[str]:
        return self.school_profile.id if self.school_profile else None

    def with_profile(self, profile: Optional[SchoolProfile]) -> "SessionContext":
        return replace(self, school_profile=profile)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "user": {"id": self.user.id, "email": self.user.email} if self.user else None,
            "school_profile": self.school_profile.to_dict() if self.school_profile else None,
        }
