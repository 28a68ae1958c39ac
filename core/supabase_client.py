"""
HTTP client for the Backend-as-a-Service (auth + relational storage).

Talks to a Supabase project over its two REST surfaces:
    - GoTrue  (/auth/v1)  - sign-up, sign-in, sessions, password reset
    - PostgREST (/rest/v1) - table reads and writes, scoped by row-level security

This is the ONLY module that knows the wire format. Everything above it
(AuthService, StorageService) deals in dicts returned from here and turns
them into typed records.

Session scoping:
    The base client authenticates with the anon key. Row-level security
    needs the signed-in user's JWT, so callers derive a per-session client:

        client = SupabaseClient(url, anon_key)
        user_client = client.for_session(access_token)
        rows = user_client.select("diplomas", {"school_id": school_id})

    Both share the same httpx.Client connection pool.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx

from .exceptions import (
    AuthServiceError,
    DuplicateEmailError,
    InvalidCredentialsError,
    StorageServiceError,
)


# A filter value is either a plain value (equality) or an (operator, value)
# pair, e.g. ("not.is", "null") or ("gte", "2026-01-01").
FilterValue = Union[str, int, Tuple[str, Any]]

_DUPLICATE_EMAIL_CODES = {"user_already_exists", "email_exists"}
_INVALID_CREDENTIAL_CODES = {"invalid_credentials", "invalid_grant"}


class SupabaseClient:
    """
    Thin synchronous client over Supabase auth and PostgREST.

    Thread Safety:
        httpx.Client is safe to share between threads, so one instance
        (and every per-session copy) can be used from request threads
        and mint threads alike.
    """

    def __init__(
        self,
        url: str,
        anon_key: str,
        timeout_seconds: float = 20.0,
        access_token: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the client.

        Args:
            url: Project URL, e.g. https://abc.supabase.co
            anon_key: Public anon key (sent as ``apikey`` on every call)
            timeout_seconds: Per-request timeout
            access_token: User JWT for row-level security (None = anon)
            http_client: Shared httpx.Client (created if not provided)
            logger: Logger instance (creates default if not provided)
        """
        self._url = url.rstrip("/")
        self._anon_key = anon_key
        self._access_token = access_token
        self._http = http_client or httpx.Client(timeout=timeout_seconds)
        self._logger = logger or logging.getLogger("diploma_issuer.core.supabase_client")

    @property
    def access_token(self) -> Optional[str]:
        """JWT used for storage calls (None when anonymous)."""
        return self._access_token

    def for_session(self, access_token: Optional[str]) -> "SupabaseClient":
        """Return a client that sends ``access_token`` as the bearer token."""
        return SupabaseClient(
            self._url,
            self._anon_key,
            access_token=access_token,
            http_client=self._http,
            logger=self._logger,
        )

    def close(self) -> None:
        """Close the underlying connection pool."""
        self._http.close()

    # =========================================================================
    # AUTH (GoTrue)
    # =========================================================================

    def sign_up(
        self,
        email: str,
        password: str,
        metadata: Optional[Dict[str, Any]] = None,
        redirect_to: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create an auth user.

        Returns:
            Dict with "user" and, when email confirmation is disabled,
            "session" (access_token, refresh_token).

        Raises:
            DuplicateEmailError: Email already registered
            AuthServiceError: Any other failure
        """
        params = {"redirect_to": redirect_to} if redirect_to else None
        payload = {"email": email, "password": password, "data": metadata or {}}
        response = self._auth_request("POST", "/signup", json=payload, params=params)

        if response.status_code >= 400:
            code, message = self._error_parts(response)
            if code in _DUPLICATE_EMAIL_CODES or "already registered" in message.lower():
                raise DuplicateEmailError(email, response.status_code)
            raise AuthServiceError(f"Sign-up failed: {message}", response.status_code)

        body = response.json()
        # GoTrue returns a session when auto-confirm is on, the bare user otherwise
        if "access_token" in body:
            return {"user": body.get("user"), "session": body}
        return {"user": body.get("user", body), "session": None}

    def sign_in_with_password(self, email: str, password: str) -> Dict[str, Any]:
        """
        Exchange email/password for a session.

        Returns:
            Session dict with access_token, refresh_token, expires_in, user

        Raises:
            InvalidCredentialsError: Credentials rejected
            AuthServiceError: Any other failure
        """
        response = self._auth_request(
            "POST",
            "/token",
            json={"email": email, "password": password},
            params={"grant_type": "password"},
        )

        if response.status_code >= 400:
            code, message = self._error_parts(response)
            if response.status_code in (400, 401) and (
                code in _INVALID_CREDENTIAL_CODES or "invalid login" in message.lower()
            ):
                raise InvalidCredentialsError(status_code=response.status_code)
            raise AuthServiceError(f"Sign-in failed: {message}", response.status_code)

        return response.json()

    def refresh_session(self, refresh_token: str) -> Optional[Dict[str, Any]]:
        """
        Exchange a refresh token for a new session.

        Returns:
            Session dict like sign_in_with_password, or None if the refresh
            token was rejected (already used, revoked or expired)

        Raises:
            AuthServiceError: Network or unexpected failure
        """
        response = self._auth_request(
            "POST",
            "/token",
            json={"refresh_token": refresh_token},
            params={"grant_type": "refresh_token"},
        )

        if response.status_code in (400, 401, 403):
            code, message = self._error_parts(response)
            self._logger.info(f"Refresh token rejected: {code or response.status_code} {message}")
            return None
        if response.status_code >= 400:
            _, message = self._error_parts(response)
            raise AuthServiceError(f"Session refresh failed: {message}", response.status_code)

        return response.json()

    def sign_out(self, access_token: str) -> None:
        """Revoke the session behind ``access_token``."""
        response = self._auth_request("POST", "/logout", token=access_token)
        # 401 means the token is already dead, which is what we wanted
        if response.status_code >= 400 and response.status_code != 401:
            _, message = self._error_parts(response)
            raise AuthServiceError(f"Sign-out failed: {message}", response.status_code)

    def get_user(self, access_token: str) -> Optional[Dict[str, Any]]:
        """
        Look up the user for a session token.

        Returns:
            User dict, or None if the token is expired or revoked
        """
        response = self._auth_request("GET", "/user", token=access_token)

        if response.status_code in (401, 403):
            return None
        if response.status_code >= 400:
            _, message = self._error_parts(response)
            raise AuthServiceError(f"Session lookup failed: {message}", response.status_code)

        return response.json()

    def request_password_reset(self, email: str, redirect_to: Optional[str] = None) -> None:
        """Send a password reset email."""
        params = {"redirect_to": redirect_to} if redirect_to else None
        response = self._auth_request("POST", "/recover", json={"email": email}, params=params)
        if response.status_code >= 400:
            _, message = self._error_parts(response)
            raise AuthServiceError(f"Password reset request failed: {message}", response.status_code)

    def update_user(self, access_token: str, attributes: Dict[str, Any]) -> Dict[str, Any]:
        """Update the signed-in user (e.g. ``{"password": ...}`` after a reset)."""
        response = self._auth_request("PUT", "/user", json=attributes, token=access_token)
        if response.status_code >= 400:
            _, message = self._error_parts(response)
            raise AuthServiceError(f"User update failed: {message}", response.status_code)
        return response.json()

    # =========================================================================
    # STORAGE (PostgREST)
    # =========================================================================

    def select(
        self,
        table: str,
        filters: Optional[Dict[str, FilterValue]] = None,
        order: Optional[str] = None,
        limit: Optional[int] = None,
        columns: str = "*",
    ) -> List[Dict[str, Any]]:
        """
        Read rows.

        Args:
            table: Table name
            filters: Column filters (plain value = equality)
            order: PostgREST order clause, e.g. "issued_at.desc"
            limit: Maximum rows
            columns: Column list for ``select=``

        Returns:
            List of row dicts (possibly empty)
        """
        params = self._filter_params(filters)
        params["select"] = columns
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)

        response = self._rest_request("GET", table, params=params)
        return self._rows(response, table)

    def insert(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Insert rows and return them as stored."""
        response = self._rest_request(
            "POST",
            table,
            json=rows,
            headers={"Prefer": "return=representation"},
        )
        return self._rows(response, table)

    def update(
        self,
        table: str,
        filters: Dict[str, FilterValue],
        values: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        """Update the rows matching ``filters`` and return them."""
        if not filters:
            raise ValueError("update() requires at least one filter")
        response = self._rest_request(
            "PATCH",
            table,
            params=self._filter_params(filters),
            json=values,
            headers={"Prefer": "return=representation"},
        )
        return self._rows(response, table)

    def delete(self, table: str, filters: Dict[str, FilterValue]) -> None:
        """Delete the rows matching ``filters``."""
        if not filters:
            raise ValueError("delete() requires at least one filter")
        response = self._rest_request("DELETE", table, params=self._filter_params(filters))
        self._check_rest_status(response, table)

    def count(self, table: str, filters: Optional[Dict[str, FilterValue]] = None) -> int:
        """
        Count rows without fetching them.

        Uses ``Prefer: count=exact`` and reads the total from Content-Range
        (``0-24/3573`` or ``*/0``).
        """
        params = self._filter_params(filters)
        params["select"] = "*"
        response = self._rest_request(
            "HEAD",
            table,
            params=params,
            headers={"Prefer": "count=exact"},
        )
        self._check_rest_status(response, table)

        content_range = response.headers.get("content-range", "")
        _, _, total = content_range.rpartition("/")
        try:
            return int(total)
        except ValueError:
            raise StorageServiceError(
                f"Count on {table} returned no total (Content-Range: {content_range!r})",
                response.status_code,
            )

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _headers(self, token: Optional[str] = None) -> Dict[str, str]:
        return {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {token or self._access_token or self._anon_key}",
        }

    def _auth_request(
        self,
        method: str,
        path: str,
        json: Optional[Any] = None,
        params: Optional[Dict[str, str]] = None,
        token: Optional[str] = None,
    ) -> httpx.Response:
        url = f"{self._url}/auth/v1{path}"
        try:
            return self._http.request(
                method, url, json=json, params=params, headers=self._headers(token)
            )
        except httpx.HTTPError as e:
            self._logger.error(f"Auth request {method} {path} failed: {e}")
            raise AuthServiceError(f"Auth service unreachable: {e}")

    def _rest_request(
        self,
        method: str,
        table: str,
        params: Optional[Dict[str, str]] = None,
        json: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        url = f"{self._url}/rest/v1/{table}"
        request_headers = self._headers()
        if headers:
            request_headers.update(headers)
        try:
            return self._http.request(
                method, url, params=params, json=json, headers=request_headers
            )
        except httpx.HTTPError as e:
            self._logger.error(f"Storage request {method} {table} failed: {e}")
            raise StorageServiceError(f"Storage service unreachable: {e}")

    def _rows(self, response: httpx.Response, table: str) -> List[Dict[str, Any]]:
        self._check_rest_status(response, table)
        if not response.content:
            return []
        try:
            data = response.json()
        except ValueError as e:
            raise StorageServiceError(f"Invalid JSON from {table}: {e}", response.status_code)
        if isinstance(data, dict):
            return [data]
        return list(data)

    def _check_rest_status(self, response: httpx.Response, table: str) -> None:
        if response.status_code < 400:
            return
        code, message = self._error_parts(response)
        self._logger.error(
            f"Storage error on {table}: status={response.status_code} code={code} {message}"
        )
        raise StorageServiceError(
            f"Storage request on {table} failed: {message}",
            response.status_code,
            {"table": table, "code": code},
        )

    @staticmethod
    def _filter_params(filters: Optional[Dict[str, FilterValue]]) -> Dict[str, str]:
        params: Dict[str, str] = {}
        for column, value in (filters or {}).items():
            if isinstance(value, tuple):
                operator, operand = value
                params[column] = f"{operator}.{operand}"
            else:
                params[column] = f"eq.{value}"
        return params

    @staticmethod
    def _error_parts(response: httpx.Response) -> Tuple[str, str]:
        """Extract (code, message) from a GoTrue or PostgREST error body."""
        try:
            body = response.json()
        except ValueError:
            return "", response.text or f"HTTP {response.status_code}"
        if not isinstance(body, dict):
            return "", str(body)

        code = str(body.get("error_code") or body.get("code") or body.get("error") or "")
        message = (
            body.get("msg")
            or body.get("message")
            or body.get("error_description")
            or body.get("error")
            or f"HTTP {response.status_code}"
        )
        return code, str(message)
