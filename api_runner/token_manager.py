"""
================================================================================
Token Manager with Eager Refresh and Run-Scoped Caching
================================================================================

Manages OAuth 2.0 bearer tokens for a run:
    - Exchanges a refresh token for an access token at the token endpoint
    - Caches tokens in memory keyed by (client_id, refresh_token)
    - Refreshes when less than the safety margin remains before expiry
    - Writes fresh token fields into the run environment
    - Builds the consent URL and exchanges authorization codes for setup

Tokens live only as long as the TokenManager; nothing is written to disk.
Acquisition failures are raised immediately as AuthError, never retried.

================================================================================
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional, Sequence, Tuple
from urllib.parse import urlencode

import httpx
from loguru import logger

from .environment import Environment
from .errors import AuthError
from .models import Token


DEFAULT_TOKEN_URL = "https://oauth2.googleapis.com/token"
DEFAULT_AUTH_URL = "https://accounts.google.com/o/oauth2/auth"
DEFAULT_REDIRECT_URI = "urn:ietf:wg:oauth:2.0:oob"

DEFAULT_SCOPES = (
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/gmail.labels",
    "https://www.googleapis.com/auth/gmail.modify",
)

# Token lifetime assumed when the endpoint omits expires_in (1 hour)
DEFAULT_TOKEN_TTL = 3600

# Refresh token when less than this many seconds remain
TOKEN_REFRESH_MARGIN = 60

DEFAULT_TOKEN_TIMEOUT = 30.0

# Environment variable names read and written by token_for_environment
ENV_CLIENT_ID = "client_id"
ENV_CLIENT_SECRET = "client_secret"
ENV_REFRESH_TOKEN = "refresh_token"
ENV_ACCESS_TOKEN = "access_token"
ENV_TOKEN_TYPE = "token_type"
ENV_TOKEN_EXPIRES_AT = "token_expires_at"


class TokenManager:
    """
    Run-scoped OAuth 2.0 credential manager.

    Usage:
        >>> with TokenManager(DEFAULT_TOKEN_URL) as tokens:
        ...     token = tokens.get_valid_token(client_id, client_secret, refresh_token)
        ...     headers = {"Authorization": token.authorization}
    """

    def __init__(
        self,
        token_url: str = DEFAULT_TOKEN_URL,
        client: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time.time,
        refresh_margin: float = TOKEN_REFRESH_MARGIN,
        timeout: float = DEFAULT_TOKEN_TIMEOUT,
    ) -> None:
        """
        Initialize token manager.

        Args:
            token_url: Token issuance endpoint
            client: httpx client to use; one is created (and owned) if None
            clock: Returns the current time as epoch seconds
            refresh_margin: Seconds of remaining lifetime below which a
                            cached token is refreshed
            timeout: Token request timeout in seconds
        """
        self.token_url = token_url
        self.refresh_margin = refresh_margin
        self._clock = clock
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout))
        self._cache: Dict[Tuple[str, str], Token] = {}
        self.acquisitions = 0

    def __enter__(self) -> "TokenManager":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    # ============================================================
    # Acquisition
    # ============================================================

    def acquire_token(self, client_id: str, client_secret: str, refresh_token: str) -> Token:
        """
        Exchange a refresh token for a fresh access token.

        Raises:
            AuthError: On transport failure, non-success status, or a payload
                       without access_token
        """
        logger.debug(f"Requesting access token from {self.token_url}")
        token = self._request_token(
            {
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            fallback_refresh_token=refresh_token,
        )
        self._cache[(client_id, refresh_token)] = token
        logger.info("Access token refreshed")
        return token

    def get_valid_token(self, client_id: str, client_secret: str, refresh_token: str) -> Token:
        """
        Return the cached token unless it is within the refresh margin of expiry.

        Raises:
            AuthError: If a refresh is needed and fails
        """
        cached = self._cache.get((client_id, refresh_token))
        if cached is not None and cached.is_valid(self._clock(), self.refresh_margin):
            return cached

        if cached is not None:
            logger.info("Cached access token is about to expire, refreshing")
        return self.acquire_token(client_id, client_secret, refresh_token)

    def token_for_environment(self, environment: Environment) -> Token:
        """
        Obtain a valid token using the environment's credentials.

        Writes access_token, token_type and token_expires_at back into the
        environment so later requests can reference them.

        Raises:
            SubstitutionError: If a credential variable is undefined
            AuthError: If acquisition fails
        """
        token = self.get_valid_token(
            environment.lookup(ENV_CLIENT_ID),
            environment.lookup(ENV_CLIENT_SECRET),
            environment.lookup(ENV_REFRESH_TOKEN),
        )
        environment[ENV_ACCESS_TOKEN] = token.access_token
        environment[ENV_TOKEN_TYPE] = token.token_type
        environment[ENV_TOKEN_EXPIRES_AT] = str(int(token.expires_at))
        return token

    def invalidate(self, client_id: Optional[str] = None, refresh_token: Optional[str] = None) -> None:
        """
        Drop cached tokens.

        With no arguments every cached token is dropped.
        """
        if client_id is None and refresh_token is None:
            self._cache.clear()
            return
        self._cache = {
            key: token for key, token in self._cache.items()
            if not (
                (client_id is None or key[0] == client_id)
                and (refresh_token is None or key[1] == refresh_token)
            )
        }

    # ============================================================
    # One-time setup helpers
    # ============================================================

    @staticmethod
    def authorization_url(
        client_id: str,
        scopes: Sequence[str] = DEFAULT_SCOPES,
        redirect_uri: str = DEFAULT_REDIRECT_URI,
        auth_url: str = DEFAULT_AUTH_URL,
    ) -> str:
        """Consent URL that yields an authorization code with offline access."""
        query = urlencode({
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "scope": " ".join(scopes),
            "response_type": "code",
            "access_type": "offline",
            "prompt": "consent",
        })
        return f"{auth_url}?{query}"

    def exchange_code(
        self,
        client_id: str,
        client_secret: str,
        code: str,
        redirect_uri: str = DEFAULT_REDIRECT_URI,
    ) -> Token:
        """
        Exchange an authorization code for access and refresh tokens.

        Raises:
            AuthError: On any failure
        """
        token = self._request_token({
            "client_id": client_id,
            "client_secret": client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": redirect_uri,
        })
        if token.refresh_token:
            self._cache[(client_id, token.refresh_token)] = token
        return token

    # ============================================================
    # Internals
    # ============================================================

    def _request_token(self, form: Dict[str, str], fallback_refresh_token: Optional[str] = None) -> Token:
        issued_at = self._clock()
        self.acquisitions += 1
        try:
            response = self._client.post(
                self.token_url,
                data=form,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise AuthError(f"Failed to fetch token: {e}") from e

        if not response.is_success:
            raise AuthError(
                f"Token endpoint returned {response.status_code}: {_error_detail(response)}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise AuthError(f"Token endpoint returned a non-JSON body: {e}") from e

        return _token_from_payload(payload, issued_at, fallback_refresh_token)


def _token_from_payload(payload: Any, issued_at: float, fallback_refresh_token: Optional[str]) -> Token:
    if not isinstance(payload, dict):
        raise AuthError("Token endpoint payload is not a JSON object")

    access_token = payload.get("access_token")
    if not isinstance(access_token, str) or not access_token:
        raise AuthError("Token endpoint payload is missing 'access_token'")

    expires_in = payload.get("expires_in", DEFAULT_TOKEN_TTL)
    try:
        expires_in = float(expires_in)
    except (TypeError, ValueError):
        raise AuthError(f"Token endpoint returned an invalid expires_in: {expires_in!r}") from None

    return Token(
        access_token=access_token,
        token_type=str(payload.get("token_type") or "Bearer"),
        expires_at=issued_at + expires_in,
        refresh_token=payload.get("refresh_token") or fallback_refresh_token,
    )


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or response.text[:200]
    if isinstance(body, dict):
        return str(body.get("error_description") or body.get("error") or body)
    return str(body)


__all__ = [
    "TokenManager",
    "DEFAULT_TOKEN_URL",
    "DEFAULT_AUTH_URL",
    "DEFAULT_REDIRECT_URI",
    "DEFAULT_SCOPES",
    "DEFAULT_TOKEN_TTL",
    "TOKEN_REFRESH_MARGIN",
]
