"""Help Scout credential handling and access-token lifecycle.

Two credential modes are supported:

* **Static token** — a Personal Access Token supplied as
  ``HELPSCOUT_API_KEY="Bearer <token>"``.  Adopted verbatim and treated as
  valid for 24 hours; never exchanged upstream.
* **Client credentials** — an OAuth2 app id/secret pair exchanged at
  ``/oauth2/token`` for a short-lived access token.

The static token wins when both are configured.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

import httpx

from helpscout_mcp import config
from helpscout_mcp.services.errors import AuthenticationError, ConfigurationError

logger = logging.getLogger(__name__)

TOKEN_PATH = "/oauth2/token"
STATIC_TOKEN_LIFETIME_SECONDS = 24 * 60 * 60
EXPIRY_SAFETY_MARGIN_SECONDS = 60


class CredentialMode(str, Enum):
    STATIC_TOKEN = "static_token"
    CLIENT_CREDENTIALS = "client_credentials"


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class Credentials:
    access_token: str | None = None
    client_id: str | None = None
    client_secret: str | None = None

    @classmethod
    def from_config(cls) -> Credentials:
        return cls(
            access_token=config.HELPSCOUT_ACCESS_TOKEN,
            client_id=config.HELPSCOUT_CLIENT_ID,
            client_secret=config.HELPSCOUT_CLIENT_SECRET,
        )

    @property
    def mode(self) -> CredentialMode:
        if self.access_token:
            return CredentialMode.STATIC_TOKEN
        return CredentialMode.CLIENT_CREDENTIALS


@dataclass(frozen=True)
class AccessToken:
    value: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class TokenAuthenticator:
    """Owns the shared access token and refreshes it on demand.

    The token is replaced as a whole object, so concurrent readers always
    use either the previous or the new value.  Refreshes are single-flight:
    callers that find the token expired queue on a lock, and all but the
    first find a fresh token once they get it.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        credentials: Credentials | None = None,
        *,
        token_path: str = TOKEN_PATH,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._http = http
        self._credentials = credentials or Credentials.from_config()
        self._token_path = token_path
        self._clock = clock
        self._token: AccessToken | None = None
        self._state = AuthState.UNAUTHENTICATED
        self._lock = asyncio.Lock()

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def token(self) -> AccessToken | None:
        return self._token

    @property
    def mode(self) -> CredentialMode:
        return self._credentials.mode

    async def ensure_authenticated(self) -> str:
        """Return a valid access token, authenticating first if needed."""
        token = self._token
        if token is not None and token.is_valid(self._clock()):
            return token.value

        async with self._lock:
            token = self._token
            if token is not None and token.is_valid(self._clock()):
                return token.value

            self._state = AuthState.AUTHENTICATING
            try:
                token = await self._authenticate()
            except BaseException:
                self._state = AuthState.UNAUTHENTICATED
                raise
            self._token = token
            self._state = AuthState.AUTHENTICATED
            return token.value

    def invalidate(self) -> None:
        """Drop the cached token so the next call re-authenticates."""
        if self._token is not None:
            logger.info("Access token invalidated; next request will re-authenticate")
        self._token = None
        self._state = AuthState.UNAUTHENTICATED

    async def _authenticate(self) -> AccessToken:
        creds = self._credentials
        if creds.mode is CredentialMode.STATIC_TOKEN:
            logger.info("Using Personal Access Token for Help Scout API")
            return AccessToken(creds.access_token, self._clock() + STATIC_TOKEN_LIFETIME_SECONDS)

        if not creds.client_id or not creds.client_secret:
            raise ConfigurationError(
                "OAuth2 authentication requires both client ID and secret. "
                "Set HELPSCOUT_CLIENT_ID and HELPSCOUT_CLIENT_SECRET, or "
                "use legacy HELPSCOUT_API_KEY and HELPSCOUT_APP_SECRET"
            )

        try:
            response = await self._http.post(
                self._token_path,
                json={
                    "grant_type": "client_credentials",
                    "client_id": creds.client_id,
                    "client_secret": creds.client_secret,
                },
            )
            response.raise_for_status()
            data = response.json()
            value = data["access_token"]
            expires_in = float(data["expires_in"])
        except httpx.HTTPStatusError as exc:
            logger.error("Authentication failed: token endpoint returned %d", exc.response.status_code)
            raise AuthenticationError(
                "Failed to authenticate with Help Scout API",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("Authentication failed: %s", exc)
            raise AuthenticationError("Failed to authenticate with Help Scout API") from exc
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("Authentication failed: malformed token response (%s)", exc)
            raise AuthenticationError(
                "Failed to authenticate with Help Scout API",
                status_code=response.status_code,
            ) from exc

        logger.info(
            "Authenticated with Help Scout API using OAuth2 (legacy variable names: %s)",
            config.USING_LEGACY_CREDENTIAL_NAMES,
        )
        return AccessToken(value, self._clock() + expires_in - EXPIRY_SAFETY_MARGIN_SECONDS)
