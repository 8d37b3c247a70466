"""Error taxonomy for the Help Scout client and the normalizer that maps every
failure onto it.

Callers only ever see :class:`HelpScoutAPIError`.  Its ``kind`` is one of
five stable values and its ``details["suggestion"]`` tells an assistant
whether to retry, reformulate or give up.  Raw httpx exceptions stop here.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from helpscout_mcp.services.auth import TokenAuthenticator
    from helpscout_mcp.services.tracing import RequestTrace

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_SECONDS = 60

_CREDENTIALS_HINT = (
    "Set HELPSCOUT_CLIENT_ID and HELPSCOUT_CLIENT_SECRET, or use legacy "
    "HELPSCOUT_API_KEY and HELPSCOUT_APP_SECRET"
)
_RETRIED_HINT = "Request was already retried with exponential backoff; try again later"


class ErrorKind(str, Enum):
    UNAUTHORIZED = "UNAUTHORIZED"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMIT = "RATE_LIMIT"
    INVALID_INPUT = "INVALID_INPUT"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"


class HelpScoutAPIError(Exception):
    """Raised when a Help Scout API call fails after all retries."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        retry_after: int | None = None,
        details: dict[str, Any] | None = None,
        status_code: int | None = None,
    ):
        self.kind = kind
        self.message = message
        self.retry_after = retry_after
        self.details = details or {}
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Render the error in the shape tool results expose to assistants."""
        payload: dict[str, Any] = {"code": self.kind.value, "message": self.message}
        if self.retry_after is not None:
            payload["retry_after"] = self.retry_after
        payload["details"] = self.details
        return payload


class ConfigurationError(Exception):
    """Raised when credentials required for authentication are missing."""


class AuthenticationError(Exception):
    """Raised when the OAuth2 token exchange fails.

    ``status_code`` is the token endpoint's HTTP status when it answered at
    all, ``None`` for network-level failures.
    """

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


def parse_retry_after(value: str | None, default: int = DEFAULT_RETRY_AFTER_SECONDS) -> int:
    """Parse a ``Retry-After`` header given in seconds; fractions are truncated."""
    if value is None:
        return default
    try:
        return max(int(float(value.strip())), 0)
    except (ValueError, OverflowError):
        return default


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class ErrorNormalizer:
    """Deterministic, total mapping from a terminal failure to an API error.

    Runs once per failed call, after the retry executor has given up.  A 401
    additionally invalidates the cached access token so the next call
    re-authenticates.
    """

    def __init__(self, authenticator: TokenAuthenticator | None = None) -> None:
        self._authenticator = authenticator

    def normalize(
        self,
        exc: BaseException,
        *,
        trace: RequestTrace,
        method: str,
        path: str,
    ) -> HelpScoutAPIError:
        base = {"request_id": trace.id, "path": path, "method": method}

        if isinstance(exc, httpx.HTTPStatusError):
            return self._from_status(exc.response, base)
        if isinstance(exc, ConfigurationError):
            return HelpScoutAPIError(
                ErrorKind.UNAUTHORIZED,
                f"Help Scout credentials are not configured: {exc}",
                details={**base, "suggestion": _CREDENTIALS_HINT},
            )
        if isinstance(exc, AuthenticationError):
            return HelpScoutAPIError(
                ErrorKind.UNAUTHORIZED,
                "Failed to authenticate with Help Scout API.",
                details={
                    **base,
                    "token_status_code": exc.status_code,
                    "suggestion": "Verify the Help Scout OAuth2 client id and secret are valid",
                },
            )
        if isinstance(exc, httpx.TimeoutException):
            return HelpScoutAPIError(
                ErrorKind.UPSTREAM_ERROR,
                "Help Scout API request timed out. The service may be experiencing high load.",
                details={**base, "error_code": type(exc).__name__, "suggestion": _RETRIED_HINT},
            )
        return HelpScoutAPIError(
            ErrorKind.UPSTREAM_ERROR,
            f"Help Scout API error: {exc or 'Unknown upstream service error'}",
            details={
                **base,
                "error_code": type(exc).__name__,
                "suggestion": "Check your network connection and Help Scout service status",
            },
        )

    def _from_status(self, response: httpx.Response, base: dict[str, Any]) -> HelpScoutAPIError:
        status = response.status_code

        if status == 401:
            if self._authenticator is not None:
                self._authenticator.invalidate()
            return HelpScoutAPIError(
                ErrorKind.UNAUTHORIZED,
                "Help Scout authentication failed. Please check your API credentials.",
                details={**base, "suggestion": f"Verify credentials. {_CREDENTIALS_HINT}"},
                status_code=status,
            )

        if status == 403:
            return HelpScoutAPIError(
                ErrorKind.UNAUTHORIZED,
                "Access forbidden. Insufficient permissions for this Help Scout resource.",
                details={
                    **base,
                    "suggestion": "Check if your credentials have access to this mailbox or resource",
                },
                status_code=status,
            )

        if status == 404:
            return HelpScoutAPIError(
                ErrorKind.NOT_FOUND,
                "Help Scout resource not found. The requested conversation, "
                "mailbox, or thread does not exist.",
                details={**base, "suggestion": "Verify the ID is correct and the resource exists"},
                status_code=status,
            )

        if status == 429:
            retry_after = parse_retry_after(response.headers.get("retry-after"))
            return HelpScoutAPIError(
                ErrorKind.RATE_LIMIT,
                f"Help Scout API rate limit exceeded. Please wait {retry_after} "
                "seconds before retrying.",
                retry_after=retry_after,
                details={
                    **base,
                    "suggestion": "Reduce request frequency or implement request batching",
                },
                status_code=status,
            )

        if status == 422:
            body = _response_body(response)
            body_map = body if isinstance(body, dict) else {}
            embedded = body_map.get("_embedded")
            embedded_errors = embedded.get("errors") if isinstance(embedded, dict) else None
            return HelpScoutAPIError(
                ErrorKind.INVALID_INPUT,
                "Help Scout API validation error: "
                f"{body_map.get('message') or 'Invalid request data'}",
                details={
                    **base,
                    "validation_errors": embedded_errors
                    or body_map.get("errors")
                    or body,
                    "suggestion": "Check the request parameters match Help Scout API requirements",
                },
                status_code=status,
            )

        if 400 <= status < 500:
            body = _response_body(response)
            message = body.get("message") if isinstance(body, dict) else None
            return HelpScoutAPIError(
                ErrorKind.INVALID_INPUT,
                f"Help Scout API client error: {message or 'Invalid request'}",
                details={
                    **base,
                    "status_code": status,
                    "api_response": body,
                    "suggestion": "Reformulate the request; retrying it unchanged will not succeed",
                },
                status_code=status,
            )

        if status >= 500:
            return HelpScoutAPIError(
                ErrorKind.UPSTREAM_ERROR,
                f"Help Scout API server error ({status}). The service is temporarily unavailable.",
                details={**base, "status_code": status, "suggestion": _RETRIED_HINT},
                status_code=status,
            )

        return HelpScoutAPIError(
            ErrorKind.UPSTREAM_ERROR,
            f"Help Scout API returned unexpected status {status}",
            details={
                **base,
                "status_code": status,
                "suggestion": "Check your network connection and Help Scout service status",
            },
            status_code=status,
        )
