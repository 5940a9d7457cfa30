"""Error taxonomy for the outbound interop client.

Every failure surfaced by the client is an ``InteropError``. Callers that only
care whether a call worked can catch the base class; callers that need to
react differently (re-authenticate, fix configuration, inspect a peer's error
body) catch the specific subclass.

Propagation policy:
- Refresh failures are recovered inside the token manager and reported via
  ``CredentialRefreshFailed`` events; they only reach a caller as
  ``CredentialUnavailable`` when no token was ever obtained.
- Everything else propagates to the caller of the call that triggered it.

This module also carries the FSPIOP API error code table, used to build the
``errorInformation`` bodies sent by the ``*_error`` request wrappers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


class InteropError(Exception):
    """Base class for all outbound client failures."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "cause": repr(self.cause) if self.cause is not None else None,
        }


class NotStarted(InteropError):
    """Token requested before the token manager finished starting."""
    pass


class CredentialUnavailable(InteropError):
    """No valid bearer token is held and none could be obtained."""
    pass


class CredentialRefreshError(InteropError):
    """A token acquisition attempt failed.

    Never raised to callers of the token manager: it is the ``cause`` carried
    by the ``CredentialRefreshFailed`` event.
    """
    pass


class SigningError(InteropError):
    """Signing key material is absent or malformed, or signing failed."""
    pass


class UnsupportedResourceType(InteropError):
    """Strict dialect mapping was requested for a resource without a mapping."""

    def __init__(self, resource_type: str, variant: str = "") -> None:
        label = f"{resource_type}:{variant}" if variant else resource_type
        super().__init__(f"No ISO 20022 mapping for resource type {label!r}")
        self.resource_type = resource_type
        self.variant = variant


class InvalidContentType(InteropError):
    """Response carried a body in a content type the call cannot parse.

    The original HTTP status code is preserved on ``status_code``.
    """

    def __init__(
        self,
        content_type: str,
        *,
        status_code: Optional[int] = None,
        body: Any = None,
    ) -> None:
        super().__init__(
            f"Invalid content-type {content_type!r} in response",
            status_code=status_code,
        )
        self.content_type = content_type
        self.body = body


class TransportError(InteropError):
    """Network or connection failure while talking to a peer."""

    def __init__(
        self,
        message: str,
        *,
        method: str = "",
        url: str = "",
        cause: Optional[BaseException] = None,
    ) -> None:
        context = f"{method} {url}".strip()
        full = f"{context}: {message}" if context else message
        super().__init__(full, cause=cause)
        self.method = method
        self.url = url


class PeerResponseError(InteropError):
    """Peer answered with a non-success HTTP status."""

    def __init__(
        self,
        status_code: int,
        *,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None,
        context: str = "",
    ) -> None:
        detail = _error_description(body)
        prefix = f"{context}: " if context else ""
        message = f"{prefix}HTTP {status_code}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message, status_code=status_code)
        self.body = body
        self.headers = dict(headers or {})


class RequestValidationError(InteropError):
    """A call was issued without a resource type, method or path."""
    pass


def _error_description(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    info = body.get("errorInformation")
    if isinstance(info, dict):
        code = info.get("errorCode")
        desc = info.get("errorDescription")
        if code and desc:
            return f"{code} {desc}"
        return str(code or desc or "") or None
    return None


# ---------------------------------------------------------------------------
# FSPIOP API error codes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApiErrorCode:
    code: str
    message: str
    http_status: Optional[int] = None


_CODES: List[ApiErrorCode] = [
    # Generic communication errors
    ApiErrorCode("1000", "Communication error"),
    ApiErrorCode("1001", "Destination communication error"),
    # Generic server errors
    ApiErrorCode("2000", "Generic server error", 500),
    ApiErrorCode("2001", "Internal server error", 500),
    ApiErrorCode("2002", "Not implemented", 501),
    ApiErrorCode("2003", "Service currently unavailable", 503),
    ApiErrorCode("2004", "Server timed out"),
    ApiErrorCode("2005", "Server busy", 503),
    # Generic client errors
    ApiErrorCode("3000", "Generic client error", 400),
    ApiErrorCode("3001", "Unacceptable version requested", 406),
    ApiErrorCode("3002", "Unknown URI", 404),
    ApiErrorCode("3003", "Add Party information error"),
    ApiErrorCode("3040", "Delete Party information error"),
    # Client validation errors
    ApiErrorCode("3100", "Generic validation error", 400),
    ApiErrorCode("3101", "Malformed syntax", 400),
    ApiErrorCode("3102", "Missing mandatory element", 400),
    ApiErrorCode("3103", "Too many elements", 400),
    ApiErrorCode("3104", "Too large payload", 400),
    ApiErrorCode("3105", "Invalid signature", 400),
    ApiErrorCode("3106", "Modified request", 400),
    ApiErrorCode("3107", "Missing mandatory extension parameter", 400),
    # Identifier errors
    ApiErrorCode("3200", "Generic ID not found", 404),
    ApiErrorCode("3201", "Destination FSP Error"),
    ApiErrorCode("3202", "Payer FSP ID not found"),
    ApiErrorCode("3203", "Payee FSP ID not found"),
    ApiErrorCode("3204", "Party not found"),
    ApiErrorCode("3205", "Quote ID not found"),
    ApiErrorCode("3206", "Transaction request ID not found"),
    ApiErrorCode("3207", "Transaction ID not found"),
    ApiErrorCode("3208", "Transfer ID not found"),
    ApiErrorCode("3209", "Bulk quote ID not found"),
    ApiErrorCode("3210", "Bulk transfer ID not found"),
    # Expired errors
    ApiErrorCode("3300", "Generic expired error"),
    ApiErrorCode("3301", "Transaction request expired"),
    ApiErrorCode("3302", "Quote expired"),
    ApiErrorCode("3303", "Transfer expired"),
    # Payer errors
    ApiErrorCode("4000", "Generic Payer error"),
    ApiErrorCode("4001", "Payer FSP insufficient liquidity"),
    ApiErrorCode("4100", "Generic Payer rejection"),
    ApiErrorCode("4101", "Payer rejected transaction request"),
    ApiErrorCode("4102", "Payer FSP unsupported transaction type"),
    ApiErrorCode("4103", "Payer unsupported currency"),
    ApiErrorCode("4200", "Payer limit error"),
    ApiErrorCode("4300", "Payer permission error"),
    ApiErrorCode("4400", "Generic Payer blocked error"),
    # Payee errors
    ApiErrorCode("5000", "Generic Payee error"),
    ApiErrorCode("5001", "Payee FSP insufficient liquidity"),
    ApiErrorCode("5100", "Generic Payee rejection"),
    ApiErrorCode("5101", "Payee rejected quote"),
    ApiErrorCode("5102", "Payee FSP unsupported transaction type"),
    ApiErrorCode("5103", "Payee FSP rejected quote"),
    ApiErrorCode("5104", "Payee rejected transaction"),
    ApiErrorCode("5105", "Payee FSP rejected transaction"),
    ApiErrorCode("5106", "Payee unsupported currency"),
    ApiErrorCode("5200", "Payee limit error"),
    ApiErrorCode("5300", "Payee permission error"),
    ApiErrorCode("5400", "Generic Payee blocked error"),
]

API_ERROR_CODES: Dict[str, ApiErrorCode] = {c.code: c for c in _CODES}


def api_error_code(code: str) -> ApiErrorCode:
    """Look up an FSPIOP error code; unknown codes raise ``KeyError``."""
    try:
        return API_ERROR_CODES[str(code)]
    except KeyError:
        raise KeyError(f"Unknown FSPIOP error code: {code!r}") from None


class FSPIOPError(InteropError):
    """An error to be reported to a peer as an ``errorInformation`` body."""

    def __init__(
        self,
        api_error: ApiErrorCode,
        message: str = "",
        *,
        reply_to: str = "",
        cause: Optional[BaseException] = None,
        extensions: Optional[List[Dict[str, str]]] = None,
    ) -> None:
        super().__init__(
            message or api_error.message,
            status_code=api_error.http_status,
            cause=cause,
        )
        self.api_error = api_error
        self.reply_to = reply_to
        self.extensions = list(extensions or [])

    def to_api_error_object(self) -> Dict[str, Any]:
        info: Dict[str, Any] = {
            "errorCode": self.api_error.code,
            "errorDescription": self.api_error.message,
        }
        if self.extensions:
            info["extensionList"] = {"extension": list(self.extensions)}
        return {"errorInformation": info}

    def to_full_error_object(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "message": self.message,
            "replyTo": self.reply_to,
            "apiErrorCode": {
                "code": self.api_error.code,
                "message": self.api_error.message,
            },
        }
        if self.extensions:
            out["extensions"] = list(self.extensions)
        if self.cause is not None:
            out["cause"] = repr(self.cause)
        return out
