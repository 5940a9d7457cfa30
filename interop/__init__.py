"""
Interop: outbound FSPIOP client.

Builds, authenticates, signs and dispatches requests to peer participants of
an FSPIOP scheme, in either the native FSPIOP JSON dialect or ISO 20022 JSON.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                          OUTBOUND CLIENT                                 │
    │                                                                          │
    │  CALLS                                                                   │
    │    resources.py   Per-resource wrappers (parties, quotes, transfers...)  │
    │    client.py      Wiring from one InteropConfig                          │
    │                                                                          │
    │  PIPELINE                                                                │
    │    executor.py    Headers, dialect, signing, dispatch, classification    │
    │    auth.py        Bearer token acquisition and scheduled refresh         │
    │    signing.py     Detached JWS over the request (fspiop-signature)       │
    │    transformer.py FSPIOP <-> ISO 20022 body and content-type adaptation  │
    │                                                                          │
    │  FOUNDATION                                                              │
    │    transport.py   aiohttp transport with optional mutual TLS             │
    │    config.py      Layered configuration (env, overrides, YAML, defaults) │
    │    events.py      Event bus for refresh notifications                    │
    │    errors.py      Error taxonomy and FSPIOP API error codes              │
    │    observability.py  Structured logging with correlation IDs             │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘
"""

from interop.auth import Credential, CredentialSource, TokenManager
from interop.client import InteropClient
from interop.config import InteropConfig
from interop.errors import (
    CredentialRefreshError,
    CredentialUnavailable,
    FSPIOPError,
    InteropError,
    InvalidContentType,
    NotStarted,
    PeerResponseError,
    RequestValidationError,
    SigningError,
    TransportError,
    UnsupportedResourceType,
    api_error_code,
)
from interop.events import CredentialRefreshed, CredentialRefreshFailed, EventBus
from interop.executor import RequestExecutor
from interop.models import ExecutionResult, RequestDescriptor
from interop.resources import InteropRequests, ThirdpartyRequests
from interop.signing import MessageSigner, SigningContext
from interop.transformer import BodyTransformer, WireDialect

__version__ = "0.1.0"

__all__ = [
    "BodyTransformer",
    "Credential",
    "CredentialRefreshError",
    "CredentialRefreshFailed",
    "CredentialRefreshed",
    "CredentialSource",
    "CredentialUnavailable",
    "EventBus",
    "ExecutionResult",
    "FSPIOPError",
    "InteropClient",
    "InteropConfig",
    "InteropError",
    "InteropRequests",
    "InvalidContentType",
    "MessageSigner",
    "NotStarted",
    "PeerResponseError",
    "RequestDescriptor",
    "RequestExecutor",
    "RequestValidationError",
    "SigningContext",
    "SigningError",
    "ThirdpartyRequests",
    "TokenManager",
    "TransportError",
    "UnsupportedResourceType",
    "WireDialect",
    "api_error_code",
]
