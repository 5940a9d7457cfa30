"""
Signed request execution pipeline.

Every outbound call goes through ``RequestExecutor.execute``:

    ┌──────────────┐   ┌──────────────┐   ┌──────────────┐   ┌──────────────┐
    │  validate    │──▶│  headers +   │──▶│  transform   │──▶│    sign      │
    │  call        │   │  bearer token│   │  (dialect)   │   │  (if applies)│
    └──────────────┘   └──────────────┘   └──────────────┘   └──────┬───────┘
                                                                    │
    ┌──────────────┐   ┌──────────────┐                             │
    │ ExecutionRe- │◀──│  classify    │◀──────── dispatch ◀─────────┘
    │ sult / error │   │  response    │
    └──────────────┘   └──────────────┘

Stages run strictly in order and each returns an updated
``RequestDescriptor``; nothing is shared between calls except the token
manager's credential cell.

Response classification:
  - a non-empty body whose content type is not JSON raises
    ``InvalidContentType`` carrying the HTTP status, whatever that status is;
  - any other non-2xx status raises ``PeerResponseError``;
  - otherwise an ``ExecutionResult`` is returned. A JSON-typed body that does
    not parse yields ``data=None``.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Mapping, Optional, TYPE_CHECKING

from interop.auth import TokenManager
from interop.canonical import http_date, parse_json_body, serialize_body
from interop.errors import (
    CredentialUnavailable,
    InvalidContentType,
    NotStarted,
    PeerResponseError,
    RequestValidationError,
    SigningError,
)
from interop.models import ExecutionResult, OriginalRequest, RequestDescriptor
from interop.observability import generate_correlation_id, set_correlation_id, correlation_id_var
from interop.signing import MessageSigner, SigningContext
from interop.transformer import DEFAULT_VERSION, BodyTransformer, WireDialect, content_type, request_variant
from interop.transport import Transport, TransportRequest, TransportResponse

if TYPE_CHECKING:
    from interop.config import InteropConfig

logger = logging.getLogger(__name__)

METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})

# Resource types that share one configured endpoint, e.g. endpoints["als"].
ENDPOINT_GROUPS: Dict[str, str] = {
    "parties": "als",
    "participants": "als",
    "authorizations": "transactionRequests",
    "consents": "thirdpartyRequests",
    "consentRequests": "thirdpartyRequests",
}


def is_json_content_type(value: str) -> bool:
    media_type = value.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


class RequestExecutor:
    """Builds, authenticates, signs and dispatches outbound calls."""

    def __init__(
        self,
        transport: Transport,
        *,
        dfsp_id: str,
        peer_endpoint: str,
        endpoints: Optional[Mapping[str, str]] = None,
        resource_versions: Optional[Mapping[str, Mapping[str, str]]] = None,
        token_manager: Optional[TokenManager] = None,
        signer: Optional[MessageSigner] = None,
        signing: Optional[SigningContext] = None,
        transformer: Optional[BodyTransformer] = None,
        scheme: str = "http",
        timeout_seconds: Optional[float] = None,
    ) -> None:
        if not dfsp_id:
            raise ValueError("dfsp_id is required")
        self._transport = transport
        self._dfsp_id = dfsp_id
        self._peer_endpoint = peer_endpoint
        self._endpoints = dict(endpoints or {})
        self._resource_versions = {k: dict(v) for k, v in (resource_versions or {}).items()}
        self._token_manager = token_manager
        self._signer = signer
        self._signing = signing or SigningContext()
        self._transformer = transformer or BodyTransformer()
        self._scheme = scheme
        self._timeout_seconds = timeout_seconds

    @classmethod
    def from_config(
        cls,
        config: "InteropConfig",
        transport: Transport,
        *,
        token_manager: Optional[TokenManager] = None,
        signer: Optional[MessageSigner] = None,
    ) -> "RequestExecutor":
        signing = SigningContext(
            enabled=config.signing.enabled.get(),
            overrides=dict(config.signing.overrides.get()),
        )
        if signer is None and (signing.enabled or any(signing.overrides.values())):
            signer = MessageSigner.from_config(config)
        return cls(
            transport,
            dfsp_id=config.peer.dfsp_id.get(),
            peer_endpoint=config.peer.peer_endpoint.get(),
            endpoints=config.peer.endpoints.get(),
            resource_versions=config.peer.resource_versions.get(),
            token_manager=token_manager,
            signer=signer,
            signing=signing,
            transformer=BodyTransformer(
                WireDialect.parse(config.peer.wire_dialect.get()),
                strict=config.peer.strict_mappings.get(),
            ),
            scheme="https" if config.tls.mutual_tls.get() else "http",
            timeout_seconds=config.peer.request_timeout_seconds.get(),
        )

    @property
    def dfsp_id(self) -> str:
        return self._dfsp_id

    @property
    def dialect(self) -> WireDialect:
        return self._transformer.dialect

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _versions(self, resource_type: str) -> Dict[str, str]:
        versions = self._resource_versions.get(resource_type, {})
        return {
            "content": str(versions.get("contentVersion", DEFAULT_VERSION)),
            "accept": str(versions.get("acceptVersion", DEFAULT_VERSION)),
        }

    def _url(self, resource_type: str, path: str) -> str:
        endpoint = (
            self._endpoints.get(resource_type)
            or self._endpoints.get(ENDPOINT_GROUPS.get(resource_type, ""))
            or self._peer_endpoint
        )
        if not endpoint:
            raise RequestValidationError(f"no endpoint configured for {resource_type!r}")
        if "://" not in endpoint:
            endpoint = f"{self._scheme}://{endpoint}"
        return endpoint.rstrip("/") + path

    def _bearer_token(self) -> Optional[str]:
        if self._token_manager is None:
            return None
        try:
            return self._token_manager.get_token()
        except NotStarted as e:
            raise CredentialUnavailable(f"bearer token unavailable: {e}", cause=e) from e

    def build_headers(
        self,
        resource_type: str,
        destination: Optional[str] = None,
        token: Optional[str] = None,
    ) -> Dict[str, str]:
        versions = self._versions(resource_type)
        headers = {
            "content-type": self._transformer.content_type(resource_type, versions["content"]),
            "accept": content_type(resource_type, self.dialect, versions["accept"]),
            "date": http_date(),
            "fspiop-source": self._dfsp_id,
        }
        if destination:
            headers["fspiop-destination"] = destination
        if token:
            headers["authorization"] = f"Bearer {token}"
        return headers

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        resource_type: str,
        method: str,
        path: str,
        *,
        body: Any = None,
        destination: Optional[str] = None,
        require_destination: bool = False,
        headers: Optional[Mapping[str, str]] = None,
    ) -> ExecutionResult:
        """Run one outbound call through every stage of the pipeline.

        Args:
            resource_type: FSPIOP resource, e.g. ``parties`` or ``transfers``
            method: HTTP method
            path: request path starting with ``/``
            body: JSON-compatible body in FSPIOP form, or pre-encoded bytes
            destination: peer participant id for ``fspiop-destination``
            require_destination: reject the call when ``destination`` is empty
            headers: extra headers; they cannot replace the routing headers
        """
        method = (method or "").upper()
        if not resource_type:
            raise RequestValidationError("resource_type is required")
        if method not in METHODS:
            raise RequestValidationError(f"unsupported method {method!r}")
        if not path or not path.startswith("/"):
            raise RequestValidationError(f"path must start with '/': {path!r}")
        if require_destination and not destination:
            raise RequestValidationError(f"{method} {path} requires a destination")

        cid_token = None
        if not correlation_id_var.get():
            cid_token = set_correlation_id(generate_correlation_id())
        try:
            return await self._run(resource_type, method, path, body, destination, headers)
        finally:
            if cid_token is not None:
                correlation_id_var.reset(cid_token)

    async def _run(
        self,
        resource_type: str,
        method: str,
        path: str,
        body: Any,
        destination: Optional[str],
        headers: Optional[Mapping[str, str]],
    ) -> ExecutionResult:
        token = self._bearer_token()

        base_headers = {k.lower(): v for k, v in (headers or {}).items()}
        base_headers.update(self.build_headers(resource_type, destination, token))

        versions = self._versions(resource_type)
        wire_body, ctype = self._transformer.transform_request(
            resource_type,
            body,
            variant=request_variant(method, path),
            path=path,
            headers=base_headers,
            version=versions["content"],
        )
        base_headers["content-type"] = ctype

        descriptor = RequestDescriptor(
            method=method,
            resource_type=resource_type,
            path=path,
            headers=base_headers,
            body=serialize_body(wire_body),
            destination=destination,
        )

        if self._signing.applies(resource_type):
            if self._signer is None:
                raise SigningError(f"signing applies to {resource_type!r} but no signer is configured")
            descriptor = self._signer.sign(descriptor)

        url = self._url(resource_type, path)
        original = OriginalRequest(
            method=method,
            url=url,
            headers=dict(descriptor.headers),
            body=descriptor.body,
        )

        start = time.monotonic()
        response = await self._transport.send(TransportRequest(
            method=method,
            url=url,
            headers=dict(descriptor.headers),
            body=descriptor.body,
            timeout=self._timeout_seconds,
        ))
        duration_ms = (time.monotonic() - start) * 1000
        logger.info(
            "%s %s -> %d",
            method,
            url,
            response.status_code,
            extra={
                "operation": "execute",
                "duration_ms": round(duration_ms, 2),
                "context": {
                    "resource_type": resource_type,
                    "destination": destination or "",
                    "signed": "fspiop-signature" in descriptor.headers,
                    "dialect": self.dialect.value,
                },
            },
        )
        return self._classify(response, original, resource_type, path)

    def _classify(
        self,
        response: TransportResponse,
        original: OriginalRequest,
        resource_type: str,
        path: str,
    ) -> ExecutionResult:
        ctype = response.header("content-type")
        data = None
        if response.body:
            if not is_json_content_type(ctype):
                raise InvalidContentType(
                    ctype,
                    status_code=response.status_code,
                    body=response.body.decode("utf-8", errors="replace"),
                )
            try:
                data = parse_json_body(response.body)
            except (UnicodeDecodeError, ValueError):
                logger.warning(
                    "malformed JSON in %d response to %s %s",
                    response.status_code, original.method, original.url,
                )
                data = None

        if not 200 <= response.status_code < 300:
            raise PeerResponseError(
                response.status_code,
                body=data,
                headers=response.headers,
                context=f"{original.method} {original.url}",
            )

        data = self._transformer.transform_response(
            resource_type,
            data,
            variant=request_variant(original.method, path),
            path=path,
            headers=original.headers,
        )
        return ExecutionResult(
            status_code=response.status_code,
            headers=dict(response.headers),
            data=data,
            original_request=original,
        )
