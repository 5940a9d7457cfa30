"""Body and content-type adaptation between wire dialects.

``BodyTransformer`` is chosen once per executor. In the FSPIOP dialect it is
the identity on bodies; in the ISO 20022 dialect it looks the call up in the
mapping table of ``interop.integrations.iso20022`` and converts the body.
Either way it owns the content type, which carries the dialect tag even for
resource types whose bodies are sent unchanged:

    application/vnd.interoperability.<resource>+json;version=1.0
    application/vnd.interoperability.iso20022.<resource>+json;version=1.0
"""

from __future__ import annotations

import enum
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Mapping, Optional, Tuple

from interop.errors import RequestValidationError, UnsupportedResourceType
from interop.integrations.iso20022 import MessageContext, get_mapping

logger = logging.getLogger(__name__)

DEFAULT_VERSION = "1.0"


class WireDialect(enum.Enum):
    FSPIOP = "fspiop"
    ISO20022 = "iso20022"

    @property
    def content_type_tag(self) -> str:
        return "iso20022." if self is WireDialect.ISO20022 else ""

    @classmethod
    def parse(cls, value: Any) -> "WireDialect":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Unknown wire dialect: {value!r}") from None


def content_type(resource_type: str, dialect: WireDialect, version: str = DEFAULT_VERSION) -> str:
    return (
        f"application/vnd.interoperability.{dialect.content_type_tag}"
        f"{resource_type}+json;version={version}"
    )


def request_variant(method: str, path: str) -> str:
    """Which mapping a request uses: ``post``, ``put``, ``put_error``, ``patch`` or ``get``."""
    method = method.lower()
    if method == "put" and path.rstrip("/").endswith("/error"):
        return "put_error"
    return method


def _iso_timestamp(date_header: Optional[str]) -> str:
    dt = None
    if date_header:
        try:
            dt = parsedate_to_datetime(date_header)
        except (TypeError, ValueError):
            dt = None
    if dt is None:
        dt = datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


def _context(path: str, headers: Optional[Mapping[str, str]]) -> MessageContext:
    lowered: Dict[str, str] = {k.lower(): v for k, v in (headers or {}).items()}
    return MessageContext(
        source=lowered.get("fspiop-source", ""),
        destination=lowered.get("fspiop-destination", ""),
        created_at=_iso_timestamp(lowered.get("date")),
        path=path,
    )


class BodyTransformer:
    """Converts bodies and content types for one wire dialect."""

    def __init__(self, dialect: WireDialect = WireDialect.FSPIOP, *, strict: bool = False) -> None:
        self.dialect = dialect
        self.strict = strict

    def content_type(self, resource_type: str, version: str = DEFAULT_VERSION) -> str:
        return content_type(resource_type, self.dialect, version)

    def transform_request(
        self,
        resource_type: str,
        body: Any,
        *,
        variant: str,
        path: str = "",
        headers: Optional[Mapping[str, str]] = None,
        version: str = DEFAULT_VERSION,
    ) -> Tuple[Any, str]:
        """Return the body to send and its content type.

        ``headers`` supplies the routing facts (source, destination, date)
        that ISO 20022 messages carry inside the body.
        """
        ctype = self.content_type(resource_type, version)
        if self.dialect is WireDialect.FSPIOP or body is None:
            return body, ctype

        mapping = get_mapping(resource_type, variant)
        if mapping is None:
            if self.strict:
                raise UnsupportedResourceType(resource_type, variant)
            logger.debug("no ISO 20022 mapping for %s:%s; sending body unchanged", resource_type, variant)
            return body, ctype
        if not isinstance(body, dict):
            raise RequestValidationError(
                f"{resource_type} body must be a JSON object to convert, got {type(body).__name__}"
            )

        return mapping.to_alternate(body, _context(path, headers)), ctype

    def transform_response(
        self,
        resource_type: str,
        body: Any,
        *,
        variant: str = "put",
        path: str = "",
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        """Bring an ISO 20022 body back to FSPIOP.

        Only the fields in the mapping's ``lossless`` set are guaranteed to be
        restored. A body without any of the message's top-level elements is
        not ISO 20022 and passes through unchanged, as do unmapped resources
        and non-object bodies, in strict mode too.
        """
        if self.dialect is WireDialect.FSPIOP or not isinstance(body, dict):
            return body
        mapping = get_mapping(resource_type, variant)
        if mapping is None:
            return body
        if not mapping.carries(body):
            logger.debug("%s:%s reply is not an ISO 20022 message; leaving it unchanged", resource_type, variant)
            return body
        return mapping.to_native(body, _context(path, headers))
