"""Values passed between the stages of an outbound call."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class RequestDescriptor:
    """One outbound request as it moves through the pipeline.

    Header names are kept lower-case. Stages never mutate a descriptor; they
    return an updated copy.
    """

    method: str
    resource_type: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    destination: Optional[str] = None

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name.lower(), default)

    def with_headers(self, extra: Mapping[str, str]) -> "RequestDescriptor":
        merged = dict(self.headers)
        merged.update({k.lower(): v for k, v in extra.items()})
        return dataclasses.replace(self, headers=merged)

    def with_body(self, body: Optional[bytes]) -> "RequestDescriptor":
        return dataclasses.replace(self, body=body)


@dataclass(frozen=True)
class OriginalRequest:
    """What was actually put on the wire, kept alongside the result."""

    method: str
    url: str
    headers: Dict[str, str]
    body: Optional[bytes]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "url": self.url,
            "headers": dict(self.headers),
            "body": self.body.decode("utf-8", errors="replace") if self.body is not None else None,
        }


@dataclass(frozen=True)
class ExecutionResult:
    status_code: int
    headers: Dict[str, str]
    data: Any
    original_request: OriginalRequest
