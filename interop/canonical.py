"""Canonical bytes and encoding helpers shared by signing and transformation.

Canonicalization rules (one repo-wide definition for byte-level determinism):
- keys sorted
- no insignificant whitespace
- UTF-8
- rejects floats (monetary values travel as strings in FSPIOP)
- coerces datetimes to RFC3339 strings

Wire serialization of message bodies is a different thing: bodies go out in
the caller's key order with compact separators, exactly as a JSON encoder in
any peer SDK would produce them. ``serialize_body`` is that encoder.
"""

from __future__ import annotations

import base64
import hashlib
import json
from datetime import date, datetime, timezone
from email.utils import format_datetime
from typing import Any, Dict, Optional


def _coerce_json_types(obj: Any) -> Any:
    """Coerce Python objects into strict JSON types.

    - datetime/date objects become ISO strings.
    - Floats are rejected to avoid non-JCS number edge cases.
    """
    if obj is None:
        return None
    if isinstance(obj, (str, bool, int)):
        return obj
    if isinstance(obj, float):
        raise ValueError("Floats are not allowed in canonical JSON. Use strings or integers.")
    if isinstance(obj, (datetime, date)):
        if isinstance(obj, datetime):
            if obj.tzinfo is None:
                obj = obj.replace(tzinfo=timezone.utc)
            return obj.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
        return obj.isoformat()
    if isinstance(obj, (list, tuple)):
        return [_coerce_json_types(x) for x in obj]
    if isinstance(obj, dict):
        out: Dict[str, Any] = {}
        for k, v in obj.items():
            out[str(k)] = _coerce_json_types(v)
        return out
    return str(obj)


def jcs_canonicalize(obj: Any) -> bytes:
    """Canonicalize JSON using a JCS-like subset (RFC 8785 compatible for objects without floats)."""
    clean = _coerce_json_types(obj)
    return json.dumps(clean, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def serialize_body(body: Any) -> Optional[bytes]:
    """Encode a message body for the wire.

    ``None`` means "no body". ``bytes`` and ``str`` are sent verbatim;
    anything else is JSON-encoded in insertion order with compact separators.
    """
    if body is None:
        return None
    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        return body.encode("utf-8")
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def parse_json_body(raw: Optional[bytes]) -> Any:
    """Decode a JSON body; empty bodies decode to ``None``."""
    if not raw:
        return None
    return json.loads(raw.decode("utf-8"))


def sha256_bytes(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()


def b64url_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode("ascii")


def b64url_decode(s: str) -> bytes:
    pad = "=" * ((4 - len(s) % 4) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("ascii"))


def basic_auth_value(key: str, secret: str) -> str:
    """``Basic base64(key:secret)`` as used by OAuth2 client credentials."""
    raw = f"{key}:{secret}".encode("utf-8")
    return "Basic " + base64.b64encode(raw).decode("ascii")


def http_date(dt: Optional[datetime] = None) -> str:
    """RFC 7231 IMF-fixdate, e.g. ``Sun, 06 Nov 1994 08:49:37 GMT``."""
    dt = dt or datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return format_datetime(dt.astimezone(timezone.utc), usegmt=True)


def fingerprint(secret: str) -> str:
    """Short, non-reversible tag for logging a token without leaking it."""
    if not secret:
        return "<none>"
    return sha256_bytes(secret.encode("utf-8"))[:8]
