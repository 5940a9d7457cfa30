"""
Detached JWS signatures over outbound requests.

The protected header binds the signature to the request line and the routing
headers:

    {"alg": "EdDSA" | "RS256",
     "kid": <key thumbprint>,
     "FSPIOP-URI": <path>,
     "FSPIOP-HTTP-Method": <METHOD>,
     "FSPIOP-Source": <fspiop-source>,
     "FSPIOP-Destination": <fspiop-destination, when present>,
     "FSPIOP-Date": <date>}

It is serialized as canonical JSON (sorted keys, compact). The signing input
is ``b64url(protected) + "." + b64url(body)`` and the result is attached as

    fspiop-signature: {"signature": "<b64url>", "protectedHeader": "<b64url>"}
    fspiop-key-id:    <RFC 7638 thumbprint of the public key>

Ed25519 and RSA PKCS#1 v1.5 are both deterministic, so the same request and
key always produce the same signature. The body bytes are never touched.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union, TYPE_CHECKING

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey

from interop.canonical import b64url_decode, b64url_encode, jcs_canonicalize
from interop.errors import SigningError
from interop.models import RequestDescriptor

if TYPE_CHECKING:
    from interop.config import InteropConfig

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "fspiop-signature"
KEY_ID_HEADER = "fspiop-key-id"

PrivateKey = Union[Ed25519PrivateKey, RSAPrivateKey]
PublicKey = Union[Ed25519PublicKey, RSAPublicKey]


@dataclass(frozen=True)
class SigningContext:
    """Whether a resource type gets signed.

    A per-resource override of ``True`` forces signing even when signing is
    globally disabled; ``False`` suppresses it even when enabled.
    """

    enabled: bool = False
    overrides: Mapping[str, bool] = field(default_factory=dict)

    def applies(self, resource_type: str) -> bool:
        override = self.overrides.get(resource_type)
        return (self.enabled and override is not False) or override is True


def load_private_key(pem: bytes, password: Optional[bytes] = None) -> PrivateKey:
    """Load an Ed25519 or RSA private key from PEM bytes."""
    if not pem:
        raise SigningError("signing key is empty")
    try:
        key = serialization.load_pem_private_key(pem, password=password)
    except (ValueError, TypeError) as e:
        raise SigningError(f"malformed signing key: {e}", cause=e) from e
    if not isinstance(key, (Ed25519PrivateKey, RSAPrivateKey)):
        raise SigningError(f"unsupported signing key type: {type(key).__name__}")
    return key


def public_jwk(public_key: PublicKey) -> Dict[str, str]:
    """Required members of the public JWK, as used for RFC 7638 thumbprints."""
    if isinstance(public_key, Ed25519PublicKey):
        raw = public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return {"crv": "Ed25519", "kty": "OKP", "x": b64url_encode(raw)}
    if isinstance(public_key, RSAPublicKey):
        numbers = public_key.public_numbers()
        return {
            "e": b64url_encode(_int_bytes(numbers.e)),
            "kty": "RSA",
            "n": b64url_encode(_int_bytes(numbers.n)),
        }
    raise SigningError(f"unsupported public key type: {type(public_key).__name__}")


def key_thumbprint(public_key: PublicKey) -> str:
    return b64url_encode(hashlib.sha256(jcs_canonicalize(public_jwk(public_key))).digest())


def _int_bytes(n: int) -> bytes:
    return n.to_bytes((n.bit_length() + 7) // 8 or 1, "big")


def _algorithm(key: Union[PrivateKey, PublicKey]) -> str:
    if isinstance(key, (Ed25519PrivateKey, Ed25519PublicKey)):
        return "EdDSA"
    return "RS256"


def protected_header(descriptor: RequestDescriptor, alg: str, kid: str) -> Dict[str, Any]:
    header: Dict[str, Any] = {
        "alg": alg,
        "kid": kid,
        "FSPIOP-URI": descriptor.path,
        "FSPIOP-HTTP-Method": descriptor.method.upper(),
        "FSPIOP-Source": descriptor.header("fspiop-source", ""),
        "FSPIOP-Date": descriptor.header("date", ""),
    }
    destination = descriptor.header("fspiop-destination")
    if destination:
        header["FSPIOP-Destination"] = destination
    return header


def signing_input(protected_b64: str, body: Optional[bytes]) -> bytes:
    return f"{protected_b64}.{b64url_encode(body or b'')}".encode("ascii")


class MessageSigner:
    """Signs ``RequestDescriptor``s with one private key.

    The key is parsed on first use, so a signer can be built from
    configuration even when signing turns out never to apply.
    """

    def __init__(self, key_pem: Optional[bytes], *, password: Optional[bytes] = None) -> None:
        self._key_pem = key_pem
        self._password = password
        self._key: Optional[PrivateKey] = None
        self._kid: Optional[str] = None

    @classmethod
    def from_config(cls, config: "InteropConfig") -> "MessageSigner":
        return cls(config.load_signing_key())

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "MessageSigner":
        try:
            return cls(Path(path).read_bytes())
        except OSError as e:
            raise SigningError(f"cannot read signing key {path}: {e}", cause=e) from e

    def _private_key(self) -> PrivateKey:
        if self._key is None:
            if not self._key_pem:
                raise SigningError("no signing key configured")
            self._key = load_private_key(self._key_pem, self._password)
            self._kid = key_thumbprint(self._key.public_key())
        return self._key

    @property
    def key_id(self) -> str:
        key = self._private_key()
        if self._kid is None:
            self._kid = key_thumbprint(key.public_key())
        return self._kid

    def public_key(self) -> PublicKey:
        return self._private_key().public_key()

    def sign(self, descriptor: RequestDescriptor) -> RequestDescriptor:
        key = self._private_key()
        kid = self.key_id
        header = protected_header(descriptor, _algorithm(key), kid)
        protected_b64 = b64url_encode(jcs_canonicalize(header))
        data = signing_input(protected_b64, descriptor.body)

        if isinstance(key, Ed25519PrivateKey):
            signature = key.sign(data)
        else:
            signature = key.sign(data, padding.PKCS1v15(), hashes.SHA256())

        value = json.dumps(
            {"signature": b64url_encode(signature), "protectedHeader": protected_b64},
            separators=(",", ":"),
        )
        logger.debug("signed %s %s with key %s", descriptor.method, descriptor.path, kid)
        return descriptor.with_headers({SIGNATURE_HEADER: value, KEY_ID_HEADER: kid})


def verify(descriptor: RequestDescriptor, public_key: PublicKey) -> bool:
    """Check the signature on a signed descriptor.

    Returns ``False`` when the signature or any bound header does not match;
    raises ``SigningError`` when the descriptor carries no usable signature.
    """
    raw = descriptor.header(SIGNATURE_HEADER)
    if not raw:
        raise SigningError("request is not signed")
    try:
        parsed = json.loads(raw)
        protected_b64 = parsed["protectedHeader"]
        signature = b64url_decode(parsed["signature"])
        header = json.loads(b64url_decode(protected_b64))
    except (ValueError, KeyError, TypeError) as e:
        raise SigningError(f"malformed {SIGNATURE_HEADER} header: {e}", cause=e) from e

    expected = protected_header(descriptor, _algorithm(public_key), key_thumbprint(public_key))
    if header != expected:
        return False

    data = signing_input(protected_b64, descriptor.body)
    try:
        if isinstance(public_key, Ed25519PublicKey):
            public_key.verify(signature, data)
        else:
            public_key.verify(signature, data, padding.PKCS1v15(), hashes.SHA256())
    except InvalidSignature:
        return False
    return True
