"""HTTP transport seam.

The executor and the token manager only ever see ``Transport.send``; the
production implementation is ``AiohttpTransport``, tests plug in a fake.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol, TYPE_CHECKING

import aiohttp

from interop.errors import TransportError

if TYPE_CHECKING:
    from interop.config import InteropConfig

logger = logging.getLogger(__name__)


@dataclass
class TransportRequest:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    timeout: Optional[float] = None


@dataclass
class TransportResponse:
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup."""
        lname = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lname:
                return value
        return default


class Transport(Protocol):
    async def send(self, request: TransportRequest) -> TransportResponse:
        ...

    async def close(self) -> None:
        ...


def build_ssl_context(
    ca_path: str = "",
    cert_path: str = "",
    key_path: str = "",
) -> ssl.SSLContext:
    """Client-side TLS context; presents a client certificate when one is given."""
    context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH, cafile=ca_path or None)
    if cert_path:
        context.load_cert_chain(certfile=cert_path, keyfile=key_path or None)
    return context


class AiohttpTransport:
    """``Transport`` backed by a lazily created ``aiohttp.ClientSession``.

    Usable as an async context manager; ``close`` is idempotent.
    """

    def __init__(
        self,
        *,
        ssl_context: Optional[ssl.SSLContext] = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._ssl_context = ssl_context
        self._timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    @classmethod
    def from_config(cls, config: "InteropConfig") -> "AiohttpTransport":
        ssl_context = None
        if config.tls.mutual_tls.get():
            ssl_context = build_ssl_context(
                config.tls.ca_path.get(),
                config.tls.cert_path.get(),
                config.tls.key_path.get(),
            )
        return cls(
            ssl_context=ssl_context,
            timeout_seconds=config.peer.request_timeout_seconds.get(),
        )

    async def __aenter__(self) -> "AiohttpTransport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout_seconds),
            )
        return self._session

    async def send(self, request: TransportRequest) -> TransportResponse:
        session = self._get_session()
        options: Dict[str, object] = {
            "ssl": self._ssl_context if self._ssl_context is not None else True,
        }
        if request.timeout is not None:
            options["timeout"] = aiohttp.ClientTimeout(total=request.timeout)
        try:
            async with session.request(
                request.method,
                request.url,
                headers=request.headers,
                data=request.body,
                **options,
            ) as resp:
                body = await resp.read()
                return TransportResponse(
                    status_code=resp.status,
                    headers={k: v for k, v in resp.headers.items()},
                    body=body,
                )
        except aiohttp.ClientError as e:
            logger.warning("transport failure %s %s: %s", request.method, request.url, e)
            raise TransportError(str(e) or e.__class__.__name__, method=request.method, url=request.url, cause=e) from e
        except asyncio.TimeoutError as e:
            raise TransportError("request timed out", method=request.method, url=request.url, cause=e) from e

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
