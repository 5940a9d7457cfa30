import json
import os
import pathlib
import sys
from typing import Any, Callable, List, Optional, Union

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import interop`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from interop.transport import TransportRequest, TransportResponse  # noqa: E402


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: multi-cycle timing tests (skipped unless INTEROP_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_slow = _env_flag('INTEROP_RUN_SLOW')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set INTEROP_RUN_SLOW=1 to enable'))


Reply = Union[TransportResponse, BaseException]


class FakeTransport:
    """In-memory transport: records requests and plays back queued replies.

    With an empty queue every request gets ``202 Accepted`` without a body.
    A ``handler`` takes precedence over the queue.
    """

    def __init__(self) -> None:
        self.requests: List[TransportRequest] = []
        self.replies: List[Reply] = []
        self.handler: Optional[Callable[[TransportRequest], Reply]] = None
        self.closed = False

    def queue(self, status: int, body: bytes = b"", content_type: str = "") -> "FakeTransport":
        headers = {"Content-Type": content_type} if content_type else {}
        self.replies.append(TransportResponse(status_code=status, headers=headers, body=body))
        return self

    def queue_json(self, status: int, data: Any, content_type: str = "application/json") -> "FakeTransport":
        return self.queue(status, json.dumps(data).encode("utf-8"), content_type)

    def queue_error(self, error: BaseException) -> "FakeTransport":
        self.replies.append(error)
        return self

    @property
    def last(self) -> TransportRequest:
        return self.requests[-1]

    def last_json(self) -> Any:
        body = self.last.body
        return json.loads(body) if body else None

    async def send(self, request: TransportRequest) -> TransportResponse:
        self.requests.append(request)
        if self.handler is not None:
            reply = self.handler(request)
        elif self.replies:
            reply = self.replies.pop(0)
        else:
            reply = TransportResponse(status_code=202)
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture(scope="session")
def ed25519_pem() -> bytes:
    return Ed25519PrivateKey.generate().private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def rsa_pem() -> bytes:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
