"""
Token manager tests: static tokens, client-credentials acquisition, refresh
scheduling and failure handling.

Timing assertions use short intervals (tenths of a second) so the suite stays
fast; tolerances are generous to absorb event-loop jitter.
"""

import asyncio
import base64
import json
import math
import time

import pytest

from interop.auth import (
    CredentialSource,
    LifecycleState,
    TokenManager,
    effective_refresh_seconds,
    token_lifetime_seconds,
)
from interop.errors import CredentialRefreshError, CredentialUnavailable, NotStarted, TransportError
from interop.events import CredentialRefreshed, CredentialRefreshFailed, EventBus
from interop.transport import TransportResponse


TOKEN_ENDPOINT = "https://iam.example.org/oauth2/token"


def token_reply(token: str, expires_in=None, status: int = 200) -> TransportResponse:
    body = {"access_token": token, "token_type": "Bearer"}
    if expires_in is not None:
        body["expires_in"] = expires_in
    return TransportResponse(
        status_code=status,
        headers={"Content-Type": "application/json"},
        body=json.dumps(body).encode("utf-8"),
    )


def dynamic_manager(transport, **kwargs) -> TokenManager:
    options = dict(
        transport=transport,
        token_endpoint=TOKEN_ENDPOINT,
        client_key="dfsp-a",
        client_secret="s3cr3t",
    )
    options.update(kwargs)
    return TokenManager(**options)


def collect(bus: EventBus, event_type):
    seen = []
    bus.add_handler(event_type, seen.append)
    return seen


class TestTokenLifetime:
    """expires_in interpretation."""

    @pytest.mark.parametrize("expires_in,expected", [
        (3600, 3600.0),
        (1.5, 1.5),
        (None, math.inf),
        ("3600", math.inf),
        ("1", math.inf),
        ("soon", math.inf),
        (0, math.inf),
        (-30, math.inf),
        (True, math.inf),
        (float("nan"), math.inf),
        ({"seconds": 10}, math.inf),
    ])
    def test_lifetime(self, expires_in, expected):
        assert token_lifetime_seconds(expires_in) == expected

    def test_effective_interval_is_minimum(self):
        assert effective_refresh_seconds(60, 30) == 30
        assert effective_refresh_seconds(60, 3600) == 60
        assert effective_refresh_seconds(60, math.inf) == 60
        assert math.isinf(effective_refresh_seconds(math.inf, math.inf))


class TestStaticToken:
    """A configured static token is used as-is."""

    def test_static_token_served_without_network(self, fake_transport):
        async def scenario():
            manager = TokenManager(transport=fake_transport, static_token="fixed-token")
            await manager.start()
            token = manager.get_token()
            pending = manager.schedule.pending
            await manager.stop()
            return manager, token, pending

        manager, token, pending = asyncio.run(scenario())
        assert token == "fixed-token"
        assert fake_transport.requests == []
        assert pending is False
        assert manager.credential.source is CredentialSource.STATIC
        assert math.isinf(manager.credential.expires_at)

    def test_static_token_needs_no_transport(self):
        async def scenario():
            manager = TokenManager(static_token="fixed-token")
            await manager.start()
            return manager.get_token()

        assert asyncio.run(scenario()) == "fixed-token"

    def test_dynamic_mode_requires_endpoint(self, fake_transport):
        with pytest.raises(ValueError):
            TokenManager(transport=fake_transport)


class TestAcquisition:
    """First acquisition happens inside start()."""

    def test_single_basic_auth_request_before_start_resolves(self, fake_transport):
        fake_transport.replies.append(token_reply("tok-1", 3600))

        async def scenario():
            manager = dynamic_manager(fake_transport)
            await manager.start()
            count = len(fake_transport.requests)
            token = manager.get_token()
            await manager.stop()
            return count, token

        count, token = asyncio.run(scenario())
        assert count == 1
        assert token == "tok-1"

        request = fake_transport.requests[0]
        assert request.method == "POST"
        assert request.url == TOKEN_ENDPOINT
        expected = "Basic " + base64.b64encode(b"dfsp-a:s3cr3t").decode("ascii")
        assert request.headers["authorization"] == expected
        assert request.headers["content-type"] == "application/x-www-form-urlencoded"
        assert request.body == b"grant_type=client_credentials"

    def test_get_token_before_start(self, fake_transport):
        manager = dynamic_manager(fake_transport)
        with pytest.raises(NotStarted):
            manager.get_token()
        assert manager.state is LifecycleState.CREATED

    def test_failed_first_acquisition_does_not_raise(self, fake_transport):
        fake_transport.queue_json(500, {"error": "server_error"})
        bus = EventBus()
        failures = collect(bus, CredentialRefreshFailed)

        async def scenario():
            manager = dynamic_manager(fake_transport, events=bus, refresh_retry_seconds=30)
            await manager.start()
            state = manager.state
            pending = manager.schedule.pending
            with pytest.raises(CredentialUnavailable):
                manager.get_token()
            await manager.stop()
            return state, pending

        state, pending = asyncio.run(scenario())
        assert state is LifecycleState.DEGRADED
        assert pending is True
        assert len(failures) == 1
        assert failures[0].serving_previous is False
        assert failures[0].status_code == 500
        assert failures[0].retry_in_seconds == 30

    def test_response_without_access_token_is_a_failure(self, fake_transport):
        fake_transport.queue_json(200, {"token_type": "Bearer"})
        bus = EventBus()
        failures = collect(bus, CredentialRefreshFailed)

        async def scenario():
            manager = dynamic_manager(fake_transport, events=bus)
            await manager.start()
            await manager.stop()

        asyncio.run(scenario())
        assert len(failures) == 1
        assert isinstance(failures[0].cause, CredentialRefreshError)

    def test_transport_error_is_a_failure(self, fake_transport):
        fake_transport.queue_error(TransportError("connection refused", method="POST", url=TOKEN_ENDPOINT))
        bus = EventBus()
        failures = collect(bus, CredentialRefreshFailed)

        async def scenario():
            manager = dynamic_manager(fake_transport, events=bus)
            await manager.start()
            await manager.stop()

        asyncio.run(scenario())
        assert len(failures) == 1
        assert isinstance(failures[0].cause.cause, TransportError)

    def test_success_publishes_refreshed_event(self, fake_transport):
        fake_transport.replies.append(token_reply("tok-1", 120))
        bus = EventBus()
        refreshed = collect(bus, CredentialRefreshed)

        async def scenario():
            manager = dynamic_manager(fake_transport, events=bus, refresh_seconds=60)
            await manager.start()
            await manager.stop()

        asyncio.run(scenario())
        assert len(refreshed) == 1
        assert refreshed[0].lifetime_seconds == 120
        assert refreshed[0].next_refresh_seconds == 60
        assert "tok-1" not in json.dumps(refreshed[0].to_dict(), default=str)


class TestRefreshSchedule:
    """Refresh runs every min(refresh_seconds, expires_in)."""

    def _timed_handler(self, times, expires_in):
        counter = {"n": 0}

        def handler(request):
            times.append(time.monotonic())
            counter["n"] += 1
            return token_reply(f"tok-{counter['n']}", expires_in)

        return handler

    def _run(self, fake_transport, wait, **kwargs):
        async def scenario():
            manager = dynamic_manager(fake_transport, **kwargs)
            await manager.start()
            await asyncio.sleep(wait)
            token = manager.get_token()
            await manager.stop()
            return token

        return asyncio.run(scenario())

    def test_expires_in_shorter_than_refresh(self, fake_transport):
        times = []
        fake_transport.handler = self._timed_handler(times, expires_in=0.2)
        self._run(fake_transport, 0.3, refresh_seconds=5)

        assert len(times) >= 2
        gap = times[1] - times[0]
        assert 0.15 <= gap < 0.2 + 0.5

    def test_refresh_shorter_than_expires_in(self, fake_transport):
        times = []
        fake_transport.handler = self._timed_handler(times, expires_in=3600)
        self._run(fake_transport, 0.3, refresh_seconds=0.2)

        assert len(times) >= 2
        gap = times[1] - times[0]
        assert 0.15 <= gap < 0.2 + 0.5

    def test_string_expires_in_is_ignored(self, fake_transport):
        times = []
        fake_transport.handler = self._timed_handler(times, expires_in="0.05")
        self._run(fake_transport, 0.15, refresh_seconds=0.3)

        # "0.05" is not a number, so the next refresh is at refresh_seconds.
        assert len(times) == 1

    def test_new_token_replaces_previous(self, fake_transport):
        times = []
        fake_transport.handler = self._timed_handler(times, expires_in=0.1)
        token = self._run(fake_transport, 0.15, refresh_seconds=5)
        assert token == "tok-2"

    def test_infinite_interval_schedules_nothing(self, fake_transport):
        fake_transport.replies.append(token_reply("tok-1"))

        async def scenario():
            manager = dynamic_manager(fake_transport, refresh_seconds=math.inf)
            await manager.start()
            pending = manager.schedule.pending
            await manager.stop()
            return pending

        assert asyncio.run(scenario()) is False
        assert len(fake_transport.requests) == 1

    @pytest.mark.slow
    def test_refresh_keeps_cycling(self, fake_transport):
        times = []
        fake_transport.handler = self._timed_handler(times, expires_in=0.1)
        self._run(fake_transport, 1.05, refresh_seconds=5)
        assert len(times) >= 8


class TestRefreshFailure:
    """Failed refreshes are reported and the previous token stays in service."""

    def test_401_publishes_once_and_keeps_previous_token(self, fake_transport):
        replies = [token_reply("tok-1", 0.1), TransportResponse(status_code=401, body=b"")]

        def handler(request):
            return replies.pop(0) if replies else token_reply("late", 3600)

        fake_transport.handler = handler
        bus = EventBus()
        failures = collect(bus, CredentialRefreshFailed)

        async def scenario():
            manager = dynamic_manager(fake_transport, events=bus, refresh_seconds=60, refresh_retry_seconds=30)
            await manager.start()
            await asyncio.sleep(0.3)
            token = manager.get_token()
            state = manager.state
            await manager.stop()
            return token, state

        token, state = asyncio.run(scenario())
        assert len(failures) == 1
        assert failures[0].status_code == 401
        assert failures[0].serving_previous is True
        assert token == "tok-1"
        assert state is LifecycleState.DEGRADED
        assert len(fake_transport.requests) == 2

    def test_retry_after_failure_recovers(self, fake_transport):
        replies = [
            token_reply("tok-1", 0.1),
            TransportResponse(status_code=503),
            token_reply("tok-2", 3600),
        ]
        fake_transport.handler = lambda request: replies.pop(0)
        bus = EventBus()
        failures = collect(bus, CredentialRefreshFailed)

        async def scenario():
            manager = dynamic_manager(fake_transport, events=bus, refresh_seconds=60, refresh_retry_seconds=0.1)
            await manager.start()
            await asyncio.sleep(0.4)
            token = manager.get_token()
            state = manager.state
            await manager.stop()
            return token, state

        token, state = asyncio.run(scenario())
        assert len(failures) == 1
        assert token == "tok-2"
        assert state is LifecycleState.RUNNING

    def test_reads_during_refresh_return_previous_token(self):
        gate = {}

        class GatedTransport:
            def __init__(self):
                self.calls = 0

            async def send(self, request):
                self.calls += 1
                if self.calls == 1:
                    return token_reply("tok-1", 0.05)
                await gate["event"].wait()
                return token_reply("tok-2", 3600)

            async def close(self):
                pass

        async def scenario():
            gate["event"] = asyncio.Event()
            transport = GatedTransport()
            manager = dynamic_manager(transport, refresh_seconds=60)
            await manager.start()
            await asyncio.sleep(0.15)
            during = manager.get_token()
            in_flight = transport.calls
            gate["event"].set()
            await asyncio.sleep(0.05)
            after = manager.get_token()
            await manager.stop()
            return during, in_flight, after

        during, in_flight, after = asyncio.run(scenario())
        assert in_flight == 2
        assert during == "tok-1"
        assert after == "tok-2"

    def test_unexpected_transport_exception_keeps_cycling(self, fake_transport):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            if calls["n"] == 2:
                return ConnectionResetError("connection reset by peer")
            return token_reply(f"tok-{calls['n']}", 3600)

        fake_transport.handler = handler
        bus = EventBus()
        failures = collect(bus, CredentialRefreshFailed)

        async def scenario():
            manager = dynamic_manager(fake_transport, events=bus, refresh_seconds=0.05, refresh_retry_seconds=0.05)
            await manager.start()
            await asyncio.sleep(0.4)
            state = manager.state
            await manager.stop()
            return state

        state = asyncio.run(scenario())
        assert calls["n"] > 3
        assert len(failures) == 1
        assert isinstance(failures[0].cause, CredentialRefreshError)
        assert isinstance(failures[0].cause.cause, ConnectionResetError)
        assert state is LifecycleState.RUNNING

    def test_missing_transport_is_a_refresh_failure(self, fake_transport):
        bus = EventBus()
        failures = collect(bus, CredentialRefreshFailed)

        async def scenario():
            manager = dynamic_manager(fake_transport, events=bus, refresh_retry_seconds=30)
            manager._transport = None
            await manager.start()
            state = manager.state
            await manager.stop()
            return state

        assert asyncio.run(scenario()) is LifecycleState.DEGRADED
        assert len(failures) == 1
        assert "no transport" in str(failures[0].cause)
        assert fake_transport.requests == []


class TestStop:
    """stop() cancels the pending refresh and is idempotent."""

    def test_stop_twice(self, fake_transport):
        fake_transport.replies.append(token_reply("tok-1", 3600))

        async def scenario():
            manager = dynamic_manager(fake_transport, refresh_seconds=0.1)
            await manager.start()
            await manager.stop()
            await manager.stop()
            await asyncio.sleep(0.2)
            return manager

        manager = asyncio.run(scenario())
        assert manager.state is LifecycleState.STOPPED
        assert manager.schedule.pending is False
        assert len(fake_transport.requests) == 1

    def test_stop_before_start(self, fake_transport):
        async def scenario():
            manager = dynamic_manager(fake_transport)
            await manager.stop()
            return manager.state

        assert asyncio.run(scenario()) is LifecycleState.STOPPED


class SlowTransport:
    """Token endpoint that takes ``delay`` seconds and records overlap."""

    def __init__(self, delay: float):
        self.delay = delay
        self.calls = 0
        self.active = 0
        self.peak = 0

    async def send(self, request):
        self.calls += 1
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        return token_reply(f"tok-{self.calls}", 3600)

    async def close(self):
        pass


class TestSingleAcquisition:
    """Only one token request is ever outstanding."""

    def test_refresh_joins_scheduled_acquisition(self):
        transport = SlowTransport(0.1)

        async def scenario():
            manager = dynamic_manager(transport, refresh_seconds=0.05)
            await manager.start()
            # scheduled acquisition runs from ~0.05s to ~0.15s after start
            await asyncio.sleep(0.1)
            changed = await manager.refresh()
            calls = transport.calls
            await manager.stop()
            return changed, calls

        changed, calls = asyncio.run(scenario())
        assert changed is True
        assert calls == 2
        assert transport.peak == 1

    def test_concurrent_refreshes_share_one_request(self):
        transport = SlowTransport(0.05)

        async def scenario():
            manager = dynamic_manager(transport, refresh_seconds=60)
            await manager.start()
            results = await asyncio.gather(manager.refresh(), manager.refresh())
            await manager.stop()
            return results

        assert asyncio.run(scenario()) == [True, True]
        assert transport.calls == 2
        assert transport.peak == 1

    def test_concurrent_start_acquires_once(self):
        transport = SlowTransport(0.05)

        async def scenario():
            manager = dynamic_manager(transport, refresh_seconds=60)
            await asyncio.gather(manager.start(), manager.start())
            state = manager.state
            token = manager.get_token()
            pending = manager.schedule.pending
            await manager.stop()
            return state, token, pending

        state, token, pending = asyncio.run(scenario())
        assert transport.calls == 1
        assert state is LifecycleState.RUNNING
        assert token == "tok-1"
        assert pending is True

    def test_stop_during_start(self):
        transport = SlowTransport(0.2)

        async def scenario():
            manager = dynamic_manager(transport, refresh_seconds=60)
            starting = asyncio.ensure_future(manager.start())
            await asyncio.sleep(0.05)
            await manager.stop()
            await starting
            return manager

        manager = asyncio.run(scenario())
        assert manager.state is LifecycleState.STOPPED
        assert manager.credential is None
        assert manager.schedule.pending is False


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestExpiry:
    """fail_on_expired decides whether a token outlives its expires_in."""

    def _after_expiry(self, fake_transport, expires_in, **kwargs):
        clock = FakeClock()
        fake_transport.replies.append(token_reply("tok-1", expires_in))

        async def scenario():
            manager = dynamic_manager(fake_transport, clock=clock, refresh_seconds=60, **kwargs)
            await manager.start()
            before = manager.get_token()
            clock.now += 30
            try:
                return before, manager.get_token()
            finally:
                await manager.stop()

        return asyncio.run(scenario())

    def test_expired_token_served_by_default(self, fake_transport):
        assert self._after_expiry(fake_transport, 30) == ("tok-1", "tok-1")

    def test_expired_token_refused_when_enabled(self, fake_transport):
        with pytest.raises(CredentialUnavailable):
            self._after_expiry(fake_transport, 30, fail_on_expired=True)

    def test_token_served_until_expiry(self, fake_transport):
        assert self._after_expiry(fake_transport, 31, fail_on_expired=True) == ("tok-1", "tok-1")

    def test_unbounded_token_never_expires(self, fake_transport):
        assert self._after_expiry(fake_transport, None, fail_on_expired=True) == ("tok-1", "tok-1")

    def test_static_token_never_expires(self):
        clock = FakeClock()

        async def scenario():
            manager = TokenManager(static_token="fixed", fail_on_expired=True, clock=clock)
            await manager.start()
            clock.now += 10 ** 9
            return manager.get_token()

        assert asyncio.run(scenario()) == "fixed"
