"""
Bearer token lifecycle.

``TokenManager`` owns one ``Credential`` cell and at most one refresh task.
The cell is only ever replaced wholesale, so a caller reading the token while
a refresh is in flight keeps getting the previous token until the new one has
been installed.

Two modes:

- Static: a fixed token from configuration. ``start()`` installs it with an
  infinite lifetime; nothing is fetched and nothing is scheduled.
- Dynamic: OAuth2 client credentials against ``token_endpoint``. The first
  acquisition happens inside ``start()``; after that a single task sleeps for
  ``min(refresh_seconds, expires_in)`` and tries again. A failed attempt is
  published as ``CredentialRefreshFailed`` on the event bus, the previous
  token stays in service, and the next attempt is scheduled after
  ``refresh_retry_seconds``.

At most one acquisition is outstanding at a time: ``start()``, ``refresh()``
and the refresh task all join the one in flight. With ``fail_on_expired``
set, ``get_token()`` stops serving a token once its ``expires_in`` has
elapsed, even while refreshes keep failing.

Usage:

    bus = EventBus()
    manager = TokenManager.from_config(config, transport, events=bus)
    await manager.start()
    token = manager.get_token()
    ...
    await manager.stop()
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, TYPE_CHECKING
from urllib.parse import urlencode

from interop.canonical import basic_auth_value, fingerprint
from interop.errors import (
    CredentialRefreshError,
    CredentialUnavailable,
    InteropError,
    NotStarted,
)
from interop.events import CredentialRefreshed, CredentialRefreshFailed, EventBus
from interop.transport import Transport, TransportRequest

if TYPE_CHECKING:
    from interop.config import InteropConfig

logger = logging.getLogger(__name__)

INFINITE = math.inf


class CredentialSource(enum.Enum):
    STATIC = "static"
    DYNAMIC = "dynamic"


class LifecycleState(enum.Enum):
    """Token manager lifecycle states."""

    CREATED = "created"
    STARTING = "starting"
    RUNNING = "running"
    DEGRADED = "degraded"  # last attempt failed
    STOPPED = "stopped"


@dataclass(frozen=True)
class Credential:
    """A bearer token and when it stops being valid (monotonic clock)."""

    token: str
    expires_at: float
    source: CredentialSource


def token_lifetime_seconds(expires_in: Any) -> float:
    """Lifetime announced by the token endpoint.

    Only a real positive number counts. Anything else (absent, ``bool``,
    strings including numeric-looking ones, zero, negative, NaN) means the
    token does not expire on its own.
    """
    if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)):
        return INFINITE
    if math.isnan(expires_in) or expires_in <= 0:
        return INFINITE
    return float(expires_in)


def effective_refresh_seconds(refresh_seconds: float, lifetime_seconds: float) -> float:
    return min(refresh_seconds, lifetime_seconds)


@dataclass
class RefreshSchedule:
    """Delays used between attempts, plus the single outstanding task."""

    refresh_seconds: float
    retry_seconds: float
    task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self.task is not None and not self.task.done()

    def cancel(self) -> None:
        if self.task is not None and self.task is not asyncio.current_task():
            self.task.cancel()
        self.task = None


class TokenManager:
    """Acquires, serves and refreshes the bearer token for outbound calls."""

    def __init__(
        self,
        *,
        transport: Optional[Transport] = None,
        token_endpoint: str = "",
        client_key: str = "",
        client_secret: str = "",
        static_token: str = "",
        refresh_seconds: float = 60.0,
        refresh_retry_seconds: float = 10.0,
        fail_on_expired: bool = False,
        events: Optional[EventBus] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not static_token:
            if not token_endpoint:
                raise ValueError("token_endpoint is required without a static token")
            if transport is None:
                raise ValueError("transport is required without a static token")
        if refresh_seconds <= 0 or refresh_retry_seconds <= 0:
            raise ValueError("refresh intervals must be positive")

        self._transport = transport
        self._token_endpoint = token_endpoint
        self._client_key = client_key
        self._client_secret = client_secret
        self._static_token = static_token
        self._fail_on_expired = fail_on_expired
        self._events = events or EventBus()
        self._clock = clock

        self._schedule = RefreshSchedule(
            refresh_seconds=float(refresh_seconds),
            retry_seconds=float(refresh_retry_seconds),
        )
        self._credential: Optional[Credential] = None
        self._in_flight: Optional[asyncio.Task] = None
        self._state = LifecycleState.CREATED

    @classmethod
    def from_config(
        cls,
        config: "InteropConfig",
        transport: Optional[Transport] = None,
        *,
        events: Optional[EventBus] = None,
    ) -> "TokenManager":
        auth = config.auth
        return cls(
            transport=transport,
            token_endpoint=auth.token_endpoint.get(),
            client_key=auth.client_key.get(),
            client_secret=auth.client_secret.get(),
            static_token=auth.static_token.get(),
            refresh_seconds=auth.refresh_seconds.get(),
            refresh_retry_seconds=auth.refresh_retry_seconds.get(),
            fail_on_expired=auth.fail_on_expired.get(),
            events=events,
        )

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def schedule(self) -> RefreshSchedule:
        return self._schedule

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Install the static token, or run the first acquisition.

        Resolves once the first attempt has settled. A failed first attempt
        does not raise: it is published, and calls fail with
        ``CredentialUnavailable`` until a retry succeeds. Concurrent callers
        share the same first attempt.
        """
        if self._state in (LifecycleState.RUNNING, LifecycleState.DEGRADED):
            return
        if self._state is LifecycleState.STARTING and self._in_flight is not None:
            await self._attempt()
            return
        self._state = LifecycleState.STARTING

        if self._static_token:
            self._credential = Credential(
                token=self._static_token,
                expires_at=INFINITE,
                source=CredentialSource.STATIC,
            )
            self._state = LifecycleState.RUNNING
            logger.info("using static bearer token %s", fingerprint(self._static_token))
            return

        delay = await self._attempt()
        if self._state is not LifecycleState.STOPPED:
            self._arm(delay)

    async def stop(self) -> None:
        """Cancel the pending refresh and any acquisition in flight.

        Safe to call more than once. Never raises on behalf of the refresh
        task.
        """
        was_stopped = self._state is LifecycleState.STOPPED
        self._state = LifecycleState.STOPPED
        task = self._schedule.task
        self._schedule.cancel()
        in_flight, self._in_flight = self._in_flight, None
        if in_flight is not None:
            in_flight.cancel()
        for pending in (task, in_flight):
            if pending is None or pending is asyncio.current_task():
                continue
            try:
                await pending
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("token refresh task ended with an error")
        if not was_stopped:
            logger.info("token manager stopped")

    def get_token(self) -> str:
        if self._state in (LifecycleState.CREATED, LifecycleState.STARTING):
            raise NotStarted("token manager has not been started")
        credential = self._credential
        if credential is None:
            raise CredentialUnavailable("no bearer token has been obtained")
        if self._fail_on_expired and self._clock() >= credential.expires_at:
            raise CredentialUnavailable(
                f"bearer token {fingerprint(credential.token)} has expired"
            )
        return credential.token

    async def refresh(self) -> bool:
        """Run one acquisition now and restart the schedule from it.

        An acquisition already in flight (scheduled or from another caller)
        is joined rather than duplicated. Returns whether a new token was
        installed.
        """
        if self._static_token:
            return True
        before = self._credential
        delay = await self._attempt()
        if self._state is not LifecycleState.STOPPED:
            self._arm(delay)
        return self._credential is not before

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _arm(self, delay: float) -> None:
        self._schedule.cancel()
        if math.isinf(delay):
            logger.debug("token does not expire; no refresh scheduled")
            return
        self._schedule.task = asyncio.get_running_loop().create_task(
            self._refresh_loop(delay)
        )

    async def _refresh_loop(self, delay: float) -> None:
        while not math.isinf(delay):
            await asyncio.sleep(delay)
            delay = await self._attempt()
        logger.debug("token does not expire; refresh loop finished")

    async def _attempt(self) -> float:
        """Join the acquisition in flight, or start one.

        Returns the delay until the next attempt, or ``INFINITE`` when the
        acquisition was cancelled by ``stop()``.
        """
        if self._in_flight is None or self._in_flight.done():
            self._in_flight = asyncio.get_running_loop().create_task(self._attempt_once())
        in_flight = self._in_flight
        try:
            return await asyncio.shield(in_flight)
        except asyncio.CancelledError:
            if in_flight.cancelled() and self._state is LifecycleState.STOPPED:
                return INFINITE
            raise

    async def _attempt_once(self) -> float:
        try:
            token, lifetime = await self._acquire()
        except CredentialRefreshError as e:
            retry = self._schedule.retry_seconds
            serving_previous = self._credential is not None
            self._state = LifecycleState.DEGRADED
            logger.warning(
                "token refresh failed (%s); %s; retrying in %.3gs",
                e,
                "serving previous token" if serving_previous else "no token available",
                retry,
            )
            self._events.publish(CredentialRefreshFailed(
                cause=e,
                status_code=e.status_code,
                serving_previous=serving_previous,
                retry_in_seconds=retry,
            ))
            return retry

        interval = effective_refresh_seconds(self._schedule.refresh_seconds, lifetime)
        self._credential = Credential(
            token=token,
            expires_at=self._clock() + lifetime,
            source=CredentialSource.DYNAMIC,
        )
        self._state = LifecycleState.RUNNING
        logger.info(
            "installed bearer token %s (lifetime %s, next refresh in %s)",
            fingerprint(token),
            "unbounded" if math.isinf(lifetime) else f"{lifetime:g}s",
            "never" if math.isinf(interval) else f"{interval:g}s",
        )
        self._events.publish(CredentialRefreshed(
            token_fingerprint=fingerprint(token),
            lifetime_seconds=lifetime,
            next_refresh_seconds=interval,
        ))
        return interval

    async def _acquire(self) -> Tuple[str, float]:
        request = TransportRequest(
            method="POST",
            url=self._token_endpoint,
            headers={
                "authorization": basic_auth_value(self._client_key, self._client_secret),
                "content-type": "application/x-www-form-urlencoded",
                "accept": "application/json",
            },
            body=urlencode({"grant_type": "client_credentials"}).encode("ascii"),
        )
        transport = self._transport
        if transport is None:
            raise CredentialRefreshError("no transport configured for the token endpoint")
        try:
            response = await transport.send(request)
        except InteropError as e:
            raise CredentialRefreshError(f"token endpoint unreachable: {e}", cause=e) from e
        except Exception as e:
            raise CredentialRefreshError(
                f"token endpoint unreachable: {type(e).__name__}: {e}", cause=e
            ) from e

        if not 200 <= response.status_code < 300:
            raise CredentialRefreshError(
                f"token endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            payload = json.loads(response.body.decode("utf-8")) if response.body else None
        except (UnicodeDecodeError, ValueError) as e:
            raise CredentialRefreshError(
                "token endpoint returned a malformed body",
                status_code=response.status_code,
                cause=e,
            ) from e

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            raise CredentialRefreshError(
                "token endpoint response has no access_token",
                status_code=response.status_code,
            )
        return token, token_lifetime_seconds(payload.get("expires_in"))
