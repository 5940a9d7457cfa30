"""
Event notifications for the outbound client.

Non-fatal conditions (a failed token refresh, a completed refresh) are
published as typed events on an ``EventBus``. Collaborators subscribe to the
event types they care about; nothing is broadcast through globals.

Usage
─────

    bus = EventBus()

    @bus.subscribe(CredentialRefreshFailed)
    def on_refresh_failed(event: CredentialRefreshFailed):
        alerting.warn(f"token refresh failed: {event.cause}")

    manager = TokenManager.from_config(config, transport, events=bus)

Handlers run synchronously, in priority order, on the publishing task. A
handler that raises does not stop delivery to the remaining handlers; the
failure is logged and passed to ``on_error`` when one is set.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Type

logger = logging.getLogger(__name__)


# ════════════════════════════════════════════════════════════════════════════
# EVENT BASE
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class Event:
    """
    Base class for all events.

    Events are immutable facts representing something that happened.
    Each event has a unique ID, timestamp, and optional metadata.
    """

    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    event_timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    correlation_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def event_type(self) -> str:
        """Get the event type name."""
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        """Serialize event to a JSON-friendly dictionary."""
        data: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, BaseException):
                value = repr(value)
            data[f.name] = value
        data["event_type"] = self.event_type
        return data


# ════════════════════════════════════════════════════════════════════════════
# CREDENTIAL EVENTS
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class CredentialRefreshed(Event):
    """Emitted when a new bearer token has been installed."""
    token_fingerprint: str = ""
    lifetime_seconds: float = 0.0
    next_refresh_seconds: float = 0.0


@dataclass
class CredentialRefreshFailed(Event):
    """Emitted when a token acquisition attempt fails.

    ``serving_previous`` tells subscribers whether an older token is still
    being handed out (graceful degradation) or whether calls will fail until
    a later attempt succeeds.
    """
    cause: Optional[BaseException] = None
    status_code: Optional[int] = None
    serving_previous: bool = False
    retry_in_seconds: float = 0.0


# ════════════════════════════════════════════════════════════════════════════
# EVENT HANDLER
# ════════════════════════════════════════════════════════════════════════════


EventHandler = Callable[[Event], None]


@dataclass
class EventHandlerRegistration:
    """Registration for an event handler."""
    handler: EventHandler
    event_types: Set[Type[Event]]
    priority: int = 0
    filter_func: Optional[Callable[[Event], bool]] = None


class EventHandlerError(Exception):
    """Error during event handling."""
    def __init__(self, event: Event, handler: EventHandler, cause: Exception):
        self.event = event
        self.handler = handler
        self.cause = cause
        name = getattr(handler, "__name__", repr(handler))
        super().__init__(f"Handler {name} failed for {event.event_type}: {cause}")


# ════════════════════════════════════════════════════════════════════════════
# EVENT BUS
# ════════════════════════════════════════════════════════════════════════════


class EventBus:
    """
    In-memory event bus for pub/sub communication.

    Example:
        bus = EventBus()

        @bus.subscribe(CredentialRefreshed, CredentialRefreshFailed)
        def handle_credential_events(event):
            print(f"credential event: {event.event_type}")

        bus.publish(CredentialRefreshed(token_fingerprint="ab12cd34"))
    """

    def __init__(
        self,
        on_error: Optional[Callable[[EventHandlerError], None]] = None,
    ):
        self._handlers: List[EventHandlerRegistration] = []
        self._on_error = on_error
        self._published_count = 0
        self._handled_count = 0
        self._error_count = 0

    def subscribe(
        self,
        *event_types: Type[Event],
        priority: int = 0,
        filter_func: Optional[Callable[[Event], bool]] = None,
    ) -> Callable[[EventHandler], EventHandler]:
        """
        Decorator to subscribe a handler to event types.

        Args:
            event_types: Event types to subscribe to (none = every event)
            priority: Handler priority (higher = earlier)
            filter_func: Optional filter function
        """
        def decorator(handler: EventHandler) -> EventHandler:
            registration = EventHandlerRegistration(
                handler=handler,
                event_types=set(event_types) if event_types else {Event},
                priority=priority,
                filter_func=filter_func,
            )
            self._handlers.append(registration)
            self._handlers.sort(key=lambda r: -r.priority)
            return handler
        return decorator

    def add_handler(self, event_type: Type[Event], handler: EventHandler, priority: int = 0) -> EventHandler:
        """Non-decorator form of ``subscribe``."""
        return self.subscribe(event_type, priority=priority)(handler)

    def unsubscribe(self, handler: EventHandler) -> bool:
        """Unsubscribe a handler."""
        original_len = len(self._handlers)
        self._handlers = [r for r in self._handlers if r.handler != handler]
        return len(self._handlers) < original_len

    def publish(self, event: Event) -> None:
        """Deliver an event to every matching subscriber, in priority order."""
        self._published_count += 1
        for registration in list(self._handlers):
            if not any(isinstance(event, t) for t in registration.event_types):
                continue
            if registration.filter_func and not registration.filter_func(event):
                continue
            self._call_handler(registration.handler, event)

    def _call_handler(self, handler: EventHandler, event: Event) -> None:
        try:
            handler(event)
            self._handled_count += 1
        except Exception as e:
            self._error_count += 1
            error = EventHandlerError(event, handler, e)
            logger.error("%s", error)
            if self._on_error:
                self._on_error(error)

    @property
    def metrics(self) -> Dict[str, int]:
        """Get event bus metrics."""
        return {
            "published_count": self._published_count,
            "handled_count": self._handled_count,
            "error_count": self._error_count,
            "handler_count": len(self._handlers),
        }
