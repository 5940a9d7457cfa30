"""
Structured logging for the outbound client.

Modules log through ``logging.getLogger(__name__)`` and attach structured
fields with ``extra={"operation": ..., "duration_ms": ..., "context": {...}}``.
``configure_logging`` installs either a JSON handler (one ``LogEvent`` per
line) or a plain text handler on the ``interop`` logger.

Each outbound call runs under a correlation ID held in a context variable, so
the token manager, the signer and the executor all log the same ID for one
call without passing it around.

Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │        TokenManager │ MessageSigner │ RequestExecutor    │
    │   logger.info("...", extra={"operation": "execute"})    │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │                  StructuredHandler                       │
    │   correlation ID, operation, duration, context fields   │
    └─────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import traceback
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from interop.config import InteropConfig

LOGGER_NAME = "interop"

# Context variables for call-scoped data
correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)


@dataclass
class LogEvent:
    """Structured log event."""
    timestamp: str
    level: str
    logger: str
    message: str
    correlation_id: str = ""
    operation: str = ""
    duration_ms: Optional[float] = None
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding empty values."""
        d = asdict(self)
        return {k: v for k, v in d.items() if v is not None and v != "" and v != {}}

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=str)


class StructuredHandler(logging.Handler):
    """Logging handler that outputs structured JSON."""

    def __init__(self, stream: Any = None):
        super().__init__()
        self.stream = stream or sys.stderr

    def emit(self, record: logging.LogRecord) -> None:
        try:
            event = LogEvent(
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                level=record.levelname.lower(),
                logger=record.name,
                message=record.getMessage(),
                correlation_id=correlation_id_var.get(),
                operation=getattr(record, "operation", ""),
                duration_ms=getattr(record, "duration_ms", None),
                context=getattr(record, "context", {}),
            )

            if record.exc_info:
                event.exception = "".join(traceback.format_exception(*record.exc_info))

            self.stream.write(event.to_json() + "\n")
            self.stream.flush()
        except Exception:
            self.handleError(record)


class CorrelationFilter(logging.Filter):
    """Stamps ``record.correlation_id`` for text formatters."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        return True


TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s"


def configure_logging(
    config: Optional["InteropConfig"] = None,
    *,
    level: Optional[str] = None,
    fmt: Optional[str] = None,
    stream: Any = None,
) -> logging.Logger:
    """Install a single handler on the ``interop`` logger.

    Explicit ``level``/``fmt`` win over the values in ``config``. Calling this
    again replaces the handler installed by the previous call.
    """
    if config is not None:
        level = level or config.observability.log_level.get()
        fmt = fmt or config.observability.log_format.get()
    level = level or "info"
    fmt = fmt or "text"

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper()))

    for handler in list(logger.handlers):
        if getattr(handler, "_interop_managed", False):
            logger.removeHandler(handler)

    handler: logging.Handler
    if fmt == "json":
        handler = StructuredHandler(stream)
    else:
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
        handler.addFilter(CorrelationFilter())
    handler._interop_managed = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    return logger


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return f"corr-{uuid.uuid4().hex[:12]}"


def set_correlation_id(correlation_id: str) -> contextvars.Token:
    """Set the correlation ID for the current context."""
    return correlation_id_var.set(correlation_id)


def get_correlation_id() -> str:
    """Get the current correlation ID, creating one if none is set."""
    cid = correlation_id_var.get()
    if not cid:
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid
