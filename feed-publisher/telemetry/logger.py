"""
Logging configuration for mqtt-feed service.

Log records are emitted as JSON lines. Every record produced while a feed
cycle runs, including records from the publish tasks that cycle dispatched,
carries the cycle's correlation id.
"""

import logging
import sys
import json
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional


# Correlation id of the feed cycle running in the current task
current_cycle_id: ContextVar[Optional[str]] = ContextVar("current_cycle_id", default=None)

# Levels applied to third-party loggers, which are noisy at DEBUG
THIRD_PARTY_LEVELS: Dict[str, int] = {
    "paho": logging.WARNING,
    "redis": logging.WARNING,
    "uvicorn": logging.INFO,
    "uvicorn.access": logging.WARNING,
    "fastapi": logging.INFO,
}

# LogRecord attributes that are never copied into the JSON document
RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message", "asctime", "taskName"
}


def cycle_correlation_id(feed_type: str, now_seconds: int) -> str:
    """Build the correlation id of one feed cycle, e.g. ``mf-Interval-1700000000``."""
    return f"mf-{feed_type}-{now_seconds}"


@contextmanager
def cycle_context(feed_type: str, now_seconds: int) -> Iterator[str]:
    """
    Bind a cycle correlation id to the current context.

    Tasks created inside the block copy the context and keep the id.
    """
    correlation_id = cycle_correlation_id(feed_type, now_seconds)
    token = current_cycle_id.set(correlation_id)
    try:
        yield correlation_id
    finally:
        current_cycle_id.reset(token)


class JSONFormatter(logging.Formatter):
    """
    Formats log records as one JSON document per line.
    Fields passed through ``extra`` are copied to the top level.
    """

    def __init__(
        self,
        service_name: str = "mqtt-feed",
        include_extra: bool = True
    ):
        super().__init__()
        self.service_name = service_name
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}"
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if self.include_extra:
            log_entry.update(
                (key, value) for key, value in vars(record).items()
                if key not in RESERVED_ATTRS and not key.startswith('_')
            )

        return json.dumps(log_entry, default=_json_default)


def _json_default(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset)):
        return sorted(str(item) for item in obj)
    return str(obj)


class CorrelationFilter(logging.Filter):
    """
    Adds ``correlation_id`` to every record.

    Records logged inside a feed cycle get the cycle id; everything else
    gets the static id, or none.
    """

    def __init__(self, correlation_id: Optional[str] = None):
        super().__init__()
        self.correlation_id = correlation_id

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, 'correlation_id', None) is None:
            record.correlation_id = current_cycle_id.get() or self.correlation_id
        return True


def setup_logging(
    level: str = "INFO",
    service_name: str = "mqtt-feed",
    enable_json: bool = True,
    enable_correlation: bool = True
) -> None:
    """
    Configure the root logger for the service.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        service_name: Service name for log identification
        enable_json: Emit JSON lines instead of plain text
        enable_correlation: Attach feed cycle correlation ids

    Raises:
        ValueError: If the level name is unknown
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")

    handler = logging.StreamHandler(sys.stdout)
    if enable_json:
        handler.setFormatter(JSONFormatter(service_name=service_name))
    else:
        handler.setFormatter(logging.Formatter(
            fmt='%(asctime)s %(levelname)-7s %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))

    if enable_correlation:
        handler.addFilter(CorrelationFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name, third_party_level in THIRD_PARTY_LEVELS.items():
        logging.getLogger(name).setLevel(third_party_level)

    logging.getLogger(__name__).info(
        "Logging configured",
        extra={
            "component": "logger",
            "level": level,
            "json_enabled": enable_json,
            "correlation_enabled": enable_correlation
        }
    )


class MetricsLogger:
    """
    Helper class for logging metrics and performance data.
    """

    def __init__(self, logger_name: str = "metrics"):
        self.logger = logging.getLogger(logger_name)

    def log_cycle_completed(
        self,
        feed_type: str,
        topics_evaluated: int,
        published: int,
        deduplicated: int,
        duration_ms: float,
        aborted: bool = False
    ) -> None:
        """
        Log feed cycle metrics.

        Args:
            feed_type: Feed type of the cycle
            topics_evaluated: Number of topics in the template
            published: Number of messages dispatched
            deduplicated: Number of messages skipped as unchanged
            duration_ms: Cycle duration in milliseconds
            aborted: Whether the cycle stopped on an error
        """
        self.logger.debug(
            f"Feed cycle completed: {feed_type}",
            extra={
                "metric_type": "feed_cycle",
                "feed_type": feed_type,
                "topics_evaluated": topics_evaluated,
                "published": published,
                "deduplicated": deduplicated,
                "duration_ms": round(duration_ms, 2),
                "aborted": aborted
            }
        )

    def log_publish(
        self,
        topic: str,
        payload_bytes: int,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None
    ) -> None:
        """
        Log broker publish metrics.

        Args:
            topic: Topic the message was sent to
            payload_bytes: Encoded payload size
            duration_ms: Publish duration in milliseconds
            success: Whether the publish succeeded
            error: Error message if failed
        """
        self.logger.debug(
            f"MQTT publish: {topic}",
            extra={
                "metric_type": "mqtt_publish",
                "topic": topic,
                "payload_bytes": payload_bytes,
                "duration_ms": round(duration_ms, 2),
                "success": success,
                "error": error
            }
        )

    def log_connection_event(
        self,
        event: str,
        host: str,
        port: int,
        attempt: int = 0,
        error: Optional[str] = None
    ) -> None:
        """
        Log broker connection lifecycle events.

        Args:
            event: connected, disconnected, connect_failed
            host: Broker host
            port: Broker port
            attempt: Reconnect attempt number, 0 for the initial connect
            error: Error message if failed
        """
        self.logger.info(
            f"MQTT connection event: {event}",
            extra={
                "metric_type": "mqtt_connection",
                "event": event,
                "host": host,
                "port": port,
                "attempt": attempt,
                "error": error
            }
        )
