# feed-publisher/telemetry/__init__.py
"""
Telemetry and observability for mqtt-feed service.

Contains logging, feed cycle correlation and metrics utilities.
"""

from .logger import (
    setup_logging,
    JSONFormatter,
    CorrelationFilter,
    MetricsLogger,
    cycle_context,
    current_cycle_id
)

__all__ = [
    "setup_logging",
    "JSONFormatter",
    "CorrelationFilter",
    "MetricsLogger",
    "cycle_context",
    "current_cycle_id"
]
