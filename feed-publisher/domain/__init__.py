# feed-publisher/domain/__init__.py
"""
Domain layer for mqtt-feed service.

Contains data models, interfaces and the error taxonomy.
"""

from .schema import (
    AddressFamily,
    ConnectionState,
    ConnectOptions,
    CycleResult,
    FeedType,
    HealthStatus,
    LiveDataUpdate,
    PublisherStats,
    RenderResult,
    TemplateFile,
    TopicDefinition,
)
from .ports import (
    BrokerClient,
    BrokerConnectionError,
    BrokerPublishError,
    DedupCache,
    DedupCacheError,
    Publisher,
    Renderer,
    TemplateError,
    TemplateStore,
    TokenValidator,
    AuthenticationError,
)

__all__ = [
    "AddressFamily",
    "ConnectionState",
    "ConnectOptions",
    "CycleResult",
    "FeedType",
    "HealthStatus",
    "LiveDataUpdate",
    "PublisherStats",
    "RenderResult",
    "TemplateFile",
    "TopicDefinition",
    "BrokerClient",
    "BrokerConnectionError",
    "BrokerPublishError",
    "DedupCache",
    "DedupCacheError",
    "Publisher",
    "Renderer",
    "TemplateError",
    "TemplateStore",
    "TokenValidator",
    "AuthenticationError",
]
