# feed-publisher/services/__init__.py
"""
Service layer for mqtt-feed.

Template loading, rendering, dedup, scheduling, connection management
and publishing.
"""

from .connection import ConnectionManager
from .dedup_cache import InMemoryDedupCache
from .feed_timer import IntervalFeedTimer
from .publisher import MqttPublisher
from .renderer import LiveDataStore, TokenRenderer
from .scheduler import FeedScheduler, is_topic_due, to_unix_seconds
from .template_store import FileTemplateStore

__all__ = [
    "ConnectionManager",
    "InMemoryDedupCache",
    "IntervalFeedTimer",
    "MqttPublisher",
    "LiveDataStore",
    "TokenRenderer",
    "FeedScheduler",
    "is_topic_due",
    "to_unix_seconds",
    "FileTemplateStore"
]
