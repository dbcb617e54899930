# feed-publisher/infra/__init__.py
"""
Infrastructure layer for mqtt-feed service.

Contains implementations of domain interfaces using external systems
like the MQTT broker and Redis.
"""

from .mqtt_client import PahoBrokerClient, bind_address_for
from .redis_dedup import RedisDedupCache

__all__ = [
    "PahoBrokerClient",
    "bind_address_for",
    "RedisDedupCache"
]
