# feed-publisher/api/__init__.py
"""
API layer for mqtt-feed service.

Contains HTTP endpoints and authentication.
"""

from .http_server import FeedPublisherAPI
from .auth import FileTokenValidator, BearerAuth

__all__ = [
    "FeedPublisherAPI",
    "FileTokenValidator",
    "BearerAuth"
]
