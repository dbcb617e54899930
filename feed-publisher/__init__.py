# feed-publisher/__init__.py
"""
MQTT Feed Service

Publishes templated status messages to an MQTT broker on a wall-clock
interval schedule and on live data updates, with change-based deduplication.
"""

__version__ = "1.0.0"
__author__ = "YuDev"
__description__ = "MQTT Feed Publisher for templated status messages"
