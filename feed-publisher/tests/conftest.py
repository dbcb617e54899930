"""
Shared fixtures and fakes for mqtt-feed tests.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from domain.ports import (
    BrokerClient,
    BrokerConnectionError,
    BrokerPublishError,
    Publisher,
)
from domain.schema import ConnectionState, ConnectOptions
from services.dedup_cache import InMemoryDedupCache
from services.renderer import LiveDataStore, TokenRenderer
from services.scheduler import FeedScheduler
from services.template_store import FileTemplateStore


class FakeBrokerClient(BrokerClient):
    """In-process broker client recording connects and publishes."""

    def __init__(self, fail_connects: int = 0, publish_error: Optional[Exception] = None):
        self.fail_connects = fail_connects
        self.publish_error = publish_error
        self.connected = False
        self.connect_calls: List[ConnectOptions] = []
        self.disconnect_calls = 0
        self.published: List[Tuple[str, str, bool]] = []
        self.handlers = []
        self.gate: Optional[asyncio.Event] = None
        self.active = 0
        self.max_active = 0

    async def connect(self, options: ConnectOptions) -> None:
        self.connect_calls.append(options)
        if self.fail_connects > 0:
            self.fail_connects -= 1
            raise BrokerConnectionError("connection refused")
        self.connected = True

    async def publish(self, topic: str, payload: str, retain: bool) -> None:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.publish_error is not None:
                raise self.publish_error
            self.published.append((topic, payload, retain))
        finally:
            self.active -= 1

    def on_disconnect(self, handler) -> None:
        self.handlers.append(handler)

    def is_connected(self) -> bool:
        return self.connected

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    def drop(self, reason: str = "connection lost") -> None:
        """Simulate the broker closing the connection."""
        self.connected = False
        for handler in list(self.handlers):
            handler(reason)


class FakeConnection:
    """Stand-in for ConnectionManager exposing only the connection state."""

    def __init__(self, connected: bool = True):
        self.connected = connected

    @property
    def is_connected(self) -> bool:
        return self.connected

    @property
    def state(self) -> ConnectionState:
        return ConnectionState.CONNECTED if self.connected else ConnectionState.DISCONNECTED


class RecordingPublisher(Publisher):
    """Publisher that records dispatches instead of sending them."""

    def __init__(self):
        self.dispatched: List[Tuple[str, str, bool]] = []

    async def send(self, topic: str, message: str, retain: bool) -> bool:
        self.dispatched.append((topic, message, retain))
        return True

    def dispatch(self, topic: str, message: str, retain: bool) -> None:
        self.dispatched.append((topic, message, retain))

    @property
    def topics(self) -> List[str]:
        return [topic for topic, _, _ in self.dispatched]


def write_template(directory: Path, name: str, topics: List[Dict]) -> Path:
    path = directory / name
    path.write_text(json.dumps({"topics": topics}), encoding="utf-8")
    return path


def error_records(caplog) -> List[logging.LogRecord]:
    return [record for record in caplog.records if record.levelno >= logging.ERROR]


@pytest.fixture
def template_dir(tmp_path) -> Path:
    directory = tmp_path / "mqtt"
    directory.mkdir()
    return directory


@pytest.fixture
def data_store() -> LiveDataStore:
    return LiveDataStore()


@pytest.fixture
def dedup_cache() -> InMemoryDedupCache:
    return InMemoryDedupCache()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def scheduler(template_dir, data_store, dedup_cache, publisher) -> FeedScheduler:
    return FeedScheduler(
        template_store=FileTemplateStore(template_dir),
        renderer=TokenRenderer(data_store),
        dedup_cache=dedup_cache,
        publisher=publisher
    )


@pytest.fixture
def broker() -> FakeBrokerClient:
    return FakeBrokerClient()


@pytest.fixture
def failing_publish_broker() -> FakeBrokerClient:
    return FakeBrokerClient(publish_error=BrokerPublishError("socket closed"))
