"""
Tests for the broker connection manager.
"""

import asyncio
import logging

import pytest

from conftest import FakeBrokerClient
from config import MqttConfig
from domain.schema import AddressFamily, ConnectionState
from services.connection import ConnectionManager


class RecordingSleep:
    """Sleep replacement that records delays and optionally blocks."""

    def __init__(self, block: bool = False):
        self.delays = []
        self.release = asyncio.Event()
        if not block:
            self.release.set()

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await self.release.wait()


def make_manager(broker, sleep, **kwargs) -> ConnectionManager:
    kwargs.setdefault("jitter", 0)
    return ConnectionManager(broker_client=broker, sleep=sleep, **kwargs)


@pytest.mark.asyncio
async def test_setup_connects_with_options_from_config(broker):
    manager = make_manager(broker, RecordingSleep())

    await manager.setup(MqttConfig(host="broker.local", port=8883, use_tls=True, ip_version=6))

    assert manager.state == ConnectionState.CONNECTED
    assert manager.is_connected
    options = broker.connect_calls[0]
    assert options.host == "broker.local"
    assert options.port == 8883
    assert options.use_tls is True
    assert options.address_family == AddressFamily.IPV6
    assert options.client_id
    assert not manager.reconnecting


@pytest.mark.asyncio
async def test_credentials_only_sent_with_password(broker):
    manager = make_manager(broker, RecordingSleep())

    await manager.setup(MqttConfig(username="station"))
    assert manager.options.has_credentials is False
    assert manager.options.username is None

    await manager.setup(MqttConfig(username="station", password="secret"))
    assert manager.options.username == "station"
    assert manager.options.password == "secret"


@pytest.mark.asyncio
async def test_each_setup_generates_new_client_id(broker):
    manager = make_manager(broker, RecordingSleep())

    await manager.setup(MqttConfig())
    await manager.setup(MqttConfig())

    assert broker.connect_calls[0].client_id != broker.connect_calls[1].client_id
    assert len(broker.handlers) == 1


@pytest.mark.asyncio
async def test_failed_initial_connect_is_retried(caplog):
    broker = FakeBrokerClient(fail_connects=1)
    sleep = RecordingSleep()
    manager = make_manager(broker, sleep)

    await manager.setup(MqttConfig())

    assert manager.state == ConnectionState.DISCONNECTED
    assert any("failed to connect to the host" in r.getMessage() for r in caplog.records)

    await asyncio.wait_for(manager._reconnect_task, 1)
    assert manager.state == ConnectionState.CONNECTED
    assert sleep.delays == [30.0]
    assert len(broker.connect_calls) == 2
    assert broker.connect_calls[0] is broker.connect_calls[1]


@pytest.mark.asyncio
async def test_disconnect_triggers_delayed_reconnect(broker, caplog):
    caplog.set_level(logging.INFO)
    sleep = RecordingSleep()
    manager = make_manager(broker, sleep)
    await manager.setup(MqttConfig())
    client_id = manager.options.client_id

    broker.drop("keepalive timeout")

    assert manager.state != ConnectionState.CONNECTED
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert any("MQTT disconnected from the server" in r.getMessage() for r in warnings)

    await asyncio.wait_for(manager._reconnect_task, 1)
    assert manager.state == ConnectionState.CONNECTED
    assert sleep.delays == [30.0]
    assert broker.connect_calls[-1].client_id == client_id
    assert any("MQTT reconnected OK" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_failed_reconnects_back_off_until_connected():
    broker = FakeBrokerClient(fail_connects=4)
    sleep = RecordingSleep()
    manager = make_manager(broker, sleep)

    await manager.setup(MqttConfig())

    await asyncio.wait_for(manager._reconnect_task, 1)
    assert manager.state == ConnectionState.CONNECTED
    assert sleep.delays == [30.0, 60.0, 120.0, 240.0]
    assert len(broker.connect_calls) == 5


@pytest.mark.asyncio
async def test_only_one_reconnect_in_flight(broker):
    sleep = RecordingSleep(block=True)
    manager = make_manager(broker, sleep)
    await manager.setup(MqttConfig())

    broker.drop()
    await asyncio.sleep(0)
    first_task = manager._reconnect_task
    broker.drop()
    manager._schedule_reconnect()
    await asyncio.sleep(0)

    assert manager._reconnect_task is first_task
    assert sleep.delays == [30.0]

    sleep.release.set()
    await asyncio.wait_for(manager._reconnect_task, 1)
    assert manager.state == ConnectionState.CONNECTED
    assert len(broker.connect_calls) == 2


@pytest.mark.asyncio
async def test_close_cancels_pending_reconnect(broker):
    sleep = RecordingSleep(block=True)
    manager = make_manager(broker, sleep)
    await manager.setup(MqttConfig())
    broker.drop()
    await asyncio.sleep(0)
    assert manager.reconnecting

    await manager.close()

    assert not manager.reconnecting
    assert manager.state == ConnectionState.DISCONNECTED
    assert broker.disconnect_calls == 1
    assert len(broker.connect_calls) == 1


@pytest.mark.asyncio
async def test_disconnect_after_close_is_ignored(broker):
    manager = make_manager(broker, RecordingSleep())
    await manager.setup(MqttConfig())
    await manager.close()

    broker.drop()

    assert not manager.reconnecting


def test_next_delay_grows_and_caps():
    manager = make_manager(FakeBrokerClient(), RecordingSleep())

    delays = [manager.next_delay(attempt) for attempt in range(6)]

    assert delays == [30.0, 60.0, 120.0, 240.0, 300.0, 300.0]


def test_next_delay_jitter_stays_in_bounds():
    manager = make_manager(FakeBrokerClient(), RecordingSleep(), jitter=0.1)

    for _ in range(50):
        assert 27.0 <= manager.next_delay(0) <= 33.0
