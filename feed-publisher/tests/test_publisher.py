"""
Tests for the MQTT publisher.
"""

import asyncio

import pytest

from conftest import FakeConnection, error_records
from services.publisher import MqttPublisher


@pytest.mark.asyncio
async def test_send_when_disconnected_drops_message_and_logs_once(broker, caplog):
    publisher = MqttPublisher(broker, FakeConnection(connected=False))

    sent = await publisher.send("station/status", "{}", False)

    assert sent is False
    assert broker.published == []
    errors = error_records(caplog)
    assert len(errors) == 1
    assert "Not connected to MQTT server" in errors[0].getMessage()
    assert publisher.stats.dropped_not_connected == 1


@pytest.mark.asyncio
async def test_send_when_connected_publishes_with_retain_flag(broker):
    publisher = MqttPublisher(broker, FakeConnection(connected=True))

    sent = await publisher.send("station/status", "payload", True)

    assert sent is True
    assert broker.published == [("station/status", "payload", True)]
    assert publisher.stats.published == 1


@pytest.mark.asyncio
async def test_send_propagates_transport_errors(failing_publish_broker):
    publisher = MqttPublisher(failing_publish_broker, FakeConnection(connected=True))

    with pytest.raises(Exception, match="socket closed"):
        await publisher.send("t", "m", False)


@pytest.mark.asyncio
async def test_dispatch_logs_and_counts_failures(failing_publish_broker, caplog):
    publisher = MqttPublisher(failing_publish_broker, FakeConnection(connected=True))

    publisher.dispatch("t", "m", False)
    drained = await publisher.drain(timeout=1)

    assert drained is True
    stats = publisher.stats
    assert stats.dispatched == 1
    assert stats.failed == 1
    assert stats.in_flight == 0
    assert any("failed: socket closed" in r.getMessage() for r in error_records(caplog))


@pytest.mark.asyncio
async def test_dispatch_does_not_wait_for_send(broker):
    broker.gate = asyncio.Event()
    publisher = MqttPublisher(broker, FakeConnection(connected=True))

    publisher.dispatch("t", "m", False)
    await asyncio.sleep(0)

    assert publisher.stats.in_flight == 1
    assert broker.published == []

    broker.gate.set()
    await publisher.drain(timeout=1)
    assert broker.published == [("t", "m", False)]


@pytest.mark.asyncio
async def test_in_flight_publishes_are_bounded(broker):
    broker.gate = asyncio.Event()
    publisher = MqttPublisher(broker, FakeConnection(connected=True), max_in_flight=2)

    for index in range(5):
        publisher.dispatch(f"t{index}", "m", False)
    for _ in range(5):
        await asyncio.sleep(0)

    assert broker.active == 2

    broker.gate.set()
    await publisher.drain(timeout=1)
    assert broker.max_active == 2
    assert len(broker.published) == 5


@pytest.mark.asyncio
async def test_drain_times_out_with_pending_sends(broker):
    broker.gate = asyncio.Event()
    publisher = MqttPublisher(broker, FakeConnection(connected=True))
    publisher.dispatch("t", "m", False)

    assert await publisher.drain(timeout=0.01) is False

    broker.gate.set()
    assert await publisher.drain(timeout=1) is True


@pytest.mark.asyncio
async def test_drain_with_nothing_in_flight(broker):
    publisher = MqttPublisher(broker, FakeConnection(connected=True))
    assert await publisher.drain() is True
