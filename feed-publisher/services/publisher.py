"""
MQTT publisher for mqtt-feed service.
Sends rendered messages over the shared broker connection.
"""

import asyncio
import logging
import time
from typing import Optional, Set

from domain.ports import BrokerClient, Publisher
from domain.schema import PublisherStats
from telemetry.logger import MetricsLogger


logger = logging.getLogger(__name__)


class MqttPublisher(Publisher):
    """
    Publisher with at-most-once, fire-and-drop delivery.

    Messages are never queued while disconnected. Dispatched sends run as
    supervised tasks: concurrency is bounded and every failure is logged and
    counted when the task completes.
    """

    def __init__(
        self,
        broker_client: BrokerClient,
        connection,
        max_in_flight: int = 100
    ):
        """
        Initialize publisher.

        Args:
            broker_client: Transport used to submit messages
            connection: ConnectionManager providing the connection state
            max_in_flight: Maximum concurrent publishes
        """
        self.broker_client = broker_client
        self.connection = connection
        self.max_in_flight = max_in_flight

        self._semaphore = asyncio.Semaphore(max_in_flight)
        self._tasks: Set[asyncio.Task] = set()
        self._stats = PublisherStats()
        self.metrics = MetricsLogger("metrics.publisher")

    @property
    def stats(self) -> PublisherStats:
        return self._stats.model_copy(update={"in_flight": len(self._tasks)})

    async def send(self, topic: str, message: str, retain: bool) -> bool:
        """
        Send one message to the broker.

        Transport errors are not caught here; they propagate to whoever
        awaits the send.

        Args:
            topic: Topic to publish to
            message: Rendered payload
            retain: Broker retain flag

        Returns:
            True if the message was submitted, False if dropped because the
            connection is down
        """
        logger.debug(
            f"MQTT: publishing to topic '{topic}', message '{message}'",
            extra={"component": "publisher", "topic": topic, "retain": retain}
        )

        if not self.connection.is_connected:
            self._stats.dropped_not_connected += 1
            logger.error(
                "MQTT: Error - Not connected to MQTT server - message not sent",
                extra={"component": "publisher", "topic": topic}
            )
            return False

        async with self._semaphore:
            started = time.perf_counter()
            await self.broker_client.publish(topic, message, retain)

        self._stats.published += 1
        self.metrics.log_publish(
            topic=topic,
            payload_bytes=len(message.encode('utf-8')),
            duration_ms=(time.perf_counter() - started) * 1000,
            success=True
        )
        return True

    def dispatch(self, topic: str, message: str, retain: bool) -> Optional[asyncio.Task]:
        """
        Schedule a send without waiting for it.

        Must be called from a running event loop.

        Returns:
            The supervised task
        """
        task = asyncio.get_running_loop().create_task(self.send(topic, message, retain))
        self._stats.dispatched += 1
        self._tasks.add(task)
        task.add_done_callback(lambda done: self._on_send_done(done, topic))
        return task

    def _on_send_done(self, task: asyncio.Task, topic: str) -> None:
        self._tasks.discard(task)

        if task.cancelled():
            logger.warning(
                f"MQTT publish to '{topic}' was cancelled",
                extra={"component": "publisher", "topic": topic}
            )
            return

        error = task.exception()
        if error is None:
            return

        self._stats.failed += 1
        logger.error(
            f"MQTT publish to '{topic}' failed: {error}",
            extra={"component": "publisher", "topic": topic, "error": str(error)}
        )
        self.metrics.log_publish(
            topic=topic,
            payload_bytes=0,
            duration_ms=0.0,
            success=False,
            error=str(error)
        )

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for in-flight sends to finish.

        Args:
            timeout: Seconds to wait, None to wait indefinitely

        Returns:
            True if nothing is left in flight
        """
        if not self._tasks:
            return True

        _, still_pending = await asyncio.wait(set(self._tasks), timeout=timeout)

        if still_pending:
            logger.warning(
                f"{len(still_pending)} MQTT publishes still in flight after drain timeout",
                extra={"component": "publisher", "pending": len(still_pending)}
            )
            return False
        return True
