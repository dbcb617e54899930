"""
Broker connection manager for mqtt-feed service.

Owns the single broker connection and its state. Every failure path,
including a failed initial connect, is handled by one supervising reconnect
task that retries with capped exponential backoff until connected.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional

from domain.ports import BrokerClient
from domain.schema import ConnectionState, ConnectOptions
from telemetry.logger import MetricsLogger


logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


class ConnectionManager:
    """
    Connection lifecycle state machine.

    disconnected -> connecting -> connected on a successful attempt,
    connecting -> disconnected on a failed attempt,
    connected -> disconnected when the broker client reports a lost
    connection, which starts the reconnect task.
    """

    def __init__(
        self,
        broker_client: BrokerClient,
        reconnect_delay: float = 30.0,
        max_reconnect_delay: float = 300.0,
        backoff_factor: float = 2.0,
        jitter: float = 0.1,
        sleep: SleepFunc = asyncio.sleep
    ):
        """
        Initialize connection manager.

        Args:
            broker_client: Transport that performs connects
            reconnect_delay: Delay before the first reconnect attempt, seconds
            max_reconnect_delay: Upper bound for the delay, seconds
            backoff_factor: Multiplier applied after each failed attempt
            jitter: Proportional random jitter, 0 disables it
            sleep: Awaitable used for the delay
        """
        self.broker_client = broker_client
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max(max_reconnect_delay, reconnect_delay)
        self.backoff_factor = backoff_factor
        self.jitter = jitter
        self._sleep = sleep

        self._state = ConnectionState.DISCONNECTED
        self._options: Optional[ConnectOptions] = None
        self._connect_lock = asyncio.Lock()
        self._reconnect_task: Optional[asyncio.Task] = None
        self._handler_registered = False
        self._closed = False

        self.metrics = MetricsLogger("metrics.connection")

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def options(self) -> Optional[ConnectOptions]:
        return self._options

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED and self.broker_client.is_connected()

    @property
    def reconnecting(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    async def setup(self, config) -> None:
        """
        Build connection options and perform the initial connect.

        A failed initial connect is logged and handed to the reconnect task;
        it never raises.

        Args:
            config: MqttConfig section of the application config
        """
        self._options = ConnectOptions.from_config(config)
        self._closed = False

        if not self._handler_registered:
            self.broker_client.on_disconnect(self._handle_disconnect)
            self._handler_registered = True

        logger.info(
            f"Connecting to MQTT broker {self._options.host}:{self._options.port}",
            extra={
                "component": "connection",
                "host": self._options.host,
                "port": self._options.port,
                "tls": self._options.use_tls,
                "address_family": self._options.address_family.value,
                "client_id": self._options.client_id,
                "authenticated": self._options.has_credentials
            }
        )

        if not await self._attempt_connect(attempt=0):
            self._schedule_reconnect()

    def next_delay(self, attempt: int) -> float:
        """
        Delay before reconnect attempt number ``attempt + 1``.

        Args:
            attempt: Number of failed reconnect attempts so far

        Returns:
            Delay in seconds
        """
        delay = min(
            self.reconnect_delay * (self.backoff_factor ** attempt),
            self.max_reconnect_delay
        )
        if self.jitter:
            delay *= 1 + random.uniform(-self.jitter, self.jitter)
        return max(delay, 0.0)

    async def close(self) -> None:
        """Stop reconnecting and close the broker connection."""
        self._closed = True

        if self.reconnecting:
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass

        try:
            await self.broker_client.disconnect()
        except Exception as e:
            logger.error(f"Error closing MQTT connection: {e}")

        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("MQTT connection closed")

    async def _attempt_connect(self, attempt: int) -> bool:
        async with self._connect_lock:
            if self._closed:
                return False

            self._set_state(ConnectionState.CONNECTING)
            try:
                await self.broker_client.connect(self._options)
            except Exception as e:
                self._set_state(ConnectionState.DISCONNECTED)
                logger.error(
                    f"MQTT Error: failed to connect to the host: {e}",
                    extra={
                        "component": "connection",
                        "host": self._options.host,
                        "attempt": attempt,
                        "error": str(e)
                    }
                )
                self.metrics.log_connection_event(
                    "connect_failed", self._options.host, self._options.port, attempt, str(e)
                )
                return False

            self._set_state(ConnectionState.CONNECTED)
            self.metrics.log_connection_event(
                "connected", self._options.host, self._options.port, attempt
            )
            return True

    def _handle_disconnect(self, reason: Optional[str] = None) -> None:
        if self._closed:
            return

        if self._state != ConnectionState.CONNECTED:
            logger.debug(
                "Ignoring disconnect notification for a connection that is not live",
                extra={"component": "connection", "state": self._state.value}
            )
            return

        self._set_state(ConnectionState.DISCONNECTED)
        logger.warning(
            "Error: MQTT disconnected from the server",
            extra={"component": "connection", "reason": reason}
        )
        self.metrics.log_connection_event(
            "disconnected", self._options.host, self._options.port, error=reason
        )
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._closed:
            return

        if self.reconnecting:
            logger.debug("MQTT reconnect already in progress")
            return

        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect_loop())
        self._reconnect_task.add_done_callback(self._on_reconnect_done)

    async def _reconnect_loop(self) -> None:
        attempt = 0
        while not self._closed:
            delay = self.next_delay(attempt)
            logger.info(
                f"MQTT reconnect attempt {attempt + 1} in {delay:.1f}s",
                extra={"component": "connection", "attempt": attempt + 1, "delay_s": round(delay, 2)}
            )
            await self._sleep(delay)

            attempt += 1
            logger.debug("MQTT attempting to reconnect with server")
            if await self._attempt_connect(attempt):
                logger.info(
                    "MQTT reconnected OK",
                    extra={"component": "connection", "attempts": attempt}
                )
                return

    def _on_reconnect_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"MQTT reconnect task stopped unexpectedly: {error}",
                extra={"component": "connection", "error": str(error)}
            )

    def _set_state(self, state: ConnectionState) -> None:
        self._state = state
