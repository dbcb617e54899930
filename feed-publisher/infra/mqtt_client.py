"""
paho-mqtt implementation of the BrokerClient interface.

The paho network loop runs in a dedicated thread per connection. Automatic
reconnects are disabled; lost connections are reported to the registered
disconnect handlers on the asyncio event loop and the ConnectionManager
decides what to do.
"""

import asyncio
import logging
import threading
from typing import List, Optional

import paho.mqtt.client as mqtt

from domain.ports import (
    BrokerClient,
    BrokerConnectionError,
    BrokerPublishError,
    DisconnectHandler,
)
from domain.schema import AddressFamily, ConnectOptions


logger = logging.getLogger(__name__)


def bind_address_for(family: AddressFamily) -> str:
    """
    Local bind address that restricts the socket to one IP version.

    ``socket.create_connection`` skips resolved addresses whose family cannot
    bind the source address, which pins the connection to IPv4 or IPv6.
    """
    if family == AddressFamily.IPV4:
        return "0.0.0.0"
    if family == AddressFamily.IPV6:
        return "::"
    return ""


class PahoBrokerClient(BrokerClient):
    """
    MQTT transport built on paho-mqtt 2.x.
    """

    def __init__(
        self,
        qos: int = 0,
        connect_timeout: float = 10.0,
        publish_timeout: float = 10.0,
        loop_timeout: float = 1.0
    ):
        """
        Initialize paho broker client.

        Args:
            qos: QoS level used for every publish
            connect_timeout: Seconds to wait for the TCP connect and the CONNACK
            publish_timeout: Seconds to wait for QoS 1/2 acknowledgements
            loop_timeout: Select timeout of the network loop
        """
        self.qos = qos
        self.connect_timeout = connect_timeout
        self.publish_timeout = publish_timeout
        self.loop_timeout = loop_timeout

        self._client: Optional[mqtt.Client] = None
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._connack: Optional[asyncio.Future] = None
        self._connected = False
        self._handlers: List[DisconnectHandler] = []

    def on_disconnect(self, handler: DisconnectHandler) -> None:
        self._handlers.append(handler)

    def is_connected(self) -> bool:
        return self._connected and self._client is not None and self._client.is_connected()

    async def connect(self, options: ConnectOptions) -> None:
        """
        Open a new connection and wait for the broker CONNACK.

        Any previous connection is torn down first without notifying the
        disconnect handlers.

        Raises:
            BrokerConnectionError: If the socket connect fails, the broker
                refuses the connection or no CONNACK arrives in time
        """
        if self._client is not None:
            await self._teardown()

        loop = asyncio.get_running_loop()
        client = self._build_client(options)
        connack = loop.create_future()

        def on_connect(_client, _userdata, _flags, reason_code, _properties):
            loop.call_soon_threadsafe(_resolve, connack, reason_code)

        client.on_connect = on_connect

        try:
            await asyncio.to_thread(
                client.connect,
                options.host,
                options.port,
                options.keepalive,
                bind_address_for(options.address_family)
            )
        except (OSError, ValueError) as e:
            raise BrokerConnectionError(
                f"Failed to connect to {options.host}:{options.port}: {e}"
            ) from e

        stop = threading.Event()
        thread = threading.Thread(
            target=self._network_loop,
            args=(client, stop, loop),
            name=f"mqtt-loop-{options.client_id[:8]}",
            daemon=True
        )
        self._client = client
        self._thread = thread
        self._stop = stop
        self._connack = connack
        thread.start()

        try:
            reason_code = await asyncio.wait_for(connack, self.connect_timeout)
        except asyncio.TimeoutError:
            await self._teardown()
            raise BrokerConnectionError(
                f"No CONNACK from {options.host}:{options.port} within {self.connect_timeout}s"
            )
        except BrokerConnectionError:
            await self._teardown()
            raise

        if getattr(reason_code, "is_failure", False):
            await self._teardown()
            raise BrokerConnectionError(f"Broker refused connection: {reason_code}")

        self._connected = True
        logger.info(
            f"Connected to MQTT broker {options.host}:{options.port}",
            extra={"component": "mqtt_client", "client_id": options.client_id}
        )

    async def publish(self, topic: str, payload: str, retain: bool) -> None:
        """
        Publish one message.

        Raises:
            BrokerPublishError: If not connected or the transport rejects it
        """
        client = self._client
        if client is None or not self._connected:
            raise BrokerPublishError("MQTT client not connected")

        info = client.publish(topic, payload.encode('utf-8'), qos=self.qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise BrokerPublishError(
                f"Publish to '{topic}' failed: {mqtt.error_string(info.rc)}"
            )

        if self.qos > 0:
            try:
                await asyncio.to_thread(info.wait_for_publish, self.publish_timeout)
            except (RuntimeError, ValueError) as e:
                raise BrokerPublishError(f"Publish to '{topic}' failed: {e}") from e
            if not info.is_published():
                raise BrokerPublishError(
                    f"Publish to '{topic}' not acknowledged within {self.publish_timeout}s"
                )

    async def disconnect(self) -> None:
        await self._teardown()
        logger.info("MQTT client disconnected", extra={"component": "mqtt_client"})

    def _build_client(self, options: ConnectOptions) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=options.client_id,
            clean_session=options.clean_session,
            protocol=mqtt.MQTTv311,
            reconnect_on_failure=False
        )
        client.enable_logger(logging.getLogger("paho"))
        client.connect_timeout = self.connect_timeout

        if options.use_tls:
            client.tls_set()

        if options.has_credentials:
            client.username_pw_set(options.username, options.password)

        return client

    def _network_loop(
        self,
        client: mqtt.Client,
        stop: threading.Event,
        loop: asyncio.AbstractEventLoop
    ) -> None:
        rc = mqtt.MQTT_ERR_SUCCESS
        while not stop.is_set():
            rc = client.loop(timeout=self.loop_timeout)
            if rc != mqtt.MQTT_ERR_SUCCESS:
                break

        if stop.is_set():
            return

        try:
            loop.call_soon_threadsafe(self._connection_lost, client, mqtt.error_string(rc))
        except RuntimeError:
            logger.debug("Event loop closed before connection loss could be reported")

    def _connection_lost(self, client: mqtt.Client, reason: str) -> None:
        if client is not self._client:
            return

        if self._connack is not None and not self._connack.done():
            self._connack.set_exception(
                BrokerConnectionError(f"Connection closed before CONNACK: {reason}")
            )
            return

        if not self._connected:
            return

        self._connected = False
        for handler in list(self._handlers):
            try:
                handler(reason)
            except Exception as e:
                logger.error(
                    f"Disconnect handler failed: {e}",
                    extra={"component": "mqtt_client", "error": str(e)}
                )

    async def _teardown(self) -> None:
        client, thread = self._client, self._thread
        self._connected = False
        self._client = None
        self._thread = None
        self._connack = None
        self._stop.set()

        if client is None:
            return

        client.disconnect()
        if thread is not None and thread.is_alive():
            await asyncio.to_thread(thread.join, self.loop_timeout * 2)
            if thread.is_alive():
                logger.warning(
                    "MQTT network loop did not stop, skipping DISCONNECT flush",
                    extra={"component": "mqtt_client"}
                )
                return
        # Flush the DISCONNECT packet; paho closes the socket once it is written
        await asyncio.to_thread(client.loop, 0.1)


def _resolve(future: asyncio.Future, value) -> None:
    if not future.done():
        future.set_result(value)
