"""
Main application module for mqtt-feed service.
Implements dependency injection and service composition.
"""

import asyncio
import logging
import signal
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from config import load_config, AppConfig
from domain.ports import DedupCache
from domain.schema import CycleResult, FeedType
from telemetry.logger import setup_logging
from infra.mqtt_client import PahoBrokerClient
from infra.redis_dedup import RedisDedupCache
from services.connection import ConnectionManager
from services.dedup_cache import InMemoryDedupCache
from services.feed_timer import IntervalFeedTimer
from services.publisher import MqttPublisher
from services.renderer import LiveDataStore, TokenRenderer
from services.scheduler import FeedScheduler
from services.template_store import FileTemplateStore
from api.auth import FileTokenValidator
from api.http_server import FeedPublisherAPI


logger = logging.getLogger(__name__)

DRAIN_TIMEOUT_SECONDS = 5.0


class FeedPublisherService:
    """
    Main service class that composes all dependencies and manages the
    service lifecycle.
    """

    def __init__(self, config: AppConfig, broker_client=None):
        """
        Initialize service with configuration.

        Args:
            config: Application configuration
            broker_client: Broker transport, defaults to paho-mqtt
        """
        self.config = config

        self.broker_client = broker_client
        self.connection: Optional[ConnectionManager] = None
        self.dedup_cache: Optional[DedupCache] = None
        self.data_store = LiveDataStore()
        self.publisher: Optional[MqttPublisher] = None
        self.scheduler: Optional[FeedScheduler] = None
        self.interval_timer: Optional[IntervalFeedTimer] = None
        self.api: Optional[FeedPublisherAPI] = None

        self._shutdown_event = asyncio.Event()

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            logger.info(f"Received signal {signum}, initiating shutdown")
            self._shutdown_event.set()

        for signum in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(signum, signal_handler, signum)
            except NotImplementedError:
                # Windows event loops have no signal handler support
                signal.signal(signum, lambda s, _frame: loop.call_soon_threadsafe(signal_handler, s))

    async def setup(self) -> None:
        """
        Setup all service dependencies.

        A broker that is unreachable at startup does not fail setup; the
        connection manager keeps retrying in the background.

        Raises:
            Exception: If setup fails
        """
        try:
            logger.info("Setting up mqtt-feed service")
            mqtt_config = self.config.mqtt

            if self.broker_client is None:
                self.broker_client = PahoBrokerClient(
                    qos=mqtt_config.qos,
                    connect_timeout=mqtt_config.connect_timeout_seconds
                )

            self.connection = ConnectionManager(
                broker_client=self.broker_client,
                reconnect_delay=mqtt_config.reconnect_delay_seconds,
                max_reconnect_delay=mqtt_config.max_reconnect_delay_seconds,
                backoff_factor=mqtt_config.reconnect_backoff_factor,
                jitter=mqtt_config.reconnect_jitter
            )

            self.dedup_cache = await self._create_dedup_cache()

            self.publisher = MqttPublisher(
                broker_client=self.broker_client,
                connection=self.connection,
                max_in_flight=mqtt_config.max_in_flight
            )

            feeds = self.config.feeds
            self.scheduler = FeedScheduler(
                template_store=FileTemplateStore(
                    template_dir=feeds.template_dir,
                    interval_template=feeds.interval_template,
                    update_template=feeds.update_template
                ),
                renderer=TokenRenderer(self.data_store),
                dedup_cache=self.dedup_cache,
                publisher=self.publisher,
                default_interval=feeds.default_interval_seconds,
                prune_stale=self.config.dedup.prune_stale
            )

            if feeds.enable_interval:
                self.interval_timer = IntervalFeedTimer(self.scheduler)

            token_validator = None
            if self.config.security.shared_token_file:
                token_validator = FileTokenValidator(self.config.security.shared_token_file)

            self.api = FeedPublisherAPI(
                scheduler=self.scheduler,
                connection=self.connection,
                publisher=self.publisher,
                dedup_cache=self.dedup_cache,
                data_store=self.data_store,
                token_validator=token_validator,
                enable_data_update=feeds.enable_data_update
            )

            await self.connection.setup(mqtt_config)

            logger.info(
                "Service setup completed",
                extra={
                    "component": "app",
                    "template_dir": feeds.template_dir,
                    "interval_feed": feeds.enable_interval,
                    "data_update_feed": feeds.enable_data_update,
                    "dedup_backend": self.config.dedup.backend
                }
            )

        except Exception as e:
            logger.error(f"Service setup failed: {e}")
            raise

    async def _create_dedup_cache(self) -> DedupCache:
        dedup = self.config.dedup

        if dedup.backend == "redis":
            return await RedisDedupCache.connect(
                url=dedup.redis_url,
                hash_key=dedup.redis_key,
                ttl_seconds=dedup.ttl_seconds
            )

        return InMemoryDedupCache(max_entries=dedup.max_entries)

    async def on_data_update(
        self,
        values: Mapping[str, Any],
        now: Optional[datetime] = None
    ) -> Optional[CycleResult]:
        """
        Merge new live data and run the DataUpdate feed.

        Args:
            values: Tag name to current value
            now: Cycle timestamp, defaults to the current time

        Returns:
            CycleResult, or None when the DataUpdate feed is disabled
        """
        self.data_store.update(values)

        if not self.config.feeds.enable_data_update:
            return None

        return await self.scheduler.run_cycle(
            FeedType.DATA_UPDATE,
            now or datetime.now(timezone.utc)
        )

    async def cleanup(self) -> None:
        """Cleanup service resources."""
        logger.info("Cleaning up service resources")

        try:
            if self.interval_timer:
                await self.interval_timer.stop()

            if self.publisher:
                await self.publisher.drain(timeout=DRAIN_TIMEOUT_SECONDS)

            if self.connection:
                await self.connection.close()

            if self.dedup_cache is not None:
                await self.dedup_cache.close()

            logger.info("Service cleanup completed")

        except Exception as e:
            logger.error(f"Error during cleanup: {e}")

    async def run(self) -> None:
        """
        Run the service until a shutdown signal arrives.

        Starts the interval feed timer and, when enabled, the HTTP server.
        """
        if not self.scheduler:
            raise RuntimeError("Service not setup. Call setup() first.")

        self._setup_signal_handlers()

        if self.interval_timer:
            self.interval_timer.start()

        if not self.config.server.enabled:
            logger.info("HTTP server disabled, running feeds only")
            await self._shutdown_event.wait()
            return

        import uvicorn

        logger.info(
            f"Starting mqtt-feed API on {self.config.server.host}:{self.config.server.port}"
        )

        server_config = uvicorn.Config(
            app=self.api.app,
            host=self.config.server.host,
            port=self.config.server.port,
            log_level=self.config.server.log_level,
            access_log=False
        )
        server = uvicorn.Server(server_config)
        # Shutdown is driven by our own signal handlers
        server.install_signal_handlers = lambda: None

        serve_task = asyncio.create_task(server.serve())
        shutdown_task = asyncio.create_task(self._shutdown_event.wait())

        done, _ = await asyncio.wait(
            {serve_task, shutdown_task},
            return_when=asyncio.FIRST_COMPLETED
        )

        if shutdown_task in done:
            server.should_exit = True
            await serve_task
        else:
            shutdown_task.cancel()
            # Surface server startup errors such as a port already in use
            serve_task.result()

    @asynccontextmanager
    async def lifespan(self):
        """
        Context manager for service lifecycle.

        Handles setup and cleanup automatically.
        """
        try:
            await self.setup()
            yield self
        finally:
            await self.cleanup()


async def main() -> None:
    """
    Main entry point for the application.
    """
    config = load_config()

    setup_logging(
        level=config.logging.level,
        service_name="mqtt-feed",
        enable_json=config.logging.json_format,
        enable_correlation=config.logging.enable_correlation
    )

    try:
        async with FeedPublisherService(config).lifespan() as service:
            await service.run()

    except KeyboardInterrupt:
        logger.info("Service interrupted by user")
    except Exception as e:
        logger.error(f"Service failed: {e}")
        sys.exit(1)


def run_main() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run_main()
