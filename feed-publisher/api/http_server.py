"""
HTTP server for mqtt-feed service using FastAPI.
Receives live data, triggers feeds on demand and reports health.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.responses import JSONResponse

from domain.ports import DedupCache, DedupCacheError, TokenValidator, AuthenticationError
from domain.schema import CycleResult, FeedType, HealthStatus, LiveDataUpdate
from api.auth import BearerAuth


logger = logging.getLogger(__name__)


class FeedPublisherAPI:
    """
    FastAPI application for mqtt-feed service.
    """

    def __init__(
        self,
        scheduler,
        connection,
        publisher,
        dedup_cache: DedupCache,
        data_store,
        token_validator: Optional[TokenValidator] = None,
        enable_data_update: bool = True,
        title: str = "MQTT Feed Publisher",
        version: str = "1.0.0"
    ):
        """
        Initialize FastAPI application.

        Args:
            scheduler: FeedScheduler running the feed cycles
            connection: ConnectionManager reporting broker state
            publisher: MqttPublisher exposing send counters
            dedup_cache: Dedup cache, reported by size
            data_store: LiveDataStore receiving pushed values
            token_validator: Validator for write endpoints, None leaves them open
            enable_data_update: Whether pushed data triggers the DataUpdate feed
            title: API title
            version: API version
        """
        self.scheduler = scheduler
        self.connection = connection
        self.publisher = publisher
        self.dedup_cache = dedup_cache
        self.data_store = data_store
        self.enable_data_update = enable_data_update

        self.app = FastAPI(
            title=title,
            version=version,
            description="Publishes templated status messages to an MQTT broker",
            docs_url="/docs",
            redoc_url="/redoc"
        )

        self._setup_middleware()
        self.auth_dependency = BearerAuth(token_validator)
        self._setup_routes()
        self._setup_exception_handlers()

    def _setup_middleware(self) -> None:
        """Setup FastAPI middleware."""

        @self.app.middleware("http")
        async def log_requests(request: Request, call_next):
            started = time.perf_counter()
            response = await call_next(request)
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.debug(
                f"Request completed: {request.method} {request.url.path} {response.status_code}",
                extra={
                    "component": "http_server",
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "elapsed_ms": round(elapsed_ms, 2)
                }
            )
            return response

    def _setup_routes(self) -> None:
        """Setup FastAPI routes."""

        @self.app.post(
            "/data",
            response_model=Optional[CycleResult],
            status_code=202,
            summary="Push Live Data",
            description="Merge live data values and run the DataUpdate feed"
        )
        async def push_data(
            update: LiveDataUpdate,
            _: bool = Depends(self.auth_dependency)
        ) -> Optional[CycleResult]:
            self.data_store.update(update.values)

            if not (update.trigger and self.enable_data_update):
                return None

            return await self.scheduler.run_cycle(FeedType.DATA_UPDATE, datetime.now(timezone.utc))

        @self.app.post(
            "/feeds/{feed_type}",
            response_model=CycleResult,
            status_code=202,
            summary="Run Feed",
            description="Run one cycle of the given feed type now"
        )
        async def run_feed(
            feed_type: FeedType,
            _: bool = Depends(self.auth_dependency)
        ) -> CycleResult:
            return await self.scheduler.run_cycle(feed_type, datetime.now(timezone.utc))

        @self.app.get(
            "/healthz",
            response_model=dict,
            summary="Health Check",
            description="Basic health check endpoint"
        )
        async def health_check() -> dict:
            return {
                "status": "ok",
                "service": "mqtt-feed",
                "timestamp": time.time()
            }

        @self.app.get(
            "/readyz",
            response_model=HealthStatus,
            summary="Readiness Check",
            description="Ready when the broker connection is up"
        )
        async def readiness_check() -> HealthStatus:
            health_status = await self._health_status()

            if health_status.status != "healthy":
                logger.warning(
                    f"Service not ready: {health_status.status}",
                    extra={"component": "http_server", "checks": health_status.checks}
                )
                raise HTTPException(
                    status_code=503,
                    detail=f"Service not ready: {health_status.checks}"
                )

            return health_status

        @self.app.get(
            "/metrics",
            summary="Metrics",
            description="Publisher counters and connection state"
        )
        async def metrics() -> dict:
            health_status = await self._health_status()
            return {
                "service": "mqtt-feed",
                "status": health_status.status,
                "checks": health_status.checks,
                "publisher": self.publisher.stats.model_dump(),
                "live_data_updated_at": _isoformat(self.data_store.updated_at),
                "timestamp": health_status.timestamp.isoformat()
            }

    async def _health_status(self) -> HealthStatus:
        checks = {
            "mqtt_connection": self.connection.state.value,
            "live_data_tags": str(len(self.data_store))
        }
        status = "healthy" if self.connection.is_connected else "unhealthy"

        try:
            checks["dedup_entries"] = str(await self.dedup_cache.size())
        except DedupCacheError as e:
            logger.error(f"Dedup cache health check failed: {e}")
            checks["dedup_entries"] = f"error_{e}"
            status = "unhealthy"

        return HealthStatus(status=status, checks=checks)

    def _setup_exception_handlers(self) -> None:
        """Setup custom exception handlers."""

        @self.app.exception_handler(AuthenticationError)
        async def auth_exception_handler(request: Request, exc: AuthenticationError):
            logger.warning(
                f"Authentication failed: {exc}",
                extra={
                    "component": "http_server",
                    "path": request.url.path,
                    "client_ip": request.client.host if request.client else "unknown"
                }
            )
            return JSONResponse(
                status_code=401,
                content={"detail": "Authentication failed"},
                headers={"WWW-Authenticate": "Bearer"}
            )


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None
