"""
Domain schemas for mqtt-feed service.
Defines template topics, connection options and result records.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field, ConfigDict, PositiveInt


class FeedType(str, Enum):
    """Publishing trigger that is running a feed cycle."""
    INTERVAL = "Interval"
    DATA_UPDATE = "DataUpdate"


class ConnectionState(str, Enum):
    """Broker connection state owned by the ConnectionManager."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class AddressFamily(str, Enum):
    """IP version preference used when opening the broker socket."""
    IPV4 = "ipv4"
    IPV6 = "ipv6"
    UNSPECIFIED = "unspecified"

    @classmethod
    def from_ip_version(cls, ip_version: Optional[int]) -> "AddressFamily":
        """
        Map the configured IP version to an address family.

        Args:
            ip_version: 4, 6 or anything else for no preference

        Returns:
            Matching AddressFamily
        """
        if ip_version == 4:
            return cls.IPV4
        if ip_version == 6:
            return cls.IPV6
        return cls.UNSPECIFIED


class TopicDefinition(BaseModel):
    """
    One topic entry of a template file.

    The raw ``data`` template text doubles as the deduplication key.
    """
    model_config = ConfigDict(extra='ignore', frozen=True, populate_by_name=True)

    topic: str = Field(..., min_length=1, description="Topic to publish to")
    data: str = Field(..., description="Raw template text rendered into the payload")
    interval: Optional[PositiveInt] = Field(
        None,
        description="Publish period in seconds for the interval feed"
    )
    retain: bool = Field(default=False, description="Broker retain flag")
    do_not_trigger_on_tags: Optional[FrozenSet[str]] = Field(
        None,
        alias="doNotTriggerOnTags",
        description="Tags whose changes must not trigger a republish"
    )


class TemplateFile(BaseModel):
    """Parsed template file: ordered topic definitions."""
    model_config = ConfigDict(extra='ignore', frozen=True)

    topics: List[TopicDefinition] = Field(default_factory=list)


class RenderResult(BaseModel):
    """Output of the render adapter for one template."""
    model_config = ConfigDict(frozen=True)

    output: str
    comparison_value: str


class ConnectOptions(BaseModel):
    """
    Broker connection options.
    Built once per setup and reused verbatim on every reconnect attempt.
    """
    model_config = ConfigDict(frozen=True)

    host: str
    port: int = 1883
    use_tls: bool = False
    address_family: AddressFamily = AddressFamily.UNSPECIFIED
    client_id: str
    username: Optional[str] = None
    password: Optional[str] = Field(default=None, repr=False)
    keepalive: int = 60
    clean_session: bool = True

    @property
    def has_credentials(self) -> bool:
        return bool(self.password)

    @classmethod
    def from_config(cls, config) -> "ConnectOptions":
        """
        Build options from the ``mqtt`` configuration section.

        A new client identifier is generated on every call. Credentials are
        only attached when a password is configured.

        Args:
            config: MqttConfig instance

        Returns:
            Immutable connection options
        """
        password = config.password or None
        return cls(
            host=config.host,
            port=config.port,
            use_tls=config.use_tls,
            address_family=AddressFamily.from_ip_version(config.ip_version),
            client_id=str(uuid.uuid4()),
            username=config.username if password else None,
            password=password,
            keepalive=config.keepalive,
        )


class CycleResult(BaseModel):
    """Summary of one feed cycle."""
    model_config = ConfigDict(extra='forbid')

    feed_type: FeedType
    template_found: bool = False
    topics_evaluated: int = 0
    topics_due: int = 0
    published: int = 0
    deduplicated: int = 0
    aborted: bool = False


class PublisherStats(BaseModel):
    """Counters kept by the publisher."""
    model_config = ConfigDict(extra='forbid')

    dispatched: int = 0
    published: int = 0
    dropped_not_connected: int = 0
    failed: int = 0
    in_flight: int = 0


class LiveDataUpdate(BaseModel):
    """Live data pushed by the telemetry-producing application."""
    model_config = ConfigDict(extra='forbid')

    values: Dict[str, Any] = Field(..., description="Tag name to current value")
    trigger: bool = Field(default=True, description="Run the DataUpdate feed after merging")


class HealthStatus(BaseModel):
    """Health check response."""
    model_config = ConfigDict(extra='forbid')

    status: str = Field(..., description="overall status: healthy, unhealthy")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    checks: Dict[str, str] = Field(default_factory=dict, description="Individual check results")
