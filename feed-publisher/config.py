"""
Configuration management for mqtt-feed service.
Loads and validates configuration from YAML files using Pydantic.
"""

import os
import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict


logger = logging.getLogger(__name__)


class MqttConfig(BaseModel):
    """MQTT broker connection configuration."""
    model_config = ConfigDict(extra='forbid')

    host: str = Field(
        default="localhost",
        description="Broker host name or address"
    )
    port: int = Field(
        default=1883,
        ge=1,
        le=65535,
        description="Broker port"
    )
    use_tls: bool = Field(
        default=False,
        description="Connect using TLS"
    )
    ip_version: int = Field(
        default=0,
        description="IP version preference: 4, 6 or 0 for unspecified"
    )
    username: Optional[str] = Field(
        default=None,
        description="Broker user name"
    )
    password: Optional[str] = Field(
        default=None,
        repr=False,
        description="Broker password; credentials are only sent when set"
    )
    password_file: Optional[str] = Field(
        default=None,
        description="File holding the broker password (Docker secret)"
    )
    keepalive: int = Field(
        default=60,
        ge=5,
        le=3600,
        description="MQTT keepalive in seconds"
    )
    qos: int = Field(
        default=0,
        ge=0,
        le=2,
        description="QoS used for every publish"
    )
    connect_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120.0,
        description="Time to wait for the broker CONNACK"
    )
    reconnect_delay_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Delay before the first reconnect attempt"
    )
    max_reconnect_delay_seconds: float = Field(
        default=300.0,
        ge=0,
        description="Upper bound for the reconnect delay"
    )
    reconnect_backoff_factor: float = Field(
        default=2.0,
        ge=1.0,
        description="Delay multiplier applied after each failed attempt"
    )
    reconnect_jitter: float = Field(
        default=0.1,
        ge=0,
        le=1.0,
        description="Proportional random jitter added to each delay"
    )
    max_in_flight: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Maximum concurrent publishes"
    )

    @model_validator(mode='after')
    def load_password_file(self):
        if self.password or not self.password_file:
            return self
        path = Path(self.password_file)
        if not path.exists():
            raise ValueError(f"MQTT password file not found: {path}")
        self.password = path.read_text(encoding='utf-8').strip() or None
        return self


class FeedsConfig(BaseModel):
    """Template feed configuration."""
    model_config = ConfigDict(extra='forbid')

    template_dir: str = Field(
        default="mqtt",
        description="Directory holding the template files"
    )
    interval_template: str = Field(
        default="IntervalTemplate.json",
        description="Template file for the interval feed"
    )
    update_template: str = Field(
        default="DataUpdateTemplate.json",
        description="Template file for the data update feed"
    )
    enable_interval: bool = Field(
        default=True,
        description="Run the interval feed every second"
    )
    enable_data_update: bool = Field(
        default=True,
        description="Run the data update feed on new live data"
    )
    default_interval_seconds: int = Field(
        default=600,
        ge=1,
        description="Interval used by topics without one"
    )


class DedupConfig(BaseModel):
    """Deduplication cache configuration."""
    model_config = ConfigDict(extra='forbid')

    backend: str = Field(
        default="memory",
        description="Cache backend: memory or redis"
    )
    max_entries: Optional[int] = Field(
        default=10000,
        ge=1,
        description="Capacity of the in-memory cache, None for unbounded"
    )
    prune_stale: bool = Field(
        default=True,
        description="Drop entries for templates no longer in the update file"
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for the redis backend"
    )
    redis_key: str = Field(
        default="mqtt-feed:dedup",
        description="Redis hash holding the comparison values"
    )
    ttl_seconds: int = Field(
        default=604800,  # 7 days
        ge=60,
        description="TTL of the Redis hash, refreshed on every write"
    )

    @field_validator('backend')
    @classmethod
    def validate_backend(cls, v):
        valid_backends = ['memory', 'redis']
        if v.lower() not in valid_backends:
            raise ValueError(f"Invalid dedup backend. Must be one of: {valid_backends}")
        return v.lower()


class ServerConfig(BaseModel):
    """HTTP server configuration."""
    model_config = ConfigDict(extra='forbid')

    enabled: bool = Field(
        default=True,
        description="Serve the HTTP API"
    )
    host: str = Field(
        default="0.0.0.0",
        description="Host to bind to"
    )
    port: int = Field(
        default=8080,
        ge=1024,
        le=65535,
        description="Port to bind to"
    )
    log_level: str = Field(
        default="info",
        description="Uvicorn log level"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ['critical', 'error', 'warning', 'info', 'debug', 'trace']
        if v.lower() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.lower()


class SecurityConfig(BaseModel):
    """Security configuration."""
    model_config = ConfigDict(extra='forbid')

    shared_token_file: Optional[str] = Field(
        default=None,
        description="Path to shared token file; write endpoints are open when unset"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""
    model_config = ConfigDict(extra='forbid')

    level: str = Field(
        default="INFO",
        description="Logging level"
    )
    json_format: bool = Field(
        default=True,
        description="Enable JSON log formatting"
    )
    enable_correlation: bool = Field(
        default=True,
        description="Enable correlation IDs in logs"
    )

    @field_validator('level')
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()


class AppConfig(BaseModel):
    """Main application configuration."""
    model_config = ConfigDict(extra='forbid')

    mqtt: MqttConfig = Field(default_factory=MqttConfig)
    feeds: FeedsConfig = Field(default_factory=FeedsConfig)
    dedup: DedupConfig = Field(default_factory=DedupConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to config file, defaults to CONFIG_PATH env var or ./config.yml

    Returns:
        Loaded and validated configuration

    Raises:
        ValueError: If config validation or YAML parsing fails
    """
    if config_path is None:
        config_path = os.getenv('CONFIG_PATH', './config.yml')

    config_file = Path(config_path)

    if not config_file.exists():
        logger.warning(f"Config file not found: {config_file}, using defaults")
        return AppConfig(**_apply_env_overrides({}))

    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            yaml_data = yaml.safe_load(f) or {}

        logger.info(f"Loaded config from: {config_file}")

        yaml_data = _apply_env_overrides(yaml_data)

        config = AppConfig(**yaml_data)

        logger.info(
            "Configuration loaded successfully",
            extra={
                "component": "config",
                "config_file": str(config_file),
                "mqtt_host": config.mqtt.host,
                "mqtt_port": config.mqtt.port,
                "dedup_backend": config.dedup.backend
            }
        )

        return config

    except yaml.YAMLError as e:
        logger.error(f"Failed to parse YAML config: {e}")
        raise ValueError(f"Invalid YAML config: {e}") from e

    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        raise


def _apply_env_overrides(config_data: dict) -> dict:
    """
    Apply environment variable overrides to config data.

    Supports dot notation for nested keys:
    - MQTT_HOST -> mqtt.host
    - SERVER_PORT -> server.port
    - LOG_LEVEL -> logging.level

    Args:
        config_data: Base configuration data

    Returns:
        Configuration data with environment overrides applied
    """
    env_mappings = {
        'MQTT_HOST': 'mqtt.host',
        'MQTT_PORT': 'mqtt.port',
        'MQTT_USE_TLS': 'mqtt.use_tls',
        'MQTT_IP_VERSION': 'mqtt.ip_version',
        'MQTT_USERNAME': 'mqtt.username',
        'MQTT_PASSWORD': 'mqtt.password',
        'MQTT_PASSWORD_FILE': 'mqtt.password_file',
        'FEEDS_TEMPLATE_DIR': 'feeds.template_dir',
        'DEDUP_BACKEND': 'dedup.backend',
        'REDIS_URL': 'dedup.redis_url',
        'SERVER_HOST': 'server.host',
        'SERVER_PORT': 'server.port',
        'SHARED_TOKEN_FILE': 'security.shared_token_file',
        'LOG_LEVEL': 'logging.level',
        'LOG_JSON': 'logging.json_format'
    }

    # Values that must stay strings even when they look numeric
    string_paths = {'mqtt.host', 'mqtt.username', 'mqtt.password'}

    for env_var, config_path in env_mappings.items():
        env_value = os.getenv(env_var)
        if env_value is not None:
            _set_nested_value(
                config_data,
                config_path,
                env_value,
                convert=config_path not in string_paths
            )
            logger.debug(f"Applied env override: {env_var} -> {config_path}")

    return config_data


def _set_nested_value(data: dict, path: str, value: str, convert: bool = True) -> None:
    """
    Set a nested dictionary value using dot notation.

    Args:
        data: Dictionary to modify
        path: Dot-separated path (e.g., 'mqtt.host')
        value: Value to set
        convert: Whether to convert the string to bool/int/float
    """
    keys = path.split('.')
    current = data

    for key in keys[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]

    current[keys[-1]] = _convert_env_value(value) if convert else value


def _convert_env_value(value: str):
    """
    Convert environment variable string to appropriate Python type.

    Args:
        value: String value from environment

    Returns:
        Converted value (bool, int, float, or str)
    """
    if value.lower() in ('true', 'yes', 'on'):
        return True
    elif value.lower() in ('false', 'no', 'off'):
        return False

    try:
        if '.' in value:
            return float(value)
        else:
            return int(value)
    except ValueError:
        pass

    return value
