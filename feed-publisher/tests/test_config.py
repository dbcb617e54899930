"""
Tests for configuration loading and environment overrides.
"""

import pytest
from pydantic import ValidationError

from config import AppConfig, MqttConfig, load_config


ENV_VARS = [
    "CONFIG_PATH", "MQTT_HOST", "MQTT_PORT", "MQTT_USE_TLS", "MQTT_IP_VERSION",
    "MQTT_USERNAME", "MQTT_PASSWORD", "MQTT_PASSWORD_FILE", "FEEDS_TEMPLATE_DIR",
    "DEDUP_BACKEND", "REDIS_URL", "SERVER_HOST", "SERVER_PORT",
    "SHARED_TOKEN_FILE", "LOG_LEVEL", "LOG_JSON",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_missing_file_uses_defaults(tmp_path):
    config = load_config(str(tmp_path / "absent.yml"))

    assert config.mqtt.host == "localhost"
    assert config.mqtt.port == 1883
    assert config.mqtt.reconnect_delay_seconds == 30.0
    assert config.feeds.interval_template == "IntervalTemplate.json"
    assert config.feeds.update_template == "DataUpdateTemplate.json"
    assert config.feeds.default_interval_seconds == 600
    assert config.dedup.backend == "memory"
    assert config.security.shared_token_file is None


def test_yaml_values_are_loaded(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text(
        "mqtt:\n"
        "  host: broker.local\n"
        "  port: 8883\n"
        "  use_tls: true\n"
        "  ip_version: 4\n"
        "feeds:\n"
        "  template_dir: /etc/mqtt-feed\n"
        "dedup:\n"
        "  backend: REDIS\n",
        encoding="utf-8"
    )

    config = load_config(str(path))

    assert config.mqtt.host == "broker.local"
    assert config.mqtt.port == 8883
    assert config.mqtt.use_tls is True
    assert config.mqtt.ip_version == 4
    assert config.feeds.template_dir == "/etc/mqtt-feed"
    assert config.dedup.backend == "redis"


def test_config_path_from_environment(tmp_path, monkeypatch):
    path = tmp_path / "custom.yml"
    path.write_text("server:\n  port: 9090\n", encoding="utf-8")
    monkeypatch.setenv("CONFIG_PATH", str(path))

    assert load_config().server.port == 9090


def test_environment_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / "config.yml"
    path.write_text("mqtt:\n  host: broker.local\n", encoding="utf-8")
    monkeypatch.setenv("MQTT_HOST", "10")
    monkeypatch.setenv("MQTT_PORT", "8883")
    monkeypatch.setenv("MQTT_USE_TLS", "true")
    monkeypatch.setenv("MQTT_PASSWORD", "1234")
    monkeypatch.setenv("LOG_JSON", "false")

    config = load_config(str(path))

    assert config.mqtt.host == "10"
    assert config.mqtt.port == 8883
    assert config.mqtt.use_tls is True
    assert config.mqtt.password == "1234"
    assert config.logging.json_format is False


def test_password_file_is_read(tmp_path):
    secret = tmp_path / "mqtt_password"
    secret.write_text("s3cret\n", encoding="utf-8")

    config = MqttConfig(username="station", password_file=str(secret))

    assert config.password == "s3cret"


def test_missing_password_file_is_rejected(tmp_path):
    with pytest.raises(ValidationError):
        MqttConfig(password_file=str(tmp_path / "absent"))


def test_invalid_dedup_backend_is_rejected():
    with pytest.raises(ValidationError):
        AppConfig(dedup={"backend": "memcached"})


def test_unknown_keys_are_rejected():
    with pytest.raises(ValidationError):
        AppConfig(mqtt={"hostname": "broker"})


def test_invalid_yaml_raises_value_error(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text("mqtt: [unclosed\n", encoding="utf-8")

    with pytest.raises(ValueError, match="Invalid YAML"):
        load_config(str(path))
