"""Configuration: a frozen dataclass loaded from an optional YAML file and environment variables."""

import logging
import os
from dataclasses import dataclass

import yaml

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1_000_000


class ConfigError(ValueError):
    """Raised when the configuration file cannot be used."""


@dataclass(frozen=True)
class Config:
    log_dir: str = "logs"
    max_file_size_mb: float = 100
    topics: tuple[str, ...] = ("subscribe001",)
    timeout_secs: float = 1
    log_retention_hours: float = 0  # 0 disables cleanup
    host: str = "localhost"
    port: int = 1883
    client_id: str = "topic_recorder"
    keepalive_secs: int = 5
    queue_size: int = 100
    cleanup_interval_secs: float = 3600
    max_file_size_override: int | None = None

    @property
    def max_file_size_bytes(self) -> int:
        if self.max_file_size_override is not None:
            return self.max_file_size_override
        return int(self.max_file_size_mb * BYTES_PER_MB)


def _parse_topics(value) -> tuple[str, ...]:
    if isinstance(value, str):
        value = value.split(",")
    topics = tuple(t.strip() for t in value if t and t.strip())
    if not topics:
        raise ConfigError("at least one topic must be configured")
    return topics


def load_yaml_config(path: str | None) -> dict:
    """Load settings from a YAML file. Returns empty dict if no path or the file is missing."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    logger.info("Loaded YAML config from %s", path)
    return data


def load_config(path: str | None = None) -> Config:
    """Build Config from the YAML file at *path*, then apply environment overrides."""
    data = load_yaml_config(path)
    env = os.environ

    topics = env.get("TOPICS", data.get("topics", Config.topics))

    # MAX_FILE_SIZE_BYTES takes precedence over MAX_FILE_SIZE_MB
    raw_bytes = env.get("MAX_FILE_SIZE_BYTES", data.get("max_file_size_bytes"))

    try:
        config = Config(
            log_dir=env.get("LOG_DIR", data.get("log_dir", Config.log_dir)),
            max_file_size_mb=float(
                env.get("MAX_FILE_SIZE_MB", data.get("max_file_size_mb", Config.max_file_size_mb))
            ),
            topics=_parse_topics(topics),
            timeout_secs=float(
                env.get("TIMEOUT_SECS", data.get("timeout_secs", Config.timeout_secs))
            ),
            log_retention_hours=float(
                env.get("LOG_RETENTION_HOURS",
                        data.get("log_retention_hours", Config.log_retention_hours))
            ),
            host=env.get("MQTT_HOST", data.get("host", Config.host)),
            port=int(env.get("MQTT_PORT", data.get("port", Config.port))),
            client_id=env.get("MQTT_CLIENT_ID", data.get("client_id", Config.client_id)),
            keepalive_secs=int(data.get("keepalive_secs", Config.keepalive_secs)),
            queue_size=int(env.get("QUEUE_SIZE", data.get("queue_size", Config.queue_size))),
            cleanup_interval_secs=float(
                env.get("CLEANUP_INTERVAL_SECS",
                        data.get("cleanup_interval_secs", Config.cleanup_interval_secs))
            ),
            max_file_size_override=int(raw_bytes) if raw_bytes is not None else None,
        )
    except ConfigError:
        raise
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid configuration value: {e}") from e

    if config.log_retention_hours > 0 and config.timeout_secs >= config.log_retention_hours * 3600:
        logger.warning(
            "timeout_secs (%.0fs) is not shorter than log_retention_hours (%.1fh): "
            "retention may delete a file a silent topic still holds open",
            config.timeout_secs, config.log_retention_hours,
        )
    return config
