"""Configuration loading and Pydantic models for miniolite."""

import urllib.parse
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from miniolite.errors import ConfigurationError

DEFAULT_BUCKET = "default"


class ClientConfig(BaseModel):
    """Credentials, endpoint and bucket selection for one client."""

    access_key: str = ""
    secret_key: str = Field(default="", repr=False)
    endpoint: str = ""
    bucket: str = DEFAULT_BUCKET
    domain: str = ""


class TransportConfig(BaseModel):
    """Timeouts and pool size for the HTTP transport."""

    connect_timeout: float = 30.0
    low_speed_limit: float = 1
    low_speed_time: float = 30.0
    max_connections: int = 10


class LoggingConfig(BaseModel):
    """Log level and output format."""

    level: str = "INFO"
    format: str = "text"


class MiniliteConfig(BaseModel):
    """Top-level miniolite configuration."""

    client: ClientConfig = Field(default_factory=ClientConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def validate_client_config(config: ClientConfig) -> ClientConfig:
    """Check that a client configuration can be used to build requests.

    Args:
        config: The client configuration.

    Returns:
        The same configuration, with a trailing slash removed from the
        endpoint and an empty bucket replaced by the default name.

    Raises:
        ConfigurationError: If a required field is missing or the endpoint
            is not an http(s) URL with a host.
    """
    missing = [name for name in ("access_key", "secret_key", "endpoint") if not getattr(config, name)]
    if missing:
        raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")

    parsed = urllib.parse.urlsplit(config.endpoint)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigurationError(f"Invalid endpoint URL: {config.endpoint!r}")

    return config.model_copy(
        update={
            "endpoint": config.endpoint.rstrip("/"),
            "bucket": config.bucket or DEFAULT_BUCKET,
        }
    )


def _present(data: dict[str, Any] | None, fields: tuple[str, ...]) -> dict[str, Any]:
    """Pick the keys of ``fields`` that appear in ``data``.

    Absent keys are left out so the model defaults apply.
    """
    if data is None:
        return {}
    return {name: data[name] for name in fields if name in data}


def _parse_client(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the client section from YAML data.

    Accepts both snake_case and the camelCase spellings (``accessKey``,
    ``secretKey``) used by existing MinIO client configs. An empty bucket
    falls back to the default.
    """
    if data is None:
        return {}
    data = dict(data)
    for camel, snake in (("accessKey", "access_key"), ("secretKey", "secret_key")):
        if camel in data:
            data.setdefault(snake, data[camel])
    if not data.get("bucket"):
        data.pop("bucket", None)
    return _present(data, tuple(ClientConfig.model_fields))


def _parse_transport(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the transport section from YAML data."""
    return _present(data, tuple(TransportConfig.model_fields))


def _parse_logging(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the logging section from YAML data."""
    return _present(data, tuple(LoggingConfig.model_fields))


def load_config(path: Path) -> MiniliteConfig:
    """Load a MiniliteConfig from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A fully populated MiniliteConfig validated by Pydantic. Required
        client fields are not checked here; see validate_client_config().

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    return MiniliteConfig(
        client=ClientConfig(**_parse_client(raw.get("client"))),
        transport=TransportConfig(**_parse_transport(raw.get("transport"))),
        logging=LoggingConfig(**_parse_logging(raw.get("logging"))),
    )
