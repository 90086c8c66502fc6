"""Simulator configuration via environment variables.

Uses pydantic-settings so every field can be overridden with an env
var (``MQTT_URL``, ``MQTT_TOPIC_PREFIX``, ``LOG_LEVEL``, ...) or a
``.env`` file in the working directory.
"""

from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class SimulatorSettings(BaseSettings):
    """Telemetry simulator runtime settings."""

    model_config = {"env_prefix": "", "env_file": ".env", "extra": "ignore"}

    # -- broker -------------------------------------------------------------
    mqtt_url: str = Field(
        default="mqtt://broker:1883",
        description="Broker URL, mqtt://host[:port]",
    )
    mqtt_topic_prefix: str = Field(
        default="hmi/metrics",
        description="Topic prefix; each metric publishes to <prefix>/<id>",
    )
    mqtt_client_id: Optional[str] = Field(
        default=None,
        description="MQTT client identifier (random 'sim-<hex>' if unset)",
    )
    mqtt_keep_alive_seconds: int = Field(
        default=60,
        ge=0,
        le=65535,
        description="Keep-alive advertised in the CONNECT packet",
    )

    # -- metrics ------------------------------------------------------------
    metrics_file: Optional[str] = Field(
        default=None,
        description="JSON metric table; the bundled table is used if unset",
    )

    # -- behaviour ----------------------------------------------------------
    dry_run: bool = Field(
        default=False,
        description="Generate and log payloads; never connect to the broker",
    )
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(
        default="console",
        description="Log output format: 'console' or 'json'",
    )

    # -- derived ------------------------------------------------------------
    @property
    def topic_prefix(self) -> str:
        """Prefix without a trailing slash."""
        return self.mqtt_topic_prefix.rstrip("/")
