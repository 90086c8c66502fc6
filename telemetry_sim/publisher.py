"""Publisher façade: turns ``MetricPayload`` objects into MQTT messages.

Every message is published retained at QoS 0 to ``<prefix>/<metric id>``
so a dashboard that subscribes to ``<prefix>/#`` immediately receives
the last known value of every metric.

Features:
* Fire-and-forget: no acknowledgement, no retry, no queueing.
* Write failures and a lost connection are logged and counted; the
  message is dropped.
* ``dry_run`` mode: serialize and log, never touch the network.
"""

from __future__ import annotations

from typing import Optional

import structlog

from telemetry_sim.mqtt.connection import MQTTConnection
from telemetry_sim.mqtt.errors import NotReadyError, SocketWriteError
from telemetry_sim.schemas import MetricPayload

logger = structlog.get_logger(__name__)


class TelemetryPublisher:
    """Sends metric payloads over an ``MQTTConnection``."""

    def __init__(
        self,
        connection: Optional[MQTTConnection],
        topic_prefix: str,
        *,
        dry_run: bool = False,
    ) -> None:
        if connection is None and not dry_run:
            raise ValueError("A connection is required unless dry_run is set")
        self._connection = connection
        self._prefix = topic_prefix.rstrip("/")
        self._dry_run = dry_run
        self._published = 0
        self._failed = 0

    # -- public API ---------------------------------------------------------

    def topic_for(self, metric_id: str) -> str:
        return f"{self._prefix}/{metric_id}"

    def publish_metric(self, payload: MetricPayload) -> bool:
        """Publish *payload*.  Returns ``True`` if the frame was written.

        A connection that is not ready or a failed write counts as a
        failure and the payload is dropped.
        """
        topic = self.topic_for(payload.id)
        body = payload.to_json_bytes()

        if self._dry_run:
            logger.debug("dry_run_metric", topic=topic, payload=body.decode("utf-8"))
            self._published += 1
            return True

        try:
            self._connection.publish(topic, body, retain=True, qos=0)
        except (SocketWriteError, NotReadyError) as exc:
            self._failed += 1
            logger.warning(
                "metric_publish_failed",
                topic=topic,
                error=str(exc),
                failed_total=self._failed,
            )
            return False

        self._published += 1
        return True

    @property
    def published_count(self) -> int:
        return self._published

    @property
    def failed_count(self) -> int:
        return self._failed
