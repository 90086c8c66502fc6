"""Main asyncio entry point for the telemetry simulator."""

from __future__ import annotations

import asyncio
import signal
import sys
from typing import Optional

import structlog

from telemetry_sim.catalog import load_catalog
from telemetry_sim.config import SimulatorSettings
from telemetry_sim.generator import MetricGenerator
from telemetry_sim.mqtt.connection import MQTTConnection
from telemetry_sim.publisher import TelemetryPublisher
from telemetry_sim.scheduler import MetricScheduler

logger = structlog.get_logger(__name__)


def create_connection(settings: SimulatorSettings) -> Optional[MQTTConnection]:
    """Return the broker connection, or ``None`` in dry-run mode."""
    if settings.dry_run:
        return None
    return MQTTConnection(
        settings.mqtt_url,
        client_id=settings.mqtt_client_id,
        keep_alive=settings.mqtt_keep_alive_seconds,
    )


async def run_simulator(
    settings: SimulatorSettings,
    *,
    once: bool = False,
    shutdown_event: Optional[asyncio.Event] = None,
) -> None:
    """Connect, then publish every metric on its own schedule.

    Parameters
    ----------
    settings:
        Fully-resolved simulator configuration.
    once:
        If ``True``, publish one sample per metric then exit.
    shutdown_event:
        Set to stop the simulator.  Created internally when omitted;
        SIGINT and SIGTERM set it.

    Handshake failures (``BrokerConnectionError``,
    ``ProtocolRejectionError``) propagate; there is no reconnect loop.
    """
    if shutdown_event is None:
        shutdown_event = asyncio.Event()

    definitions = load_catalog(settings.metrics_file)
    generator = MetricGenerator(definitions)
    connection = create_connection(settings)

    # --- signal handling ---------------------------------------------------
    def _request_shutdown() -> None:
        logger.info("shutdown_requested")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _request_shutdown)

    try:
        if connection is not None:
            await connection.connect()
            logger.info(
                "simulator_connected",
                url=settings.mqtt_url,
                client_id=connection.client_id,
                metrics=len(definitions),
            )

        publisher = TelemetryPublisher(
            connection, settings.topic_prefix, dry_run=settings.dry_run
        )
        scheduler = MetricScheduler(generator, publisher)

        if once:
            scheduler.run_once()
            logger.info("single_pass_published", published=publisher.published_count)
            return

        scheduler.start()
        try:
            await shutdown_event.wait()
        finally:
            await scheduler.stop()
            logger.info(
                "simulator_stopped",
                published=publisher.published_count,
                failed=publisher.failed_count,
            )
    finally:
        if connection is not None:
            await connection.end()
        if sys.platform != "win32":
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
