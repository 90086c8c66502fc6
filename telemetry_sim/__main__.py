"""CLI entry point: ``python -m telemetry_sim [--dry-run] [--once]``."""

from __future__ import annotations

import argparse
import asyncio
import sys

import structlog


def _configure_logging(level: str, fmt: str) -> None:
    """Set up structlog with console or JSON rendering."""
    import logging

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
        stream=sys.stderr,
    )

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _summarize_validation_error(exc) -> str:
    """Collapse a pydantic ``ValidationError`` into one line."""
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'settings'}: {err['msg']}"
        for err in exc.errors()
    )


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="telemetry_sim",
        description="Synthetic vehicle telemetry publisher for MQTT",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Generate and log payloads; never connect to the broker",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        default=False,
        help="Publish one sample per metric then exit",
    )
    parser.add_argument(
        "--metrics-file",
        default=None,
        help="JSON metric table (overrides METRICS_FILE)",
    )
    args = parser.parse_args()

    # Load settings from env / .env file first, then override with CLI flags.
    from pydantic import ValidationError

    from telemetry_sim.config import SimulatorSettings

    try:
        settings = SimulatorSettings()
    except ValidationError as exc:
        # Settings never loaded, so log with the defaults.
        _configure_logging("INFO", "console")
        structlog.get_logger("telemetry_sim").error(
            "simulator_failed", error=_summarize_validation_error(exc)
        )
        sys.exit(1)
    if args.dry_run is True:
        settings.dry_run = True
    if args.metrics_file:
        settings.metrics_file = args.metrics_file

    _configure_logging(settings.log_level, settings.log_format)

    logger = structlog.get_logger("telemetry_sim")
    logger.info(
        "simulator_starting",
        version=__import__("telemetry_sim").__version__,
        broker=settings.mqtt_url,
        topic_prefix=settings.topic_prefix,
        dry_run=settings.dry_run,
        once=args.once,
    )

    from telemetry_sim.mqtt.errors import MQTTError
    from telemetry_sim.simulator_loop import run_simulator

    try:
        asyncio.run(run_simulator(settings, once=args.once))
    except KeyboardInterrupt:
        logger.info("simulator_interrupted")
        sys.exit(0)
    except (MQTTError, ValueError, OSError) as exc:
        logger.error("simulator_failed", error=str(exc))
        sys.exit(1)


if __name__ == "__main__":
    main()
