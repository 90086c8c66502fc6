"""Multi-rate scheduler: one asyncio task per metric.

Each task ticks its metric immediately and then every
``max(1 / frequency, 10 ms)`` seconds on fixed-rate deadlines, until
``stop()`` sets the shared shutdown event.  ``stop()`` waits for every
task to finish its current iteration.
"""

from __future__ import annotations

import asyncio
from typing import Dict, Optional, Protocol

import structlog

from telemetry_sim.generator import MetricGenerator
from telemetry_sim.schemas import MetricDefinition, MetricPayload

logger = structlog.get_logger(__name__)

MIN_PERIOD_SECONDS = 0.010


class MetricSink(Protocol):
    def publish_metric(self, payload: MetricPayload) -> bool: ...


def period_seconds(metric: MetricDefinition) -> float:
    """Tick period for *metric*, floored at 10 ms."""
    return max(1.0 / metric.frequency, MIN_PERIOD_SECONDS)


class MetricScheduler:
    """Drives a ``MetricGenerator`` and hands every payload to a sink."""

    def __init__(self, generator: MetricGenerator, sink: MetricSink) -> None:
        self._generator = generator
        self._sink = sink
        self._shutdown = asyncio.Event()
        self._tasks: Dict[str, asyncio.Task] = {}
        self._tick_counts: Dict[str, int] = {
            metric.id: 0 for metric in generator.definitions
        }

    # -- lifecycle ----------------------------------------------------------

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        """Spawn one periodic task per metric.  Must run inside a loop."""
        if self._tasks:
            raise RuntimeError("MetricScheduler is already running")
        self._shutdown.clear()
        loop = asyncio.get_running_loop()
        for metric in self._generator.definitions:
            self._tasks[metric.id] = loop.create_task(
                self._run_metric(metric), name=f"metric:{metric.id}"
            )
        logger.info("scheduler_started", metrics=len(self._tasks))

    async def stop(self) -> None:
        """Signal shutdown and wait for every task to finish."""
        if not self._tasks:
            return
        self._shutdown.set()
        tasks = list(self._tasks.values())
        self._tasks.clear()
        await asyncio.gather(*tasks)
        logger.info("scheduler_stopped", ticks=sum(self._tick_counts.values()))

    def run_once(self) -> None:
        """Tick every metric exactly once, in definition order."""
        for metric in self._generator.definitions:
            self._tick(metric)

    def tick_count(self, metric_id: str) -> int:
        return self._tick_counts[metric_id]

    # -- internal -----------------------------------------------------------

    def _tick(self, metric: MetricDefinition) -> Optional[MetricPayload]:
        """Generate and publish one sample; failures stay local to *metric*."""
        try:
            payload = self._generator.tick(metric.id)
            self._sink.publish_metric(payload)
        except Exception:
            logger.exception("metric_tick_failed", metric_id=metric.id)
            return None
        finally:
            self._tick_counts[metric.id] += 1
        return payload

    async def _run_metric(self, metric: MetricDefinition) -> None:
        period = period_seconds(metric)
        loop = asyncio.get_running_loop()
        deadline = loop.time()

        while not self._shutdown.is_set():
            self._tick(metric)
            deadline += period
            delay = deadline - loop.time()
            if delay < 0:
                # Fell behind; drop the missed ticks rather than bursting.
                deadline = loop.time()
                delay = 0.0
            await _interruptible_sleep(delay, self._shutdown)


async def _interruptible_sleep(seconds: float, event: asyncio.Event) -> None:
    """Sleep for *seconds* but wake early if *event* is set."""
    try:
        await asyncio.wait_for(event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass
