"""Tests for telemetry_sim.scheduler -- MetricScheduler."""

from __future__ import annotations

import asyncio
import random
from typing import List

import pytest

from telemetry_sim.generator import MetricGenerator
from telemetry_sim.scheduler import MetricScheduler, period_seconds
from telemetry_sim.schemas import MetricDefinition, MetricPayload


class _Sink:
    def __init__(self, fail_for: str | None = None) -> None:
        self.payloads: List[MetricPayload] = []
        self._fail_for = fail_for

    def publish_metric(self, payload: MetricPayload) -> bool:
        if payload.id == self._fail_for:
            raise RuntimeError("sink exploded")
        self.payloads.append(payload)
        return True

    def ids(self) -> List[str]:
        return [p.id for p in self.payloads]


def _metric(metric_id: str, frequency: float) -> MetricDefinition:
    return MetricDefinition(
        id=metric_id, label=metric_id, unit="", min=0, max=100,
        smoothing=0.2, frequency=frequency,
    )


def _scheduler(sink: _Sink, *metrics: MetricDefinition) -> MetricScheduler:
    return MetricScheduler(MetricGenerator(metrics, rng=random.Random(0)), sink)


def test_period_from_frequency() -> None:
    assert period_seconds(_metric("a", 20)) == pytest.approx(0.05)
    assert period_seconds(_metric("a", 0.5)) == pytest.approx(2.0)


def test_period_floor_is_ten_ms() -> None:
    assert period_seconds(_metric("a", 1000)) == pytest.approx(0.010)
    assert period_seconds(_metric("a", 100)) == pytest.approx(0.010)


def test_run_once_ticks_each_metric() -> None:
    sink = _Sink()
    scheduler = _scheduler(sink, _metric("a", 1), _metric("b", 2))
    scheduler.run_once()
    assert sink.ids() == ["a", "b"]
    assert scheduler.tick_count("a") == 1


@pytest.mark.asyncio
async def test_first_tick_is_immediate() -> None:
    sink = _Sink()
    scheduler = _scheduler(sink, _metric("slow", 0.1))
    scheduler.start()
    try:
        await asyncio.sleep(0.01)
        assert sink.ids() == ["slow"]
    finally:
        await scheduler.stop()


@pytest.mark.asyncio
async def test_metrics_tick_at_their_own_rate() -> None:
    sink = _Sink()
    scheduler = _scheduler(sink, _metric("fast", 50), _metric("slow", 2))
    scheduler.start()
    await asyncio.sleep(0.3)
    await scheduler.stop()

    fast = scheduler.tick_count("fast")
    slow = scheduler.tick_count("slow")
    assert slow == 1
    assert 8 <= fast <= 17


@pytest.mark.asyncio
async def test_stop_ends_all_tasks() -> None:
    sink = _Sink()
    scheduler = _scheduler(sink, _metric("a", 100), _metric("b", 100))
    scheduler.start()
    assert scheduler.running
    await asyncio.sleep(0.05)
    await scheduler.stop()
    assert not scheduler.running

    count = len(sink.payloads)
    await asyncio.sleep(0.05)
    assert len(sink.payloads) == count
    # Stopping twice is harmless.
    await scheduler.stop()


@pytest.mark.asyncio
async def test_start_twice_raises() -> None:
    scheduler = _scheduler(_Sink(), _metric("a", 1))
    scheduler.start()
    try:
        with pytest.raises(RuntimeError, match="already running"):
            scheduler.start()
    finally:
        await scheduler.stop()


@pytest.mark.asyncio
async def test_failing_metric_does_not_stop_others() -> None:
    sink = _Sink(fail_for="broken")
    scheduler = _scheduler(sink, _metric("broken", 50), _metric("healthy", 50))
    scheduler.start()
    await asyncio.sleep(0.15)
    await scheduler.stop()

    assert "broken" not in sink.ids()
    assert sink.ids().count("healthy") >= 3
    # The failing metric keeps ticking too.
    assert scheduler.tick_count("broken") >= 3
