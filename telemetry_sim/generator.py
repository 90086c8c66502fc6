"""Per-metric value generation.

Each metric performs a bounded, self-correcting random walk: every tick
moves the value a fraction (``smoothing``) of the way toward a target,
adds a little noise proportional to the metric's range, and clamps the
result into ``[min, max]``.  When the value gets close to the target a
new target is drawn, so the walk keeps wandering without ever settling.

Metrics with an ``OverrideRule`` (fuel drain, odometer, gear, ...)
replace the walk with their own rule; clamping and re-aiming still
apply.
"""

from __future__ import annotations

import math
import random
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Iterable, List, Optional, Union

from telemetry_sim.schemas import MetricDefinition, MetricPayload, OverrideRule

Override = Callable[[float], float]

_NOISE_SCALE = 0.01
_REAIM_FACTOR = 5


@dataclass
class MetricState:
    """Mutable per-metric state."""

    value: float
    target: float


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def round_value(value: float, precision: Optional[int]) -> Union[int, float]:
    """Round half away from zero, like a dashboard would display it.

    Returns an ``int`` when *precision* is ``None`` or ``0``.
    """
    places = precision or 0
    quantum = Decimal(1).scaleb(-places)
    rounded = Decimal(value).quantize(quantum, rounding=ROUND_HALF_UP)
    if places == 0:
        return int(rounded)
    # Adding 0.0 turns -0.0 into 0.0.
    return float(rounded) + 0.0


def build_override(
    rule: OverrideRule,
    metric: MetricDefinition,
    rng: random.Random,
) -> Override:
    """Turn a declarative ``OverrideRule`` into a ``current -> next`` callable."""
    if rule.kind == "drain":
        return lambda current: max(rule.floor, current - rng.random() * rule.step)
    if rule.kind == "accumulate":
        return lambda current: current + rng.random() * rule.step
    if rule.kind == "resample":
        span = math.floor(metric.max - metric.min) + 1
        return lambda current: math.floor(rng.random() * span) + metric.min
    raise ValueError(f"Unknown override rule '{rule.kind}'")


def _now_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class MetricGenerator:
    """Owns the state table for a set of metrics and advances it per tick.

    Parameters
    ----------
    definitions:
        Metric definitions; identifiers must be unique.
    rng:
        Random source.  Pass a seeded ``random.Random`` for repeatable runs.
    clock:
        Returns the capture timestamp in epoch milliseconds.
    """

    def __init__(
        self,
        definitions: Iterable[MetricDefinition],
        *,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self._rng = rng or random.Random()
        self._clock = clock or _now_ms
        self._definitions: Dict[str, MetricDefinition] = {}
        self._states: Dict[str, MetricState] = {}
        self._overrides: Dict[str, Override] = {}

        for metric in definitions:
            if metric.id in self._definitions:
                raise ValueError(f"Duplicate metric id '{metric.id}'")
            self._definitions[metric.id] = metric
            self._states[metric.id] = MetricState(
                value=metric.min,
                target=self._random_in_range(metric),
            )
            if metric.override is not None:
                self._overrides[metric.id] = build_override(
                    metric.override, metric, self._rng
                )

    # -- accessors ----------------------------------------------------------

    @property
    def definitions(self) -> List[MetricDefinition]:
        return list(self._definitions.values())

    def definition(self, metric_id: str) -> MetricDefinition:
        return self._definitions[metric_id]

    def state(self, metric_id: str) -> MetricState:
        return self._states[metric_id]

    # -- ticking ------------------------------------------------------------

    def advance(self, metric_id: str) -> float:
        """Advance *metric_id* by one tick and return the clamped raw value."""
        metric = self._definitions[metric_id]
        state = self._states[metric_id]

        override = self._overrides.get(metric_id)
        if override is not None:
            raw = override(state.value)
        else:
            raw = self._default_step(metric, state)

        state.value = clamp(raw, metric.min, metric.max)
        if abs(state.value - state.target) < metric.smoothing * _REAIM_FACTOR:
            state.target = self._random_in_range(metric)
        return state.value

    def tick(self, metric_id: str) -> MetricPayload:
        """Advance *metric_id* and wrap the rounded value in a payload."""
        value = self.advance(metric_id)
        metric = self._definitions[metric_id]
        return MetricPayload(
            id=metric.id,
            label=metric.label,
            unit=metric.unit,
            value=round_value(value, metric.precision),
            published_at=self._clock(),
        )

    # -- internal -----------------------------------------------------------

    def _default_step(self, metric: MetricDefinition, state: MetricState) -> float:
        towards = state.target - state.value
        noise = (
            (self._rng.random() - 0.5)
            * metric.smoothing
            * (metric.max - metric.min)
            * _NOISE_SCALE
        )
        return state.value + towards * metric.smoothing + noise

    def _random_in_range(self, metric: MetricDefinition) -> float:
        return self._rng.random() * (metric.max - metric.min) + metric.min
