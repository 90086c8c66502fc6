"""Pydantic v2 models for the metric table and the outgoing payload.

The payload shape is the contract with subscribers (e.g. the HMI
dashboard)::

    {"id": str, "label": str, "unit": str, "value": number,
     "publishedAt": int}   # epoch milliseconds
"""

from __future__ import annotations

from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

# Beyond ~15 decimal places a float carries no more information.
MAX_PRECISION = 15


# ---------------------------------------------------------------------------
# Metric definitions
# ---------------------------------------------------------------------------

class OverrideRule(BaseModel):
    """Metric-specific replacement for the default random-walk rule.

    * ``drain``      -- ``max(floor, current - random() * step)``
    * ``accumulate`` -- ``current + random() * step``
    * ``resample``   -- uniform integer draw over ``[min, max]``
    """

    model_config = {"frozen": True}

    kind: Literal["drain", "accumulate", "resample"]
    step: float = Field(default=0.1, gt=0, description="Max change per tick")
    floor: float = Field(default=0.0, description="Lower bound for 'drain'")


class MetricDefinition(BaseModel):
    """Static description of one simulated metric."""

    model_config = {"frozen": True}

    id: str = Field(..., min_length=1, examples=["vehicleSpeed"])
    label: str = Field(..., description="Short display label")
    unit: str = Field(default="", description="Engineering unit, e.g. 'km/h'")
    min: float
    max: float
    smoothing: float = Field(
        ...,
        gt=0,
        le=1,
        description="Fraction of the distance to the target covered per tick",
    )
    frequency: float = Field(..., gt=0, description="Update rate in Hz")
    precision: Optional[int] = Field(
        default=None,
        ge=0,
        le=MAX_PRECISION,
        description="Decimal places in the published value (integer if unset)",
    )
    override: Optional[OverrideRule] = None

    @field_validator("id")
    @classmethod
    def reject_topic_wildcards(cls, v: str) -> str:
        """The id becomes a topic level, so MQTT wildcards are not allowed."""
        if any(ch in v for ch in "/+#"):
            raise ValueError(f"Metric id must not contain '/', '+' or '#': {v!r}")
        return v

    @model_validator(mode="after")
    def check_range(self) -> "MetricDefinition":
        if self.min > self.max:
            raise ValueError(
                f"Metric '{self.id}': min ({self.min}) must be <= max ({self.max})"
            )
        return self


class MetricCatalog(BaseModel):
    """The full metric table, as stored in ``fixtures/metrics.json``."""

    metrics: List[MetricDefinition] = Field(default_factory=list)

    @field_validator("metrics")
    @classmethod
    def unique_ids(cls, v: List[MetricDefinition]) -> List[MetricDefinition]:
        seen = set()
        for metric in v:
            if metric.id in seen:
                raise ValueError(f"Duplicate metric id '{metric.id}'")
            seen.add(metric.id)
        return v


# ---------------------------------------------------------------------------
# Outgoing payload
# ---------------------------------------------------------------------------

class MetricPayload(BaseModel):
    """One published metric sample."""

    model_config = {"populate_by_name": True}

    id: str
    label: str
    unit: str
    value: Union[int, float]
    published_at: int = Field(
        ...,
        alias="publishedAt",
        description="Capture time in milliseconds since the Unix epoch",
    )

    def to_json_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")
