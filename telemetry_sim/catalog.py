"""Loads the metric-definition table.

The bundled table lives in ``fixtures/metrics.json``; a different table
can be supplied with the ``METRICS_FILE`` setting.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional, Union

from telemetry_sim.schemas import MetricCatalog, MetricDefinition

_FIXTURES_DIR = Path(__file__).resolve().parent / "fixtures"
DEFAULT_CATALOG_PATH = _FIXTURES_DIR / "metrics.json"

_default_cache: Optional[List[MetricDefinition]] = None


def load_catalog(path: Optional[Union[str, Path]] = None) -> List[MetricDefinition]:
    """Return the validated metric definitions from *path*.

    With no *path* the bundled table is returned (parsed once and cached).
    Raises ``pydantic.ValidationError`` for an invalid table.
    """
    global _default_cache
    if path is None:
        if _default_cache is None:
            _default_cache = _read_catalog(DEFAULT_CATALOG_PATH)
        return list(_default_cache)
    return _read_catalog(Path(path))


def _read_catalog(path: Path) -> List[MetricDefinition]:
    with open(path, encoding="utf-8") as fh:
        raw = json.load(fh)
    return MetricCatalog.model_validate(raw).metrics
