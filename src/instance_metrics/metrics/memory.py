"""Host memory metrics via psutil."""

from __future__ import annotations

import logging
from typing import Any

import psutil

from instance_metrics.core.errors import CollectionError
from instance_metrics.core.schemas import StandardUnit
from instance_metrics.metrics.base import (
    BaseMetric,
    CollectResult,
    construct_datapoint,
    instance_dimensions,
    utc_now,
)

logger = logging.getLogger(__name__)


class HostMemoryMetric(BaseMetric):
    """Memory utilization, used and available bytes of the whole host."""

    @property
    def name(self) -> str:
        return "memory"

    def collect(self, instance_id: str, state: Any = None) -> CollectResult:
        try:
            vm = psutil.virtual_memory()
        except (psutil.Error, OSError) as e:
            raise CollectionError(f"Cannot read host memory: {e}") from e

        dims = instance_dimensions(instance_id)
        timestamp = utc_now()

        logger.info(f"Memory - Utilization:{vm.percent}% Used:{vm.used} Available:{vm.available}")

        values = [
            ("MemoryUtilization", vm.percent, StandardUnit.PERCENT),
            ("MemoryUsed", vm.used, StandardUnit.BYTES),
            ("MemoryAvailable", vm.available, StandardUnit.BYTES),
        ]
        return CollectResult(
            datapoints=[
                construct_datapoint(metric_name, value, unit, dims, timestamp)
                for metric_name, value, unit in values
            ]
        )
