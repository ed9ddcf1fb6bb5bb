"""Base metric abstract class and the datapoint model.

All metric families implement this interface so the scheduler can collect
them uniformly and publish the combined datapoints once per cycle.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from instance_metrics.core.constants import DIMENSION_INSTANCE_ID
from instance_metrics.core.errors import CollectionError, MalformedSnapshotError
from instance_metrics.core.schemas import StandardUnit

__all__ = [
    "BaseMetric",
    "CollectResult",
    "CollectionError",
    "Datapoint",
    "Dimension",
    "MalformedSnapshotError",
    "construct_datapoint",
    "instance_dimensions",
    "utc_now",
]

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class Dimension:
    """A named string attribute attached to a datapoint."""

    name: str
    value: str


@dataclass(frozen=True)
class Datapoint:
    """A single metric value destined for the ingestion API.

    `value` is not validated: non-finite floats are carried through as-is.
    """

    metric_name: str
    value: float
    unit: StandardUnit
    dimensions: tuple[Dimension, ...] = ()
    timestamp: datetime | None = None


@dataclass
class CollectResult:
    """Datapoints produced by one metric in one cycle, plus its next state."""

    datapoints: list[Datapoint] = field(default_factory=list)
    state: Any = None


def construct_datapoint(
    metric_name: str,
    value: float,
    unit: StandardUnit,
    dimensions: Iterable[Dimension],
    timestamp: datetime | None = None,
) -> Datapoint:
    """Build a datapoint, coercing the value to float."""
    return Datapoint(
        metric_name=metric_name,
        value=float(value),
        unit=unit,
        dimensions=tuple(dimensions),
        timestamp=timestamp,
    )


def instance_dimensions(instance_id: str, *extra: tuple[str, str]) -> tuple[Dimension, ...]:
    """Dimension set starting with the host instance id, followed by `extra` pairs."""
    dims = [Dimension(DIMENSION_INSTANCE_ID, instance_id)]
    dims.extend(Dimension(name, value) for name, value in extra)
    return tuple(dims)


def utc_now() -> datetime:
    return datetime.now(UTC)


class BaseMetric(ABC):
    """Abstract base class for metric families.

    Implementations:
    - HostMemoryMetric: host memory via psutil
    - DockerMetric: per-container cgroup stats with cross-cycle CPU deltas
    - SwarmMetric: per-service rollup of swarm task containers
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short name of this metric family."""
        pass

    def initial_state(self) -> Any:
        """State handed to the first collect() call. Stateless metrics return None."""
        return None

    @abstractmethod
    def collect(self, instance_id: str, state: Any = None) -> CollectResult:
        """Collect one cycle of datapoints.

        Args:
            instance_id: Host identifier attached to every datapoint
            state: The state returned by the previous successful cycle

        Returns:
            CollectResult with the datapoints and the state for the next cycle

        Raises:
            CollectionError: If any source read fails; nothing is returned
        """
        pass
