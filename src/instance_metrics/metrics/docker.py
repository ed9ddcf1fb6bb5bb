"""Docker container metrics - memory, CPU time and CPU utilization per container.

CPU utilization is a finite difference of the cumulative CPU counter between
two consecutive cycles. The previous counters live in an immutable
DockerCycleState that the caller hands in and receives back, so the metric
itself holds no cross-cycle data.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from instance_metrics.core.constants import (
    DIMENSION_CONTAINER_ID,
    DIMENSION_CONTAINER_NAME,
    DIMENSION_DOCKER_IMAGE,
    NANOSECONDS,
)
from instance_metrics.core.schemas import StandardUnit
from instance_metrics.metrics.base import (
    BaseMetric,
    CollectResult,
    Datapoint,
    construct_datapoint,
    instance_dimensions,
    utc_now,
)
from instance_metrics.sources.cgroups import CgroupReader
from instance_metrics.sources.docker_source import DockerSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DockerCycleState:
    """Cumulative CPU usage per container id from the previous cycle.

    Attributes:
        usage_history: Container id -> cumulative CPU usage (seconds)
        last_time_ns: Measurement instant of the previous cycle, or None
            before the first cycle
    """

    usage_history: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))
    last_time_ns: int | None = None


def compute_cpu_percent(current: float, previous: float, elapsed_ns: float) -> float:
    """CPU utilization between two readings of a cumulative counter in seconds.

    Example:
        ```python
        # one CPU-second consumed over ten wall seconds
        compute_cpu_percent(101.0, 100.0, 10e9)  # ~10.0
        ```
    """
    return (current - previous) / elapsed_ns * 100 * NANOSECONDS


class DockerMetric(BaseMetric):
    """Memory and CPU usage for every running container on this host."""

    def __init__(
        self,
        source: DockerSource,
        cgroups: CgroupReader,
        clock: Callable[[], int] = time.monotonic_ns,
    ) -> None:
        """Initialize the metric.

        Args:
            source: Lists the running containers
            cgroups: Reads the per-container counters
            clock: Nanosecond clock timing each cycle's measurement instant
        """
        self._source = source
        self._cgroups = cgroups
        self._clock = clock

    @property
    def name(self) -> str:
        return "docker"

    def initial_state(self) -> DockerCycleState:
        return DockerCycleState()

    def collect(self, instance_id: str, state: DockerCycleState | None = None) -> CollectResult:
        if state is None:
            state = self.initial_state()

        containers = self._source.list_running()

        now_ns = self._clock()
        timestamp = utc_now()
        elapsed_ns = now_ns - state.last_time_ns if state.last_time_ns is not None else None

        new_usage_history: dict[str, float] = {}
        datapoints: list[Datapoint] = []

        for container in containers:
            dims = instance_dimensions(
                instance_id,
                (DIMENSION_CONTAINER_ID, container.id),
                (DIMENSION_CONTAINER_NAME, container.name),
                (DIMENSION_DOCKER_IMAGE, container.image),
            )

            memory = self._cgroups.memory(container.id)
            cpu = self._cgroups.cpu_times(container.id)
            datapoints.extend(
                [
                    construct_datapoint(
                        "ContainerMemory", memory.usage, StandardUnit.BYTES, dims, timestamp
                    ),
                    construct_datapoint(
                        "ContainerCPUUser", cpu.user, StandardUnit.SECONDS, dims, timestamp
                    ),
                    construct_datapoint(
                        "ContainerCPUSystem", cpu.system, StandardUnit.SECONDS, dims, timestamp
                    ),
                ]
            )

            usage = self._cgroups.cpu_usage_seconds(container.id)
            new_usage_history[container.id] = usage

            percent_cpu: float | None = None
            previous = state.usage_history.get(container.id)
            # Also skipped when both cycles share one instant (zero elapsed time)
            if previous is not None and elapsed_ns:
                percent_cpu = compute_cpu_percent(usage, previous, elapsed_ns)
                datapoints.append(
                    construct_datapoint(
                        "ContainerCPUUsage", percent_cpu, StandardUnit.PERCENT, dims, timestamp
                    )
                )

            logger.info(
                f"Docker - Container:{container.name} Memory:{memory.max_usage} "
                f"User:{cpu.user} System:{cpu.system} Percent:{percent_cpu}"
            )

        next_state = DockerCycleState(
            usage_history=MappingProxyType(new_usage_history),
            last_time_ns=now_ns,
        )
        return CollectResult(datapoints=datapoints, state=next_state)
