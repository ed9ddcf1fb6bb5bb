"""Collection scheduler driving one cycle per interval.

The scheduler owns every metric's cross-cycle state. A cycle:
- collects each enabled metric with the state of the last successful cycle,
- publishes the combined datapoints in batches only if all metrics succeeded,
- then swaps in the new states.

A failed cycle publishes nothing and leaves the previous states untouched.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from instance_metrics.core.constants import MAX_DATAPOINTS_PER_CALL
from instance_metrics.core.errors import CollectionError, PublishError
from instance_metrics.core.schemas import CollectorConfig, MetricKind
from instance_metrics.metrics.base import BaseMetric, Datapoint
from instance_metrics.metrics.docker import DockerMetric
from instance_metrics.metrics.memory import HostMemoryMetric
from instance_metrics.metrics.swarm import SwarmMetric
from instance_metrics.publishing.base import Publisher, dispatch
from instance_metrics.sources.cgroups import CgroupReader
from instance_metrics.sources.docker_source import DockerSource

logger = logging.getLogger(__name__)


def build_metrics(config: CollectorConfig, source: DockerSource | None = None) -> list[BaseMetric]:
    """Instantiate the metric families enabled in the configuration."""
    if source is None:
        source = DockerSource(timeout=config.docker_timeout_seconds)

    metrics: list[BaseMetric] = []
    for kind in config.metrics:
        if kind is MetricKind.MEMORY:
            metrics.append(HostMemoryMetric())
        elif kind is MetricKind.DOCKER:
            metrics.append(DockerMetric(source, CgroupReader(config.cgroup_root)))
        elif kind is MetricKind.SWARM:
            metrics.append(SwarmMetric(source, label=config.swarm_service_label))
    return metrics


@dataclass
class CycleReport:
    """Outcome of one successful cycle."""

    datapoints: list[Datapoint]
    publish_calls: int
    duration_seconds: float


class MetricsScheduler:
    """Runs collection cycles and publishes their datapoints.

    Example:
        ```python
        scheduler = MetricsScheduler(
            metrics=build_metrics(config),
            publisher=CloudWatchPublisher(config.region),
            instance_id="i-0123456789abcdef0",
            namespace=config.namespace,
            interval_seconds=config.interval_seconds,
        )
        scheduler.run()
        ```
    """

    def __init__(
        self,
        metrics: Sequence[BaseMetric],
        publisher: Publisher,
        instance_id: str,
        namespace: str,
        interval_seconds: float = 60,
        max_datapoints_per_call: int = MAX_DATAPOINTS_PER_CALL,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.metrics = list(metrics)
        self.publisher = publisher
        self.instance_id = instance_id
        self.namespace = namespace
        self.interval_seconds = interval_seconds
        self.max_datapoints_per_call = max_datapoints_per_call
        self._sleep = sleep
        self._clock = clock
        self._states: dict[str, Any] = {m.name: m.initial_state() for m in self.metrics}

    def state(self, metric_name: str) -> Any:
        """State the named metric will receive on the next cycle."""
        return self._states.get(metric_name)

    def run_cycle(self) -> CycleReport:
        """Collect all metrics, publish, then commit the new states.

        Non-finite values (a service whose system CPU counter did not move) are
        dispatched in the first batch. A backend that rejects them then fails
        the cycle before any other batch has been sent.

        Raises:
            CollectionError: If any metric failed; nothing was published
            PublishError: If the publisher rejected a batch
        """
        started = self._clock()
        datapoints: list[Datapoint] = []
        new_states: dict[str, Any] = {}

        for metric in self.metrics:
            result = metric.collect(self.instance_id, self._states.get(metric.name))
            logger.debug(f"{metric.name}: {len(result.datapoints)} datapoints")
            datapoints.extend(result.datapoints)
            new_states[metric.name] = result.state

        # Stable: finite datapoints keep their collection order
        ordered = sorted(datapoints, key=lambda dp: math.isfinite(dp.value))
        calls = dispatch(self.publisher, ordered, self.namespace, self.max_datapoints_per_call)

        self._states = new_states
        duration = self._clock() - started
        logger.info(
            f"Cycle complete: {len(datapoints)} datapoints in {calls} calls ({duration:.2f}s)"
        )
        return CycleReport(datapoints=datapoints, publish_calls=calls, duration_seconds=duration)

    def run(self, max_cycles: int | None = None, keep_going: bool = False) -> int:
        """Run cycles once per interval.

        Args:
            max_cycles: Stop after this many cycles (None runs forever)
            keep_going: Log a failed cycle and continue instead of raising

        Returns:
            Number of cycles that completed successfully
        """
        completed = 0
        attempted = 0

        while max_cycles is None or attempted < max_cycles:
            started = self._clock()
            attempted += 1

            try:
                self.run_cycle()
                completed += 1
            except (CollectionError, PublishError) as e:
                if not keep_going:
                    raise
                logger.error(f"Cycle {attempted} failed, retrying next interval: {e}")

            if max_cycles is not None and attempted >= max_cycles:
                break

            remaining = self.interval_seconds - (self._clock() - started)
            if remaining > 0:
                self._sleep(remaining)

        return completed
