"""Swarm service metrics - per-service rollup of task container stats.

Each cycle this module:
- lists running containers that carry the swarm service label,
- fetches one stats reading per container, one worker thread per container,
- normalizes the label to a canonical service name so replicas share a key,
- sums the readings of every container of a service into ServiceStats,
- derives a CPU percentage from Docker's own current/previous counter pairs.

The fan-in is driven only by a closing marker that a supervisory thread
enqueues once every worker has finished; the consumer never counts reports.
"""

from __future__ import annotations

import logging
import math
import queue
import re
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from instance_metrics.core.constants import DIMENSION_SERVICE_NAME, SWARM_SERVICE_LABEL
from instance_metrics.core.errors import CollectionError, MalformedSnapshotError
from instance_metrics.core.schemas import StandardUnit
from instance_metrics.metrics.base import (
    BaseMetric,
    CollectResult,
    Datapoint,
    construct_datapoint,
    instance_dimensions,
    utc_now,
)
from instance_metrics.sources.docker_source import ContainerDescriptor, DockerSource

logger = logging.getLogger(__name__)

# Task-slot suffix ("web-3") or task-id suffix ("api_abcd_1_2_3") appended by swarm
SERVICE_SUFFIX_RE = re.compile(r"(?:-\d+|_[A-Za-z0-9]{4}_\d+_\d+_\d+)$")


def normalize_service_name(label: str) -> str:
    """Strip the per-replica suffix from a swarm service label.

    Example:
        >>> normalize_service_name("web-3")
        'web'
        >>> normalize_service_name("api_abcd_1_2_3")
        'api'
    """
    return SERVICE_SUFFIX_RE.sub("", label, count=1)


@dataclass
class ContainerSnapshot:
    """One container's stats reading, keyed by its canonical service name.

    CPU counters are cumulative nanoseconds. The pre_* pair is Docker's own
    previous reading taken inside the same stats call.
    """

    name: str
    total_usage: int = 0
    system_usage: int = 0
    pre_total_usage: int = 0
    pre_system_usage: int = 0
    online_cpus: int = 0
    memory_usage: int = 0
    memory_max_usage: int = 0

    @classmethod
    def from_stats(cls, stats: dict[str, Any], name: str) -> ContainerSnapshot:
        """Build a snapshot from a Docker stats JSON payload.

        Raises:
            MalformedSnapshotError: If the CPU section is missing or not numeric
        """
        try:
            cpu_stats = stats["cpu_stats"]
            cpu_usage = cpu_stats["cpu_usage"]
            precpu_stats = stats.get("precpu_stats") or {}
            memory_stats = stats.get("memory_stats") or {}

            # online_cpus is absent on old daemons; fall back like `docker stats` does
            online_cpus = cpu_stats.get("online_cpus") or len(cpu_usage.get("percpu_usage") or [])

            return cls(
                name=name,
                total_usage=int(cpu_usage["total_usage"]),
                system_usage=int(cpu_stats.get("system_cpu_usage") or 0),
                pre_total_usage=int((precpu_stats.get("cpu_usage") or {}).get("total_usage") or 0),
                pre_system_usage=int(precpu_stats.get("system_cpu_usage") or 0),
                online_cpus=int(online_cpus),
                memory_usage=int(memory_stats.get("usage") or 0),
                memory_max_usage=int(memory_stats.get("max_usage") or 0),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise MalformedSnapshotError(f"Unusable stats payload for {name}: {e!r}") from e


def ieee_divide(numerator: float, denominator: float) -> float:
    """Divide with IEEE 754 semantics instead of raising ZeroDivisionError.

    x/0 is +/-inf for non-zero x and nan for 0/0.
    """
    if denominator == 0:
        if numerator == 0 or math.isnan(numerator):
            return math.nan
        return math.copysign(math.inf, numerator) * math.copysign(1.0, denominator)
    return numerator / denominator


@dataclass
class ServiceStats:
    """Stats of all containers of one service in the current cycle."""

    total_usage: int = 0
    system_usage: int = 0
    pre_total_usage: int = 0
    pre_system_usage: int = 0
    online_cpus: int = 0
    memory_usage: int = 0
    memory_max_usage: int = 0

    @classmethod
    def seed(cls, snapshot: ContainerSnapshot) -> ServiceStats:
        return cls(
            total_usage=snapshot.total_usage,
            system_usage=snapshot.system_usage,
            pre_total_usage=snapshot.pre_total_usage,
            pre_system_usage=snapshot.pre_system_usage,
            online_cpus=snapshot.online_cpus,
            memory_usage=snapshot.memory_usage,
            memory_max_usage=snapshot.memory_max_usage,
        )

    def add(self, snapshot: ContainerSnapshot) -> None:
        """Fold another container of the same service in.

        online_cpus keeps the seeding container's value: it is a host
        property, not a per-container quantity.
        """
        self.total_usage += snapshot.total_usage
        self.system_usage += snapshot.system_usage
        self.pre_total_usage += snapshot.pre_total_usage
        self.pre_system_usage += snapshot.pre_system_usage
        self.memory_usage += snapshot.memory_usage
        self.memory_max_usage += snapshot.memory_max_usage

    @property
    def percent_cpu(self) -> float:
        """CPU utilization implied by the current/previous counter pairs.

        A zero system delta yields inf or nan, which is reported unchanged.
        """
        cpu_delta = self.total_usage - self.pre_total_usage
        system_delta = self.system_usage - self.pre_system_usage
        return ieee_divide(cpu_delta, system_delta) * self.online_cpus * 100


def aggregate_service_stats(snapshots: Iterable[ContainerSnapshot]) -> dict[str, ServiceStats]:
    """Group snapshots by service name and sum each group.

    The result does not depend on the order snapshots arrive in.
    """
    services: dict[str, ServiceStats] = {}
    for snapshot in snapshots:
        entry = services.get(snapshot.name)
        if entry is None:
            services[snapshot.name] = ServiceStats.seed(snapshot)
        else:
            entry.add(snapshot)
    return services


def collect_container_snapshot(
    source: DockerSource,
    container: ContainerDescriptor,
    label: str = SWARM_SERVICE_LABEL,
) -> ContainerSnapshot:
    """Fetch one container's stats and key them by canonical service name."""
    service_name = normalize_service_name(container.labels.get(label, ""))
    stats = source.get_stats(container.id)
    return ContainerSnapshot.from_stats(stats, name=service_name)


# Enqueued by the supervisor once every worker is done
_CLOSED = object()


@dataclass
class _Report:
    container: ContainerDescriptor
    snapshot: ContainerSnapshot | None = None
    error: BaseException | None = None


def _collect_worker(
    source: DockerSource,
    container: ContainerDescriptor,
    label: str,
    reports: queue.Queue,
) -> None:
    try:
        snapshot = collect_container_snapshot(source, container, label)
    except Exception as e:
        # Handed to the consumer, which fails the whole cycle
        reports.put(_Report(container, error=e))
    else:
        reports.put(_Report(container, snapshot=snapshot))


def _close_when_done(workers: list[threading.Thread], reports: queue.Queue) -> None:
    for worker in workers:
        worker.join()
    reports.put(_CLOSED)


def collect_service_snapshots(
    source: DockerSource,
    containers: list[ContainerDescriptor],
    label: str = SWARM_SERVICE_LABEL,
) -> Iterator[ContainerSnapshot]:
    """Fetch snapshots for all containers concurrently, yielding them as they arrive.

    One worker thread runs per container. The queue holds every report plus
    the closing marker, so no worker ever blocks on put. Iteration ends when
    the supervisory thread signals that all workers have finished.

    Raises:
        CollectionError: After the queue is drained, if any worker failed
    """
    reports: queue.Queue = queue.Queue(maxsize=len(containers) + 1)

    workers = [
        threading.Thread(
            target=_collect_worker,
            args=(source, container, label, reports),
            name=f"stats-{container.short_id}",
            daemon=True,
        )
        for container in containers
    ]
    for worker in workers:
        worker.start()

    supervisor = threading.Thread(
        target=_close_when_done, args=(workers, reports), name="stats-supervisor", daemon=True
    )
    supervisor.start()

    failures: list[_Report] = []
    while True:
        report = reports.get()
        if report is _CLOSED:
            break
        if report.error is not None:
            logger.error(f"Stats collection failed for {report.container.short_id}: {report.error}")
            failures.append(report)
            continue
        yield report.snapshot

    if failures:
        first = failures[0]
        raise CollectionError(
            f"Stats collection failed for {len(failures)} of {len(containers)} containers "
            f"(first: {first.container.short_id}: {first.error})"
        ) from first.error


def service_datapoints(
    instance_id: str,
    name: str,
    stats: ServiceStats,
    timestamp: datetime | None = None,
) -> list[Datapoint]:
    """The eight datapoints reported for one service."""
    dims = instance_dimensions(instance_id, (DIMENSION_SERVICE_NAME, name))
    values = [
        ("ServiceCPUPercent", stats.percent_cpu, StandardUnit.PERCENT),
        ("ServiceCPUUsage", stats.total_usage, StandardUnit.SECONDS),
        ("ServiceCPUSystem", stats.system_usage, StandardUnit.SECONDS),
        ("ServicePreCPUUsage", stats.pre_total_usage, StandardUnit.SECONDS),
        ("ServicePreCPUSystem", stats.pre_system_usage, StandardUnit.SECONDS),
        ("ServiceOnlineCPUs", stats.online_cpus, StandardUnit.COUNT),
        ("ServiceMemoryUsage", stats.memory_usage, StandardUnit.BYTES),
        ("ServiceMemoryMaxUsage", stats.memory_max_usage, StandardUnit.BYTES),
    ]
    return [
        construct_datapoint(metric_name, value, unit, dims, timestamp)
        for metric_name, value, unit in values
    ]


class SwarmMetric(BaseMetric):
    """CPU and memory usage per swarm service running on this host.

    Example:
        ```python
        metric = SwarmMetric(DockerSource())
        result = metric.collect("i-0123456789abcdef0")
        ```
    """

    def __init__(self, source: DockerSource, label: str = SWARM_SERVICE_LABEL) -> None:
        self._source = source
        self._label = label

    @property
    def name(self) -> str:
        return "swarm"

    def collect(self, instance_id: str, state: Any = None) -> CollectResult:
        containers = self._source.list_running(label=self._label)
        services = aggregate_service_stats(
            collect_service_snapshots(self._source, containers, self._label)
        )

        timestamp = utc_now()
        datapoints: list[Datapoint] = []
        for name, stats in services.items():
            logger.info(
                f"{name} - PercentCPU:{stats.percent_cpu} "
                f"TotalUsage:{stats.total_usage} PreTotalUsage:{stats.pre_total_usage} "
                f"SystemUsage:{stats.system_usage} PreSystemUsage:{stats.pre_system_usage} "
                f"MemoryUsage:{stats.memory_usage} MemoryMaxUsage:{stats.memory_max_usage} "
                f"OnlineCPUs:{stats.online_cpus}"
            )
            datapoints.extend(service_datapoints(instance_id, name, stats, timestamp))

        return CollectResult(datapoints=datapoints)
