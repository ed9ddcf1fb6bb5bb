"""Metrics module - the metric families sampled each cycle.

Provides:
- HostMemoryMetric: host memory via psutil
- DockerMetric: per-container memory and CPU, CPU percent from cross-cycle deltas
- SwarmMetric: per-service rollup of swarm task containers
"""

from __future__ import annotations

from instance_metrics.metrics.base import (
    BaseMetric,
    CollectResult,
    Datapoint,
    Dimension,
    construct_datapoint,
    instance_dimensions,
)
from instance_metrics.metrics.docker import DockerCycleState, DockerMetric, compute_cpu_percent
from instance_metrics.metrics.memory import HostMemoryMetric
from instance_metrics.metrics.swarm import (
    ContainerSnapshot,
    ServiceStats,
    SwarmMetric,
    aggregate_service_stats,
    collect_service_snapshots,
    normalize_service_name,
)

__all__ = [
    "BaseMetric",
    "CollectResult",
    "ContainerSnapshot",
    "Datapoint",
    "Dimension",
    "DockerCycleState",
    "DockerMetric",
    "HostMemoryMetric",
    "ServiceStats",
    "SwarmMetric",
    "aggregate_service_stats",
    "collect_service_snapshots",
    "compute_cpu_percent",
    "construct_datapoint",
    "instance_dimensions",
    "normalize_service_name",
]
