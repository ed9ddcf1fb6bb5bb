"""instance-metrics - host, Docker container and Swarm service metrics collector."""

from __future__ import annotations

from instance_metrics.core.errors import CollectionError, MalformedSnapshotError, PublishError
from instance_metrics.core.schemas import CollectorConfig, MetricKind, StandardUnit

__version__ = "0.1.0"

__all__ = [
    "CollectionError",
    "CollectorConfig",
    "MalformedSnapshotError",
    "MetricKind",
    "PublishError",
    "StandardUnit",
    "__version__",
]
