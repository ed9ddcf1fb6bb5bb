"""Core module - configuration and schemas."""

from __future__ import annotations

from instance_metrics.core.config import load_config, resolve_instance_id
from instance_metrics.core.constants import (
    MAX_DATAPOINTS_PER_CALL,
    NANOSECONDS,
    SWARM_SERVICE_LABEL,
)
from instance_metrics.core.schemas import CollectorConfig, MetricKind, StandardUnit

__all__ = [
    "CollectorConfig",
    "MAX_DATAPOINTS_PER_CALL",
    "MetricKind",
    "NANOSECONDS",
    "StandardUnit",
    "SWARM_SERVICE_LABEL",
    "load_config",
    "resolve_instance_id",
]
