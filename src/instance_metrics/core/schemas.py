"""Pydantic schemas for instance-metrics.

This module defines the configuration contract of the collector and the
enumerations shared between collectors and publishers.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from instance_metrics.core.constants import (
    DEFAULT_CGROUP_ROOT,
    DEFAULT_NAMESPACE,
    MAX_DATAPOINTS_PER_CALL,
    SWARM_SERVICE_LABEL,
)


class StandardUnit(str, Enum):
    """Units understood by the ingestion API."""

    BYTES = "Bytes"
    SECONDS = "Seconds"
    PERCENT = "Percent"
    COUNT = "Count"


class MetricKind(str, Enum):
    """Metric families the collector can sample."""

    MEMORY = "memory"  # Host memory via psutil
    DOCKER = "docker"  # Per-container cgroup stats
    SWARM = "swarm"  # Per-service rollup of swarm task containers


class CollectorConfig(BaseModel):
    """Top-level collector configuration.

    Attributes:
        namespace: Namespace every datapoint is published under
        instance_id: Host identifier attached to every datapoint. Resolved
            from the instance metadata service when left empty.
        region: AWS region for the CloudWatch client
        interval_seconds: Time between the start of two collection cycles
        metrics: Metric families to collect each cycle
        swarm_service_label: Container label naming the swarm service
        cgroup_root: Mount point of the cgroup filesystem
        docker_timeout_seconds: Timeout for every Docker Engine API call
        max_datapoints_per_call: Batch size handed to the publisher
    """

    namespace: str = Field(default=DEFAULT_NAMESPACE, min_length=1)
    instance_id: str | None = Field(default=None, description="Host instance identifier")
    region: str | None = Field(default=None, description="AWS region (boto3 default if unset)")
    interval_seconds: int = Field(default=60, ge=1, description="Collection interval")
    metrics: list[MetricKind] = Field(
        default_factory=lambda: [MetricKind.MEMORY, MetricKind.DOCKER, MetricKind.SWARM]
    )
    swarm_service_label: str = Field(default=SWARM_SERVICE_LABEL, min_length=1)
    cgroup_root: Path = Field(default=Path(DEFAULT_CGROUP_ROOT))
    docker_timeout_seconds: int = Field(
        default=30, ge=1, description="Per-call Docker API timeout"
    )
    max_datapoints_per_call: int = Field(
        default=MAX_DATAPOINTS_PER_CALL, ge=1, le=MAX_DATAPOINTS_PER_CALL
    )

    @field_validator("metrics", mode="before")
    @classmethod
    def split_metrics(cls, v: object) -> object:
        """Accept a comma separated string as well as a list."""
        if isinstance(v, str):
            return [part.strip().lower() for part in v.split(",") if part.strip()]
        return v

    @field_validator("metrics")
    @classmethod
    def dedupe_metrics(cls, v: list[MetricKind]) -> list[MetricKind]:
        """Drop repeated metric kinds, keeping first-seen order."""
        return list(dict.fromkeys(v))
