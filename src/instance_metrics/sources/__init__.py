"""Sources module - Docker Engine API and cgroup filesystem readers."""

from __future__ import annotations

from instance_metrics.sources.cgroups import CgroupReader, CPUTimes, MemoryUsage
from instance_metrics.sources.docker_source import ContainerDescriptor, DockerSource

__all__ = [
    "CPUTimes",
    "CgroupReader",
    "ContainerDescriptor",
    "DockerSource",
    "MemoryUsage",
]
