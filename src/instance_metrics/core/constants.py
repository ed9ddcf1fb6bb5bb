"""Shared constants for instance-metrics.

Centralized constants to avoid duplication and ensure consistency across modules.
"""

from __future__ import annotations

# Nanoseconds per second, used to turn elapsed nanoseconds back into a rate.
NANOSECONDS = 1e9

# Upper bound on datapoints handed to the publisher in a single call.
MAX_DATAPOINTS_PER_CALL = 20

# Label Docker Swarm attaches to every task container.
SWARM_SERVICE_LABEL = "com.docker.swarm.service.name"

DEFAULT_NAMESPACE = "Custom/InstanceMetrics"
DEFAULT_CGROUP_ROOT = "/sys/fs/cgroup"

# Dimension keys
DIMENSION_INSTANCE_ID = "InstanceId"
DIMENSION_CONTAINER_ID = "ContainerId"
DIMENSION_CONTAINER_NAME = "ContainerName"
DIMENSION_DOCKER_IMAGE = "DockerImage"
DIMENSION_SERVICE_NAME = "ServiceName"
