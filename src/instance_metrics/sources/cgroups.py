"""Container CPU and memory counters read from the cgroup filesystem.

Supports both the unified (v2) hierarchy and the legacy (v1) cpuacct/memory
controllers.

Metrics sourced (v2):
- cpu.stat: usage_usec, user_usec, system_usec
- memory.current: current memory usage
- memory.peak: peak memory usage (if available)

Metrics sourced (v1):
- cpuacct.usage: cumulative CPU time in nanoseconds
- cpuacct.stat: user/system time in clock ticks
- memory.usage_in_bytes, memory.max_usage_in_bytes
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from instance_metrics.core.constants import DEFAULT_CGROUP_ROOT
from instance_metrics.core.errors import CollectionError

logger = logging.getLogger(__name__)

try:
    CLOCK_TICKS = os.sysconf("SC_CLK_TCK")
except (AttributeError, ValueError, OSError):
    CLOCK_TICKS = 100


@dataclass(frozen=True)
class CPUTimes:
    """Cumulative CPU time split by mode, in seconds."""

    user: float
    system: float


@dataclass(frozen=True)
class MemoryUsage:
    """Current and peak memory usage, in bytes."""

    usage: int
    max_usage: int


class CgroupReader:
    """Reads per-container counters from the cgroup filesystem.

    Example:
        ```python
        reader = CgroupReader()
        usage = reader.cpu_usage_seconds(container_id)
        memory = reader.memory(container_id)
        ```
    """

    # Common cgroup paths for Docker containers, relative to the cgroup root
    V2_PATTERNS = [
        "system.slice/docker-{container_id}.scope",
        "docker/{container_id}",
    ]
    V1_CPUACCT_PATTERNS = [
        "cpuacct/docker/{container_id}",
        "cpu,cpuacct/docker/{container_id}",
        "cpuacct/system.slice/docker-{container_id}.scope",
    ]
    V1_MEMORY_PATTERNS = [
        "memory/docker/{container_id}",
        "memory/system.slice/docker-{container_id}.scope",
    ]

    def __init__(self, root: Path | str = DEFAULT_CGROUP_ROOT) -> None:
        self.root = Path(root)

    @property
    def unified(self) -> bool:
        """True when the root is a cgroups v2 (unified hierarchy) mount."""
        return (self.root / "cgroup.controllers").exists()

    def cpu_usage_seconds(self, container_id: str) -> float:
        """Cumulative CPU time consumed by the container, in seconds."""
        if self.unified:
            cgroup_path = self._find(container_id, self.V2_PATTERNS)
            cpu_stat = self._read_flat_keyed(cgroup_path / "cpu.stat")
            return self._require(cpu_stat, "usage_usec", container_id) / 1e6

        path = self._find(container_id, self.V1_CPUACCT_PATTERNS) / "cpuacct.usage"
        return self._read_single_value(path) / 1e9

    def cpu_times(self, container_id: str) -> CPUTimes:
        """Cumulative user and system CPU time, in seconds."""
        if self.unified:
            cgroup_path = self._find(container_id, self.V2_PATTERNS)
            cpu_stat = self._read_flat_keyed(cgroup_path / "cpu.stat")
            return CPUTimes(
                user=self._require(cpu_stat, "user_usec", container_id) / 1e6,
                system=self._require(cpu_stat, "system_usec", container_id) / 1e6,
            )

        path = self._find(container_id, self.V1_CPUACCT_PATTERNS) / "cpuacct.stat"
        cpuacct_stat = self._read_flat_keyed(path)
        return CPUTimes(
            user=self._require(cpuacct_stat, "user", container_id) / CLOCK_TICKS,
            system=self._require(cpuacct_stat, "system", container_id) / CLOCK_TICKS,
        )

    def memory(self, container_id: str) -> MemoryUsage:
        """Current and peak memory usage of the container."""
        if self.unified:
            cgroup_path = self._find(container_id, self.V2_PATTERNS)
            usage = self._read_single_value(cgroup_path / "memory.current")
            peak_path = cgroup_path / "memory.peak"
            if peak_path.exists():
                max_usage = self._read_single_value(peak_path)
            else:
                # memory.peak only exists on kernels >= 5.19
                logger.debug(f"memory.peak missing for {container_id[:12]}, using memory.current")
                max_usage = usage
            return MemoryUsage(usage=usage, max_usage=max_usage)

        cgroup_path = self._find(container_id, self.V1_MEMORY_PATTERNS)
        return MemoryUsage(
            usage=self._read_single_value(cgroup_path / "memory.usage_in_bytes"),
            max_usage=self._read_single_value(cgroup_path / "memory.max_usage_in_bytes"),
        )

    def _find(self, container_id: str, patterns: list[str]) -> Path:
        """Find the cgroup directory for a container.

        Raises:
            CollectionError: If no known layout matches
        """
        for pattern in patterns:
            path = self.root / pattern.format(container_id=container_id)
            if path.is_dir():
                return path

        raise CollectionError(
            f"Could not find cgroup for container {container_id[:12]} under {self.root}"
        )

    def _read_single_value(self, path: Path) -> int:
        """Read a single integer value from a cgroup file."""
        try:
            return int(path.read_text().strip())
        except (OSError, ValueError) as e:
            raise CollectionError(f"Cannot read {path}: {e}") from e

    def _read_flat_keyed(self, path: Path) -> dict[str, int]:
        """Read a flat keyed file such as cpu.stat.

        Format:
            usage_usec 123456
            user_usec 100000
            system_usec 23456
        """
        try:
            content = path.read_text()
        except OSError as e:
            raise CollectionError(f"Cannot read {path}: {e}") from e

        result: dict[str, int] = {}
        for line in content.strip().split("\n"):
            parts = line.split()
            if len(parts) == 2:
                try:
                    result[parts[0]] = int(parts[1])
                except ValueError:
                    continue
        return result

    @staticmethod
    def _require(values: dict[str, int], key: str, container_id: str) -> int:
        if key not in values:
            raise CollectionError(f"'{key}' missing from cgroup stats of {container_id[:12]}")
        return values[key]
