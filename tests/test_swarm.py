"""Tests for the swarm service aggregator."""

import itertools
import math
import random
import threading
import time
from unittest.mock import MagicMock

import pytest

from instance_metrics.core.errors import CollectionError, MalformedSnapshotError
from instance_metrics.core.schemas import StandardUnit
from instance_metrics.metrics.swarm import (
    ContainerSnapshot,
    ServiceStats,
    SwarmMetric,
    aggregate_service_stats,
    collect_container_snapshot,
    collect_service_snapshots,
    ieee_divide,
    normalize_service_name,
)
from instance_metrics.sources.docker_source import ContainerDescriptor

LABEL = "com.docker.swarm.service.name"


def make_stats(
    total: int = 300,
    pre_total: int = 100,
    system: int = 2000,
    pre_system: int = 1000,
    online_cpus: int = 2,
    memory: int = 1024,
    max_memory: int = 2048,
) -> dict:
    """Create a Docker one-shot stats payload."""
    return {
        "cpu_stats": {
            "cpu_usage": {"total_usage": total, "percpu_usage": [total // 2, total // 2]},
            "system_cpu_usage": system,
            "online_cpus": online_cpus,
        },
        "precpu_stats": {
            "cpu_usage": {"total_usage": pre_total},
            "system_cpu_usage": pre_system,
        },
        "memory_stats": {"usage": memory, "max_usage": max_memory},
    }


def make_container(container_id: str, service_label: str) -> ContainerDescriptor:
    return ContainerDescriptor(
        id=container_id,
        name=f"{service_label}.{container_id}",
        image="nginx:latest",
        labels={LABEL: service_label},
    )


class FakeSource:
    """Docker source double returning canned stats after a random delay."""

    def __init__(self, containers, stats_by_id, fail_ids=(), max_delay=0.01):
        self.containers = containers
        self.stats_by_id = stats_by_id
        self.fail_ids = set(fail_ids)
        self.max_delay = max_delay
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def list_running(self, label=None):
        return list(self.containers)

    def get_stats(self, container_id):
        time.sleep(random.uniform(0, self.max_delay))
        with self._lock:
            self.calls.append(container_id)
        if container_id in self.fail_ids:
            raise CollectionError(f"boom {container_id}")
        return self.stats_by_id[container_id]


class TestNormalizeServiceName:
    """Tests for canonical service name derivation."""

    def test_strips_slot_suffix(self):
        assert normalize_service_name("web-3") == "web"

    def test_strips_task_suffix(self):
        assert normalize_service_name("api_abcd_1_2_3") == "api"

    def test_no_suffix_unchanged(self):
        assert normalize_service_name("worker") == "worker"

    def test_only_trailing_suffix_removed(self):
        assert normalize_service_name("my-2nd-app-12") == "my-2nd-app"

    def test_partial_task_suffix_unchanged(self):
        assert normalize_service_name("api_abcd_1_2") == "api_abcd_1_2"

    def test_empty_label(self):
        assert normalize_service_name("") == ""


class TestContainerSnapshot:
    """Tests for parsing Docker stats into snapshots."""

    def test_from_stats(self):
        snapshot = ContainerSnapshot.from_stats(make_stats(), name="web")

        assert snapshot.name == "web"
        assert snapshot.total_usage == 300
        assert snapshot.pre_total_usage == 100
        assert snapshot.system_usage == 2000
        assert snapshot.pre_system_usage == 1000
        assert snapshot.online_cpus == 2
        assert snapshot.memory_usage == 1024
        assert snapshot.memory_max_usage == 2048

    def test_missing_optional_fields_default_to_zero(self):
        stats = {"cpu_stats": {"cpu_usage": {"total_usage": 5}}, "precpu_stats": {}}
        snapshot = ContainerSnapshot.from_stats(stats, name="web")

        assert snapshot.total_usage == 5
        assert snapshot.system_usage == 0
        assert snapshot.pre_total_usage == 0
        assert snapshot.memory_max_usage == 0
        assert snapshot.online_cpus == 0

    def test_online_cpus_falls_back_to_percpu(self):
        stats = make_stats()
        del stats["cpu_stats"]["online_cpus"]
        snapshot = ContainerSnapshot.from_stats(stats, name="web")
        assert snapshot.online_cpus == 2

    def test_missing_cpu_section_is_malformed(self):
        with pytest.raises(MalformedSnapshotError):
            ContainerSnapshot.from_stats({"memory_stats": {"usage": 1}}, name="web")

    def test_non_numeric_counter_is_malformed(self):
        stats = make_stats()
        stats["cpu_stats"]["cpu_usage"]["total_usage"] = "lots"
        with pytest.raises(MalformedSnapshotError):
            ContainerSnapshot.from_stats(stats, name="web")

    def test_collect_container_snapshot_uses_service_name(self):
        source = MagicMock()
        source.get_stats.return_value = make_stats()
        container = make_container("abc123", "web-2")

        snapshot = collect_container_snapshot(source, container, LABEL)

        source.get_stats.assert_called_once_with("abc123")
        assert snapshot.name == "web"


class TestAggregation:
    """Tests for grouping and summing snapshots."""

    def snapshots(self):
        return [
            ContainerSnapshot("web", 300, 2000, 100, 1000, 2, 1024, 2048),
            ContainerSnapshot("web", 500, 3000, 300, 2000, 2, 512, 1024),
            ContainerSnapshot("api", 10, 100, 5, 50, 4, 64, 128),
        ]

    def test_groups_are_field_wise_sums(self):
        services = aggregate_service_stats(self.snapshots())

        assert set(services) == {"web", "api"}
        web = services["web"]
        assert web.total_usage == 800
        assert web.system_usage == 5000
        assert web.pre_total_usage == 400
        assert web.pre_system_usage == 3000
        assert web.memory_usage == 1536
        assert web.memory_max_usage == 3072
        assert services["api"] == ServiceStats(10, 100, 5, 50, 4, 64, 128)

    def test_online_cpus_taken_from_first_container(self):
        services = aggregate_service_stats(self.snapshots())
        assert services["web"].online_cpus == 2

    def test_result_independent_of_arrival_order(self):
        expected = aggregate_service_stats(self.snapshots())
        for order in itertools.permutations(self.snapshots()):
            assert aggregate_service_stats(order) == expected

    def test_empty(self):
        assert aggregate_service_stats([]) == {}

    def test_percent_cpu(self):
        web = aggregate_service_stats(self.snapshots())["web"]
        # (800 - 400) / (5000 - 3000) * 2 * 100
        assert web.percent_cpu == pytest.approx(40.0)

    def test_percent_cpu_zero_system_delta_is_infinite(self):
        stats = ServiceStats(total_usage=200, system_usage=1000, pre_total_usage=100,
                             pre_system_usage=1000, online_cpus=2)
        assert math.isinf(stats.percent_cpu)

    def test_percent_cpu_zero_over_zero_is_nan(self):
        stats = ServiceStats(total_usage=100, system_usage=1000, pre_total_usage=100,
                             pre_system_usage=1000, online_cpus=2)
        assert math.isnan(stats.percent_cpu)

    def test_ieee_divide(self):
        assert ieee_divide(1, 4) == 0.25
        assert ieee_divide(3, 0) == math.inf
        assert ieee_divide(-3, 0) == -math.inf
        assert math.isnan(ieee_divide(0, 0))


class TestCollectServiceSnapshots:
    """Tests for the concurrent fan-out/fan-in collection."""

    def test_collects_every_container(self):
        containers = [make_container(f"c{i}", f"svc{i % 3}-{i}") for i in range(12)]
        stats = {c.id: make_stats(total=100 + i) for i, c in enumerate(containers)}
        source = FakeSource(containers, stats)

        snapshots = list(collect_service_snapshots(source, containers, LABEL))

        assert len(snapshots) == 12
        assert sorted(source.calls) == sorted(c.id for c in containers)
        assert {s.name for s in snapshots} == {"svc0", "svc1", "svc2"}
        assert sorted(s.total_usage for s in snapshots) == list(range(100, 112))

    def test_no_containers(self):
        source = FakeSource([], {})
        assert list(collect_service_snapshots(source, [], LABEL)) == []

    def test_failure_raises_after_drain(self):
        containers = [make_container(f"c{i}", "web-1") for i in range(5)]
        stats = {c.id: make_stats() for c in containers}
        source = FakeSource(containers, stats, fail_ids={"c3"})

        with pytest.raises(CollectionError, match="1 of 5"):
            aggregate_service_stats(collect_service_snapshots(source, containers, LABEL))

        # Every worker still ran to completion
        assert sorted(source.calls) == sorted(c.id for c in containers)

    def test_unexpected_worker_exception_fails_cycle(self):
        containers = [make_container("c0", "web-1")]
        source = FakeSource(containers, {"c0": {"not": "stats"}})

        with pytest.raises(CollectionError) as exc_info:
            list(collect_service_snapshots(source, containers, LABEL))
        assert isinstance(exc_info.value.__cause__, MalformedSnapshotError)


class TestSwarmMetric:
    """Tests for SwarmMetric datapoint emission."""

    def test_collect_emits_eight_datapoints_per_service(self):
        containers = [
            make_container("a1", "web-1"),
            make_container("a2", "web-2"),
            make_container("b1", "api_abcd_1_2_3"),
        ]
        stats = {c.id: make_stats() for c in containers}
        metric = SwarmMetric(FakeSource(containers, stats))

        result = metric.collect("i-123")

        assert len(result.datapoints) == 16
        assert result.state is None

        web = [dp for dp in result.datapoints
               if ("ServiceName", "web") in [(d.name, d.value) for d in dp.dimensions]]
        by_name = {dp.metric_name: dp for dp in web}
        assert set(by_name) == {
            "ServiceCPUPercent",
            "ServiceCPUUsage",
            "ServiceCPUSystem",
            "ServicePreCPUUsage",
            "ServicePreCPUSystem",
            "ServiceOnlineCPUs",
            "ServiceMemoryUsage",
            "ServiceMemoryMaxUsage",
        }
        assert by_name["ServiceCPUUsage"].value == 600.0
        assert by_name["ServiceCPUUsage"].unit == StandardUnit.SECONDS
        assert by_name["ServiceCPUPercent"].value == pytest.approx(40.0)
        assert by_name["ServiceCPUPercent"].unit == StandardUnit.PERCENT
        assert by_name["ServiceOnlineCPUs"].unit == StandardUnit.COUNT
        assert by_name["ServiceMemoryUsage"].value == 2048.0
        assert [d.name for d in web[0].dimensions] == ["InstanceId", "ServiceName"]
        assert web[0].dimensions[0].value == "i-123"

    def test_zero_system_delta_is_emitted_not_dropped(self):
        containers = [make_container("a1", "web-1")]
        stats = {"a1": make_stats(system=1000, pre_system=1000)}
        metric = SwarmMetric(FakeSource(containers, stats))

        result = metric.collect("i-123")

        percent = [dp for dp in result.datapoints if dp.metric_name == "ServiceCPUPercent"]
        assert len(percent) == 1
        assert not math.isfinite(percent[0].value)

    def test_lister_failure_propagates(self):
        source = MagicMock()
        source.list_running.side_effect = CollectionError("daemon down")
        metric = SwarmMetric(source)

        with pytest.raises(CollectionError):
            metric.collect("i-123")
