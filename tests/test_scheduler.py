"""Tests for MetricsScheduler."""

import math
from unittest.mock import MagicMock

import pytest

from instance_metrics.core.errors import CollectionError, PublishError
from instance_metrics.core.schemas import CollectorConfig, MetricKind, StandardUnit
from instance_metrics.metrics.base import BaseMetric, CollectResult, construct_datapoint
from instance_metrics.metrics.docker import DockerMetric
from instance_metrics.metrics.memory import HostMemoryMetric
from instance_metrics.metrics.swarm import SwarmMetric
from instance_metrics.scheduler import MetricsScheduler, build_metrics


class CountingMetric(BaseMetric):
    """Metric emitting `count` datapoints and threading an integer state."""

    def __init__(self, name: str, count: int = 1, fail_on: set[int] | None = None) -> None:
        self._name = name
        self.count = count
        self.fail_on = fail_on or set()
        self.seen_states: list = []

    @property
    def name(self) -> str:
        return self._name

    def initial_state(self) -> int:
        return 0

    def collect(self, instance_id, state=None):
        self.seen_states.append(state)
        if len(self.seen_states) in self.fail_on:
            raise CollectionError(f"{self._name} failed")
        datapoints = [
            construct_datapoint(f"{self._name}{i}", i, StandardUnit.COUNT, [])
            for i in range(self.count)
        ]
        return CollectResult(datapoints=datapoints, state=state + 1)


def make_scheduler(metrics, publisher=None, **kwargs):
    return MetricsScheduler(
        metrics=metrics,
        publisher=publisher or MagicMock(),
        instance_id="i-123",
        namespace="Custom/Test",
        sleep=kwargs.pop("sleep", MagicMock()),
        **kwargs,
    )


class TestRunCycle:
    """Tests for a single collection cycle."""

    def test_publishes_combined_datapoints_in_batches(self):
        publisher = MagicMock()
        scheduler = make_scheduler([CountingMetric("a", 15), CountingMetric("b", 10)], publisher)

        report = scheduler.run_cycle()

        assert len(report.datapoints) == 25
        assert report.publish_calls == 2
        sizes = [len(c.args[0]) for c in publisher.publish.call_args_list]
        assert sizes == [20, 5]

    def test_respects_max_datapoints_per_call(self):
        publisher = MagicMock()
        scheduler = make_scheduler([CountingMetric("a", 10)], publisher, max_datapoints_per_call=4)

        assert scheduler.run_cycle().publish_calls == 3

    def test_states_threaded_between_cycles(self):
        metric = CountingMetric("a")
        scheduler = make_scheduler([metric])

        scheduler.run_cycle()
        scheduler.run_cycle()

        assert metric.seen_states == [0, 1]
        assert scheduler.state("a") == 2

    def test_failed_metric_publishes_nothing(self):
        publisher = MagicMock()
        ok = CountingMetric("ok", 5)
        bad = CountingMetric("bad", 5, fail_on={1})
        scheduler = make_scheduler([ok, bad], publisher)

        with pytest.raises(CollectionError):
            scheduler.run_cycle()

        publisher.publish.assert_not_called()
        assert scheduler.state("ok") == 0

    def test_failed_publish_keeps_previous_state(self):
        publisher = MagicMock()
        publisher.publish.side_effect = PublishError("throttled")
        metric = CountingMetric("a")
        scheduler = make_scheduler([metric], publisher)

        with pytest.raises(PublishError):
            scheduler.run_cycle()

        assert scheduler.state("a") == 0

    def test_non_finite_values_dispatched_first(self):
        finite = CountingMetric("a", 25)
        non_finite = MagicMock(spec=BaseMetric)
        non_finite.name = "swarm"
        non_finite.initial_state.return_value = None
        non_finite.collect.return_value = CollectResult(
            datapoints=[
                construct_datapoint("ServiceCPUPercent", math.inf, StandardUnit.PERCENT, []),
                construct_datapoint("ServiceCPUPercent", math.nan, StandardUnit.PERCENT, []),
            ]
        )

        def reject_non_finite(batch, namespace):
            if any(not math.isfinite(dp.value) for dp in batch):
                raise PublishError("InvalidParameterValue")

        publisher = MagicMock()
        publisher.publish.side_effect = reject_non_finite
        scheduler = make_scheduler([finite, non_finite], publisher)

        with pytest.raises(PublishError):
            scheduler.run_cycle()

        publisher.publish.assert_called_once()
        first_batch = publisher.publish.call_args.args[0]
        assert [dp.metric_name for dp in first_batch[:2]] == ["ServiceCPUPercent"] * 2
        assert scheduler.state("a") == 0

    def test_dispatch_order_keeps_finite_order(self):
        publisher = MagicMock()
        scheduler = make_scheduler([CountingMetric("a", 3)], publisher)

        report = scheduler.run_cycle()

        sent = publisher.publish.call_args.args[0]
        assert [dp.metric_name for dp in sent] == ["a0", "a1", "a2"]
        assert [dp.metric_name for dp in report.datapoints] == ["a0", "a1", "a2"]

    def test_no_datapoints_no_publish(self):
        publisher = MagicMock()
        scheduler = make_scheduler([CountingMetric("a", 0)], publisher)

        scheduler.run_cycle()

        publisher.publish.assert_not_called()


class TestRun:
    """Tests for the scheduling loop."""

    def test_runs_fixed_number_of_cycles(self):
        sleep = MagicMock()
        metric = CountingMetric("a")
        scheduler = make_scheduler([metric], sleep=sleep, interval_seconds=30)

        assert scheduler.run(max_cycles=3) == 3
        assert len(metric.seen_states) == 3
        # No sleep after the last cycle
        assert sleep.call_count == 2

    def test_sleeps_for_remainder_of_interval(self):
        sleep = MagicMock()
        # loop start, cycle start, cycle end, remainder check; then the second cycle
        ticks = iter([0.0, 0.0, 4.0, 4.0, 10.0, 10.0, 11.0])
        scheduler = make_scheduler(
            [CountingMetric("a")],
            sleep=sleep,
            interval_seconds=10,
            clock=lambda: next(ticks),
        )

        scheduler.run(max_cycles=2)

        sleep.assert_called_once_with(pytest.approx(6.0))

    def test_failure_raises_by_default(self):
        scheduler = make_scheduler([CountingMetric("a", fail_on={2})])

        with pytest.raises(CollectionError):
            scheduler.run(max_cycles=3)

    def test_keep_going_skips_failed_cycle(self):
        metric = CountingMetric("a", fail_on={2})
        scheduler = make_scheduler([metric])

        assert scheduler.run(max_cycles=3, keep_going=True) == 2
        # The failed cycle did not advance the state
        assert metric.seen_states == [0, 1, 1]


class TestBuildMetrics:
    """Tests for metric construction from config."""

    def test_all_metrics(self):
        config = CollectorConfig()
        metrics = build_metrics(config, source=MagicMock())

        assert [type(m) for m in metrics] == [HostMemoryMetric, DockerMetric, SwarmMetric]
        assert [m.name for m in metrics] == ["memory", "docker", "swarm"]

    def test_subset(self):
        config = CollectorConfig(metrics=[MetricKind.SWARM])
        metrics = build_metrics(config, source=MagicMock())
        assert [m.name for m in metrics] == ["swarm"]
