"""Publishing module - batching and delivery of datapoints."""

from __future__ import annotations

from instance_metrics.publishing.base import Publisher, batch_datapoints, dispatch
from instance_metrics.publishing.cloudwatch import CloudWatchPublisher, to_metric_datum
from instance_metrics.publishing.console import ConsolePublisher

__all__ = [
    "CloudWatchPublisher",
    "ConsolePublisher",
    "Publisher",
    "batch_datapoints",
    "dispatch",
    "to_metric_datum",
]
