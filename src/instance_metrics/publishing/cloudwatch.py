"""CloudWatch publisher backed by boto3 PutMetricData."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from instance_metrics.core.errors import PublishError
from instance_metrics.metrics.base import Datapoint
from instance_metrics.publishing.base import Publisher

logger = logging.getLogger(__name__)


def to_metric_datum(datapoint: Datapoint) -> dict[str, Any]:
    """Map a datapoint onto a PutMetricData `MetricData` entry."""
    datum: dict[str, Any] = {
        "MetricName": datapoint.metric_name,
        "Dimensions": [{"Name": d.name, "Value": d.value} for d in datapoint.dimensions],
        "Unit": datapoint.unit.value,
        "Value": datapoint.value,
    }
    if datapoint.timestamp is not None:
        datum["Timestamp"] = datapoint.timestamp
    return datum


class CloudWatchPublisher(Publisher):
    """Publishes datapoints with the CloudWatch PutMetricData API.

    Example:
        ```python
        publisher = CloudWatchPublisher(region="eu-west-1")
        dispatch(publisher, datapoints, "Custom/InstanceMetrics")
        ```
    """

    def __init__(self, region: str | None = None, client: Any = None) -> None:
        """Initialize the publisher.

        Args:
            region: AWS region; boto3's default resolution applies when None
            client: Pre-built CloudWatch client (created lazily otherwise)
        """
        self._region = region
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            try:
                self._client = boto3.client("cloudwatch", region_name=self._region)
            except BotoCoreError as e:
                raise PublishError(f"Cannot create CloudWatch client: {e}") from e
        return self._client

    def publish(self, datapoints: Sequence[Datapoint], namespace: str) -> None:
        if not datapoints:
            return

        try:
            self.client.put_metric_data(
                Namespace=namespace,
                MetricData=[to_metric_datum(dp) for dp in datapoints],
            )
        except (BotoCoreError, ClientError) as e:
            raise PublishError(
                f"PutMetricData failed for {len(datapoints)} datapoints in {namespace}: {e}"
            ) from e

        logger.debug(f"Published {len(datapoints)} datapoints to {namespace}")
