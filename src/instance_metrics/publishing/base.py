"""Publisher interface and batched dispatch."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence

from instance_metrics.core.constants import MAX_DATAPOINTS_PER_CALL
from instance_metrics.metrics.base import Datapoint

logger = logging.getLogger(__name__)


class Publisher(ABC):
    """Sends a bounded batch of datapoints to the ingestion API."""

    @abstractmethod
    def publish(self, datapoints: Sequence[Datapoint], namespace: str) -> None:
        """Publish one batch.

        Callers never pass more than MAX_DATAPOINTS_PER_CALL datapoints.

        Raises:
            PublishError: If the batch was not accepted
        """
        pass


def batch_datapoints(
    datapoints: Sequence[Datapoint],
    max_size: int = MAX_DATAPOINTS_PER_CALL,
) -> Iterator[list[Datapoint]]:
    """Split datapoints into contiguous chunks of at most `max_size`.

    Example:
        >>> [len(c) for c in batch_datapoints(list(range(45)))]
        [20, 20, 5]
    """
    if max_size < 1:
        raise ValueError(f"max_size must be positive, got {max_size}")
    for idx in range(0, len(datapoints), max_size):
        yield list(datapoints[idx : idx + max_size])


def dispatch(
    publisher: Publisher,
    datapoints: Sequence[Datapoint],
    namespace: str,
    max_size: int = MAX_DATAPOINTS_PER_CALL,
) -> int:
    """Publish datapoints in batches. Returns the number of publish calls made."""
    calls = 0
    for batch in batch_datapoints(datapoints, max_size):
        publisher.publish(batch, namespace)
        calls += 1
    logger.debug(f"Dispatched {len(datapoints)} datapoints to {namespace} in {calls} calls")
    return calls
