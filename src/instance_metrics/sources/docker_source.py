"""Docker Engine API access for container listing and one-shot stats.

Thin wrapper around the Docker SDK. Every failure surfaces as a
CollectionError so a cycle either gets complete data or none at all.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import docker
from docker.errors import DockerException

from instance_metrics.core.errors import CollectionError

if TYPE_CHECKING:
    from docker.models.containers import Container

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContainerDescriptor:
    """A running container as reported by the lister."""

    id: str
    name: str
    image: str
    labels: dict[str, str] = field(default_factory=dict)

    @property
    def short_id(self) -> str:
        return self.id[:12]

    @classmethod
    def from_container(cls, container: Container) -> ContainerDescriptor:
        attrs = container.attrs or {}
        image = attrs.get("Config", {}).get("Image") or attrs.get("Image") or ""
        return cls(
            id=container.id,
            name=container.name or "",
            image=image,
            labels=dict(container.labels or {}),
        )


class DockerSource:
    """Lists running containers and fetches point-in-time stats for them.

    Example:
        ```python
        source = DockerSource(timeout=10)
        for descriptor in source.list_running(label="com.docker.swarm.service.name"):
            stats = source.get_stats(descriptor.id)
        ```
    """

    def __init__(self, client: docker.DockerClient | None = None, timeout: int = 30) -> None:
        """Initialize the source.

        Args:
            client: Pre-built Docker client; created from the environment on first use
            timeout: Timeout in seconds applied to every Engine API call
        """
        self._client = client
        self._timeout = timeout

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.from_env(timeout=self._timeout)
            except DockerException as e:
                raise CollectionError(f"Cannot connect to Docker daemon: {e}") from e
        return self._client

    def list_running(self, label: str | None = None) -> list[ContainerDescriptor]:
        """Return running containers, optionally only those carrying `label`."""
        filters = {"status": "running"}
        if label:
            filters["label"] = label

        try:
            containers = self.client.containers.list(filters=filters)
        except (DockerException, OSError) as e:
            raise CollectionError(f"Failed to list containers: {e}") from e

        descriptors = [ContainerDescriptor.from_container(c) for c in containers]
        logger.debug(f"Listed {len(descriptors)} running containers (label={label!r})")
        return descriptors

    def get_stats(self, container_id: str) -> dict[str, Any]:
        """Fetch one non-streaming stats reading for a container.

        Raises:
            CollectionError: If the request fails, times out, or the body is not JSON
        """
        try:
            stats = self.client.api.stats(container_id, stream=False)
        except (DockerException, OSError, ValueError) as e:
            raise CollectionError(f"Failed to read stats for {container_id[:12]}: {e}") from e

        if not isinstance(stats, dict):
            raise CollectionError(
                f"Unexpected stats payload for {container_id[:12]}: {type(stats).__name__}"
            )
        return stats
