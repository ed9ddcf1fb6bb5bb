"""Configuration loading utilities.

Supports YAML and JSON configuration files plus environment overrides, with
schema validation.
"""

from __future__ import annotations

import json
import logging
import os
import socket
from collections.abc import Mapping
from pathlib import Path
from typing import Any
from urllib.error import URLError
from urllib.request import Request, urlopen

import yaml

from instance_metrics.core.schemas import CollectorConfig

logger = logging.getLogger(__name__)

# Environment variable -> CollectorConfig field
ENV_OVERRIDES = {
    "INSTANCE_METRICS_NAMESPACE": "namespace",
    "INSTANCE_METRICS_INSTANCE_ID": "instance_id",
    "INSTANCE_METRICS_INTERVAL": "interval_seconds",
    "INSTANCE_METRICS_METRICS": "metrics",
    "INSTANCE_METRICS_CGROUP_ROOT": "cgroup_root",
    "AWS_DEFAULT_REGION": "region",
    "AWS_REGION": "region",
}

IMDS_BASE_URL = "http://169.254.169.254/latest"
IMDS_TIMEOUT_SECONDS = 1.0


def load_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> CollectorConfig:
    """Load and validate the collector configuration.

    Values come from the optional file first, then from the environment.
    AWS_REGION wins over AWS_DEFAULT_REGION when both are set.

    Args:
        path: Path to YAML or JSON configuration file
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated CollectorConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If file format is unsupported
        pydantic.ValidationError: If config is invalid
    """
    data: dict[str, Any] = {}

    if path is not None:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        suffix = path.suffix.lower()
        with open(path, encoding="utf-8") as f:
            if suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f) or {}
            elif suffix == ".json":
                data = json.load(f)
            else:
                raise ValueError(
                    f"Unsupported config format: {suffix}. Use .yaml, .yml, or .json"
                )

    if environ is None:
        environ = os.environ

    for env_name, field_name in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value:
            data[field_name] = value

    return CollectorConfig.model_validate(data)


def fetch_instance_id(timeout: float = IMDS_TIMEOUT_SECONDS) -> str | None:
    """Ask the EC2 instance metadata service (IMDSv2) for this host's instance id."""
    try:
        token_req = Request(
            f"{IMDS_BASE_URL}/api/token",
            method="PUT",
            headers={"X-aws-ec2-metadata-token-ttl-seconds": "60"},
        )
        with urlopen(token_req, timeout=timeout) as response:
            token = response.read().decode("utf-8")

        id_req = Request(
            f"{IMDS_BASE_URL}/meta-data/instance-id",
            headers={"X-aws-ec2-metadata-token": token},
        )
        with urlopen(id_req, timeout=timeout) as response:
            return response.read().decode("utf-8").strip() or None
    except (URLError, OSError) as e:
        logger.debug(f"Instance metadata service unavailable: {e}")
        return None


def resolve_instance_id(config: CollectorConfig) -> str:
    """Return the configured instance id, the EC2 one, or the host name."""
    if config.instance_id:
        return config.instance_id

    instance_id = fetch_instance_id()
    if instance_id:
        return instance_id

    hostname = socket.gethostname()
    logger.warning(f"No instance id configured or discoverable, using host name {hostname}")
    return hostname
