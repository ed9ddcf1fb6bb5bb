"""CLI for instance-metrics.

Provides a command-line interface using Typer for:
- Running the collector (forever, once, or a fixed number of cycles)
- Generating a sample configuration file
"""

from __future__ import annotations

from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from instance_metrics.core.config import load_config, resolve_instance_id
from instance_metrics.core.errors import CollectionError, PublishError
from instance_metrics.core.schemas import CollectorConfig, MetricKind
from instance_metrics.publishing.base import Publisher
from instance_metrics.publishing.cloudwatch import CloudWatchPublisher
from instance_metrics.publishing.console import ConsolePublisher
from instance_metrics.scheduler import MetricsScheduler, build_metrics
from instance_metrics.utils.logging import get_logger, setup_logging

app = typer.Typer(
    name="instance-metrics",
    help="Host, Docker container and Swarm service metrics for CloudWatch",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)


@app.command()
def run(
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to configuration file (YAML/JSON)"
    ),
    interval: int | None = typer.Option(
        None, "--interval", "-i", help="Seconds between cycles (overrides config)"
    ),
    once: bool = typer.Option(False, "--once", help="Run a single cycle and exit"),
    cycles: int | None = typer.Option(None, "--cycles", help="Stop after this many cycles"),
    metric: list[MetricKind] | None = typer.Option(
        None, "--metric", "-m", help="Metric family to collect (repeatable)"
    ),
    namespace: str | None = typer.Option(None, "--namespace", "-n", help="Metric namespace"),
    instance_id: str | None = typer.Option(None, "--instance-id", help="Host instance id"),
    region: str | None = typer.Option(None, "--region", help="AWS region"),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Print datapoints instead of publishing them"
    ),
    keep_going: bool = typer.Option(
        False, "--keep-going", help="Log failed cycles and retry instead of exiting"
    ),
    log_level: str = typer.Option("INFO", "--log-level", "-l", help="Logging level"),
    log_file: Path | None = typer.Option(
        None, "--log-file", help="Write logs to file in addition to console"
    ),
    json_logs: bool = typer.Option(
        False, "--json-logs", help="Output logs in JSON format (for programmatic parsing)"
    ),
) -> None:
    """Collect and publish metrics once per interval."""
    setup_logging(
        level=log_level, log_file=log_file, json_format=json_logs, rich_console=not json_logs
    )

    try:
        collector_config = load_config(config)
        overrides = {
            "interval_seconds": interval,
            "metrics": metric or None,
            "namespace": namespace,
            "instance_id": instance_id,
            "region": region,
        }
        collector_config = CollectorConfig.model_validate(
            {
                **collector_config.model_dump(),
                **{k: v for k, v in overrides.items() if v is not None},
            }
        )
    except (FileNotFoundError, ValueError, ValidationError) as e:
        console.print(f"[bold red]Error loading config: {e}[/]")
        raise typer.Exit(1) from e

    resolved_instance_id = resolve_instance_id(collector_config)
    _show_config_summary(collector_config, resolved_instance_id, dry_run)

    publisher: Publisher
    if dry_run:
        publisher = ConsolePublisher(console)
    else:
        publisher = CloudWatchPublisher(region=collector_config.region)

    scheduler = MetricsScheduler(
        metrics=build_metrics(collector_config),
        publisher=publisher,
        instance_id=resolved_instance_id,
        namespace=collector_config.namespace,
        interval_seconds=collector_config.interval_seconds,
        max_datapoints_per_call=collector_config.max_datapoints_per_call,
    )

    max_cycles = 1 if once else cycles
    try:
        completed = scheduler.run(max_cycles=max_cycles, keep_going=keep_going)
    except (CollectionError, PublishError) as e:
        logger.error(f"Collection cycle failed: {e}")
        raise typer.Exit(1) from e
    except KeyboardInterrupt:
        console.print("[bold yellow]Interrupted[/]")
        raise typer.Exit(130) from None

    if max_cycles is not None and completed < max_cycles:
        console.print(f"[bold yellow]{max_cycles - completed} of {max_cycles} cycles failed[/]")
        raise typer.Exit(1)


@app.command()
def init_config(
    output: Path = typer.Option(
        Path("instance-metrics.yaml"), "--output", "-o", help="Output configuration file"
    ),
) -> None:
    """Generate a sample configuration file."""
    sample_config = """\
# instance-metrics configuration
# Every value can also be set through the environment:
#   INSTANCE_METRICS_NAMESPACE, INSTANCE_METRICS_INSTANCE_ID,
#   INSTANCE_METRICS_INTERVAL, INSTANCE_METRICS_METRICS, AWS_REGION

namespace: "Custom/InstanceMetrics"

# Leave empty to ask the EC2 instance metadata service
# instance_id: "i-0123456789abcdef0"
# region: "eu-west-1"

# Seconds between the start of two cycles
interval_seconds: 60

# Metric families: memory, docker, swarm
metrics:
  - memory
  - docker
  - swarm

swarm_service_label: "com.docker.swarm.service.name"
cgroup_root: "/sys/fs/cgroup"
docker_timeout_seconds: 30

# PutMetricData batch size (1-20)
max_datapoints_per_call: 20
"""
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(sample_config)
    console.print(f"[bold green]Sample configuration written to {output}[/]")


def _show_config_summary(config: CollectorConfig, instance_id: str, dry_run: bool) -> None:
    """Display a summary of the collector configuration."""
    table = Table(title="Collector Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Instance", instance_id)
    table.add_row("Namespace", config.namespace)
    table.add_row("Region", config.region or "(default)")
    table.add_row("Interval", f"{config.interval_seconds}s")
    table.add_row("Metrics", ", ".join(m.value for m in config.metrics))
    table.add_row("Publisher", "console (dry run)" if dry_run else "CloudWatch")

    console.print(table)


if __name__ == "__main__":
    app()
