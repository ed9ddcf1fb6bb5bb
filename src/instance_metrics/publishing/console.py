"""Console publisher - renders batches as rich tables instead of sending them."""

from __future__ import annotations

from collections.abc import Sequence

from rich.console import Console
from rich.table import Table

from instance_metrics.metrics.base import Datapoint
from instance_metrics.publishing.base import Publisher


class ConsolePublisher(Publisher):
    """Prints every batch, used for dry runs."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def publish(self, datapoints: Sequence[Datapoint], namespace: str) -> None:
        table = Table(title=f"{namespace} ({len(datapoints)} datapoints)")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="bold", justify="right")
        table.add_column("Unit", style="green")
        table.add_column("Dimensions", style="dim")

        for dp in datapoints:
            dims = ", ".join(f"{d.name}={d.value}" for d in dp.dimensions)
            table.add_row(dp.metric_name, f"{dp.value:,.2f}", dp.unit.value, dims)

        self.console.print(table)
