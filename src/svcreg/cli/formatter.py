import json
import typer
from typing import Any, Dict, List
from pydantic import BaseModel
from rich.console import Console
from rich.table import Table
from svcreg.core.models import Instance

# Create a stderr console for logging
error_console = Console(stderr=True)

class OutputFormatter:
    """
    Handles output formatting for the CLI and the daemon.
    Ensures separation of concerns between System Logs (stderr) and Data (stdout).
    """

    @staticmethod
    def log(message: str, severity: str = "info") -> None:
        """
        Print system messages to stderr with color coding.
        """
        style = "white"
        prefix = "[SVC-REGISTRY]"

        if severity == "warning":
            style = "yellow"
        elif severity == "error":
            style = "red"
        elif severity == "critical":
            style = "bold red"
        elif severity == "success":
            style = "green"

        error_console.print(f"[{style}]{prefix} {message}[/{style}]", markup=True, highlight=False)

    @staticmethod
    def print_services(services: Dict[str, List[Instance]]) -> None:
        """
        Prints a table of registered services to stderr.
        """
        if not services:
            error_console.print("No services registered.")
            return

        table = Table(title="Registered Services", header_style="bold cyan")
        table.add_column("Service", style="bold")
        table.add_column("Id")
        table.add_column("Address")
        table.add_column("PID")
        table.add_column("Last Seen (ms)")

        for name in sorted(services):
            for instance in services[name]:
                table.add_row(
                    name,
                    instance.id,
                    f"{instance.host}:{instance.port}",
                    "" if instance.pid is None else str(instance.pid),
                    str(instance.last_seen),
                )

        error_console.print(table)
        error_console.print() # spacing

    @staticmethod
    def print_data(data: Any) -> None:
        """
        Print a result to stdout as JSON.
        Handles Pydantic models and nested containers of them.
        """
        def json_serializer(obj):
            if isinstance(obj, BaseModel):
                return obj.model_dump(mode='json', by_alias=True)
            if hasattr(obj, "isoformat"):
                return obj.isoformat()
            return str(obj)

        try:
            output = json.dumps(data, indent=2, default=json_serializer)
            typer.echo(output)
        except TypeError as e:
            OutputFormatter.log(f"JSON Serialization failed: {e}", severity="error")
            typer.echo(str(data))
