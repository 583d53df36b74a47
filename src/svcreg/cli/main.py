import json
import os
import signal
from pathlib import Path
from typing import Optional

import typer

from svcreg.cli.formatter import OutputFormatter
from svcreg.client import RegistryClient
from svcreg.config.settings import load_settings
from svcreg.runtime.rendezvous import (
    RendezvousState,
    default_record_path,
    probe_rendezvous,
    read_record,
    record_is_live,
    remove_stale_record,
)
from svcreg.runtime.server import RegistryDaemon
from svcreg.utils.errors import DaemonAlreadyRunning, SvcRegistryError

app = typer.Typer(name="svc-registry", help="Local service registry CLI", rich_markup_mode=None)

RECORD_OPTION_HELP = "Path of the rendezvous record (defaults to the shared temp directory)."


def _record_path(record: Optional[Path]) -> Path:
    return record if record is not None else default_record_path()


def _build_client(record: Optional[Path]) -> RegistryClient:
    return RegistryClient(record_path=_record_path(record))


def _fail(exc: SvcRegistryError) -> None:
    OutputFormatter.log(f"Error: {exc}", severity="error")
    raise typer.Exit(code=1)


def _parse_meta(meta: Optional[str]) -> dict:
    if not meta:
        return {}
    try:
        parsed = json.loads(meta)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"--meta must be a JSON object: {e}")
    if not isinstance(parsed, dict):
        raise typer.BadParameter("--meta must be a JSON object.")
    return parsed


@app.command()
def start(
    record: Optional[Path] = typer.Option(None, "--record", help=RECORD_OPTION_HELP),
):
    """Start the daemon if it is not already running."""
    try:
        info = _build_client(record).start_daemon_if_needed()
    except SvcRegistryError as e:
        _fail(e)
    OutputFormatter.log(
        f"svc-registry daemon is running at {info.host}:{info.port} (pid={info.pid}).",
        severity="success",
    )


@app.command()
def stop(
    record: Optional[Path] = typer.Option(None, "--record", help=RECORD_OPTION_HELP),
):
    """Ask the running daemon to shut down."""
    record_path = _record_path(record)
    info = read_record(record_path)
    if info is None:
        OutputFormatter.log("No daemon discovered.", severity="warning")
        raise typer.Exit(code=1)

    if not record_is_live(info):
        remove_stale_record(record_path)
        OutputFormatter.log(
            f"Daemon pid={info.pid} is not alive; removed stale rendezvous record.",
            severity="warning",
        )
        return

    try:
        os.kill(info.pid, signal.SIGTERM)
    except OSError as e:
        OutputFormatter.log(f"Failed to stop daemon pid={info.pid}: {e}", severity="error")
        raise typer.Exit(code=1)
    OutputFormatter.log(f"Requested shutdown of daemon pid={info.pid}.", severity="info")


@app.command()
def status(
    record: Optional[Path] = typer.Option(None, "--record", help=RECORD_OPTION_HELP),
):
    """Report whether the rendezvous record names a live daemon."""
    probe = probe_rendezvous(_record_path(record))
    OutputFormatter.print_data(probe)
    if probe.state != RendezvousState.LIVE:
        OutputFormatter.log(probe.reason, severity="warning")
        raise typer.Exit(code=1)
    OutputFormatter.log(probe.reason, severity="success")


@app.command("list")
def list_services(
    record: Optional[Path] = typer.Option(None, "--record", help=RECORD_OPTION_HELP),
):
    """List every registered service and its instances."""
    try:
        services = _build_client(record).list()
    except SvcRegistryError as e:
        _fail(e)
    OutputFormatter.print_services(services)
    OutputFormatter.print_data(services)


@app.command()
def register(
    name: str = typer.Argument(..., help="Logical service name."),
    port: int = typer.Argument(..., help="Port the instance listens on."),
    host: str = typer.Option("127.0.0.1", "--host", help="Host the instance listens on."),
    instance_id: Optional[str] = typer.Option(None, "--id", help="Instance id (generated when omitted)."),
    pid: Optional[int] = typer.Option(None, "--pid", help="Process id of the instance."),
    meta: Optional[str] = typer.Option(None, "--meta", help="JSON object of opaque metadata."),
    record: Optional[Path] = typer.Option(None, "--record", help=RECORD_OPTION_HELP),
):
    """Register a service instance."""
    parsed_meta = _parse_meta(meta)
    try:
        instance = _build_client(record).register(
            name, port, host=host, pid=pid, id=instance_id, meta=parsed_meta
        )
    except SvcRegistryError as e:
        _fail(e)
    OutputFormatter.print_data(instance)


@app.command()
def heartbeat(
    name: str = typer.Argument(..., help="Logical service name."),
    instance_id: str = typer.Argument(..., help="Instance id returned by register."),
    record: Optional[Path] = typer.Option(None, "--record", help=RECORD_OPTION_HELP),
):
    """Refresh an instance's liveness."""
    try:
        instance = _build_client(record).heartbeat(name, instance_id)
    except SvcRegistryError as e:
        _fail(e)
    if instance is None:
        OutputFormatter.log(f"Instance '{instance_id}' of '{name}' is not registered.", severity="warning")
        raise typer.Exit(code=1)
    OutputFormatter.print_data(instance)


@app.command()
def unregister(
    name: str = typer.Argument(..., help="Logical service name."),
    instance_id: Optional[str] = typer.Argument(None, help="Instance id; omit to match by --host/--port."),
    host: Optional[str] = typer.Option(None, "--host", help="Remove instances on this host."),
    port: Optional[int] = typer.Option(None, "--port", help="Remove instances on this port."),
    record: Optional[Path] = typer.Option(None, "--record", help=RECORD_OPTION_HELP),
):
    """Remove an instance by id, or every instance matching --host or --port."""
    try:
        removed = _build_client(record).unregister(name, id=instance_id, host=host, port=port)
    except SvcRegistryError as e:
        _fail(e)
    OutputFormatter.print_data({"ok": removed})
    if not removed:
        raise typer.Exit(code=1)


@app.command()
def resolve(
    name: str = typer.Argument(..., help="Logical service name."),
    record: Optional[Path] = typer.Option(None, "--record", help=RECORD_OPTION_HELP),
):
    """Resolve a service name to its most recently seen instance."""
    try:
        instance = _build_client(record).resolve(name)
    except SvcRegistryError as e:
        _fail(e)
    if instance is None:
        OutputFormatter.log(f"Service '{name}' not found.", severity="warning")
        raise typer.Exit(code=1)
    OutputFormatter.print_data(instance)


@app.command(hidden=True)
def daemon(
    record: Optional[Path] = typer.Option(None, "--record", help=RECORD_OPTION_HELP),
):
    """Run the registry daemon in the foreground."""
    try:
        registry_daemon = RegistryDaemon(record_path=_record_path(record), settings=load_settings())
        registry_daemon.start()
    except DaemonAlreadyRunning as e:
        OutputFormatter.log(str(e), severity="critical")
        raise typer.Exit(code=1)
    except SvcRegistryError as e:
        _fail(e)

    def _handle_signal(signum, frame):
        registry_daemon.request_shutdown()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)
    registry_daemon.serve_forever()


if __name__ == "__main__":
    app()
