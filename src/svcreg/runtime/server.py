"""
Registry daemon: HTTP surface plus the server-side singleton guard.

- _make_handler: request handler bound to one LivenessDirectory
- guard_singleton: refuse to start when a live daemon owns the rendezvous record
- RegistryDaemon: bind, publish, periodic cleanup/refresh, shutdown
"""

from __future__ import annotations

import json
import os
import socket
import socketserver
import threading
import time
import urllib.parse
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Any, Callable, Optional

from svcreg.cli.formatter import OutputFormatter
from svcreg.config.settings import RegistrySettings, load_settings
from svcreg.core.directory import DEFAULT_HOST, LivenessDirectory, now_ms
from svcreg.core.models import DaemonRecord, utc_now_iso
from svcreg.runtime.rendezvous import (
    RendezvousState,
    default_record_path,
    probe_rendezvous,
    read_record,
    record_is_live,
    remove_record_if_owned,
    write_record_atomic,
)
from svcreg.runtime.scheduler import Scheduler
from svcreg.utils.errors import DaemonAlreadyRunning, ValidationError

CLEANUP_INTERVAL_SECONDS = 5.0
REFRESH_INTERVAL_SECONDS = 5.0
REQUEST_POLL_SECONDS = 0.2
MAX_BODY_BYTES = 1024 * 1024
REQUEST_TIMEOUT_SECONDS = 5.0


class _InvalidBody(Exception):
    pass


class _RegistryHTTPServer(HTTPServer):
    def server_bind(self):
        # Skip the reverse DNS lookup HTTPServer performs for server_name
        socketserver.TCPServer.server_bind(self)
        host, port = self.server_address[:2]
        self.server_name = host
        self.server_port = port


# ---------------------------------------------------------------------------
# HTTP handler
# ---------------------------------------------------------------------------

def _make_handler(directory: LivenessDirectory, pid: int, request_timeout: float = REQUEST_TIMEOUT_SECONDS):
    """Create a handler class bound to the given directory instance."""

    class RegistryHTTPHandler(BaseHTTPRequestHandler):
        # Socket timeout per connection; a stalled peer must not hold the serve loop
        timeout = request_timeout

        def log_message(self, format, *args):
            # Silence default stderr logging
            pass

        def _json_response(self, data: Any, status: int = 200):
            body = json.dumps(data).encode()
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def _read_body(self) -> dict:
            try:
                length = int(self.headers.get("Content-Length") or 0)
            except ValueError:
                raise _InvalidBody("Invalid Content-Length")
            if length < 0:
                raise _InvalidBody("Invalid Content-Length")
            if length > MAX_BODY_BYTES:
                raise _InvalidBody("Request body too large")
            try:
                raw = self.rfile.read(length) if length else b""
            except socket.timeout:
                raise _InvalidBody("Timed out reading request body")
            if not raw.strip():
                return {}
            try:
                payload = json.loads(raw.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError):
                raise _InvalidBody("Invalid JSON")
            if not isinstance(payload, dict):
                raise _InvalidBody("Request body must be a JSON object")
            return payload

        def do_GET(self):
            path = urllib.parse.urlparse(self.path).path.rstrip("/")

            if path == "/health":
                self._json_response({"ok": True, "pid": pid})

            elif path == "/list":
                services = {
                    name: [instance.to_wire() for instance in instances]
                    for name, instances in directory.list().items()
                }
                self._json_response({"ok": True, "services": services})

            elif path.startswith("/resolve/"):
                name = urllib.parse.unquote(path[len("/resolve/"):])
                instance = directory.resolve(name)
                if instance is None:
                    self._json_response({"ok": False, "error": "not_found"}, status=404)
                else:
                    self._json_response({"ok": True, "instance": instance.to_wire()})

            else:
                self._json_response({"ok": False, "error": "not_found"}, status=404)

        def do_POST(self):
            path = urllib.parse.urlparse(self.path).path.rstrip("/")
            if path not in ("/register", "/heartbeat", "/unregister"):
                self._json_response({"ok": False, "error": "not_found"}, status=404)
                return

            try:
                body = self._read_body()
                if path == "/register":
                    instance = directory.register(
                        name=body.get("name"),
                        port=body.get("port"),
                        host=body.get("host"),
                        pid=body.get("pid"),
                        id=body.get("id"),
                        meta=body.get("meta"),
                    )
                    self._json_response({"ok": True, "instance": instance.to_wire()})

                elif path == "/heartbeat":
                    instance = directory.heartbeat(body.get("name"), body.get("id"))
                    self._json_response({
                        "ok": True,
                        "instance": instance.to_wire() if instance is not None else None,
                    })

                else:
                    removed = directory.unregister(
                        body.get("name"),
                        id=body.get("id"),
                        host=body.get("host"),
                        port=body.get("port"),
                    )
                    self._json_response({"ok": removed})

            except (_InvalidBody, ValidationError) as exc:
                self._json_response({"ok": False, "error": str(exc)}, status=400)

    return RegistryHTTPHandler


# ---------------------------------------------------------------------------
# Server-side singleton guard
# ---------------------------------------------------------------------------

def guard_singleton(record_path: Path, own_pid: int) -> Optional[DaemonRecord]:
    """
    Abort when the rendezvous record names another live daemon.

    Returns the stale record being superseded, if any. This is a best-effort
    check: two processes can both pass it before either publishes.
    """
    probe = probe_rendezvous(record_path)
    if probe.state == RendezvousState.LIVE and probe.record is not None and probe.record.pid != own_pid:
        raise DaemonAlreadyRunning(probe.record)
    if probe.state == RendezvousState.STALE:
        return probe.record
    return None


# ---------------------------------------------------------------------------
# Daemon
# ---------------------------------------------------------------------------

class RegistryDaemon:
    """
    Single-threaded registry daemon.

    Requests and scheduled tasks run on the thread that calls
    ``serve_forever``; the directory is never touched concurrently.
    """

    def __init__(
        self,
        record_path: Optional[Path] = None,
        settings: Optional[RegistrySettings] = None,
        directory: Optional[LivenessDirectory] = None,
        host: str = DEFAULT_HOST,
        cleanup_interval: float = CLEANUP_INTERVAL_SECONDS,
        refresh_interval: float = REFRESH_INTERVAL_SECONDS,
        poll_interval: float = REQUEST_POLL_SECONDS,
        request_timeout: float = REQUEST_TIMEOUT_SECONDS,
        pid: Optional[int] = None,
        clock: Callable[[], int] = now_ms,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.record_path = record_path or default_record_path()
        self.settings = settings or load_settings()
        self.directory = directory or LivenessDirectory(clock=clock)
        self.host = host
        self.cleanup_interval = cleanup_interval
        self.refresh_interval = refresh_interval
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout
        self.pid = pid or os.getpid()
        self.scheduler = Scheduler()
        self.record: Optional[DaemonRecord] = None
        self._clock = clock
        self._monotonic = monotonic
        self._server: Optional[HTTPServer] = None
        self._stop_event = threading.Event()
        self._closed = False

    @property
    def address(self) -> tuple[str, int]:
        if self._server is None:
            raise RuntimeError("RegistryDaemon is not started. Call start() first.")
        host, port = self._server.server_address[:2]
        return host, port

    def start(self) -> DaemonRecord:
        """Run the singleton guard, bind an ephemeral port and publish the record."""
        stale = guard_singleton(self.record_path, self.pid)
        if stale is not None:
            OutputFormatter.log(
                f"Superseding stale rendezvous record (pid={stale.pid} is not alive).",
                severity="warning",
            )

        handler = _make_handler(self.directory, self.pid, self.request_timeout)
        self._server = _RegistryHTTPServer((self.host, 0), handler)
        self._server.timeout = self.poll_interval
        self.record = self._publish()

        now = self._monotonic()
        self.scheduler.every("cleanup", self.cleanup_interval, self.run_cleanup, now)
        self.scheduler.every("refresh", self.refresh_interval, self.refresh_record, now)

        OutputFormatter.log(
            f"svc-registry daemon started on {self.record.host}:{self.record.port} pid={self.pid}",
            severity="success",
        )
        return self.record

    def serve_forever(self) -> None:
        """Serve requests and run scheduled tasks until shutdown is requested."""
        if self._server is None:
            self.start()
        try:
            while not self._stop_event.is_set():
                self._server.timeout = self._next_wait(self._monotonic())
                self._server.handle_request()
                self.scheduler.run_pending(self._monotonic())
        finally:
            self.close()

    def request_shutdown(self) -> None:
        """Ask the serve loop to stop; safe to call from signal handlers and other threads."""
        self._stop_event.set()

    def close(self) -> None:
        """Stop accepting connections and withdraw the record if it is still ours."""
        if self._closed:
            return
        self._closed = True
        self._stop_event.set()
        self.scheduler.cancel_all()
        if self._server is not None:
            self._server.server_close()
        if remove_record_if_owned(self.record_path, self.pid):
            OutputFormatter.log("Removed rendezvous record.", severity="info")
        OutputFormatter.log(f"svc-registry daemon pid={self.pid} stopped.", severity="info")

    def run_cleanup(self, now: float) -> None:
        evicted = self.directory.cleanup_expired(self._clock(), self.settings.ttl)
        for instance in evicted:
            OutputFormatter.log(
                f"Evicted {instance.name} instance {instance.id} (no heartbeat within {self.settings.ttl} ms).",
                severity="info",
            )

    def refresh_record(self, now: float) -> bool:
        """
        Rewrite the record with a fresh timestamp.

        If another live daemon has taken over the record, relinquish the role
        instead of overwriting it. Returns whether the record was rewritten.
        """
        current = read_record(self.record_path)
        if current is not None and current.pid != self.pid and record_is_live(current):
            OutputFormatter.log(
                f"Rendezvous record now names pid={current.pid}; relinquishing the daemon role.",
                severity="warning",
            )
            self.request_shutdown()
            return False
        self.record = self._publish()
        return True

    def _next_wait(self, now: float) -> float:
        # Wake no later than the next due task so cleanup and refresh stay on time
        due = self.scheduler.seconds_until_next(now)
        if due is None:
            return self.poll_interval
        return min(self.poll_interval, due)

    def _publish(self) -> DaemonRecord:
        host, port = self.address
        record = DaemonRecord(host=host, port=port, pid=self.pid, started_at=utc_now_iso())
        write_record_atomic(self.record_path, record)
        return record
