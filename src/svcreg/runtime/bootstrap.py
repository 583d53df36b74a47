from __future__ import annotations

import os
import subprocess
import sys
import time
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

import httpx

from svcreg.config.settings import RegistrySettings, load_settings
from svcreg.core.models import DaemonRecord
from svcreg.runtime.rendezvous import default_record_path, read_record, record_is_live
from svcreg.utils.errors import DaemonStartupTimeout

PROBE_TIMEOUT_SECONDS = 2.0
POLL_INTERVAL_SECONDS = 0.1


class BootstrapState(str, Enum):
    """Client-side discover-or-launch states."""

    UNKNOWN = "unknown"
    PROBING_EXISTING = "probing_existing"
    FOUND = "found"
    ABSENT = "absent"
    LAUNCHING = "launching"
    WAITING_FOR_READY = "waiting_for_ready"
    READY = "ready"
    TIMED_OUT = "timed_out"


def build_daemon_command(record_path: Path) -> list[str]:
    return [
        sys.executable,
        "-m",
        "svcreg.cli.main",
        "daemon",
        "--record",
        str(record_path),
    ]


def spawn_daemon_process(record_path: Path) -> subprocess.Popen:
    """
    Launch a detached daemon that outlives the caller.

    The handle is not awaited; readiness is observed through the rendezvous
    record only.
    """
    env = os.environ.copy()
    src_dir = Path(__file__).resolve().parents[2]
    existing_pythonpath = env.get("PYTHONPATH", "")
    env["PYTHONPATH"] = f"{src_dir}{os.pathsep}{existing_pythonpath}" if existing_pythonpath else str(src_dir)
    return subprocess.Popen(
        build_daemon_command(record_path),
        env=env,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
        close_fds=True,
    )


def probe_health(record: DaemonRecord, timeout_seconds: float) -> bool:
    """Return True when the recorded address answers /health with the recorded pid."""
    try:
        response = httpx.get(f"{record.base_url}/health", timeout=timeout_seconds, trust_env=False)
        payload = response.json()
    except (httpx.HTTPError, ValueError):
        return False
    if not isinstance(payload, dict):
        return False
    return response.status_code == 200 and payload.get("ok") is True and payload.get("pid") == record.pid


class DaemonBootstrap:
    """
    Discover a live daemon through the rendezvous record, or launch one.

    Every external effect (clock, sleep, launcher, health probe) is injectable
    so the state machine can be driven deterministically.
    """

    def __init__(
        self,
        record_path: Optional[Path] = None,
        settings: Optional[RegistrySettings] = None,
        launcher: Callable[[Path], object] = spawn_daemon_process,
        health_probe: Callable[[DaemonRecord, float], bool] = probe_health,
        probe_timeout: float = PROBE_TIMEOUT_SECONDS,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.record_path = record_path or default_record_path()
        self.settings = settings or load_settings()
        self.launcher = launcher
        self.health_probe = health_probe
        self.probe_timeout = probe_timeout
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep
        self.state = BootstrapState.UNKNOWN
        self.history: List[BootstrapState] = [BootstrapState.UNKNOWN]

    @property
    def startup_timeout_seconds(self) -> float:
        return self.settings.startup_timeout / 1000.0

    def discover(self) -> Optional[DaemonRecord]:
        """Return the recorded daemon when it is live and healthy, without launching."""
        self._transition(BootstrapState.PROBING_EXISTING)
        record = read_record(self.record_path)
        if record_is_live(record) and self.health_probe(record, self.probe_timeout):
            self._transition(BootstrapState.FOUND)
            return record
        self._transition(BootstrapState.ABSENT)
        return None

    def ensure_daemon(self) -> DaemonRecord:
        """Return a healthy daemon record, launching a daemon if required."""
        self._reset()
        record = self.discover()
        if record is not None:
            return record

        self._transition(BootstrapState.LAUNCHING)
        self.launcher(self.record_path)
        return self._wait_for_ready()

    def _wait_for_ready(self) -> DaemonRecord:
        self._transition(BootstrapState.WAITING_FOR_READY)
        deadline = self._clock() + self.startup_timeout_seconds
        saw_live_record = False

        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                break

            record = read_record(self.record_path)
            if record_is_live(record):
                saw_live_record = True
                if self.health_probe(record, min(self.probe_timeout, remaining)):
                    self._transition(BootstrapState.READY)
                    return record

            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            self._sleep(min(self.poll_interval, remaining))

        self._transition(BootstrapState.TIMED_OUT)
        if saw_live_record:
            message = "daemon did not respond to health check in time"
        else:
            message = "daemon rendezvous record not created in time"
        raise DaemonStartupTimeout(message, self.settings.startup_timeout)

    def _reset(self) -> None:
        self.state = BootstrapState.UNKNOWN
        self.history = [BootstrapState.UNKNOWN]

    def _transition(self, state: BootstrapState) -> None:
        self.state = state
        self.history.append(state)
