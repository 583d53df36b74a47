from __future__ import annotations

import json
import os
import tempfile
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ValidationError

from svcreg.core.models import DaemonRecord

RECORD_FILENAME = "svc-registry.json"


class RendezvousState(str, Enum):
    """Classification of the rendezvous record."""

    ABSENT = "absent"
    LIVE = "live"
    STALE = "stale"


class RendezvousProbeResult(BaseModel):
    """Result payload from probing the rendezvous record."""

    state: RendezvousState
    record: DaemonRecord | None = None
    record_path: str
    reason: str


def default_record_path() -> Path:
    """Return the well-known rendezvous file in the shared temp directory."""
    return Path(tempfile.gettempdir()) / RECORD_FILENAME


def read_record(path: Path) -> DaemonRecord | None:
    """Read the rendezvous record; a missing or malformed file reads as None."""
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
        return DaemonRecord.model_validate(payload)
    except (OSError, json.JSONDecodeError, ValidationError):
        return None


def write_record_atomic(path: Path, record: DaemonRecord) -> Path:
    """Publish the record with write-to-temp-then-rename semantics."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.name}.tmp.{os.getpid()}")
    try:
        tmp_path.write_text(json.dumps(record.to_wire()), encoding="utf-8")
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()
    return path


def is_process_alive(pid: int) -> bool:
    """Return True when a process id appears to be alive on this host."""
    if pid <= 0:
        return False

    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False

    return True


def record_is_live(record: DaemonRecord | None) -> bool:
    """Return True when the record names a live process."""
    return record is not None and is_process_alive(record.pid)


def probe_rendezvous(path: Path) -> RendezvousProbeResult:
    """Classify the rendezvous record as absent, live, or stale."""
    if not path.exists():
        return RendezvousProbeResult(
            state=RendezvousState.ABSENT,
            record_path=str(path),
            reason="Rendezvous record not found.",
        )

    record = read_record(path)
    if record is None:
        return RendezvousProbeResult(
            state=RendezvousState.ABSENT,
            record_path=str(path),
            reason="Rendezvous record is malformed; treating it as absent.",
        )

    if not record_is_live(record):
        return RendezvousProbeResult(
            state=RendezvousState.STALE,
            record=record,
            record_path=str(path),
            reason=f"Daemon process pid={record.pid} is not alive.",
        )

    return RendezvousProbeResult(
        state=RendezvousState.LIVE,
        record=record,
        record_path=str(path),
        reason="Daemon process is alive.",
    )


def remove_record_if_owned(path: Path, pid: int) -> bool:
    """Delete the record only when it still names ``pid``."""
    record = read_record(path)
    if record is None or record.pid != pid:
        return False
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


def remove_stale_record(path: Path) -> bool:
    """Delete the record when it names a dead process or is malformed."""
    if not path.exists():
        return False
    if record_is_live(read_record(path)):
        return False
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True
