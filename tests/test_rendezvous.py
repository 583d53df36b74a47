import json
import os

from svcreg.core.models import DaemonRecord
from svcreg.runtime.rendezvous import (
    RendezvousState,
    default_record_path,
    is_process_alive,
    probe_rendezvous,
    read_record,
    record_is_live,
    remove_record_if_owned,
    remove_stale_record,
    write_record_atomic,
)


def _record(pid: int = None, port: int = 8123) -> DaemonRecord:
    return DaemonRecord(
        host="127.0.0.1",
        port=port,
        pid=pid if pid is not None else os.getpid(),
        started_at="2026-02-25T00:00:00Z",
    )


def test_default_record_path_uses_well_known_name():
    assert default_record_path().name == "svc-registry.json"


def test_write_record_uses_camel_case_wire_format(record_path):
    write_record_atomic(record_path, _record(port=9001))

    payload = json.loads(record_path.read_text())

    assert payload == {
        "host": "127.0.0.1",
        "port": 9001,
        "pid": os.getpid(),
        "startedAt": "2026-02-25T00:00:00Z",
    }


def test_write_record_leaves_no_temp_files(record_path):
    write_record_atomic(record_path, _record())
    write_record_atomic(record_path, _record(port=9002))

    assert sorted(p.name for p in record_path.parent.iterdir()) == [record_path.name]
    assert read_record(record_path).port == 9002


def test_write_record_creates_parent_directory(tmp_path):
    path = tmp_path / "nested" / "svc-registry.json"

    write_record_atomic(path, _record())

    assert read_record(path) is not None


def test_read_record_missing_file_is_none(record_path):
    assert read_record(record_path) is None


def test_read_record_malformed_json_is_none(record_path):
    record_path.write_text("{not-json}")

    assert read_record(record_path) is None


def test_read_record_missing_fields_is_none(record_path):
    record_path.write_text(json.dumps({"host": "127.0.0.1", "pid": 12}))

    assert read_record(record_path) is None


def test_is_process_alive_for_current_pid():
    assert is_process_alive(os.getpid()) is True


def test_is_process_alive_rejects_non_positive_pid():
    assert is_process_alive(0) is False
    assert is_process_alive(-1) is False


def test_record_is_live_handles_none():
    assert record_is_live(None) is False


def test_probe_absent_when_record_missing(record_path):
    probe = probe_rendezvous(record_path)

    assert probe.state == RendezvousState.ABSENT
    assert probe.record is None
    assert "not found" in probe.reason.lower()


def test_probe_malformed_record_reads_as_absent(record_path):
    record_path.write_text("garbage")

    probe = probe_rendezvous(record_path)

    assert probe.state == RendezvousState.ABSENT
    assert "malformed" in probe.reason.lower()


def test_probe_live_for_current_pid(record_path):
    write_record_atomic(record_path, _record())

    probe = probe_rendezvous(record_path)

    assert probe.state == RendezvousState.LIVE
    assert probe.record.pid == os.getpid()


def test_probe_dead_pid_marks_stale(record_path, monkeypatch):
    write_record_atomic(record_path, _record(pid=424242))
    monkeypatch.setattr("svcreg.runtime.rendezvous.is_process_alive", lambda pid: False)

    probe = probe_rendezvous(record_path)

    assert probe.state == RendezvousState.STALE
    assert probe.record.pid == 424242
    assert "not alive" in probe.reason.lower()


def test_remove_record_if_owned_only_removes_own_record(record_path):
    write_record_atomic(record_path, _record(pid=os.getpid()))

    assert remove_record_if_owned(record_path, os.getpid() + 1) is False
    assert record_path.exists()

    assert remove_record_if_owned(record_path, os.getpid()) is True
    assert not record_path.exists()


def test_remove_record_if_owned_missing_file(record_path):
    assert remove_record_if_owned(record_path, os.getpid()) is False


def test_remove_stale_record_keeps_live_record(record_path):
    write_record_atomic(record_path, _record())

    assert remove_stale_record(record_path) is False
    assert record_path.exists()


def test_remove_stale_record_deletes_dead_record(record_path, monkeypatch):
    write_record_atomic(record_path, _record(pid=424242))
    monkeypatch.setattr("svcreg.runtime.rendezvous.is_process_alive", lambda pid: False)

    assert remove_stale_record(record_path) is True
    assert not record_path.exists()
