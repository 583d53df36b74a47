import json
import os
import signal

import pytest
from typer.testing import CliRunner

from svcreg.cli.main import app
from svcreg.core.models import DaemonRecord, Instance
from svcreg.runtime.rendezvous import write_record_atomic
from svcreg.utils.errors import DaemonStartupTimeout, DaemonAlreadyRunning, ValidationError

runner = CliRunner()


def _record(pid=None, port=8123) -> DaemonRecord:
    return DaemonRecord(
        host="127.0.0.1",
        port=port,
        pid=pid if pid is not None else os.getpid(),
        started_at="2026-02-25T00:00:00Z",
    )


def _instance(**overrides) -> Instance:
    data = {"id": "auth-1", "name": "auth", "host": "127.0.0.1", "port": 3001, "last_seen": 1000}
    data.update(overrides)
    return Instance(**data)


class FakeClient:
    """Records calls made by CLI commands."""

    calls: list = []
    resolve_result = None
    heartbeat_result = None
    error = None

    def __init__(self, record_path=None, **kwargs):
        self.record_path = record_path

    def _maybe_fail(self):
        if FakeClient.error is not None:
            raise FakeClient.error

    def start_daemon_if_needed(self):
        self._maybe_fail()
        FakeClient.calls.append(("start",))
        return _record()

    def register(self, name, port, host="127.0.0.1", pid=None, id=None, meta=None):
        self._maybe_fail()
        FakeClient.calls.append(("register", name, port, host, pid, id, meta))
        return _instance(name=name, port=port, host=host, pid=pid, id=id or "generated", meta=meta or {})

    def heartbeat(self, name, id):
        self._maybe_fail()
        FakeClient.calls.append(("heartbeat", name, id))
        return FakeClient.heartbeat_result

    def unregister(self, name, id=None, host=None, port=None):
        self._maybe_fail()
        FakeClient.calls.append(("unregister", name, id, host, port))
        return True

    def resolve(self, name):
        self._maybe_fail()
        FakeClient.calls.append(("resolve", name))
        return FakeClient.resolve_result

    def list(self):
        self._maybe_fail()
        FakeClient.calls.append(("list",))
        return {"auth": [_instance()]}


@pytest.fixture
def fake_client(monkeypatch):
    FakeClient.calls = []
    FakeClient.resolve_result = None
    FakeClient.heartbeat_result = None
    FakeClient.error = None
    monkeypatch.setattr("svcreg.cli.main.RegistryClient", FakeClient)
    return FakeClient


def _messages(logs) -> str:
    return "\n".join(message for message, _ in logs)


def test_register_prints_instance_json(fake_client, logs, record_path):
    result = runner.invoke(
        app,
        ["register", "auth", "3001", "--host", "10.0.0.1", "--id", "auth-9", "--meta", '{"zone": "a"}',
         "--record", str(record_path)],
    )

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["id"] == "auth-9"
    assert payload["lastSeen"] == 1000
    assert fake_client.calls == [("register", "auth", 3001, "10.0.0.1", None, "auth-9", {"zone": "a"})]


def test_register_rejects_non_object_meta(fake_client, logs):
    result = runner.invoke(app, ["register", "auth", "3001", "--meta", "[1, 2]"])

    assert result.exit_code != 0
    assert fake_client.calls == []


def test_register_validation_error_exits_1(fake_client, logs):
    fake_client.error = ValidationError("name required")

    result = runner.invoke(app, ["register", "auth", "3001"])

    assert result.exit_code == 1
    assert "name required" in _messages(logs)


def test_resolve_found(fake_client, logs):
    fake_client.resolve_result = _instance(port=4444)

    result = runner.invoke(app, ["resolve", "auth"])

    assert result.exit_code == 0
    assert json.loads(result.stdout)["port"] == 4444


def test_resolve_not_found_exits_1(fake_client, logs):
    result = runner.invoke(app, ["resolve", "auth"])

    assert result.exit_code == 1
    assert "not found" in _messages(logs)


def test_heartbeat_unknown_exits_1(fake_client, logs):
    result = runner.invoke(app, ["heartbeat", "auth", "ghost"])

    assert result.exit_code == 1
    assert fake_client.calls == [("heartbeat", "auth", "ghost")]


def test_unregister_by_port(fake_client, logs):
    result = runner.invoke(app, ["unregister", "auth", "--port", "3001"])

    assert result.exit_code == 0
    assert fake_client.calls == [("unregister", "auth", None, None, 3001)]


def test_list_prints_services(fake_client, logs):
    result = runner.invoke(app, ["list"])

    assert result.exit_code == 0
    assert '"auth-1"' in result.stdout


def test_start_reports_running_daemon(fake_client, logs):
    result = runner.invoke(app, ["start"])

    assert result.exit_code == 0
    assert ("start",) in fake_client.calls
    assert any(severity == "success" for _, severity in logs)


def test_start_timeout_exits_1(fake_client, logs):
    fake_client.error = DaemonStartupTimeout("daemon rendezvous record not created in time", 3000)

    result = runner.invoke(app, ["start"])

    assert result.exit_code == 1
    assert "not created in time" in _messages(logs)


def test_stop_without_record_exits_1(record_path, logs):
    result = runner.invoke(app, ["stop", "--record", str(record_path)])

    assert result.exit_code == 1
    assert "No daemon discovered" in _messages(logs)


def test_stop_removes_stale_record(record_path, logs, monkeypatch):
    write_record_atomic(record_path, _record(pid=424242))
    monkeypatch.setattr("svcreg.runtime.rendezvous.is_process_alive", lambda pid: False)

    result = runner.invoke(app, ["stop", "--record", str(record_path)])

    assert result.exit_code == 0
    assert not record_path.exists()


def test_stop_signals_live_daemon(record_path, logs, monkeypatch):
    write_record_atomic(record_path, _record(pid=4242))
    monkeypatch.setattr("svcreg.runtime.rendezvous.is_process_alive", lambda pid: True)
    sent = []
    monkeypatch.setattr("svcreg.cli.main.os.kill", lambda pid, sig: sent.append((pid, sig)))

    result = runner.invoke(app, ["stop", "--record", str(record_path)])

    assert result.exit_code == 0
    assert sent == [(4242, signal.SIGTERM)]


def test_status_live_and_absent(record_path, logs):
    absent = runner.invoke(app, ["status", "--record", str(record_path)])
    assert absent.exit_code == 1

    write_record_atomic(record_path, _record())
    live = runner.invoke(app, ["status", "--record", str(record_path)])
    assert live.exit_code == 0
    assert json.loads(live.stdout)["state"] == "live"


def test_daemon_command_abstains_when_owner_alive(record_path, logs, monkeypatch):
    class RefusingDaemon:
        def __init__(self, **kwargs):
            pass

        def start(self):
            raise DaemonAlreadyRunning(_record())

    monkeypatch.setattr("svcreg.cli.main.RegistryDaemon", RefusingDaemon)

    result = runner.invoke(app, ["daemon", "--record", str(record_path)])

    assert result.exit_code == 1
    assert any(severity == "critical" for _, severity in logs)
