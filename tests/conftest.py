import pytest
import sys
from pathlib import Path

# Ensure src/ is in the python path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from svcreg.cli.formatter import OutputFormatter


@pytest.fixture
def record_path(tmp_path):
    """
    Returns a rendezvous record location private to the test, so tests never
    touch the machine-wide record in the shared temp directory.
    """
    return tmp_path / "svc-registry.json"


@pytest.fixture
def logs(monkeypatch):
    """Capture OutputFormatter.log calls as (message, severity) tuples."""
    captured: list[tuple[str, str]] = []

    def fake_log(message: str, severity: str = "info") -> None:
        captured.append((message, severity))

    monkeypatch.setattr(OutputFormatter, "log", staticmethod(fake_log))
    return captured


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: int = 1_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()
