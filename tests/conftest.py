# tests/conftest.py
"""Pytest configuration and fixtures"""
import pytest
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dnd.infra.metrics import get_metrics_collector  # noqa: E402
from dnd.infra.spool_store import SpoolStore  # noqa: E402
from dnd.transport.relay import RelayTransport  # noqa: E402


class FakeRelay(RelayTransport):
    """Relay double: every host fails unless given a status."""

    def __init__(self, statuses: dict[str, int] | None = None, default: int = 1):
        self.statuses = statuses or {}
        self.default = default
        self.calls: list[tuple[Path, str]] = []

    @property
    def name(self) -> str:
        return "fake"

    async def send(self, path: Path, host: str) -> int:
        self.calls.append((Path(path), host))
        return self.statuses.get(host, self.default)


@pytest.fixture(autouse=True)
def reset_metrics():
    get_metrics_collector().reset()
    yield


@pytest.fixture
def local_hostname():
    """Hostname the daemon under test believes it runs on"""
    return "node-a"


@pytest.fixture
def store(tmp_path, local_hostname):
    """Spool tree with all state directories in place"""
    s = SpoolStore(tmp_path / "spool", hostname=local_hostname)
    s.ensure_layout()
    return s


@pytest.fixture
def fake_relay():
    return FakeRelay()


@pytest.fixture
def write_entry(store):
    """Write raw content into the queue under a fixed name"""

    def _write(name: str, content: str) -> Path:
        path = store.queue_dir / name
        path.write_text(content, encoding="utf-8")
        return path

    return _write
