"""
Pytest configuration and shared fixtures for the polyfield core tests.

No test touches real hardware: transports are replaced by in-memory fakes
through the connection manager's transport factory, and the result server
by httpx.MockTransport.
"""

import sys
import time
from collections import deque
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from polyfield_core.io.connection_manager import ConnectionManager, DeviceConfig
from polyfield_core.io.transport import Transport, TransportConfig
from polyfield_core.metrics import get_metrics, reset_metrics
from polyfield_core.proto.edm_codec import EDMReading


# =============================================================================
# Fake Transport
# =============================================================================


class FakeTransport(Transport):
    """
    Scripted in-memory transport.

    Each write() consumes the next scripted reply: bytes are made readable,
    None means the device stays silent, an exception instance is raised.
    """

    def __init__(self, config: TransportConfig, replies=None, fail_open: bool = False):
        super().__init__(config)
        self.replies = deque(replies or [])
        self.fail_open = fail_open
        self.written: List[bytes] = []
        self.closed = False
        self._pending = b""

    def _open(self):
        if self.fail_open:
            raise OSError("port busy")

    def _close(self):
        self.closed = True

    def _write(self, data: bytes):
        self.written.append(data)
        if not self.replies:
            return
        reply = self.replies.popleft()
        if isinstance(reply, Exception):
            raise reply
        if reply:
            self._pending += reply

    def _read_chunk(self, wait_s: float) -> bytes:
        if self._pending:
            chunk, self._pending = self._pending, b""
            return chunk
        time.sleep(min(wait_s, 0.01))
        return b""


class FakeTransportFactory:
    """Transport factory handing out FakeTransports scripted per address."""

    def __init__(self):
        self.scripts: Dict[str, list] = {}
        self.fail_open = set()
        self.created: List[FakeTransport] = []

    def script(self, address: str, *replies):
        self.scripts.setdefault(address, []).extend(replies)

    def __call__(self, config: TransportConfig) -> FakeTransport:
        transport = FakeTransport(
            config,
            self.scripts.pop(config.address, []),
            fail_open=config.address in self.fail_open,
        )
        self.created.append(transport)
        return transport

    def last(self, address: str) -> Optional[FakeTransport]:
        for transport in reversed(self.created):
            if transport.config.address == address:
                return transport
        return None


# =============================================================================
# Helpers
# =============================================================================


def edm_line(slope_mm: float, vertical: str = "0900000", horizontal: str = "0000000",
             status: int = 83) -> bytes:
    """One EDM response line."""
    return f"{int(round(slope_mm)):07d} {vertical} {horizontal} {status}\r\n".encode("ascii")


def make_reading(slope_mm: float, vertical_deg: float = 90.0,
                 horizontal_deg: float = 0.0) -> EDMReading:
    return EDMReading(
        slope_distance_mm=slope_mm,
        vertical_angle_deg=vertical_deg,
        horizontal_angle_deg=horizontal_deg,
    )


class ScriptedSource:
    """Reliable-reading source returning scripted readings or raising scripted errors."""

    is_demo = False

    def __init__(self, *items):
        self.items = deque(items)
        self.reads = 0

    def push(self, *items):
        self.items.extend(items)

    def read(self) -> EDMReading:
        self.reads += 1
        item = self.items.popleft()
        if isinstance(item, Exception):
            raise item
        return item


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def fresh_metrics():
    """Each test starts with zeroed global counters."""
    reset_metrics()
    yield get_metrics()
    reset_metrics()


@pytest.fixture
def fake_factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def manager(fake_factory):
    manager = ConnectionManager(transport_factory=fake_factory)
    yield manager
    manager.disconnect_all()


@pytest.fixture
def edm_config() -> DeviceConfig:
    return DeviceConfig(
        role="edm",
        protocol="edm-mato",
        transport=TransportConfig(kind="serial", address="/dev/ttyEDM"),
        read_timeout_s=0.3,
    )


@pytest.fixture
def wind_config() -> DeviceConfig:
    return DeviceConfig(
        role="wind",
        protocol="wind-generic",
        transport=TransportConfig(kind="network", address="wind.local", port=5000),
        read_timeout_s=0.3,
    )


@pytest.fixture
def scoreboard_config() -> DeviceConfig:
    return DeviceConfig(
        role="scoreboard",
        protocol="scoreboard-daktronics",
        transport=TransportConfig(kind="network", address="board.local", port=1950, baudrate=19200),
    )
