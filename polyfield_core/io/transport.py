"""
Byte-level duplex transports for field devices.

Two concrete transports share one contract:

    open() -> None                        raises DeviceConnectionError
    write(data) -> None                   raises DeviceConnectionError
    read_until(predicate, timeout_s)      raises DeviceTimeoutError
    close() -> None                       idempotent

`read_until` accumulates bytes until `predicate(buffer)` is true or the
deadline passes. A device that never sends its terminator produces a
DeviceTimeoutError, never an indefinite block.

A separate `probe_reachability()` performs a short TCP connect with no data
exchange; it is a diagnostic only and never shares a socket with the data
connection.
"""

import logging
import socket
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import serial

from polyfield_core.errors import DeviceConnectionError, DeviceTimeoutError

logger = logging.getLogger(__name__)

# Baud rates fixed per device family
EDM_BAUDRATE = 9600
WIND_BAUDRATE = 9600
SCOREBOARD_BAUDRATE = 19200

READ_CHUNK_SIZE = 1024
# Upper bound on a single blocking read so deadlines are honoured
POLL_INTERVAL_S = 0.1


class TransportKind(str, Enum):
    """Physical link type."""

    SERIAL = "serial"
    NETWORK = "network"


@dataclass
class TransportConfig:
    """
    Configuration for a transport.

    Attributes:
        kind: SERIAL or NETWORK
        address: Serial device path (e.g. /dev/ttyUSB0) or host name/IP
        port: TCP port (NETWORK only)
        baudrate: Serial baud rate (SERIAL only), framing is always 8-N-1
        connect_timeout_s: Bound on opening the link
    """

    kind: TransportKind
    address: str
    port: Optional[int] = None
    baudrate: int = EDM_BAUDRATE
    connect_timeout_s: float = 5.0

    def __post_init__(self):
        self.kind = TransportKind(self.kind)
        if not self.address:
            raise ValueError("Transport address must not be empty")
        if self.kind == TransportKind.NETWORK:
            if self.port is None or not 0 < self.port < 65536:
                raise ValueError(f"Invalid TCP port: {self.port}")
        if self.connect_timeout_s <= 0:
            raise ValueError("connect_timeout_s must be positive")

    def describe(self) -> str:
        if self.kind == TransportKind.NETWORK:
            return f"{self.address}:{self.port}"
        return f"{self.address}@{self.baudrate}-8-N-1"


def line_terminated(buffer: bytes) -> bool:
    """Framing predicate: a complete line has been received."""
    return b"\n" in buffer


def at_least(count: int) -> Callable[[bytes], bool]:
    """Framing predicate factory: at least `count` bytes received."""
    def predicate(buffer: bytes) -> bool:
        return len(buffer) >= count
    return predicate


class Transport:
    """
    Base class implementing the bounded read loop.

    Subclasses provide `_open`, `_close`, `_write` and `_read_chunk`.
    `_read_chunk(wait_s)` must return at most one chunk of available bytes
    (possibly empty) and block no longer than `wait_s`.
    """

    def __init__(self, config: TransportConfig):
        self.config = config
        self._is_open = False

    @property
    def is_open(self) -> bool:
        return self._is_open

    def open(self) -> None:
        if self._is_open:
            return
        try:
            self._open()
        except DeviceConnectionError:
            raise
        except (OSError, serial.SerialException) as e:
            raise DeviceConnectionError(
                f"Failed to open {self.config.describe()}: {e}"
            ) from e
        self._is_open = True
        logger.info("Transport opened: %s", self.config.describe())

    def close(self) -> None:
        if not self._is_open:
            return
        self._is_open = False
        try:
            self._close()
        except (OSError, serial.SerialException) as e:
            logger.warning("Error closing %s: %s", self.config.describe(), e)
        logger.info("Transport closed: %s", self.config.describe())

    def write(self, data: bytes) -> None:
        self._require_open()
        logger.debug("TX %s: %s", self.config.describe(), data.hex(" "))
        try:
            self._write(data)
        except (OSError, serial.SerialException) as e:
            raise DeviceConnectionError(
                f"Write to {self.config.describe()} failed: {e}"
            ) from e

    def read_until(self, predicate: Callable[[bytes], bool], timeout_s: float) -> bytes:
        """
        Read until `predicate(buffer)` is true.

        Args:
            predicate: Framing check on the accumulated buffer
            timeout_s: Total time budget for this read

        Returns:
            The accumulated bytes (may extend past the terminator)

        Raises:
            DeviceTimeoutError: Deadline passed before the frame completed
        """
        self._require_open()
        deadline = time.monotonic() + timeout_s
        buffer = b""

        while not predicate(buffer):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning(
                    "Read timeout on %s after %.1fs (%d bytes partial)",
                    self.config.describe(), timeout_s, len(buffer),
                )
                raise DeviceTimeoutError(
                    f"No complete response from {self.config.describe()} "
                    f"within {timeout_s:.1f}s",
                    partial=buffer,
                    timeout_s=timeout_s,
                )
            try:
                chunk = self._read_chunk(min(remaining, POLL_INTERVAL_S))
            except DeviceConnectionError:
                raise
            except (OSError, serial.SerialException) as e:
                raise DeviceConnectionError(
                    f"Read from {self.config.describe()} failed: {e}"
                ) from e
            if chunk:
                buffer += chunk

        logger.debug("RX %s: %s", self.config.describe(), buffer.hex(" "))
        return buffer

    def reset_input(self) -> None:
        """Discard any bytes already waiting (stale replies)."""

    def _require_open(self):
        if not self._is_open:
            raise DeviceConnectionError(f"Transport {self.config.describe()} is not open")

    def _open(self):
        raise NotImplementedError

    def _close(self):
        raise NotImplementedError

    def _write(self, data: bytes):
        raise NotImplementedError

    def _read_chunk(self, wait_s: float) -> bytes:
        raise NotImplementedError


class SerialTransport(Transport):
    """Serial port transport (pyserial), 8 data bits, no parity, 1 stop bit."""

    def __init__(self, config: TransportConfig):
        super().__init__(config)
        self._serial: Optional[serial.Serial] = None

    def _open(self):
        self._serial = serial.Serial(
            port=self.config.address,
            baudrate=self.config.baudrate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=POLL_INTERVAL_S,
            write_timeout=self.config.connect_timeout_s,
        )

    def _close(self):
        if self._serial is not None:
            self._serial.close()
            self._serial = None

    def _write(self, data: bytes):
        self._serial.write(data)
        self._serial.flush()

    def _read_chunk(self, wait_s: float) -> bytes:
        self._serial.timeout = wait_s
        waiting = self._serial.in_waiting
        return self._serial.read(waiting or 1)

    def reset_input(self) -> None:
        if self._serial is not None:
            self._serial.reset_input_buffer()


class TcpTransport(Transport):
    """TCP socket transport."""

    def __init__(self, config: TransportConfig):
        super().__init__(config)
        self._socket: Optional[socket.socket] = None

    def _open(self):
        try:
            sock = socket.create_connection(
                (self.config.address, self.config.port),
                timeout=self.config.connect_timeout_s,
            )
        except socket.timeout as e:
            raise DeviceConnectionError(
                f"Connection to {self.config.describe()} timed out"
            ) from e
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
        self._socket = sock

    def _close(self):
        if self._socket is not None:
            self._socket.close()
            self._socket = None

    def _write(self, data: bytes):
        self._socket.settimeout(self.config.connect_timeout_s)
        self._socket.sendall(data)

    def _read_chunk(self, wait_s: float) -> bytes:
        self._socket.settimeout(max(wait_s, 0.001))
        try:
            chunk = self._socket.recv(READ_CHUNK_SIZE)
        except socket.timeout:
            return b""
        if not chunk:
            raise DeviceConnectionError(f"{self.config.describe()} closed the connection")
        return chunk

    def reset_input(self) -> None:
        if self._socket is None:
            return
        self._socket.setblocking(False)
        try:
            while self._socket.recv(READ_CHUNK_SIZE):
                pass
        except (BlockingIOError, InterruptedError):
            pass
        finally:
            self._socket.setblocking(True)


def create_transport(config: TransportConfig) -> Transport:
    """Build an unopened transport for the configured link type."""
    if config.kind == TransportKind.SERIAL:
        return SerialTransport(config)
    if config.kind == TransportKind.NETWORK:
        return TcpTransport(config)
    raise ValueError(f"Unsupported transport kind: {config.kind}")


def probe_reachability(host: str, port: int, timeout_s: float = 4.0) -> bool:
    """
    Diagnostic reachability probe: TCP connect, no data exchanged.

    Args:
        host: Device host name or IP
        port: Device TCP port
        timeout_s: Connect bound (3-5 seconds is typical)

    Returns:
        True if the TCP connect succeeded
    """
    try:
        with socket.create_connection((host, port), timeout=timeout_s):
            pass
    except OSError as e:
        logger.info("Probe %s:%d unreachable: %s", host, port, e)
        return False
    logger.info("Probe %s:%d reachable", host, port)
    return True
