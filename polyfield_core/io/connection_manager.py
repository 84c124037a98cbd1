"""
Connection Manager: at most one live connection per device role.

The manager is an explicit context object: construct one per process and pass
it to whatever needs device access. Tests inject a fake transport factory.

    manager = ConnectionManager()
    manager.connect(DeviceConfig(
        role=DeviceRole.EDM,
        protocol=ProtocolId.EDM_MATO,
        transport=TransportConfig(kind="serial", address="/dev/ttyUSB0"),
    ))
    reading = manager.transact(DeviceRole.EDM)

Every operation on a role runs on that role's worker thread, one at a time.
No implicit reconnect happens here; retrying `connect` is the caller's job
(see `polyfield_core.reliability.retry.connect_with_retry`).
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from polyfield_core.errors import (
    DeviceConnectionError,
    DeviceError,
    DeviceTimeoutError,
    ProtocolError,
)
from polyfield_core.metrics import get_metrics
from polyfield_core.proto.codecs import Codec, DeviceFamily, ProtocolId, create_codec
from polyfield_core.proto.scoreboard_codec import MESSAGE_GAP_S, ScoreboardCodec
from .device_worker import DeviceWorker
from .transport import (
    Transport,
    TransportConfig,
    TransportKind,
    create_transport,
    probe_reachability,
)

logger = logging.getLogger(__name__)

# Default bound on one device read
DEFAULT_READ_TIMEOUT_S = 10.0
# Extra time the worker allows beyond the read bound (write + decode)
WORKER_MARGIN_S = 2.0


class DeviceRole(str, Enum):
    """Logical device slot; each holds at most one connection."""

    EDM = "edm"
    WIND = "wind"
    SCOREBOARD = "scoreboard"


@dataclass
class DeviceConfig:
    """
    Everything needed to open one device role.

    Attributes:
        role: Device slot
        protocol: Protocol tag; its family must match the role
        transport: Link configuration
        read_timeout_s: Bound on each response read
    """

    role: DeviceRole
    protocol: ProtocolId
    transport: TransportConfig
    read_timeout_s: float = DEFAULT_READ_TIMEOUT_S

    def __post_init__(self):
        self.role = DeviceRole(self.role)
        self.protocol = ProtocolId(self.protocol)
        if self.protocol.family.value != self.role.value:
            raise ValueError(
                f"Protocol {self.protocol.value} cannot serve role '{self.role.value}'"
            )
        if self.read_timeout_s <= 0:
            raise ValueError("read_timeout_s must be positive")


@dataclass
class DeviceConnection:
    """Public view of one role's connection."""

    role: DeviceRole
    transport_kind: TransportKind
    address: str
    protocol_id: ProtocolId
    connected: bool = False
    connected_at: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            'role': self.role.value,
            'transportKind': self.transport_kind.value,
            'address': self.address,
            'protocolId': self.protocol_id.value,
            'connected': self.connected,
        }


@dataclass
class _Session:
    config: DeviceConfig
    transport: Transport
    codec: Codec
    connection: DeviceConnection
    worker: DeviceWorker
    lock: threading.Lock = field(default_factory=threading.Lock)


class ConnectionManager:
    """
    Owns the role -> (transport, codec, connection) mapping.

    Args:
        transport_factory: Builds an unopened transport from its config
    """

    def __init__(self, transport_factory: Callable[[TransportConfig], Transport] = create_transport):
        self._transport_factory = transport_factory
        self._sessions: Dict[DeviceRole, _Session] = {}
        self._configs: Dict[DeviceRole, DeviceConfig] = {}
        self._lock = threading.Lock()

    def connect(self, config: DeviceConfig) -> DeviceConnection:
        """
        Open the role's transport, select its codec and run the codec's
        initial handshake.

        Raises:
            DeviceConnectionError: Role already connected, or the transport
                could not be opened
            ProtocolError: Handshake rejected (transport is closed again)
            DeviceTimeoutError: Handshake unanswered (transport is closed again)
        """
        role = config.role
        with self._lock:
            if role in self._sessions:
                raise DeviceConnectionError(
                    f"Role '{role.value}' is already connected; disconnect first", role=role.value
                )

            transport = self._transport_factory(config.transport)
            try:
                transport.open()
            except DeviceConnectionError as e:
                e.role = role.value
                get_metrics().increment_failure('connection_failed')
                logger.error("Connect %s failed: %s", role.value, e)
                raise

            codec = create_codec(config.protocol)
            try:
                codec.initialize(transport)
            except DeviceError as e:
                e.role = role.value
                transport.close()
                logger.error("Initialisation of %s failed: %s", role.value, e)
                raise

            connection = DeviceConnection(
                role=role,
                transport_kind=config.transport.kind,
                address=config.transport.describe(),
                protocol_id=config.protocol,
                connected=True,
                connected_at=time.time(),
            )
            worker = DeviceWorker(role.value)
            worker.start()

            self._sessions[role] = _Session(
                config=config,
                transport=transport,
                codec=codec,
                connection=connection,
                worker=worker,
            )
            self._configs[role] = config

        logger.info(
            "Connected %s via %s (%s)", role.value, connection.address, config.protocol.value
        )
        return connection

    def disconnect(self, role) -> None:
        """Close the role's connection; a no-op if it is not connected."""
        role = DeviceRole(role)
        with self._lock:
            session = self._sessions.pop(role, None)
        if session is None:
            return

        session.worker.stop()
        with session.lock:
            session.transport.close()
            session.connection.connected = False
        logger.info("Disconnected %s", role.value)

    def reconnect(self, role) -> DeviceConnection:
        """
        Disconnect then connect again with the last configuration used.

        Raises:
            DeviceConnectionError: Role was never connected, or reopening failed
        """
        role = DeviceRole(role)
        config = self._configs.get(role)
        if config is None:
            raise DeviceConnectionError(
                f"No stored configuration for role '{role.value}'", role=role.value
            )
        self.disconnect(role)
        return self.connect(config)

    def disconnect_all(self) -> None:
        for role in list(self._sessions):
            self.disconnect(role)

    def is_connected(self, role) -> bool:
        return DeviceRole(role) in self._sessions

    def status(self, role) -> Optional[DeviceConnection]:
        session = self._sessions.get(DeviceRole(role))
        return session.connection if session else None

    def connections(self) -> List[DeviceConnection]:
        return [session.connection for session in self._sessions.values()]

    def codec(self, role) -> Codec:
        return self._session(role).codec

    def transact(self, role, timeout_s: Optional[float] = None):
        """
        One request/response exchange on the role's worker.

        Args:
            role: Device role (not the scoreboard, which never replies)
            timeout_s: Read bound; defaults to the role's configured value

        Returns:
            The codec's decoded reading

        Raises:
            DeviceConnectionError: Role not connected or link failure
            DeviceTimeoutError: No complete response in time
            ProtocolError: Response could not be decoded
        """
        session = self._session(role)
        if isinstance(session.codec, ScoreboardCodec):
            raise ValueError("The scoreboard has no request/response exchange")
        read_timeout = timeout_s if timeout_s is not None else session.config.read_timeout_s
        return session.worker.call(
            self._exchange, session, read_timeout, timeout=read_timeout + WORKER_MARGIN_S
        )

    def send_frames(self, role, frames: List[bytes], gap_s: float = MESSAGE_GAP_S) -> None:
        """Write prebuilt scoreboard frames on the role's worker."""
        session = self._session(role)
        if not isinstance(session.codec, ScoreboardCodec):
            raise ValueError(f"Role '{session.config.role.value}' is not a scoreboard")
        timeout = session.config.transport.connect_timeout_s * len(frames) + WORKER_MARGIN_S
        session.worker.call(self._write_frames, session, frames, gap_s, timeout=timeout)

    def show_result(self, mark: str, bib: int, attempt: int) -> None:
        """Display a mark with its athlete bib and attempt on the scoreboard."""
        codec = self.codec(DeviceRole.SCOREBOARD)
        self.send_frames(DeviceRole.SCOREBOARD, codec.encode_display(mark, bib, attempt))

    def clear_scoreboard(self) -> None:
        codec = self.codec(DeviceRole.SCOREBOARD)
        self.send_frames(DeviceRole.SCOREBOARD, codec.encode_clear())

    @staticmethod
    def probe(host: str, port: int, timeout_s: float = 4.0) -> bool:
        """Diagnostic reachability check, independent of any open connection."""
        return probe_reachability(host, port, timeout_s)

    def _session(self, role) -> _Session:
        role = DeviceRole(role)
        session = self._sessions.get(role)
        if session is None:
            raise DeviceConnectionError(f"Role '{role.value}' is not connected", role=role.value)
        return session

    def _exchange(self, session: _Session, read_timeout: float):
        role = session.config.role.value
        codec = session.codec
        with session.lock:
            transport = session.transport
            transport.reset_input()
            started = time.monotonic()
            try:
                transport.write(codec.encode_command())
                raw = transport.read_until(codec.read_framing, read_timeout)
            except DeviceTimeoutError as e:
                e.role = role
                get_metrics().increment_failure('timeout')
                raise
            except DeviceConnectionError as e:
                e.role = role
                get_metrics().increment_failure('connection_failed')
                raise

            try:
                reading = codec.decode_response(raw)
            except ProtocolError as e:
                e.role = role
                get_metrics().increment_failure('protocol_error')
                logger.warning("%s protocol error: %s (raw=%r)", role, e, raw)
                raise

        get_metrics().record_histogram('round_trip_s', time.monotonic() - started)
        if session.config.protocol.family == DeviceFamily.EDM:
            get_metrics().increment('edm_reads')
        else:
            get_metrics().increment('wind_reads')
        return reading

    def _write_frames(self, session: _Session, frames: List[bytes], gap_s: float):
        with session.lock:
            try:
                session.codec.send_display(session.transport, frames, gap_s)
            except DeviceConnectionError as e:
                e.role = session.config.role.value
                get_metrics().increment_failure('connection_failed')
                raise
