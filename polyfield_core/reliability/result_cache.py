"""
Durable result cache and delivery to the competition server.

    post_result(payload)
        -> POST /api/v1/results       2xx: done
        -> any failure                 append to on-disk queue
    CacheFlushScheduler (every 120 s)
        -> resubmit queued entries oldest first; remove each on 2xx

Cache file (JSON, rewritten atomically):

    {
      "entries": [{"eventId": ..., "athleteBib": ..., "series": [...],
                   "enqueuedAt": "2025-06-01T10:15:00+00:00"}],
      "metadata": {"lastSyncAttempt": ..., "lastSuccessfulSync": ...,
                   "consecutiveFailures": 0}
    }

One entry per (eventId, athleteBib): a newer series replaces the queued one.
"""

import json
import logging
import os
import tempfile
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import httpx

from polyfield_core.metrics import get_metrics

logger = logging.getLogger(__name__)

RESULTS_PATH = "/api/v1/results"
FLUSH_INTERVAL_S = 120.0
CONNECT_TIMEOUT_S = 10.0
READ_TIMEOUT_S = 15.0


def _iso(timestamp: Optional[float]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def _epoch(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    return datetime.fromisoformat(value).timestamp()


@dataclass(frozen=True)
class Performance:
    """One attempt in an athlete's series."""

    attempt: int
    mark: str
    unit: str = "m"
    valid: bool = True
    wind: Optional[float] = None

    def to_dict(self) -> dict:
        data = {
            'attempt': self.attempt,
            'mark': self.mark,
            'unit': self.unit,
            'valid': self.valid,
        }
        if self.wind is not None:
            data['wind'] = self.wind
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Performance":
        return cls(
            attempt=int(data['attempt']),
            mark=str(data['mark']),
            unit=data.get('unit', "m"),
            valid=bool(data.get('valid', True)),
            wind=data.get('wind'),
        )


@dataclass(frozen=True)
class ResultPayload:
    """Body of POST /api/v1/results."""

    event_id: str
    athlete_bib: str
    series: Tuple[Performance, ...] = ()

    @property
    def key(self) -> Tuple[str, str]:
        return self.event_id, self.athlete_bib

    def to_dict(self) -> dict:
        return {
            'eventId': self.event_id,
            'athleteBib': self.athlete_bib,
            'series': [performance.to_dict() for performance in self.series],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ResultPayload":
        return cls(
            event_id=str(data['eventId']),
            athlete_bib=str(data['athleteBib']),
            series=tuple(Performance.from_dict(item) for item in data.get('series', [])),
        )


@dataclass(frozen=True)
class CachedResult:
    payload: ResultPayload
    enqueued_at: float

    def to_dict(self) -> dict:
        data = self.payload.to_dict()
        data['enqueuedAt'] = _iso(self.enqueued_at)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "CachedResult":
        return cls(payload=ResultPayload.from_dict(data), enqueued_at=_epoch(data['enqueuedAt']))


@dataclass
class CacheMetadata:
    queued: int = 0
    last_sync_attempt: Optional[float] = None
    last_successful_sync: Optional[float] = None
    consecutive_failures: int = 0

    def to_dict(self) -> dict:
        return {
            'lastSyncAttempt': _iso(self.last_sync_attempt),
            'lastSuccessfulSync': _iso(self.last_successful_sync),
            'consecutiveFailures': self.consecutive_failures,
        }


class ResultCache:
    """
    File-backed FIFO of undelivered results.

    The whole cache is rewritten on every change via a temp file and an
    atomic rename, so a crash leaves either the old or the new file.

    Args:
        path: Cache file location (parent directories are created)
        clock: Wall clock in epoch seconds
    """

    def __init__(self, path, clock: Callable[[], float] = time.time):
        self.path = Path(path)
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: List[CachedResult] = []
        self._metadata = CacheMetadata()
        self._load()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def entries(self) -> List[CachedResult]:
        """Queued entries, oldest first."""
        with self._lock:
            return list(self._entries)

    def enqueue(self, payload: ResultPayload) -> CachedResult:
        """Queue a payload, replacing any queued entry for the same athlete and event."""
        entry = CachedResult(payload=payload, enqueued_at=self._clock())
        with self._lock:
            replaced = [cached for cached in self._entries if cached.payload.key == payload.key]
            self._entries = [cached for cached in self._entries if cached.payload.key != payload.key]
            self._entries.append(entry)
            self._save()
            count = len(self._entries)
        get_metrics().increment('results_cached')
        if replaced:
            logger.info("Replaced cached result for event %s bib %s", *payload.key)
        logger.warning(
            "Result for event %s bib %s cached (%d queued)", payload.event_id, payload.athlete_bib, count
        )
        return entry

    def remove(self, entry: CachedResult) -> bool:
        """Remove an acknowledged entry; a newer entry for the same key is kept."""
        with self._lock:
            remaining = [cached for cached in self._entries if cached != entry]
            if len(remaining) == len(self._entries):
                return False
            self._entries = remaining
            self._save()
            return True

    def discard(self, key: Tuple[str, str]) -> bool:
        """Drop any queued entry for (eventId, athleteBib) once a newer series is delivered."""
        with self._lock:
            remaining = [cached for cached in self._entries if cached.payload.key != key]
            if len(remaining) == len(self._entries):
                return False
            self._entries = remaining
            self._save()
        logger.info("Dropped superseded cached result for event %s bib %s", *key)
        return True

    def clear(self):
        with self._lock:
            self._entries = []
            self._save()

    def record_sync(self, success: bool):
        with self._lock:
            now = self._clock()
            self._metadata.last_sync_attempt = now
            if success:
                self._metadata.last_successful_sync = now
                self._metadata.consecutive_failures = 0
            else:
                self._metadata.consecutive_failures += 1
            self._save()

    def metadata(self) -> CacheMetadata:
        with self._lock:
            return CacheMetadata(
                queued=len(self._entries),
                last_sync_attempt=self._metadata.last_sync_attempt,
                last_successful_sync=self._metadata.last_successful_sync,
                consecutive_failures=self._metadata.consecutive_failures,
            )

    def _load(self):
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            entries = [CachedResult.from_dict(item) for item in data.get('entries', [])]
            meta = data.get('metadata', {})
            metadata = CacheMetadata(
                last_sync_attempt=_epoch(meta.get('lastSyncAttempt')),
                last_successful_sync=_epoch(meta.get('lastSuccessfulSync')),
                consecutive_failures=int(meta.get('consecutiveFailures', 0)),
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            quarantine = self.path.with_suffix(self.path.suffix + ".corrupt")
            os.replace(self.path, quarantine)
            logger.error("Unreadable result cache moved to %s: %s", quarantine, e)
            return
        self._entries = entries
        self._metadata = metadata
        logger.info("Loaded %d cached results from %s", len(entries), self.path)

    def _save(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        document = {
            'entries': [entry.to_dict() for entry in self._entries],
            'metadata': self._metadata.to_dict(),
        }
        fd, temp_path = tempfile.mkstemp(dir=self.path.parent, prefix=self.path.name, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_path, self.path)
        except BaseException:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise


class SubmissionStatus(str, Enum):
    SUBMITTED = "submitted"
    CACHED = "cached"


@dataclass
class ResultServerConfig:
    """
    Attributes:
        base_url: e.g. http://192.168.0.10:3000
        connect_timeout_s: TCP/TLS connect bound
        read_timeout_s: Response bound
    """

    base_url: str
    connect_timeout_s: float = CONNECT_TIMEOUT_S
    read_timeout_s: float = READ_TIMEOUT_S
    headers: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError(f"Result server URL must be http(s): {self.base_url}")


class ResultSubmitter:
    """
    Delivers results, falling back to the cache when delivery fails.

    Each attempt uses its own short-lived HTTP client, so a flush never
    shares a connection with a foreground submission.

    Args:
        config: Server location and timeouts
        cache: Queue for undelivered results
        transport: httpx transport override (httpx.MockTransport in tests)
    """

    def __init__(
        self,
        config: ResultServerConfig,
        cache: ResultCache,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.config = config
        self.cache = cache
        self._transport = transport

    def submit(self, payload: ResultPayload) -> bool:
        """One delivery attempt; True only on a 2xx response."""
        timeout = httpx.Timeout(self.config.read_timeout_s, connect=self.config.connect_timeout_s)
        try:
            with httpx.Client(
                base_url=self.config.base_url,
                timeout=timeout,
                transport=self._transport,
                headers=self.config.headers,
            ) as client:
                response = client.post(RESULTS_PATH, json=payload.to_dict())
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            get_metrics().increment_failure('submission_failed')
            logger.warning(
                "Server rejected result for bib %s: HTTP %d", payload.athlete_bib, e.response.status_code
            )
            return False
        except httpx.HTTPError as e:
            get_metrics().increment_failure('submission_failed')
            logger.warning("Result submission for bib %s failed: %s", payload.athlete_bib, e)
            return False

        get_metrics().increment('results_submitted')
        logger.info("Result submitted: event %s bib %s", payload.event_id, payload.athlete_bib)
        return True

    def post_result(self, payload: ResultPayload) -> SubmissionStatus:
        """Submit now, or queue for the flush loop. Never raises on network failure."""
        if self.submit(payload):
            self.cache.discard(payload.key)
            return SubmissionStatus.SUBMITTED
        self.cache.enqueue(payload)
        return SubmissionStatus.CACHED

    def flush(self) -> Tuple[int, int]:
        """
        Resubmit every queued entry, oldest first.

        Returns:
            (submitted, failed)
        """
        entries = self.cache.entries()
        if not entries:
            return 0, 0

        submitted = failed = 0
        for entry in entries:
            if self.submit(entry.payload):
                self.cache.remove(entry)
                submitted += 1
            else:
                failed += 1

        self.cache.record_sync(failed == 0)
        get_metrics().increment('cache_flushes')
        logger.info("Cache flush: %d submitted, %d still queued", submitted, failed)
        return submitted, failed


class CacheFlushScheduler:
    """
    Background loop calling `submitter.flush()` at a fixed interval.

    Usage:
        scheduler = CacheFlushScheduler(submitter)
        scheduler.start()
        ...
        scheduler.stop()
    """

    def __init__(self, submitter: ResultSubmitter, interval_s: float = FLUSH_INTERVAL_S):
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        self.submitter = submitter
        self.interval_s = interval_s
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="result-cache-flush", daemon=True)
        self._thread.start()
        logger.info("Cache flush scheduled every %.0fs", self.interval_s)

    def stop(self, timeout_s: float = 5.0):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout_s)
            self._thread = None

    def flush_once(self) -> Tuple[int, int]:
        return self.submitter.flush()

    def _run_loop(self):
        while not self._stop_event.wait(self.interval_s):
            try:
                self.flush_once()
            except OSError as e:
                logger.error("Cache flush could not update %s: %s", self.submitter.cache.path, e)
