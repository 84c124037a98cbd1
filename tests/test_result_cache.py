"""
Unit tests for result delivery and the on-disk cache.

The competition server is replaced by httpx.MockTransport.

Tests cover:
- Direct submission and fallback to the cache
- One queued entry per (event, athlete)
- FIFO flush, survival across restarts, sync metadata
- Corrupt cache files
- Background flush loop
"""

import json
import threading

import httpx
import pytest

from polyfield_core.reliability.result_cache import (
    CacheFlushScheduler,
    Performance,
    ResultCache,
    ResultPayload,
    ResultServerConfig,
    ResultSubmitter,
    SubmissionStatus,
)

BASE_URL = "http://results.local:3000"


def payload(bib: str = "79", mark: str = "21.34", event: str = "SP-M") -> ResultPayload:
    return ResultPayload(
        event_id=event,
        athlete_bib=bib,
        series=(Performance(attempt=1, mark=mark),),
    )


class FakeServer:
    """Records posted bodies and answers with scripted status codes or errors."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.bodies = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.url.path == "/api/v1/results"
        self.bodies.append(json.loads(request.content))
        outcome = self.responses.pop(0) if self.responses else 201
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, json={})


class Clock:
    def __init__(self, now: float = 1748772900.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def cache_path(tmp_path):
    return tmp_path / "cache" / "results.json"


def make_submitter(cache, server):
    return ResultSubmitter(
        ResultServerConfig(base_url=BASE_URL),
        cache,
        transport=httpx.MockTransport(server),
    )


# =============================================================================
# Payload
# =============================================================================


class TestPayload:
    """Tests for the submission body."""

    def test_body(self):
        assert payload().to_dict() == {
            'eventId': "SP-M",
            'athleteBib': "79",
            'series': [{'attempt': 1, 'mark': "21.34", 'unit': "m", 'valid': True}],
        }

    def test_wind_included_when_measured(self):
        performance = Performance(attempt=2, mark="7.85", wind=1.2)
        assert performance.to_dict()['wind'] == 1.2

    def test_round_trip(self):
        original = ResultPayload("LJ-W", "12", (Performance(1, "6.10", wind=-0.4), Performance(2, "X", valid=False)))
        assert ResultPayload.from_dict(original.to_dict()) == original

    def test_server_url_validated(self):
        with pytest.raises(ValueError):
            ResultServerConfig(base_url="results.local:3000")


# =============================================================================
# Submission
# =============================================================================


class TestPostResult:
    """Tests for direct submission with cache fallback."""

    def test_submitted(self, cache_path, fresh_metrics):
        server = FakeServer(201)
        cache = ResultCache(cache_path)

        status = make_submitter(cache, server).post_result(payload())

        assert status == SubmissionStatus.SUBMITTED
        assert server.bodies == [payload().to_dict()]
        assert len(cache) == 0
        assert fresh_metrics.get_counter('results_submitted') == 1

    def test_server_error_caches(self, cache_path, fresh_metrics):
        cache = ResultCache(cache_path)

        status = make_submitter(cache, FakeServer(500)).post_result(payload())

        assert status == SubmissionStatus.CACHED
        assert len(cache) == 1
        assert cache_path.exists()
        assert fresh_metrics.get_failures('submission_failed') == 1
        assert fresh_metrics.get_counter('results_cached') == 1

    def test_network_error_caches(self, cache_path):
        cache = ResultCache(cache_path)
        server = FakeServer(httpx.ConnectError("connection refused"))

        status = make_submitter(cache, server).post_result(payload())

        assert status == SubmissionStatus.CACHED
        assert cache.entries()[0].payload == payload()

    def test_timeout_caches(self, cache_path):
        cache = ResultCache(cache_path)
        server = FakeServer(httpx.ReadTimeout("slow"))
        assert make_submitter(cache, server).post_result(payload()) == SubmissionStatus.CACHED

    def test_direct_submission_drops_older_queued_series(self, cache_path):
        cache = ResultCache(cache_path)
        server = FakeServer(503, 201)
        submitter = make_submitter(cache, server)
        longer = ResultPayload("SP-M", "79", (Performance(1, "20.10"), Performance(2, "21.34")))

        assert submitter.post_result(payload(mark="20.10")) == SubmissionStatus.CACHED
        assert submitter.post_result(longer) == SubmissionStatus.SUBMITTED

        assert len(cache) == 0
        assert ResultCache(cache_path).entries() == []
        assert submitter.flush() == (0, 0)
        assert len(server.bodies) == 2
        assert len(server.bodies[-1]['series']) == 2

    def test_direct_submission_keeps_other_athletes_queued(self, cache_path):
        cache = ResultCache(cache_path)
        cache.enqueue(payload(bib="12"))

        make_submitter(cache, FakeServer(201)).post_result(payload(bib="79"))

        assert [e.payload.athlete_bib for e in cache.entries()] == ["12"]


# =============================================================================
# Cache
# =============================================================================


class TestResultCache:
    """Tests for the durable queue."""

    def test_newer_series_replaces_queued(self, cache_path):
        cache = ResultCache(cache_path)
        cache.enqueue(payload(mark="20.10"))
        cache.enqueue(payload(bib="12", mark="18.00"))
        cache.enqueue(payload(mark="21.34"))

        entries = cache.entries()
        assert [e.payload.athlete_bib for e in entries] == ["12", "79"]
        assert entries[1].payload.series[0].mark == "21.34"

    def test_same_bib_other_event_kept(self, cache_path):
        cache = ResultCache(cache_path)
        cache.enqueue(payload(event="SP-M"))
        cache.enqueue(payload(event="DT-M"))
        assert len(cache) == 2

    def test_file_format(self, cache_path):
        cache = ResultCache(cache_path, clock=Clock())
        cache.enqueue(payload())

        document = json.loads(cache_path.read_text())

        assert document['entries'][0]['eventId'] == "SP-M"
        assert document['entries'][0]['enqueuedAt'].startswith("2025-06-01T10:15:00")
        assert document['metadata']['consecutiveFailures'] == 0
        assert document['metadata']['lastSuccessfulSync'] is None

    def test_survives_restart(self, cache_path):
        ResultCache(cache_path).enqueue(payload())
        reloaded = ResultCache(cache_path)
        assert reloaded.entries()[0].payload == payload()

    def test_no_temp_files_left(self, cache_path):
        cache = ResultCache(cache_path)
        cache.enqueue(payload())
        cache.enqueue(payload(bib="12"))
        assert [p.name for p in cache_path.parent.iterdir()] == ["results.json"]

    def test_corrupt_file_quarantined(self, cache_path):
        cache_path.parent.mkdir(parents=True)
        cache_path.write_text("{not json")

        cache = ResultCache(cache_path)

        assert len(cache) == 0
        assert cache_path.with_name("results.json.corrupt").exists()

    def test_discard_by_key(self, cache_path):
        cache = ResultCache(cache_path)
        cache.enqueue(payload(bib="1"))
        cache.enqueue(payload(bib="2"))

        assert cache.discard(("SP-M", "1"))
        assert not cache.discard(("SP-M", "1"))
        assert [e.payload.athlete_bib for e in ResultCache(cache_path).entries()] == ["2"]

    def test_remove_keeps_newer_entry(self, cache_path):
        cache = ResultCache(cache_path)
        old = cache.enqueue(payload(mark="20.10"))
        cache.enqueue(payload(mark="21.34"))
        assert not cache.remove(old)
        assert len(cache) == 1


# =============================================================================
# Flush
# =============================================================================


class TestFlush:
    """Tests for resubmission of queued results."""

    def test_fifo_order(self, cache_path):
        cache = ResultCache(cache_path)
        for bib in ("1", "2", "3"):
            cache.enqueue(payload(bib=bib))
        server = FakeServer()

        submitted, failed = make_submitter(cache, server).flush()

        assert (submitted, failed) == (3, 0)
        assert [body['athleteBib'] for body in server.bodies] == ["1", "2", "3"]
        assert len(cache) == 0

    def test_empty_cache_is_noop(self, cache_path):
        server = FakeServer()
        assert make_submitter(ResultCache(cache_path), server).flush() == (0, 0)
        assert server.bodies == []

    def test_partial_failure_keeps_failed_entries(self, cache_path):
        cache = ResultCache(cache_path)
        cache.enqueue(payload(bib="1"))
        cache.enqueue(payload(bib="2"))

        submitted, failed = make_submitter(cache, FakeServer(201, 503)).flush()

        assert (submitted, failed) == (1, 1)
        assert [e.payload.athlete_bib for e in cache.entries()] == ["2"]
        assert cache.metadata().consecutive_failures == 1

    def test_rejected_twice_then_accepted_across_restarts(self, cache_path, fresh_metrics):
        clock = Clock()
        server = FakeServer(500, 500, 500, 201)

        cache = ResultCache(cache_path, clock=clock)
        assert make_submitter(cache, server).post_result(payload()) == SubmissionStatus.CACHED

        clock.now += 120
        assert make_submitter(cache, server).flush() == (0, 1)

        # Process restart
        cache = ResultCache(cache_path, clock=clock)
        clock.now += 120
        assert make_submitter(cache, server).flush() == (0, 1)
        metadata = cache.metadata()
        assert metadata.queued == 1
        assert metadata.consecutive_failures == 2
        assert metadata.last_successful_sync is None

        cache = ResultCache(cache_path, clock=clock)
        clock.now += 120
        assert make_submitter(cache, server).flush() == (1, 0)

        metadata = ResultCache(cache_path).metadata()
        assert metadata.queued == 0
        assert metadata.consecutive_failures == 0
        assert metadata.last_successful_sync == pytest.approx(clock.now)
        assert len(server.bodies) == 4
        assert fresh_metrics.get_counter('cache_flushes') == 3


class TestScheduler:
    """Tests for the background flush loop."""

    def test_flushes_periodically(self, cache_path):
        cache = ResultCache(cache_path)
        cache.enqueue(payload())
        flushed = threading.Event()

        def server(request):
            flushed.set()
            return httpx.Response(201)

        scheduler = CacheFlushScheduler(make_submitter(cache, server), interval_s=0.05)
        scheduler.start()
        try:
            assert flushed.wait(timeout=2.0)
        finally:
            scheduler.stop()

        assert not scheduler.is_running
        assert len(cache) == 0

    def test_interval_must_be_positive(self, cache_path):
        with pytest.raises(ValueError):
            CacheFlushScheduler(make_submitter(ResultCache(cache_path), FakeServer()), interval_s=0)
