"""
Unit tests for the blocking MorphClient API.
"""

import random
import threading
from unittest.mock import MagicMock

import pytest

from morph_client.caching.stores import CacheEntry, MemoryViewStore
from morph_client.client import ErrorMode, MorphClient
from morph_client.domain.view import ID_PLACEHOLDER
from morph_client.test_helpers import (
    FakeClock,
    RecordingListener,
    StubTransport,
    TestDataFactory,
    make_response,
)
from shared.errors import (
    MorphDecodeError,
    MorphTransportError,
    NotReadyExhaustedError,
    TransportErrorKind,
    ValidationError,
)
from shared.logging import current_fetch_id
from shared.retry import RetryConfig


ENDPOINT = "https://morph.example/"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryViewStore(clock=clock)


def make_client(transport, store, **kwargs):
    kwargs.setdefault("rng", random.Random(1234))
    kwargs.setdefault("timeout", 0)
    return MorphClient(ENDPOINT, transport=transport, cache=store, **kwargs)


class TestFetchView:
    """Test cases for MorphClient.fetch_view."""

    def test_success_decodes_and_substitutes_id(self, store):
        transport = StubTransport(TestDataFactory.ok())
        client = make_client(transport, store)

        view = client.fetch_view("episodes", "b006q2x0", {"pid": "b006q2x0"}, {})

        assert view.body == "<div id=\"b006q2x0\">Episode list</div>"
        assert view.head == TestDataFactory.view_document()["head"]
        assert view.footer == TestDataFactory.view_document()["bodyLast"]
        assert transport.calls == ["https://morph.example/view/episodes/pid/b006q2x0"]

    def test_scenario_body_sentinel_and_null_footer(self, store):
        transport = StubTransport(make_response(200, {"head": {}, "bodyInline": ID_PLACEHOLDER, "bodyLast": None}))
        client = make_client(transport, store)

        view = client.fetch_view("show", "abc", {}, {})

        assert view.body == "abc"
        assert view.footer == []

    def test_timeout_is_sent_as_query_parameter(self, store):
        transport = StubTransport(TestDataFactory.ok())
        client = make_client(transport, store, timeout=3)

        client.fetch_view("show", "id", {"genre": "comedy"}, {"page": "2"})

        assert transport.calls == ["https://morph.example/view/show/genre/comedy?timeout=3&page=2"]

    def test_second_fetch_is_served_from_cache(self, store):
        transport = StubTransport(TestDataFactory.ok())
        client = make_client(transport, store)

        first = client.fetch_view("show", "id", {"a": "1"}, {})
        second = client.fetch_view("show", "id", {"a": "1"}, {})

        assert second == first
        assert len(transport.calls) == 1

    def test_positive_expiry_is_jittered(self, store, clock):
        transport = StubTransport(TestDataFactory.ok())
        client = make_client(transport, store)

        client.fetch_view("show", "id", {}, {}, ttl=300)
        key = client.cache_key(client.build_envelope("show", "id"))

        assert 300 <= store.expires_at(key) - clock.now <= 330

    def test_not_found_is_cached_as_absent(self, store, clock):
        transport = StubTransport(make_response(404))
        client = make_client(transport, store)

        assert client.fetch_view("show", "id", {}, {}) is None
        key = client.cache_key(client.build_envelope("show", "id"))
        assert store.get(key).is_absent
        assert 60 <= store.expires_at(key) - clock.now <= 66

        assert client.fetch_view("show", "id", {}, {}) is None
        assert len(transport.calls) == 1

    def test_not_found_expires_after_null_ttl(self, store, clock):
        transport = StubTransport(make_response(404), TestDataFactory.ok())
        client = make_client(transport, store)

        assert client.fetch_view("show", "id", {}, {}, null_ttl=60) is None
        clock.advance(67)

        assert client.fetch_view("show", "id", {}, {}, null_ttl=60) is not None
        assert len(transport.calls) == 2

    def test_different_ids_do_not_share_cached_bodies(self, store):
        transport = StubTransport(TestDataFactory.ok())
        client = make_client(transport, store)

        first = client.fetch_view("show", "one", {}, {})
        second = client.fetch_view("show", "two", {}, {})

        assert "one" in first.body
        assert "two" in second.body
        assert len(transport.calls) == 2

    def test_ttl_none_preset_skips_cache(self, store):
        transport = StubTransport(TestDataFactory.ok())
        client = make_client(transport, store)

        client.fetch_view("show", "id", {}, {}, ttl="none")

        assert len(store) == 0

    def test_invalid_template_raises_even_when_not_raising(self, store):
        client = make_client(StubTransport(TestDataFactory.ok()), store, error_mode=ErrorMode.RETURN_NONE)

        with pytest.raises(ValidationError):
            client.fetch_view("", "id", {}, {})

    @pytest.mark.parametrize("ttls", [{"ttl": "weekly"}, {"ttl": -5}, {"null_ttl": "sometimes"}])
    def test_invalid_ttl_rejected_before_any_request(self, store, ttls):
        transport = StubTransport(TestDataFactory.ok())
        listener = RecordingListener()
        client = make_client(transport, store, error_mode=ErrorMode.RETURN_NONE, listeners=[listener])

        with pytest.raises(ValidationError):
            client.fetch_view("show", "id", {}, {}, **ttls)

        assert transport.calls == []
        assert len(store) == 0
        assert listener.events == []

    def test_invalid_default_ttl_rejected_at_construction(self, store):
        with pytest.raises(ValidationError):
            make_client(StubTransport(TestDataFactory.ok()), store, default_ttl="weekly")

    def test_ttl_seconds_as_text(self, store, clock):
        transport = StubTransport(TestDataFactory.ok())
        client = make_client(transport, store, jitter_cap=0)

        client.fetch_view("show", "id", {}, {}, ttl="90")

        assert store.expires_at(client.cache_key(client.build_envelope("show", "id"))) == clock() + 90


class TestPolling:
    """Test cases for 202 polling."""

    def test_retry_config_takes_precedence_over_max_retries(self, store):
        transport = StubTransport(make_response(202))
        client = make_client(transport, store, max_retries=5, retry_config=RetryConfig(max_attempts=2))

        with pytest.raises(NotReadyExhaustedError):
            client.fetch_view("show", "id", {}, {})

        assert client.max_retries == 2
        assert len(transport.calls) == 3

    def test_recovers_within_budget(self, store):
        transport = StubTransport(
            make_response(202), make_response(202), make_response(202), TestDataFactory.ok()
        )
        client = make_client(transport, store, max_retries=3)

        view = client.fetch_view("show", "id", {}, {})

        assert view is not None
        assert len(transport.calls) == 4

    def test_exhausted_budget_raises(self, store):
        transport = StubTransport(make_response(202))
        client = make_client(transport, store, max_retries=2)

        with pytest.raises(NotReadyExhaustedError) as exc_info:
            client.fetch_view("show", "id", {}, {})

        assert len(transport.calls) == 3
        assert exc_info.value.attempts == 3
        assert len(store) == 0

    def test_zero_retries_fails_on_first_202(self, store):
        transport = StubTransport(make_response(202))
        client = make_client(transport, store, max_retries=0)

        with pytest.raises(NotReadyExhaustedError):
            client.fetch_view("show", "id", {}, {})

        assert len(transport.calls) == 1

    def test_not_found_while_polling_is_cached(self, store):
        transport = StubTransport(make_response(202), make_response(404))
        client = make_client(transport, store, max_retries=1)

        assert client.fetch_view("show", "id", {}, {}) is None
        assert client.fetch_view("show", "id", {}, {}) is None
        assert len(transport.calls) == 2

    def test_delay_strategy_sleeps_between_polls(self, store):
        sleep = MagicMock()
        transport = StubTransport(make_response(202), make_response(202), TestDataFactory.ok())
        config = RetryConfig(max_attempts=2, base_delay=0.5, backoff_strategy="linear")
        client = make_client(transport, store, retry_config=config, sleep=sleep)

        client.fetch_view("show", "id", {}, {})

        assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0]

    def test_no_sleep_by_default(self, store):
        sleep = MagicMock()
        transport = StubTransport(make_response(202), TestDataFactory.ok())
        client = make_client(transport, store, sleep=sleep)

        client.fetch_view("show", "id", {}, {})

        sleep.assert_not_called()


class TestFailures:
    """Test cases for failure classification."""

    @pytest.mark.parametrize("status_code", [400, 403, 500, 503])
    def test_unexpected_status_is_transport_error_and_not_cached(self, store, status_code):
        transport = StubTransport(make_response(status_code), TestDataFactory.ok())
        client = make_client(transport, store)

        with pytest.raises(MorphTransportError) as exc_info:
            client.fetch_view("show", "id", {}, {})

        assert exc_info.value.kind is TransportErrorKind.HTTP
        assert exc_info.value.status_code == status_code
        assert len(store) == 0

        # Next call goes back to the network
        assert client.fetch_view("show", "id", {}, {}) is not None
        assert len(transport.calls) == 2

    def test_network_error_propagates(self, store):
        error = MorphTransportError(TransportErrorKind.NETWORK, "connection refused")
        client = make_client(StubTransport(error), store)

        with pytest.raises(MorphTransportError) as exc_info:
            client.fetch_view("show", "id", {}, {})

        assert exc_info.value.kind is TransportErrorKind.NETWORK
        assert len(store) == 0

    def test_malformed_body_is_decode_error(self, store):
        client = make_client(StubTransport(make_response(200, raw=b"<html>oops")), store)

        with pytest.raises(MorphDecodeError):
            client.fetch_view("show", "id", {}, {})

        assert len(store) == 0

    def test_return_none_mode_collapses_errors(self, store):
        client = make_client(StubTransport(make_response(500)), store, error_mode="return_none")

        assert client.fetch_view("show", "id", {}, {}) is None

    def test_return_none_mode_collapses_not_ready(self, store):
        client = make_client(StubTransport(make_response(202)), store, error_mode=ErrorMode.RETURN_NONE)

        assert client.fetch_view("show", "id", {}, {}) is None

    def test_error_response_shape(self, store):
        client = make_client(StubTransport(make_response(502)), store)

        with pytest.raises(MorphTransportError) as exc_info:
            client.fetch_view("show", "id", {}, {})

        response = exc_info.value.to_response()
        assert response.code == "MORPH_TRANSPORT_ERROR"
        assert response.details["status_code"] == 502


class TestCacheBehaviour:
    """Test cases for cache-aside edge cases."""

    def test_broken_store_degrades_to_network(self):
        broken = MagicMock()
        broken.get.side_effect = ConnectionError("redis down")
        broken.set.side_effect = ConnectionError("redis down")
        transport = StubTransport(TestDataFactory.ok())
        client = make_client(transport, broken)

        assert client.fetch_view("show", "id", {}, {}) is not None
        assert client.fetch_view("show", "id", {}, {}) is not None
        assert len(transport.calls) == 2

    def test_flush_mode_refetches_and_recaches(self, store):
        transport = StubTransport(TestDataFactory.ok("v1"), TestDataFactory.ok("v2"))
        client = make_client(transport, store)
        assert client.fetch_view("show", "id", {}, {}).body == "v1"

        client.set_flush_cache_items(True)
        assert client.fetch_view("show", "id", {}, {}).body == "v2"

        client.set_flush_cache_items(False)
        assert client.fetch_view("show", "id", {}, {}).body == "v2"
        assert len(transport.calls) == 2

    def test_cached_absent_entry_skips_network(self, store):
        transport = StubTransport(TestDataFactory.ok())
        client = make_client(transport, store)
        key = client.cache_key(client.build_envelope("show", "id"))
        store.set(key, CacheEntry.absent(), 60)

        assert client.fetch_view("show", "id", {}, {}) is None
        assert transport.calls == []

    def test_single_flight_fetches_once_for_concurrent_threads(self, store):
        started = threading.Event()
        release = threading.Event()

        class SlowTransport(StubTransport):
            def get(self, url):
                started.set()
                release.wait(timeout=5)
                return super().get(url)

        transport = SlowTransport(TestDataFactory.ok())
        client = make_client(transport, store)
        results = []

        def worker():
            results.append(client.fetch_view("show", "id", {}, {}))

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        started.wait(timeout=5)
        release.set()
        for thread in threads:
            thread.join(timeout=5)

        assert len(results) == 4
        assert all(result == results[0] for result in results)
        assert len(transport.calls) == 1


class TestEvents:
    """Test cases for request completion events."""

    def test_events_for_miss_then_hit(self, store):
        listener = RecordingListener()
        client = make_client(StubTransport(TestDataFactory.ok()), store, listeners=[listener])

        client.fetch_view("show", "id", {}, {})
        client.fetch_view("show", "id", {}, {})

        first, second = listener.events
        assert (first.outcome, first.status_code, first.attempts, first.from_cache) == ("ok", 200, 1, False)
        assert (second.outcome, second.attempts, second.from_cache) == ("hit", 0, True)
        assert first.url == "https://morph.example/view/show"
        assert first.latency_seconds >= 0

    def test_events_for_failures(self, store):
        listener = RecordingListener()
        client = make_client(StubTransport(make_response(202)), store, listeners=[listener], max_retries=1)

        with pytest.raises(NotReadyExhaustedError):
            client.fetch_view("show", "id", {}, {})

        event = listener.events[0]
        assert event.outcome == "not_ready"
        assert event.attempts == 2
        assert event.error_code == "MORPH_NOT_READY"

    def test_not_found_event(self, store):
        listener = RecordingListener()
        client = make_client(StubTransport(make_response(404)), store)
        client.add_listener(listener)

        client.fetch_view("show", "id", {}, {})
        client.fetch_view("show", "id", {}, {})

        assert [e.outcome for e in listener.events] == ["not_found", "absent_hit"]

    def test_failing_listener_does_not_fail_fetch(self, store):
        def explode(event):
            raise RuntimeError("listener bug")

        recorder = RecordingListener()
        client = make_client(StubTransport(TestDataFactory.ok()), store, listeners=[explode, recorder])

        assert client.fetch_view("show", "id", {}, {}) is not None
        assert len(recorder.events) == 1

    def test_broken_logger_does_not_fail_fetch(self, store):
        client = make_client(StubTransport(TestDataFactory.ok()), store)
        client.logger = MagicMock()
        client.logger.info.side_effect = RuntimeError("log sink down")

        assert client.fetch_view("show", "id", {}, {}) is not None

    def test_each_fetch_gets_its_own_fetch_id(self, store):
        listener = RecordingListener()
        client = make_client(StubTransport(TestDataFactory.ok()), store, listeners=[listener])

        client.fetch_view("show", "id", {}, {})
        client.fetch_view("show", "id", {}, {})

        first, second = listener.events
        assert first.fetch_id and second.fetch_id
        assert first.fetch_id != second.fetch_id
        assert current_fetch_id() is None
