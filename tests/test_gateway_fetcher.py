"""Tests for the content gateway fetcher."""
import pytest
import requests
from unittest.mock import patch, MagicMock

from veriledger.errors import AllGatewaysFailedError
from veriledger.ingest.content_store import ContentStore
from veriledger.ingest.events import EventLog, EventType
from veriledger.ingest.gateway_fetcher import (
    DEFAULT_HEADERS,
    DEFAULT_SUBSTITUTE_TEXT,
    LOCAL_STORE_GATEWAY,
    GatewayFetcher,
    RetryPolicy,
    build_gateway_url,
    normalize_body,
)
from veriledger.pipeline.models import FetchMode

G1 = "https://g1.example/ipfs/"
G2 = "https://g2.example/ipfs/"
G3 = "https://g3.example/ipfs/"
CID = "QmTestCid123"


def make_response(status_code=200, text="", content_type="text/plain"):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    response.headers = {"Content-Type": content_type}
    return response


def session_for(outcomes):
    """Session whose get() answers per gateway prefix (response or exception)."""
    session = MagicMock()

    def get(url, **kwargs):
        for prefix, outcome in outcomes.items():
            if url.startswith(prefix):
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        raise AssertionError(f"unexpected URL {url}")

    session.get.side_effect = get
    return session


def called_urls(session):
    return [c.args[0] for c in session.get.call_args_list]


class TestBuildGatewayUrl:
    """Tests for gateway URL templates."""

    def test_appends_content_id(self):
        assert build_gateway_url(G1, CID) == f"{G1}{CID}"

    def test_expands_placeholder(self):
        assert build_gateway_url("https://{cid}.ipfs.example/", CID) == f"https://{CID}.ipfs.example/"


class TestNormalizeBody:
    """Tests for response body normalization."""

    def test_plain_text_unchanged(self):
        assert normalize_body(make_response(text="Claim text")) == "Claim text"

    def test_json_is_stringified(self):
        body = normalize_body(make_response(text='{"claim": "X"}', content_type="application/json"))
        assert body == '{\n  "claim": "X"\n}'

    def test_invalid_json_kept_raw(self):
        body = normalize_body(make_response(text="{not json", content_type="application/json"))
        assert body == "{not json"


class TestGatewayOrdering:
    """Gateways are tried in order and the first success wins."""

    def test_second_gateway_wins_third_untouched(self):
        """G1 fails, G2 succeeds, G3 is never called."""
        session = session_for({
            G1: make_response(500),
            G2: make_response(200, "Company X increased output by 40%"),
            G3: make_response(200, "never"),
        })
        fetcher = GatewayFetcher(gateways=[G1, G2, G3], session=session)

        result = fetcher.fetch(CID)

        assert result.succeeded is True
        assert result.gateway_used == G2
        assert result.raw_text == "Company X increased output by 40%"
        assert [a.gateway for a in result.attempts_log] == [G1, G2]
        assert [a.outcome for a in result.attempts_log] == ["http_error", "success"]
        assert called_urls(session) == [f"{G1}{CID}", f"{G2}{CID}"]

    def test_request_uses_timeout_and_accept_header(self):
        session = session_for({G1: make_response(200, "ok text")})
        fetcher = GatewayFetcher(gateways=[G1], timeout=7, session=session)

        fetcher.fetch(CID)

        kwargs = session.get.call_args.kwargs
        assert kwargs["timeout"] == 7
        assert kwargs["headers"] == DEFAULT_HEADERS

    def test_max_gateways_limits_cascade(self):
        session = session_for({G1: make_response(404), G2: make_response(200, "text")})
        fetcher = GatewayFetcher(gateways=[G1, G2], session=session)

        with pytest.raises(AllGatewaysFailedError):
            fetcher.fetch(CID, max_gateways=1)
        assert called_urls(session) == [f"{G1}{CID}"]

    @pytest.mark.parametrize("failure,outcome", [
        (requests.Timeout("slow"), "timeout"),
        (requests.ConnectionError("refused"), "transport_error"),
        (make_response(503), "http_error"),
        (make_response(200, "   "), "empty_body"),
    ])
    def test_failure_outcomes_recorded(self, failure, outcome):
        session = session_for({G1: failure, G2: make_response(200, "text")})
        fetcher = GatewayFetcher(gateways=[G1, G2], session=session)

        result = fetcher.fetch(CID)

        assert result.attempts_log[0].outcome == outcome
        assert result.gateway_used == G2

    def test_empty_content_id_rejected(self):
        fetcher = GatewayFetcher(gateways=[G1], session=MagicMock())
        with pytest.raises(ValueError):
            fetcher.fetch("  ")

    def test_empty_gateway_list_rejected(self):
        fetcher = GatewayFetcher(gateways=[G1], session=MagicMock())
        with pytest.raises(ValueError):
            fetcher.fetch(CID, gateways=[])


class TestFetchModes:
    """Strict mode raises on exhaustion; best-effort substitutes."""

    @pytest.fixture
    def failing_session(self):
        return session_for({
            G1: make_response(500),
            G2: requests.Timeout("slow"),
            G3: make_response(404),
        })

    def test_strict_raises_listing_all_gateways(self, failing_session):
        fetcher = GatewayFetcher(gateways=[G1, G2, G3], mode=FetchMode.STRICT, session=failing_session)

        with pytest.raises(AllGatewaysFailedError) as exc_info:
            fetcher.fetch(CID)

        error = exc_info.value
        assert error.content_id == CID
        assert error.gateways == [G1, G2, G3]
        for gateway in (G1, G2, G3):
            assert gateway in str(error)

    def test_best_effort_returns_substitute(self, failing_session):
        fetcher = GatewayFetcher(gateways=[G1, G2, G3], mode=FetchMode.BEST_EFFORT, session=failing_session)

        result = fetcher.fetch(CID)

        assert result.raw_text == DEFAULT_SUBSTITUTE_TEXT
        assert result.substituted is True
        assert result.succeeded is False
        assert len(result.attempts_log) == 3

    def test_best_effort_prefers_configured_substitute(self, failing_session):
        fetcher = GatewayFetcher(
            gateways=[G1],
            mode="best_effort",
            substitutes={CID: "Specific text", "default": "Default text"},
            session=failing_session,
        )
        assert fetcher.fetch(CID).raw_text == "Specific text"
        assert fetcher.fetch("QmOther").raw_text == "Default text"

    def test_exhaustion_emits_event(self, failing_session):
        events = EventLog()
        fetcher = GatewayFetcher(gateways=[G1, G2], events=events, session=failing_session)

        with pytest.raises(AllGatewaysFailedError):
            fetcher.fetch(CID)

        assert len(events.recent(event_type=EventType.GATEWAY_FAILED)) == 2
        assert len(events.recent(event_type=EventType.FETCH_EXHAUSTED)) == 1


class TestRetryPolicy:
    """Tests for cascade-level retry with backoff."""

    def test_delay_grows_and_caps(self):
        policy = RetryPolicy(initial_backoff_seconds=2, backoff_multiplier=2, max_backoff_seconds=5, jitter_seconds=0)
        assert policy.delay_for(1) == 2
        assert policy.delay_for(2) == 4
        assert policy.delay_for(3) == 5

    def test_invalid_attempts_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_retries_whole_cascade_then_succeeds(self):
        responses = iter([make_response(500), make_response(200, "late text")])
        session = MagicMock()
        session.get.side_effect = lambda url, **kw: next(responses)
        sleeps = []
        fetcher = GatewayFetcher(
            gateways=[G1],
            retry=RetryPolicy(max_attempts=3, initial_backoff_seconds=1, jitter_seconds=0),
            session=session,
            sleep=sleeps.append,
        )

        result = fetcher.fetch(CID)

        assert result.raw_text == "late text"
        assert sleeps == [1]
        assert len(result.attempts_log) == 2


class TestContentStoreAndHealth:
    """Local store short-circuit and health bookkeeping."""

    def test_local_store_checked_first(self):
        store = ContentStore()
        store.store(CID, "Stored claim text")
        session = MagicMock()
        fetcher = GatewayFetcher(gateways=[G1], content_store=store, session=session)

        result = fetcher.fetch(CID)

        assert result.gateway_used == LOCAL_STORE_GATEWAY
        assert result.raw_text == "Stored claim text"
        session.get.assert_not_called()

    def test_health_records_success_and_failure(self):
        session = session_for({G1: make_response(500), G2: make_response(200, "text")})
        fetcher = GatewayFetcher(gateways=[G1, G2], session=session)

        fetcher.fetch(CID)

        assert fetcher.health.gateways[G1].consecutive_failures == 1
        assert fetcher.health.gateways[G2].total_successes == 1

    @patch('veriledger.ingest.gateway_fetcher._build_session')
    def test_default_session_built_once(self, mock_build):
        mock_build.return_value = session_for({G1: make_response(200, "text")})
        fetcher = GatewayFetcher(gateways=[G1])

        fetcher.fetch(CID)
        fetcher.fetch(CID)

        mock_build.assert_called_once()
