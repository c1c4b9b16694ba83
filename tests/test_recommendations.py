import json
import logging
import threading
import time

import httpx

from codemaster.recommendations import (
    SolvedProblem, CandidateProblem, FetchPhase, FetchState, RecommendationClient, build_payload,
    enrich_recommendations, format_recommendation_reasons, get_recommendations,
    sanitize_description,
)
from conftest import SAMPLE_RESPONSE, scripted_client


SOLVED = [SolvedProblem(name="Rock Paper Scissors", rank=8, tags=["Logic", "Logic"], description="Game")]
CANDIDATES = [
    CandidateProblem(name="FizzBuzz Challenge", rank=7, rank_name="7 kyu", tags=["Loops"]),
    CandidateProblem(name="Ghost Kata", rank=6, rank_name="6 kyu"),
]


def test_payload_shape():
    payload = build_payload(SOLVED, CANDIDATES, 2)
    assert payload["top_n"] == 2
    assert payload["solved_problems"][0] == {
        "name": "Rock Paper Scissors", "rank": 8, "tags": ["Logic"], "description": "Game", "passed": True,
    }
    assert payload["candidate_problems"][1]["rank_name"] == "6 kyu"


def test_success_on_first_attempt_sends_json_headers():
    client, transport, sleeps = scripted_client([SAMPLE_RESPONSE])
    result, state = client.fetch_with_state(SOLVED, CANDIDATES, 3)
    assert result == SAMPLE_RESPONSE
    assert sleeps == []
    request = transport.requests[0]
    assert request.method == "POST"
    assert request.headers["accept"] == "application/json"
    assert request.headers["content-type"] == "application/json"
    assert transport.payloads[0]["top_n"] == 3
    assert state == FetchState(FetchPhase.SUCCEEDED, 1)


def test_two_timeouts_then_success():
    client, transport, sleeps = scripted_client([httpx.ReadTimeout, httpx.ConnectTimeout, SAMPLE_RESPONSE])
    result, state = client.fetch_with_state(SOLVED, CANDIDATES)
    assert result == SAMPLE_RESPONSE
    assert len(transport.requests) == 3
    assert sleeps == [2.0, 2.0]
    assert state == FetchState(FetchPhase.SUCCEEDED, 3)


def test_connection_refused_is_retried():
    client, transport, sleeps = scripted_client([httpx.ConnectError, SAMPLE_RESPONSE])
    assert client.fetch(SOLVED, CANDIDATES) == SAMPLE_RESPONSE
    assert len(transport.requests) == 2
    assert sleeps == [2.0]


def test_always_timing_out_gives_up_after_three_attempts():
    client, transport, sleeps = scripted_client([httpx.ReadTimeout])
    result, state = client.fetch_with_state(SOLVED, CANDIDATES)
    assert result is None
    assert len(transport.requests) == 3
    assert sleeps == [2.0, 2.0]
    assert state == FetchState(FetchPhase.FAILED, 3)


def test_http_errors_are_not_retried():
    for status in (400, 404, 500, 503):
        client, transport, sleeps = scripted_client([status, SAMPLE_RESPONSE])
        assert client.fetch(SOLVED, CANDIDATES) is None
        assert len(transport.requests) == 1
        assert sleeps == []


def test_non_json_body_is_a_failure():
    def handler(request):
        return httpx.Response(200, text="<html>oops</html>")

    client = RecommendationClient("http://recommender.test/recommend", transport=httpx.MockTransport(handler))
    result, state = client.fetch_with_state(SOLVED, CANDIDATES)
    assert result is None
    assert state.phase is FetchPhase.FAILED


def test_custom_retry_budget():
    client, transport, sleeps = scripted_client([httpx.ReadTimeout], max_retries=0, retry_delay=0.5)
    assert client.fetch(SOLVED, CANDIDATES) is None
    assert len(transport.requests) == 1
    assert sleeps == []


def test_fetch_state_transitions():
    state = FetchState()
    assert state.phase is FetchPhase.IDLE
    state = state.start_attempt().start_attempt()
    assert state == FetchState(FetchPhase.ATTEMPTING, 2)
    done = state.succeed()
    assert done.is_terminal
    try:
        done.start_attempt()
    except ValueError:
        pass
    else:
        raise AssertionError("terminal state must not restart")


def test_empty_solved_makes_no_calls():
    client, transport, _ = scripted_client([SAMPLE_RESPONSE])
    assert get_recommendations([], CANDIDATES, client=client) is None
    assert get_recommendations(SOLVED, [], client=client) is None
    assert transport.requests == []


def test_enrichment_keeps_unmatched_entries():
    client, _, _ = scripted_client([SAMPLE_RESPONSE])
    looked_up = []

    def lookup(names):
        looked_up.append(names)
        return {"FizzBuzz Challenge": {"id": 2, "points": 20}, "ghost kata": {"id": 99}}

    result = get_recommendations(SOLVED, CANDIDATES, 2, client=client, lookup=lookup)
    assert looked_up == [["FizzBuzz Challenge", "Ghost Kata"]]
    recs = result["recommendations"]
    assert len(recs) == len(SAMPLE_RESPONSE["recommendations"])
    assert [r["name"] for r in recs] == ["FizzBuzz Challenge", "Ghost Kata"]
    assert recs[0]["challenge_details"] == {"id": 2, "points": 20}
    assert recs[1]["challenge_details"] is None
    assert result["user_profile"] == SAMPLE_RESPONSE["user_profile"]
    assert result["metadata"]["model_version"] == "4.0"


def test_unexpected_errors_become_none(caplog):
    client, _, _ = scripted_client([SAMPLE_RESPONSE])

    def broken_lookup(names):
        raise RuntimeError("database went away")

    with caplog.at_level(logging.ERROR):
        assert get_recommendations(SOLVED, CANDIDATES, client=client, lookup=broken_lookup) is None
    assert "Error getting recommendations" in caplog.text


def test_injected_logger_receives_retry_warnings():
    records = []

    class ListLogger:
        def info(self, msg, *args):
            records.append(("info", msg % args))

        def warning(self, msg, *args):
            records.append(("warning", msg % args))

        def error(self, msg, *args):
            records.append(("error", msg % args))

        def exception(self, msg, *args):
            records.append(("exception", msg % args))

    client, _, _ = scripted_client([httpx.ReadTimeout, SAMPLE_RESPONSE], log=ListLogger())
    client.fetch(SOLVED, CANDIDATES)
    assert [level for level, _ in records].count("warning") == 1


def test_enrich_recommendations_does_not_mutate_input():
    ranked = [{"name": "A"}]
    out = enrich_recommendations(ranked, {})
    assert out == [{"name": "A", "challenge_details": None}]
    assert ranked == [{"name": "A"}]


def test_sanitize_description():
    raw = "<p>Return&nbsp;the <b>sum</b> &amp; product</p>\n\n  of &lt;a&gt; &quot;list&quot; &#39;x&#39;"
    assert sanitize_description(raw) == "Return the sum & product of <a> \"list\" 'x'"
    assert sanitize_description(None) == ""


def test_format_reasons():
    assert format_recommendation_reasons(["a", "b"]) == "a • b"
    assert format_recommendation_reasons([]) == ""


def test_shared_client_keeps_concurrent_calls_apart():
    slow_calls = []
    slow_waiting = threading.Event()
    fast_done = threading.Event()

    def handler(request):
        if json.loads(request.content)["top_n"] == 1 and not slow_calls:
            slow_calls.append(request)
            raise httpx.ReadTimeout("slow upstream", request=request)
        return httpx.Response(200, json=SAMPLE_RESPONSE)

    def sleep(_delay):
        slow_waiting.set()
        fast_done.wait(5)

    client = RecommendationClient(
        "http://recommender.test/recommend", transport=httpx.MockTransport(handler), sleep=sleep
    )
    results = {}

    def run_slow():
        results["slow"] = client.fetch(SOLVED, CANDIDATES, 1)

    worker = threading.Thread(target=run_slow)
    worker.start()
    assert slow_waiting.wait(5)
    results["fast"] = client.fetch(SOLVED, CANDIDATES, 2)
    fast_done.set()
    worker.join(5)

    assert results == {"slow": SAMPLE_RESPONSE, "fast": SAMPLE_RESPONSE}
    assert len(slow_calls) == 1


class DripStream(httpx.SyncByteStream):
    """Sends the body one byte at a time."""

    def __init__(self, body, delay):
        self.body = body
        self.delay = delay

    def __iter__(self):
        for i in range(len(self.body)):
            time.sleep(self.delay)
            yield self.body[i:i + 1]


def test_slow_drip_response_is_cut_at_the_deadline():
    body = json.dumps(SAMPLE_RESPONSE).encode()

    def handler(request):
        return httpx.Response(200, headers={"Content-Type": "application/json"}, stream=DripStream(body, 0.05))

    sleeps = []
    client = RecommendationClient(
        "http://recommender.test/recommend", timeout=0.3, max_retries=1,
        transport=httpx.MockTransport(handler), sleep=sleeps.append,
    )
    started = time.monotonic()
    result, state = client.fetch_with_state(SOLVED, CANDIDATES)
    elapsed = time.monotonic() - started

    assert result is None
    assert state == FetchState(FetchPhase.FAILED, 2)
    assert sleeps == [2.0]
    assert elapsed < 2.0


def test_stalled_server_is_abandoned_at_the_deadline():
    release = threading.Event()

    def handler(request):
        release.wait(5)
        return httpx.Response(200, json=SAMPLE_RESPONSE)

    client = RecommendationClient(
        "http://recommender.test/recommend", timeout=0.2, max_retries=0,
        transport=httpx.MockTransport(handler),
    )
    try:
        started = time.monotonic()
        assert client.fetch(SOLVED, CANDIDATES) is None
        assert time.monotonic() - started < 1.5
    finally:
        release.set()
