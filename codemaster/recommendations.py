"""Client and merge step for the external challenge recommendation service.

The service scores a pool of candidate challenges against what a user has
already solved and answers with a ranked shortlist. This module owns the
transport contract (payload, headers, timeout, retries) and the enrichment of
the ranked names with locally stored challenge metadata. It never raises to
its callers: every failure path ends in ``None`` so the views can fall back to
an unranked challenge list.
"""
from __future__ import annotations

import enum
import html
import logging
import re
import time
from concurrent import futures
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable, Mapping, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 45.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_DELAY = 2.0
DEFAULT_TOP_N = 3
USER_AGENT = "CodeMaster-App/1.0"


class AttemptDeadlineExceeded(httpx.TimeoutException):
    """A single attempt ran past its overall deadline."""


# Timeouts and refused/dropped connections are worth another attempt.
RETRYABLE_ERRORS = (httpx.TimeoutException, httpx.NetworkError)

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")


def sanitize_description(description: Optional[str]) -> str:
    """Strip HTML tags, decode entities and collapse whitespace."""
    if not description:
        return ""
    text = _TAG_RE.sub("", description)
    text = html.unescape(text).replace("\xa0", " ")
    return _WS_RE.sub(" ", text).strip()


def format_recommendation_reasons(reasons: Iterable[str]) -> str:
    return " • ".join(reasons or [])


def _unique_tags(tags: Iterable[str]) -> list[str]:
    seen = []
    for tag in tags or []:
        if tag and tag not in seen:
            seen.append(tag)
    return seen


@dataclass
class SolvedProblem:
    name: str
    rank: int
    tags: list = field(default_factory=list)
    description: str = ""
    passed: bool = True

    def to_payload(self) -> dict:
        return {
            "name": self.name,
            "rank": self.rank,
            "tags": _unique_tags(self.tags),
            "description": self.description,
            "passed": self.passed,
        }


@dataclass
class CandidateProblem:
    name: str
    rank: int
    rank_name: str
    tags: list = field(default_factory=list)
    description: str = ""

    def to_payload(self) -> dict:
        return {
            "name": self.name,
            "rank": self.rank,
            "rank_name": self.rank_name,
            "tags": _unique_tags(self.tags),
            "description": self.description,
        }


def build_payload(solved_problems, candidate_problems, top_n: int = DEFAULT_TOP_N) -> dict:
    return {
        "solved_problems": [p.to_payload() for p in solved_problems],
        "candidate_problems": [p.to_payload() for p in candidate_problems],
        "top_n": top_n,
    }


# -----------------------------------------------------------------------------
# Fetch state
# -----------------------------------------------------------------------------
class FetchPhase(enum.Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class FetchState:
    phase: FetchPhase = FetchPhase.IDLE
    attempt: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.phase in (FetchPhase.SUCCEEDED, FetchPhase.FAILED)

    def start_attempt(self) -> "FetchState":
        if self.is_terminal:
            raise ValueError(f"cannot retry from {self.phase.value}")
        return FetchState(FetchPhase.ATTEMPTING, self.attempt + 1)

    def succeed(self) -> "FetchState":
        return replace(self, phase=FetchPhase.SUCCEEDED)

    def fail(self) -> "FetchState":
        return replace(self, phase=FetchPhase.FAILED)


class RecommendationClient:
    """POSTs recommendation requests with a hard per-attempt deadline and bounded retries.

    One instance is shared by every request of the app, so nothing about an
    individual call is stored on it; each ``fetch`` keeps its own ``FetchState``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        transport: Optional[httpx.BaseTransport] = None,
        log: Optional[logging.Logger] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max(max_retries, 0)
        self.retry_delay = retry_delay
        self.transport = transport
        self.log = log or logger
        self.sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def _post(self, payload: dict, deadline: float) -> httpx.Response:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }
        # A fresh client per attempt: closing it releases the connection of a timed-out call.
        with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
            with client.stream("POST", self.base_url, json=payload, headers=headers) as resp:
                body = bytearray()
                for chunk in resp.iter_bytes():
                    if time.monotonic() > deadline:
                        raise AttemptDeadlineExceeded(
                            f"response not complete within {self.timeout}s", request=resp.request
                        )
                    body.extend(chunk)
                return httpx.Response(
                    resp.status_code,
                    headers={"Content-Type": resp.headers.get("Content-Type", "application/json")},
                    content=bytes(body),
                    request=resp.request,
                )

    def _attempt(self, payload: dict) -> httpx.Response:
        """Run one POST, giving up once ``timeout`` seconds have passed in total."""
        deadline = time.monotonic() + self.timeout
        executor = futures.ThreadPoolExecutor(max_workers=1)
        try:
            return executor.submit(self._post, payload, deadline).result(timeout=self.timeout)
        except futures.TimeoutError:
            raise AttemptDeadlineExceeded(f"no response within {self.timeout}s") from None
        finally:
            # The worker stops at its next chunk past the deadline.
            executor.shutdown(wait=False)

    def fetch(self, solved_problems, candidate_problems, top_n: int = DEFAULT_TOP_N) -> Optional[dict]:
        data, _ = self.fetch_with_state(solved_problems, candidate_problems, top_n)
        return data

    def fetch_with_state(
        self, solved_problems, candidate_problems, top_n: int = DEFAULT_TOP_N
    ) -> tuple[Optional[dict], FetchState]:
        payload = build_payload(solved_problems, candidate_problems, top_n)
        state = FetchState()

        while True:
            state = state.start_attempt()
            attempt = state.attempt
            self.log.info(
                "Sending recommendation request (attempt %d/%d, %d solved, %d candidates)",
                attempt, self.max_attempts,
                len(payload["solved_problems"]), len(payload["candidate_problems"]),
            )
            try:
                resp = self._attempt(payload)
            except RETRYABLE_ERRORS as e:
                if attempt < self.max_attempts:
                    self.log.warning("Recommendation request attempt %d failed (%s), retrying", attempt, e)
                    self.sleep(self.retry_delay)
                    continue
                self.log.error("Recommendation service unreachable after %d attempts: %s", attempt, e)
                return None, state.fail()
            except httpx.HTTPError as e:
                self.log.error("Error calling recommendation service: %s", e)
                return None, state.fail()

            if not resp.is_success:
                self.log.error("Recommendation service error: %s %s", resp.status_code, resp.text[:500])
                return None, state.fail()

            try:
                data = resp.json()
            except ValueError:
                self.log.error("Recommendation service returned a non-JSON body")
                return None, state.fail()

            if not isinstance(data, dict):
                self.log.error("Recommendation service returned unexpected payload type %s", type(data).__name__)
                return None, state.fail()

            self.log.info("Recommendation response received on attempt %d", attempt)
            return data, state.succeed()


def enrich_recommendations(ranked: list, details_by_name: Mapping[str, Any]) -> list:
    """Attach local challenge metadata to each ranked entry; unmatched names keep ``None``."""
    enriched = []
    for rec in ranked:
        entry = dict(rec)
        entry["challenge_details"] = details_by_name.get(rec.get("name"))
        enriched.append(entry)
    return enriched


def get_recommendations(
    solved_problems,
    candidate_problems,
    top_n: int = DEFAULT_TOP_N,
    *,
    client: RecommendationClient,
    lookup: Optional[Callable[[list], Mapping[str, Any]]] = None,
    log: Optional[logging.Logger] = None,
) -> Optional[dict]:
    log = log or logger
    try:
        if not solved_problems:
            log.warning("No solved problems; skipping recommendations")
            return None
        if not candidate_problems:
            log.warning("No candidate problems; skipping recommendations")
            return None

        response = client.fetch(solved_problems, candidate_problems, top_n)
        if response is None:
            return None

        ranked = response.get("recommendations") or []
        names = [rec.get("name") for rec in ranked]
        details = lookup(names) if lookup is not None else {}
        log.info("Merging %d recommendations with %d local challenge records", len(ranked), len(details))

        return {
            "recommendations": enrich_recommendations(ranked, details),
            "user_profile": response.get("user_profile"),
            "metadata": response.get("metadata"),
        }
    except Exception:
        log.exception("Error getting recommendations")
        return None
