"""
Search polling.

A supplier search is asynchronous: initiating it returns a search id, and
results arrive over successive polls together with a supplier-reported
completion percentage. ``SearchSession`` accumulates those polls,
``SearchAggregator`` drives one session to a terminal state, and
``MultiCitySearch`` runs one independent session per segment.
"""
from __future__ import annotations

import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional

from flightdesk.core.config import Settings
from flightdesk.core.errors import (
    FlightDeskError,
    NotFoundError,
    SupplierRejected,
    TransportError,
    ValidationError,
)
from flightdesk.models.domain import Itinerary, PollBatch, SearchRequest, SearchState
from flightdesk.supplier.client import SupplierClient
from flightdesk.supplier.normalizer import FarePolicy, normalize_poll_response

logger = logging.getLogger(__name__)

MAX_SEGMENTS = 6
_IATA = re.compile(r"^[A-Za-z]{3}$")

TERMINAL_SEARCH_STATES = frozenset(
    {
        SearchState.complete,
        SearchState.definitively_empty,
        SearchState.stalled,
        SearchState.timed_out,
        SearchState.failed,
    }
)


def validate_search_request(request: SearchRequest, max_passengers: int = 9) -> None:
    pax = request.passengers
    if not 1 <= len(request.segments) <= MAX_SEGMENTS:
        raise ValidationError(f"A search needs between 1 and {MAX_SEGMENTS} segments")
    if pax.adults < 1:
        raise ValidationError("At least one adult is required")
    if pax.children < 0 or pax.infants < 0:
        raise ValidationError("Passenger counts cannot be negative")
    if pax.infants > pax.adults:
        raise ValidationError("Each infant must travel with an adult")
    if pax.total > max_passengers:
        raise ValidationError(f"At most {max_passengers} passengers per search")
    for index, segment in enumerate(request.segments, start=1):
        if not _IATA.match(segment.origin or "") or not _IATA.match(segment.destination or ""):
            raise ValidationError(f"Segment {index} needs 3-letter airport codes")
        if segment.origin.upper() == segment.destination.upper():
            raise ValidationError(f"Segment {index} has the same origin and destination")


@dataclass
class SearchSession:
    request: SearchRequest
    search_id: Optional[str] = None
    state: SearchState = SearchState.created
    completion: float = 0.0
    cursor: Optional[int] = None
    itineraries: Dict[str, Itinerary] = field(default_factory=dict)
    attempts: int = 0
    polls: int = 0
    stalled_polls: int = 0
    message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_SEARCH_STATES

    @property
    def is_polling(self) -> bool:
        return self.state in (SearchState.created, SearchState.polling)

    def results(self) -> List[Itinerary]:
        return list(self.itineraries.values())

    def apply(self, batch: PollBatch, stall_limit: int = 3, stall_min_progress: float = 50.0) -> None:
        """Merge one poll. Re-applying the same batch leaves the merged set unchanged."""
        previous = self.completion
        self.completion = max(previous, batch.complete)
        if batch.cursor is not None and (self.cursor is None or batch.cursor > self.cursor):
            self.cursor = batch.cursor
        for itinerary in batch.itineraries:
            self.itineraries[itinerary.itinerary_id] = itinerary
        self.polls += 1

        if self.completion >= 100:
            if self.itineraries:
                self.state = SearchState.complete
                self.message = None
            else:
                self.state = SearchState.definitively_empty
                self.message = "No flights found for this route and date."
            return

        if self.polls > 1 and self.completion == previous:
            self.stalled_polls += 1
        else:
            self.stalled_polls = 0
        if self.stalled_polls >= stall_limit and self.completion > stall_min_progress:
            self.state = SearchState.stalled
            self.message = (
                f"Search stopped progressing at {self.completion:.0f}%; "
                "showing the results received so far."
            )


class SearchAggregator:
    def __init__(
        self,
        client: SupplierClient,
        settings: Settings,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.settings = settings
        self.sleep = sleep
        self.policy = FarePolicy.from_settings(settings)

    def start(self, request: SearchRequest) -> SearchSession:
        """Initiate the supplier search; transport errors retried a fixed number of times."""
        session = SearchSession(request=request)
        retries = self.settings.search_initiate_retries
        for attempt in range(retries + 1):
            try:
                session.search_id = self.client.initiate_search(request)
                break
            except TransportError as exc:
                if attempt >= retries:
                    session.state = SearchState.failed
                    session.message = "Flight search is temporarily unavailable."
                    raise
                logger.info("Search initiate attempt %s failed (%s); retrying", attempt + 1, exc)
            except FlightDeskError:
                session.state = SearchState.failed
                raise
        session.state = SearchState.polling
        logger.info("Search %s started for %s", session.search_id, _describe(request))
        return session

    def poll_once(self, session: SearchSession) -> SearchSession:
        if session.is_terminal:
            return session
        session.attempts += 1
        try:
            payload = self.client.poll_results(session.search_id, after=session.cursor)
        except TransportError as exc:
            logger.warning("Poll %s of search %s failed: %s", session.attempts, session.search_id, exc)
        except (NotFoundError, SupplierRejected) as exc:
            logger.warning("Search %s can no longer be polled: %s", session.search_id, exc)
            session.state = SearchState.failed
            session.message = "The search expired; please search again."
            return session
        else:
            batch = normalize_poll_response(
                payload,
                self.policy,
                passengers=session.request.passengers,
                search_id=session.search_id,
            )
            session.apply(
                batch,
                stall_limit=self.settings.stall_poll_limit,
                stall_min_progress=self.settings.stall_min_progress,
            )

        if not session.is_terminal and session.attempts >= self.settings.poll_max_attempts:
            session.state = SearchState.timed_out
            session.message = (
                f"Search did not finish ({session.completion:.0f}% complete); "
                "showing the results received so far."
            )
        return session

    def run(self, session: SearchSession) -> SearchSession:
        while not session.is_terminal:
            self.poll_once(session)
            if not session.is_terminal:
                self.sleep(self.settings.poll_interval_seconds)
        logger.info(
            "Search %s finished: %s at %.0f%% with %s itineraries",
            session.search_id,
            session.state.value,
            session.completion,
            len(session.itineraries),
        )
        return session

    def search(self, request: SearchRequest) -> SearchSession:
        validate_search_request(request, self.settings.max_passengers)
        return self.run(self.start(request))

    def search_segment(self, request: SearchRequest) -> SearchSession:
        """Like ``search`` but failures end up on the session instead of being raised."""
        try:
            return self.run(self.start(request))
        except FlightDeskError as exc:
            logger.warning("Segment search %s failed: %s", _describe(request), exc)
            return SearchSession(
                request=request,
                state=SearchState.failed,
                message="Flight search is temporarily unavailable."
                if isinstance(exc, TransportError)
                else str(exc),
            )


class MultiCitySearch:
    """One independent session per requested segment."""

    def __init__(self, aggregator: SearchAggregator, request: SearchRequest):
        validate_search_request(request, aggregator.settings.max_passengers)
        self.aggregator = aggregator
        self.request = request
        self.sessions: List[SearchSession] = [
            SearchSession(request=self._segment_request(i)) for i in range(len(request.segments))
        ]
        self.retries: List[int] = [0] * len(request.segments)

    def _segment_request(self, index: int) -> SearchRequest:
        return replace(self.request, segments=[self.request.segments[index]])

    @property
    def any_polling(self) -> bool:
        return any(s.is_polling for s in self.sessions)

    def run(self) -> "MultiCitySearch":
        indexes = range(len(self.sessions))
        if len(self.sessions) == 1:
            self.sessions[0] = self.aggregator.search_segment(self._segment_request(0))
        else:
            with ThreadPoolExecutor(max_workers=len(self.sessions)) as pool:
                finished = pool.map(
                    lambda i: self.aggregator.search_segment(self._segment_request(i)), indexes
                )
                self.sessions = list(finished)

        limit = self.aggregator.settings.segment_retry_limit
        for index in indexes:
            while self._retryable(index) and self.retries[index] < limit:
                logger.info("Retrying empty segment %s of multi-city search", index + 1)
                self.retry_segment(index)
        return self

    def _retryable(self, index: int) -> bool:
        session = self.sessions[index]
        return session.is_terminal and not session.itineraries

    def retry_segment(self, index: int) -> SearchSession:
        """Re-run one segment that ended with no itineraries; siblings are untouched."""
        if not 0 <= index < len(self.sessions):
            raise ValidationError(f"No segment {index + 1} in this search")
        if not self._retryable(index):
            raise ValidationError(f"Segment {index + 1} is still polling or already has results")
        self.retries[index] += 1
        self.sessions[index] = self.aggregator.search_segment(self._segment_request(index))
        return self.sessions[index]


def _describe(request: SearchRequest) -> str:
    return ", ".join(f"{s.origin}-{s.destination} {s.date}" for s in request.segments)
