from fastapi import APIRouter, Depends

from flightdesk.api import get_search_aggregator
from flightdesk.models.schemas import FlightSearchRequest, FlightSearchResponse
from flightdesk.services.search_aggregator import MultiCitySearch, SearchAggregator

router = APIRouter()


@router.post("/search", response_model=FlightSearchResponse)
def search_flights(
    body: FlightSearchRequest,
    aggregator: SearchAggregator = Depends(get_search_aggregator),
) -> FlightSearchResponse:
    """Runs every segment to a terminal state; the response is a final snapshot."""
    search = MultiCitySearch(aggregator, body.to_domain()).run()
    return FlightSearchResponse.from_search(search)
