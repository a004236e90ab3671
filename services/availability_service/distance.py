from dataclasses import dataclass
from typing import Optional

import httpx
import structlog
from fastapi import status

from shared.errors import AppError
from shared.observability import phleb_distance_lookups_total

logger = structlog.get_logger(__name__)

METERS_PER_MILE = 1609.344


class DistanceError(AppError):
    """Base for driving-distance lookup failures."""


class InvalidAddressError(DistanceError):
    status_code = status.HTTP_400_BAD_REQUEST


class NoRouteError(DistanceError):
    status_code = status.HTTP_400_BAD_REQUEST


class UpstreamUnavailableError(DistanceError):
    status_code = status.HTTP_502_BAD_GATEWAY


@dataclass(frozen=True)
class TravelEstimate:
    distance_miles: float
    duration_seconds: Optional[int] = None


def coordinates(lat: float, lng: float) -> str:
    return f"{lat},{lng}"


class DistanceResolver:
    """Driving distance between two points via the Google Distance Matrix API.

    Each lookup is a single request; callers decide whether to try again.
    """

    def __init__(self, client: httpx.AsyncClient, api_key: str, base_url: str, timeout: float = 10.0):
        self.client = client
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout

    async def resolve(self, origin: str, destination: str) -> TravelEstimate:
        if not self.api_key:
            self._count("upstream_unavailable")
            raise UpstreamUnavailableError("Distance service is not configured")
        if not destination or not destination.strip():
            self._count("invalid_address")
            raise InvalidAddressError("Customer address is missing")

        params = {
            "origins": origin,
            "destinations": destination,
            "units": "imperial",
            "key": self.api_key,
        }
        try:
            response = await self.client.get(self.base_url, params=params, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            self._count("upstream_unavailable")
            logger.warning("distance_lookup_failed", error=str(exc))
            raise UpstreamUnavailableError("Distance service is unavailable") from exc

        top_status = payload.get("status")
        if top_status == "INVALID_REQUEST":
            self._count("invalid_address")
            raise InvalidAddressError("Address could not be used for a distance lookup")
        if top_status != "OK":
            self._count("upstream_unavailable")
            logger.warning("distance_lookup_rejected", status=top_status)
            raise UpstreamUnavailableError(f"Distance service returned {top_status}")

        try:
            element = payload["rows"][0]["elements"][0]
        except (KeyError, IndexError, TypeError) as exc:
            self._count("upstream_unavailable")
            raise UpstreamUnavailableError("Distance service returned no result") from exc

        element_status = element.get("status")
        if element_status == "NOT_FOUND":
            self._count("invalid_address")
            raise InvalidAddressError("Address could not be found")
        if element_status in ("ZERO_RESULTS", "MAX_ROUTE_LENGTH_EXCEEDED"):
            self._count("no_route")
            raise NoRouteError("No driving route to the address")
        if element_status != "OK":
            self._count("upstream_unavailable")
            raise UpstreamUnavailableError(f"Distance service returned {element_status}")

        meters = element["distance"]["value"]
        duration = element.get("duration", {}).get("value")
        self._count("ok")
        return TravelEstimate(distance_miles=meters / METERS_PER_MILE, duration_seconds=duration)

    @staticmethod
    def _count(result: str) -> None:
        phleb_distance_lookups_total.labels(result=result).inc()
