# app/api/location_service.py
"""Request routers for the location endpoints.

The routers are transport-agnostic: they take a method and a URL, do their
own path and query validation, and produce a ``ServiceResponse`` carrying a
status code, extra headers and a JSON body. Lookup failures are reported as
``{"status": "error", "message": ...}`` with a 200; only malformed requests
(400/405) and serialization failures (500) use other status codes.
"""

import json
import logging
import math
import re
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import parse_qsl, urlsplit

from fastapi import status

from app.models.dto import ErrorResponse, GeocodeResult, GeocodeSuccess
from app.models.location import (
    AcquisitionResult,
    DistanceResult,
    DistanceSuccess,
    LocationFix,
    LocationSuccess,
)
from app.services.geocoding import ReverseGeocoder, lookup_address
from app.services.location_provider import LocationProvider
from app.services.single_location import distance_to, locate_once

logger = logging.getLogger(__name__)

EXPECTED_COORDINATES_MESSAGE = "Expected exactly 2 query parameters: 'latitude' and 'longitude'"

NUMBER_PATTERN = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?\Z")

ProviderFactory = Callable[[], LocationProvider]


@dataclass
class ServiceResponse:
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None

    def json(self) -> Any:
        return json.loads(self.body) if self.body is not None else None


class ServiceError(Exception):
    """A request rejected before any lookup was started."""

    def __init__(self, status_code: int, detail: Optional[str] = None, headers: Optional[Dict[str, str]] = None):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail
        self.headers = headers or {}


def error_response(status_code: int, detail: Optional[str] = None, headers: Optional[Dict[str, str]] = None) -> ServiceResponse:
    http_status = HTTPStatus(status_code)
    payload = ErrorResponse(error=http_status.name, detail=detail or http_status.phrase)
    return ServiceResponse(
        status_code=status_code,
        headers=dict(headers or {}),
        body=payload.model_dump_json().encode("utf-8"),
    )


def method_not_allowed() -> ServiceError:
    # A 405 must advertise the accepted methods
    return ServiceError(status.HTTP_405_METHOD_NOT_ALLOWED, headers={"Allow": "GET"})


def json_response(payload: Dict[str, Any], status_code: int = status.HTTP_200_OK) -> ServiceResponse:
    try:
        body = json.dumps(payload).encode("utf-8")
    except (TypeError, ValueError) as e:
        logger.error(f"JSON serialization error: {e}")
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR)
    return ServiceResponse(status_code=status_code, headers={}, body=body)


# --- payloads ---

def single_location_payload(result: AcquisitionResult) -> Dict[str, Any]:
    if isinstance(result, LocationSuccess):
        # str() keeps the shortest round-tripping representation of the float
        return {
            "status": "success",
            "latitude": str(result.location.latitude),
            "longitude": str(result.location.longitude),
        }
    return {"status": "error", "message": result.message}


def address_payload(result: GeocodeResult) -> Dict[str, Any]:
    if isinstance(result, GeocodeSuccess):
        data: Dict[str, Any] = result.address.serializable_dict()
        data["status"] = "success"
        return data
    return {"status": "error", "message": result.message}


def distance_payload(result: DistanceResult) -> Dict[str, Any]:
    if isinstance(result, DistanceSuccess):
        return {
            "status": "success",
            "latitude": str(result.location.latitude),
            "longitude": str(result.location.longitude),
            "distanceKm": str(result.distance_km),
        }
    return {"status": "error", "message": result.message}


# --- query parsing ---

def _parse_number(value: Optional[str]) -> Optional[float]:
    # float() alone would also take "1_000" and surrounding whitespace
    if value is None or not NUMBER_PATTERN.match(value):
        return None
    number = float(value)
    return number if math.isfinite(number) else None


def parse_coordinates(query: str) -> Tuple[float, float]:
    """Extract latitude/longitude from a query string with exactly those two parameters."""
    items = parse_qsl(query, keep_blank_values=True)
    if len(items) != 2:
        raise ServiceError(status.HTTP_400_BAD_REQUEST, EXPECTED_COORDINATES_MESSAGE)

    params: Dict[str, str] = {}
    for name, value in items:
        params.setdefault(name, value)

    latitude = _parse_number(params.get("latitude"))
    if latitude is None:
        raise ServiceError(status.HTTP_400_BAD_REQUEST, "Parameter 'latitude' is missing or is not a number")
    longitude = _parse_number(params.get("longitude"))
    if longitude is None:
        raise ServiceError(status.HTTP_400_BAD_REQUEST, "Parameter 'longitude' is missing or is not a number")
    return latitude, longitude


class BaseLocationService:
    service_identifier = ""

    def __init__(self, provider_factory: ProviderFactory, acquisition_timeout: Optional[float] = None):
        self._provider_factory = provider_factory
        self._acquisition_timeout = acquisition_timeout

    async def perform_request(self, method: str, url: str) -> ServiceResponse:
        parts = urlsplit(url)
        # None only when the URL has no "?" at all; a bare "?" is an empty query
        query = parts.query if "?" in url.split("#", 1)[0] else None
        logger.info(f"{type(self).__name__} request: {method} {parts.path}")
        try:
            return await self.dispatch(method, parts.path.lower(), query)
        except ServiceError as e:
            logger.info(f"Rejected {method} {parts.path}: {e.status_code} {e.detail or ''}".rstrip())
            return error_response(e.status_code, e.detail, e.headers)

    async def dispatch(self, method: str, path: str, query: Optional[str]) -> ServiceResponse:
        raise NotImplementedError

    async def perform_request_single(self, method: str, query: Optional[str]) -> ServiceResponse:
        if query is not None:
            raise ServiceError(status.HTTP_400_BAD_REQUEST, "A single location request takes no query parameters")
        if method != "GET":
            raise method_not_allowed()

        result = await locate_once(self._provider_factory(), self._acquisition_timeout)
        return json_response(single_location_payload(result))


class LocationService(BaseLocationService):
    """Routes /location/single, /location/address and /location/distance."""

    service_identifier = "location"

    def __init__(
        self,
        provider_factory: ProviderFactory,
        geocoder: ReverseGeocoder,
        acquisition_timeout: Optional[float] = None,
    ):
        super().__init__(provider_factory, acquisition_timeout)
        self._geocoder = geocoder

    async def dispatch(self, method: str, path: str, query: Optional[str]) -> ServiceResponse:
        base = f"/{self.service_identifier}"
        if path == f"{base}/single":
            return await self.perform_request_single(method, query)
        if path == f"{base}/address":
            return await self.perform_request_address(method, query)
        if path == f"{base}/distance":
            return await self.perform_request_distance(method, query)
        raise ServiceError(status.HTTP_400_BAD_REQUEST, f"Unknown location path '{path}'")

    async def perform_request_address(self, method: str, query: Optional[str]) -> ServiceResponse:
        if method != "GET":
            raise method_not_allowed()
        latitude, longitude = parse_coordinates(query or "")

        result = await lookup_address(latitude, longitude, self._geocoder)
        return json_response(address_payload(result))

    async def perform_request_distance(self, method: str, query: Optional[str]) -> ServiceResponse:
        if method != "GET":
            raise method_not_allowed()
        latitude, longitude = parse_coordinates(query or "")

        destination = LocationFix(latitude=latitude, longitude=longitude)
        result = await distance_to(destination, self._provider_factory(), self._acquisition_timeout)
        return json_response(distance_payload(result))


class SingleLocationService(BaseLocationService):
    """Serves /singlelocation: a single fix, no parameters."""

    service_identifier = "singlelocation"

    async def dispatch(self, method: str, path: str, query: Optional[str]) -> ServiceResponse:
        if path != f"/{self.service_identifier}":
            raise ServiceError(status.HTTP_400_BAD_REQUEST, f"Unknown path '{path}'")
        return await self.perform_request_single(method, query)
