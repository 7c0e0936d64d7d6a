# app/services/geocoding.py
# Reverse geocoding through an external geocoder (Mapbox)

import asyncio
import httpx
import logging
import random
from typing import Any, Callable, Dict, List, Optional, Protocol, Set

from pydantic import ValidationError

from app.core.config import Settings, settings
from app.models.dto import AddressInfo, GeocodeFailure, GeocodeResult, GeocodeSuccess

logger = logging.getLogger(__name__)

MAPBOX_REVERSE_API_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places/{lon},{lat}.json"

NO_DATA_MESSAGE = "No data received from reverse geocoder."
UNREADABLE_MESSAGE = "Mapbox returned an unreadable response."

# completion(candidates, error_description)
GeocodeCompletion = Callable[[List[AddressInfo], Optional[str]], None]


class GeocoderError(Exception):
    """A reverse geocoding request that could not be answered."""


class ReverseGeocoder(Protocol):
    def reverse_geocode(self, latitude: float, longitude: float, completion: GeocodeCompletion) -> None: ...


def get_address_for_coordinates(
    latitude: float,
    longitude: float,
    on_result: Callable[[GeocodeResult], None],
    geocoder: ReverseGeocoder,
) -> None:
    """Reverse geocode a coordinate, keeping only the first candidate."""
    def complete(candidates: List[AddressInfo], error: Optional[str]) -> None:
        if error is not None:
            on_result(GeocodeFailure(message=f"Reverse geocoder failed with error: {error}"))
        elif not candidates:
            on_result(GeocodeFailure(message=NO_DATA_MESSAGE))
        else:
            on_result(GeocodeSuccess(address=candidates[0]))

    geocoder.reverse_geocode(latitude, longitude, complete)


async def lookup_address(latitude: float, longitude: float, geocoder: ReverseGeocoder) -> GeocodeResult:
    """Await the result of get_address_for_coordinates."""
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def resolve(result: GeocodeResult) -> None:
        loop.call_soon_threadsafe(_set_once, future, result)

    get_address_for_coordinates(latitude, longitude, resolve, geocoder)
    return await future


def _set_once(future: asyncio.Future, result: GeocodeResult) -> None:
    if not future.done():
        future.set_result(result)


class MapboxReverseGeocoder:
    """Reverse geocoder backed by the Mapbox Geocoding v5 API.

    ``reverse_geocode`` schedules the lookup on the running event loop and
    returns immediately; the completion runs once the request finishes.
    Timeouts are retried with exponential backoff, other failures are
    reported to the completion as an error description.
    """

    def __init__(
        self,
        token: Optional[str],
        timeout: float = 8,
        max_retries: int = 2,
        initial_backoff: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._token = token
        self._timeout = timeout
        self._max_retries = max_retries
        self._initial_backoff = initial_backoff
        self._transport = transport
        # Pending lookups; the loop only keeps weak references to tasks.
        self._tasks: Set[asyncio.Task] = set()

    def reverse_geocode(self, latitude: float, longitude: float, completion: GeocodeCompletion) -> None:
        task = asyncio.get_running_loop().create_task(self._lookup(latitude, longitude, completion))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _lookup(self, latitude: float, longitude: float, completion: GeocodeCompletion) -> None:
        try:
            features = await self.fetch_features(latitude, longitude)
        except GeocoderError as e:
            completion([], str(e))
            return
        try:
            candidates = [address_from_feature(feature) for feature in features]
        except (ValidationError, AttributeError, TypeError) as e:
            logger.error(f"Mapbox returned features that could not be mapped: {e}")
            completion([], UNREADABLE_MESSAGE)
            return
        completion(candidates, None)

    async def fetch_features(self, latitude: float, longitude: float) -> List[Dict[str, Any]]:
        if not self._token:
            raise GeocoderError("Mapbox token is not configured.")

        url = MAPBOX_REVERSE_API_URL.format(lon=longitude, lat=latitude)
        params = {"access_token": self._token}

        for attempt in range(self._max_retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                    response = await client.get(url, params=params)
                    response.raise_for_status()
                    data = response.json()
                return data.get("features") or []

            except httpx.TimeoutException:
                logger.warning(f"Mapbox reverse geocoding attempt {attempt + 1} timed out.")
                if attempt < self._max_retries:
                    wait_time = max(0.0, self._initial_backoff * (2 ** attempt) + random.uniform(-0.2, 0.2))
                    logger.info(f"Retrying in {wait_time:.2f}s...")
                    await asyncio.sleep(wait_time)
                else:
                    raise GeocoderError("Mapbox service timed out.")
            except httpx.HTTPStatusError as e:
                logger.error(f"Mapbox API returned status error: {e.response.status_code}")
                raise GeocoderError(f"Mapbox API returned status {e.response.status_code}.")
            except httpx.HTTPError as e:
                logger.error(f"Mapbox request failed: {e}")
                raise GeocoderError(f"Mapbox request failed: {e}")
            except (ValueError, AttributeError) as e:
                logger.error(f"Mapbox returned an unreadable payload: {e}")
                raise GeocoderError(UNREADABLE_MESSAGE)

        # Should be unreachable, but for completeness
        raise GeocoderError("Mapbox lookup did not produce a result.")


def address_from_feature(feature: Dict[str, Any]) -> AddressInfo:
    """Map a Mapbox feature and its context hierarchy onto AddressInfo."""
    parts: Dict[str, Dict[str, Any]] = {}
    for item in feature.get("context") or []:
        parts.setdefault(_kind(item), item)
    parts[_kind(feature)] = feature

    def text(kind: str) -> Optional[str]:
        return parts.get(kind, {}).get("text")

    country_code = parts.get("country", {}).get("short_code")
    address = parts.get("address", {})
    street_number = address.get("address")

    return AddressInfo(
        name=feature.get("place_name"),
        countryCode=country_code.upper() if country_code else None,
        country=text("country"),
        postalCode=text("postcode"),
        state=text("region"),
        subAdministrativeArea=text("district"),
        city=text("place"),
        subLocality=text("neighborhood") or text("locality"),
        street=address.get("text"),
        streetNumber=str(street_number) if street_number is not None else None,
    )


def _kind(item: Dict[str, Any]) -> str:
    # Mapbox ids look like "postcode.8553229788621080"
    return str(item.get("id", "")).split(".")[0]


def build_reverse_geocoder(config: Settings = settings) -> ReverseGeocoder:
    return MapboxReverseGeocoder(
        token=config.MAPBOX_TOKEN,
        timeout=config.MAPBOX_TIMEOUT,
        max_retries=config.MAPBOX_MAX_RETRIES,
        initial_backoff=config.MAPBOX_INITIAL_BACKOFF,
    )
