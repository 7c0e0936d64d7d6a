# app/services/location_provider.py
"""Platform location provider contract and the providers available to the service.

A provider handle is owned by exactly one acquirer. The acquirer registers
itself as the handle's ``observer`` and receives authorization changes,
location batches and errors through it until it detaches.
"""

import asyncio
import logging
from typing import Callable, List, Optional, Protocol, Sequence

import httpx

from app.core.config import Settings, settings
from app.models.location import AuthorizationState, LocationFix

logger = logging.getLogger(__name__)


class LocationObserver(Protocol):
    def on_authorization_changed(self, status: AuthorizationState) -> None: ...

    def on_locations_updated(self, locations: Sequence[LocationFix]) -> None: ...

    def on_error(self, message: str) -> None: ...


class LocationProvider(Protocol):
    observer: Optional[LocationObserver]

    def current_authorization_status(self) -> AuthorizationState: ...

    def request_permission(self) -> None:
        """Fire-and-forget; the answer arrives through on_authorization_changed."""
        ...

    def start_location_updates(self) -> None: ...

    def stop_location_updates(self) -> None: ...


class BaseLocationProvider:
    """Holds the observer slot and drops events once nobody is listening."""

    def __init__(self):
        # Strong reference: keeps a pending acquirer alive until it detaches.
        self.observer: Optional[LocationObserver] = None

    def _notify_authorization_changed(self, status: AuthorizationState) -> None:
        if self.observer is not None:
            self.observer.on_authorization_changed(status)

    def _notify_locations_updated(self, locations: List[LocationFix]) -> None:
        if self.observer is not None:
            self.observer.on_locations_updated(locations)

    def _notify_error(self, message: str) -> None:
        if self.observer is not None:
            self.observer.on_error(message)


class SimulatedLocationProvider(BaseLocationProvider):
    """Device stand-in driven by configuration.

    Events are delivered later on the event loop, never from inside the call
    that triggered them, the same way a platform delegate is called back.
    """

    def __init__(
        self,
        authorization_status: AuthorizationState,
        permission_response: AuthorizationState,
        fix: Optional[LocationFix],
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        super().__init__()
        self._status = authorization_status
        self._permission_response = permission_response
        self._fix = fix
        self._loop = loop
        self._streaming = False

    def current_authorization_status(self) -> AuthorizationState:
        return self._status

    def request_permission(self) -> None:
        self._schedule(self._answer_permission)

    def start_location_updates(self) -> None:
        if self._streaming:
            return
        self._streaming = True
        if self._fix is None:
            logger.info("Simulated provider has no fix configured; stream will stay silent.")
            return
        self._schedule(self._deliver_fix)

    def stop_location_updates(self) -> None:
        self._streaming = False

    def _answer_permission(self) -> None:
        self._status = self._permission_response
        self._notify_authorization_changed(self._status)

    def _deliver_fix(self) -> None:
        if self._streaming:
            self._notify_locations_updated([self._fix])

    def _schedule(self, callback: Callable[[], None]) -> None:
        loop = self._loop or asyncio.get_running_loop()
        loop.call_soon(callback)


class IPGeolocationProvider(BaseLocationProvider):
    """Resolves the host's approximate position from an IP geolocation service.

    A server never prompts for permission, so the provider always reports
    AUTHORIZED_ALWAYS. Each stream performs a single HTTP lookup; transport
    and payload problems are reported through the observer's on_error.
    """

    def __init__(self, url: str, timeout: float, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__()
        self._url = url
        self._timeout = timeout
        self._transport = transport
        self._task: Optional[asyncio.Task] = None

    def current_authorization_status(self) -> AuthorizationState:
        return AuthorizationState.AUTHORIZED_ALWAYS

    def request_permission(self) -> None:
        loop = asyncio.get_running_loop()
        loop.call_soon(self._notify_authorization_changed, AuthorizationState.AUTHORIZED_ALWAYS)

    def start_location_updates(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.get_running_loop().create_task(self._resolve())

    def stop_location_updates(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    async def _resolve(self) -> None:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(self._url)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException:
            logger.warning(f"IP geolocation lookup against {self._url} timed out.")
            self._notify_error("IP geolocation lookup timed out.")
            return
        except httpx.HTTPError as e:
            logger.error(f"IP geolocation request failed: {e}")
            self._notify_error(f"IP geolocation request failed: {e}")
            return
        except ValueError as e:
            logger.error(f"IP geolocation returned invalid JSON: {e}")
            self._notify_error("IP geolocation returned an unreadable response.")
            return

        fix = self._parse_fix(data)
        if fix is None:
            logger.warning(f"IP geolocation returned no coordinates: {data}")
            message = data.get("message") if isinstance(data, dict) else None
            self._notify_error(message or "IP geolocation returned no coordinates.")
            return
        self._notify_locations_updated([fix])

    @staticmethod
    def _parse_fix(data) -> Optional[LocationFix]:
        if not isinstance(data, dict) or data.get("status") == "fail":
            return None
        # ip-api.com uses lat/lon, ipapi.co and most others latitude/longitude
        lat = data.get("lat", data.get("latitude"))
        lon = data.get("lon", data.get("longitude"))
        try:
            return LocationFix(latitude=float(lat), longitude=float(lon))
        except (TypeError, ValueError):
            return None


def build_location_provider(config: Settings = settings) -> LocationProvider:
    """Create a new, independent provider handle for one acquisition."""
    backend = config.LOCATION_PROVIDER.strip().lower()
    if backend == "ip":
        return IPGeolocationProvider(config.IP_GEOLOCATION_URL, config.IP_GEOLOCATION_TIMEOUT)
    if backend == "simulated":
        fix = None
        if config.SIMULATED_LATITUDE is not None and config.SIMULATED_LONGITUDE is not None:
            fix = LocationFix(latitude=config.SIMULATED_LATITUDE, longitude=config.SIMULATED_LONGITUDE)
        return SimulatedLocationProvider(
            authorization_status=AuthorizationState.parse(config.SIMULATED_AUTHORIZATION_STATUS),
            permission_response=AuthorizationState.parse(config.SIMULATED_PERMISSION_RESPONSE),
            fix=fix,
        )
    raise ValueError(f"Unknown LOCATION_PROVIDER '{config.LOCATION_PROVIDER}'; expected 'simulated' or 'ip'.")
