# app/services/single_location.py
"""One-shot location acquisition.

``SingleLocationAcquirer`` turns the permission-gated, event-driven provider
stream into exactly one ``AcquisitionResult``:

    idle --acquire--> awaiting_authorization --authorized--> streaming --fix--> completed
                 \\--> streaming (already authorized)
                 \\--> completed (already denied/restricted)

Any refusal, provider error or cancellation also moves to ``completed``.
Whatever arrives after that is dropped.

An acquirer has to stay referenced until its result is delivered. Use
``fetch_single_location`` (callback style) or ``locate_once`` (asyncio) rather
than driving an acquirer by hand; both keep it owned for the duration.
"""

import asyncio
import logging
import threading
from enum import Enum
from typing import Callable, Optional, Sequence, Tuple

from app.models.location import (
    AcquisitionResult,
    AuthorizationState,
    DistanceFailure,
    DistanceResult,
    DistanceSuccess,
    LocationFailure,
    LocationFix,
    LocationSuccess,
)
from app.services.location_provider import LocationProvider
from app.utils.haversine import distance_between

logger = logging.getLogger(__name__)

DENIED_MESSAGE = (
    "Location services are not enabled, allow location use in the settings "
    "of this app in order to use location services."
)
TIMEOUT_MESSAGE = "Timed out waiting for a location fix."
CANCELLED_MESSAGE = "Location request was cancelled."

ResultCallback = Callable[[AcquisitionResult], None]


class AcquisitionError(Exception):
    """Raised when an acquirer is misused, e.g. acquired twice."""


class AcquisitionState(str, Enum):
    IDLE = "idle"
    AWAITING_AUTHORIZATION = "awaiting_authorization"
    STREAMING = "streaming"
    COMPLETED = "completed"


class SingleLocationAcquirer:
    """Captures a single fix from a provider handle, then lets go of it."""

    def __init__(self, provider: LocationProvider):
        self._provider: Optional[LocationProvider] = provider
        self._completion: Optional[ResultCallback] = None
        self._state = AcquisitionState.IDLE
        # Provider events may arrive on any thread.
        self._lock = threading.Lock()

    @property
    def state(self) -> AcquisitionState:
        return self._state

    def acquire(self, on_result: ResultCallback) -> None:
        """Start the acquisition. ``on_result`` is called exactly once, later or immediately."""
        with self._lock:
            if self._state is not AcquisitionState.IDLE:
                raise AcquisitionError("SingleLocationAcquirer is one-shot; create a new instance per fix.")
            provider = self._provider
            self._completion = on_result
            provider.observer = self

            status = provider.current_authorization_status()
            taken = None
            if status.is_refused:
                taken = self._take_completion()
            elif status.is_authorized:
                self._state = AcquisitionState.STREAMING
            else:
                self._state = AcquisitionState.AWAITING_AUTHORIZATION

        logger.debug(f"Location acquisition started with authorization '{status.value}'")
        if taken is not None:
            self._deliver(taken, LocationFailure(message=DENIED_MESSAGE))
        elif status.is_authorized:
            self._start_stream(provider)
        elif status is AuthorizationState.NOT_DETERMINED:
            provider.request_permission()

    def cancel(self, message: str = CANCELLED_MESSAGE) -> bool:
        """Complete with a failure unless already completed. Returns True if this call completed it."""
        return self._finish(LocationFailure(message=message))

    # --- LocationObserver ---

    def on_authorization_changed(self, status: AuthorizationState) -> None:
        taken = None
        provider = None
        with self._lock:
            if self._state is AcquisitionState.COMPLETED:
                logger.debug(f"Ignoring authorization change to '{status.value}' after completion")
                return
            if status.is_refused:
                taken = self._take_completion()
            elif status.is_authorized and self._state is AcquisitionState.AWAITING_AUTHORIZATION:
                self._state = AcquisitionState.STREAMING
                provider = self._provider
            else:
                return

        if taken is not None:
            self._deliver(taken, LocationFailure(message=DENIED_MESSAGE))
        else:
            self._start_stream(provider)

    def on_locations_updated(self, locations: Sequence[LocationFix]) -> None:
        if not locations:
            return
        self._finish(LocationSuccess(location=locations[0]))

    def on_error(self, message: str) -> None:
        logger.warning(f"Location provider reported an error: {message}")
        self._finish(LocationFailure(message=f"Location provider failed with error: {message}"))

    # --- internals ---

    def _start_stream(self, provider: LocationProvider) -> None:
        provider.start_location_updates()
        # A terminal event may have raced the start from another thread.
        with self._lock:
            completed = self._state is AcquisitionState.COMPLETED
        if completed:
            provider.stop_location_updates()

    def _finish(self, result: AcquisitionResult) -> bool:
        with self._lock:
            taken = self._take_completion()
        if taken is None:
            logger.debug(f"Dropping {type(result).__name__}: acquisition already completed")
            return False
        self._deliver(taken, result)
        return True

    def _take_completion(self) -> Optional[Tuple[ResultCallback, LocationProvider]]:
        # Caller holds self._lock.
        if self._state is AcquisitionState.COMPLETED:
            return None
        self._state = AcquisitionState.COMPLETED
        completion, self._completion = self._completion, None
        provider, self._provider = self._provider, None
        return completion, provider

    def _deliver(self, taken: Tuple[ResultCallback, LocationProvider], result: AcquisitionResult) -> None:
        completion, provider = taken
        provider.stop_location_updates()
        try:
            # None when cancelled before acquire()
            if completion is not None:
                completion(result)
        finally:
            if provider.observer is self:
                provider.observer = None


def fetch_single_location(on_result: ResultCallback, provider: LocationProvider) -> SingleLocationAcquirer:
    """Acquire one fix with a fresh acquirer.

    The completion closure references the acquirer, so the acquirer owns
    itself through ``_completion`` until the result is delivered; the
    provider's observer slot keeps that pair reachable meanwhile. Both links
    are cut on completion. The returned acquirer is only needed for
    cancellation.
    """
    acquirer = SingleLocationAcquirer(provider)

    def complete(result: AcquisitionResult) -> None:
        logger.debug(f"Acquirer {id(acquirer):#x} delivered {type(result).__name__}")
        on_result(result)

    acquirer.acquire(complete)
    return acquirer


def get_distance_to(
    destination: LocationFix,
    on_result: Callable[[DistanceResult], None],
    provider: LocationProvider,
) -> SingleLocationAcquirer:
    """Acquire one fix and report its great-circle distance (km) to ``destination``."""
    def complete(result: AcquisitionResult) -> None:
        if isinstance(result, LocationSuccess):
            distance = distance_between(result.location, destination)
            on_result(DistanceSuccess(location=result.location, distance_km=distance))
        else:
            on_result(DistanceFailure(message=result.message))

    return fetch_single_location(complete, provider)


# --- asyncio bridges ---

def _resolver(loop: asyncio.AbstractEventLoop, future: asyncio.Future) -> Callable:
    def resolve(result) -> None:
        try:
            loop.call_soon_threadsafe(_set_once, future, result)
        except RuntimeError:
            logger.warning("Event loop closed before the location result could be delivered")
    return resolve


def _set_once(future: asyncio.Future, result) -> None:
    if not future.done():
        future.set_result(result)


async def _await_result(acquirer: SingleLocationAcquirer, future: asyncio.Future, timeout: Optional[float]):
    try:
        return await asyncio.wait_for(asyncio.shield(future), timeout)
    except asyncio.TimeoutError:
        logger.warning(f"No location result within {timeout}s; cancelling acquisition")
        acquirer.cancel(TIMEOUT_MESSAGE)
        return await future
    except asyncio.CancelledError:
        acquirer.cancel(CANCELLED_MESSAGE)
        raise


async def locate_once(provider: LocationProvider, timeout: Optional[float] = None) -> AcquisitionResult:
    """Await a single fix. ``timeout=None`` waits as long as the provider takes."""
    loop = asyncio.get_running_loop()
    future = loop.create_future()
    acquirer = fetch_single_location(_resolver(loop, future), provider)
    return await _await_result(acquirer, future, timeout)


async def distance_to(
    destination: LocationFix,
    provider: LocationProvider,
    timeout: Optional[float] = None,
) -> DistanceResult:
    """Await the distance in km from a single fix to ``destination``."""
    loop = asyncio.get_running_loop()
    future = loop.create_future()
    acquirer = get_distance_to(destination, _resolver(loop, future), provider)
    return await _await_result(acquirer, future, timeout)
