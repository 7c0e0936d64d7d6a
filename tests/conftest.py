"""
Pytest configuration and fake collaborators shared by all tests.
"""

from typing import List, Optional, Sequence

import pytest

from app.models.dto import AddressInfo
from app.models.location import AuthorizationState, LocationFix
from app.services.location_provider import BaseLocationProvider

WHITE_HOUSE = LocationFix(latitude=38.8977, longitude=-77.0366)
EMPIRE_STATE = LocationFix(latitude=40.7484, longitude=-73.9857)


class FakeLocationProvider(BaseLocationProvider):
    """Provider whose events are pushed by the test."""

    def __init__(self, status: AuthorizationState = AuthorizationState.NOT_DETERMINED):
        super().__init__()
        self.status = status
        self.permission_requests = 0
        self.start_calls = 0
        self.stop_calls = 0
        self.streaming = False

    def current_authorization_status(self) -> AuthorizationState:
        return self.status

    def request_permission(self) -> None:
        self.permission_requests += 1

    def start_location_updates(self) -> None:
        self.start_calls += 1
        self.streaming = True

    def stop_location_updates(self) -> None:
        self.stop_calls += 1
        self.streaming = False

    def emit_authorization(self, status: AuthorizationState) -> None:
        self.status = status
        self._notify_authorization_changed(status)

    def emit_locations(self, locations: Sequence[LocationFix]) -> None:
        self._notify_locations_updated(list(locations))

    def emit_error(self, message: str) -> None:
        self._notify_error(message)


class FakeGeocoder:
    """Reverse geocoder that answers synchronously with canned data."""

    def __init__(self, candidates: Optional[List[AddressInfo]] = None, error: Optional[str] = None):
        self.candidates = candidates or []
        self.error = error
        self.requests = []

    def reverse_geocode(self, latitude, longitude, completion) -> None:
        self.requests.append((latitude, longitude))
        completion(list(self.candidates), self.error)


@pytest.fixture
def white_house_address():
    return AddressInfo(
        countryCode="US",
        country="United States",
        postalCode="20500",
        state="District of Columbia",
        city="Washington",
        street="Pennsylvania Avenue Northwest",
        streetNumber="1600",
    )


@pytest.fixture
def provider():
    return FakeLocationProvider()
