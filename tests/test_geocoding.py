"""
Tests for reverse geocoding: the first-candidate lookup and the Mapbox client.
"""

import asyncio

import httpx
import pytest

from app.models.dto import AddressInfo, GeocodeFailure, GeocodeSuccess
from app.services.geocoding import (
    NO_DATA_MESSAGE,
    MapboxReverseGeocoder,
    address_from_feature,
    get_address_for_coordinates,
    lookup_address,
)
from conftest import FakeGeocoder

MAPBOX_FEATURE = {
    "id": "address.8598325958404510",
    "type": "Feature",
    "place_type": ["address"],
    "text": "Pennsylvania Avenue Northwest",
    "address": "1600",
    "place_name": "1600 Pennsylvania Avenue Northwest, Washington, District of Columbia 20500, United States",
    "center": [-77.0366, 38.8977],
    "context": [
        {"id": "neighborhood.2103290", "text": "Downtown"},
        {"id": "postcode.13090442", "text": "20500"},
        {"id": "place.15321314830587510", "text": "Washington"},
        {"id": "region.14064402149979320", "short_code": "US-DC", "text": "District of Columbia"},
        {"id": "country.9053006287256050", "short_code": "us", "text": "United States"},
    ],
}


class TestGetAddressForCoordinates:

    def test_takes_first_candidate(self, white_house_address):
        geocoder = FakeGeocoder(candidates=[white_house_address, AddressInfo(city="Elsewhere")])
        results = []

        get_address_for_coordinates(38.8977, -77.0366, results.append, geocoder)

        assert results == [GeocodeSuccess(address=white_house_address)]
        assert geocoder.requests == [(38.8977, -77.0366)]

    def test_no_candidates(self):
        results = []
        get_address_for_coordinates(0.0, 0.0, results.append, FakeGeocoder())

        assert results == [GeocodeFailure(message=NO_DATA_MESSAGE)]

    def test_geocoder_error(self):
        results = []
        get_address_for_coordinates(0.0, 0.0, results.append, FakeGeocoder(error="network down"))

        assert results == [GeocodeFailure(message="Reverse geocoder failed with error: network down")]


class TestAddressInfo:

    def test_core_fields_default_to_empty_string(self):
        data = AddressInfo(city="Washington").serializable_dict()

        assert data == {
            "countryCode": "",
            "country": "",
            "postalCode": "",
            "state": "",
            "city": "Washington",
            "street": "",
            "streetNumber": "",
        }

    def test_extra_fields_only_when_present(self):
        data = AddressInfo(ocean="Atlantic Ocean").serializable_dict()

        assert data["ocean"] == "Atlantic Ocean"
        assert "inlandWater" not in data
        assert "name" not in data


class TestMapboxFeatureMapping:

    def test_maps_context_hierarchy(self):
        address = address_from_feature(MAPBOX_FEATURE)

        assert address.countryCode == "US"
        assert address.country == "United States"
        assert address.postalCode == "20500"
        assert address.state == "District of Columbia"
        assert address.city == "Washington"
        assert address.subLocality == "Downtown"
        assert address.street == "Pennsylvania Avenue Northwest"
        assert address.streetNumber == "1600"
        assert address.name.startswith("1600 Pennsylvania")

    def test_place_feature_has_no_street(self):
        feature = {
            "id": "place.123",
            "text": "Paris",
            "place_name": "Paris, France",
            "context": [{"id": "country.1", "short_code": "fr", "text": "France"}],
        }
        address = address_from_feature(feature)

        assert address.city == "Paris"
        assert address.countryCode == "FR"
        assert address.street is None
        assert address.streetNumber is None


def _mapbox(handler, **kwargs) -> MapboxReverseGeocoder:
    kwargs.setdefault("token", "pk.test")
    kwargs.setdefault("initial_backoff", 0.0)
    return MapboxReverseGeocoder(transport=httpx.MockTransport(handler), **kwargs)


class TestMapboxReverseGeocoder:

    def test_successful_lookup(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"type": "FeatureCollection", "features": [MAPBOX_FEATURE]})

        result = asyncio.run(lookup_address(38.8977, -77.0366, _mapbox(handler)))

        assert isinstance(result, GeocodeSuccess)
        assert result.address.city == "Washington"
        assert seen[0].url.path.endswith("/-77.0366,38.8977.json")
        assert seen[0].url.params["access_token"] == "pk.test"

    def test_no_features(self):
        def handler(request):
            return httpx.Response(200, json={"features": []})

        result = asyncio.run(lookup_address(0.0, 0.0, _mapbox(handler)))

        assert result == GeocodeFailure(message=NO_DATA_MESSAGE)

    def test_missing_token_is_reported(self):
        def handler(request):
            raise AssertionError("no request expected without a token")

        result = asyncio.run(lookup_address(0.0, 0.0, _mapbox(handler, token=None)))

        assert result == GeocodeFailure(
            message="Reverse geocoder failed with error: Mapbox token is not configured."
        )

    def test_http_error_status(self):
        def handler(request):
            return httpx.Response(401, json={"message": "Not Authorized - Invalid Token"})

        result = asyncio.run(lookup_address(0.0, 0.0, _mapbox(handler)))

        assert isinstance(result, GeocodeFailure)
        assert "status 401" in result.message

    def test_timeout_is_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, json={"features": [MAPBOX_FEATURE]})

        result = asyncio.run(lookup_address(0.0, 0.0, _mapbox(handler, max_retries=1)))

        assert isinstance(result, GeocodeSuccess)
        assert len(calls) == 2

    def test_gives_up_after_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectTimeout("timed out", request=request)

        result = asyncio.run(lookup_address(0.0, 0.0, _mapbox(handler, max_retries=2)))

        assert result == GeocodeFailure(message="Reverse geocoder failed with error: Mapbox service timed out.")
        assert len(calls) == 3

    @pytest.mark.parametrize("body", [b"not json", b"[1, 2]"])
    def test_unreadable_payload(self, body):
        def handler(request):
            return httpx.Response(200, content=body)

        result = asyncio.run(lookup_address(0.0, 0.0, _mapbox(handler)))

        assert result == GeocodeFailure(
            message="Reverse geocoder failed with error: Mapbox returned an unreadable response."
        )

    @pytest.mark.parametrize("payload", [
        {"features": [{"id": "place.1", "place_name": 123}]},
        {"features": ["place.1"]},
        {"features": 5},
    ])
    def test_unmappable_features_still_complete(self, payload):
        def handler(request):
            return httpx.Response(200, json=payload)

        result = asyncio.run(asyncio.wait_for(lookup_address(0.0, 0.0, _mapbox(handler)), 1.0))

        assert result == GeocodeFailure(
            message="Reverse geocoder failed with error: Mapbox returned an unreadable response."
        )
