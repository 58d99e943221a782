"""Tests for GoogleMapsClient.

HTTP is mocked at ``_traced_get`` (request building and status handling) or
at the session (trace recording).  No test reaches the network.
"""

from unittest.mock import MagicMock

import pytest
import requests

from conftest import make_place
from geo_trace import TraceContext, clear_trace, set_trace
from maps_client import (
    PLACE_DETAILS_FIELDS,
    GeocodeResult,
    GoogleMapsClient,
    dedupe_by_place_id,
)


def _make_client():
    client = GoogleMapsClient.__new__(GoogleMapsClient)
    client.api_key = "fake-key"
    client.base_url = "https://maps.googleapis.com/maps/api"
    return client


def _response(payload, status_code=200):
    resp = MagicMock()
    resp.status_code = status_code
    resp.ok = status_code < 400
    resp.json.return_value = payload
    if status_code >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
    return resp


class TestDedupe:
    def test_keeps_first_occurrence(self):
        places = [
            make_place(["bus_station"], name="a", place_id="1"),
            make_place(["train_station"], name="b", place_id="2"),
            make_place(["subway_station"], name="c", place_id="1"),
        ]
        assert [p["name"] for p in dedupe_by_place_id(places)] == ["a", "b"]

    def test_keeps_places_without_id(self):
        places = [make_place(["bus_station"], name="x"), make_place(["bus_station"], name="y")]
        assert len(dedupe_by_place_id(places)) == 2


class TestGeocode:
    def test_success(self):
        client = _make_client()
        client._traced_get = MagicMock(return_value={
            "status": "OK",
            "results": [{
                "formatted_address": "350 5th Ave, New York, NY 10118, USA",
                "geometry": {"location": {"lat": 40.7484, "lng": -73.9857}},
            }],
        })
        result = client.geocode("350 5th ave")
        assert result == GeocodeResult(40.7484, -73.9857, "350 5th Ave, New York, NY 10118, USA")
        name, url, params = client._traced_get.call_args[0]
        assert name == "geocode"
        assert url.endswith("/geocode/json")
        assert params["address"] == "350 5th ave"

    def test_zero_results(self):
        client = _make_client()
        client._traced_get = MagicMock(return_value={"status": "ZERO_RESULTS", "results": []})
        with pytest.raises(ValueError, match="Geocoding failed: ZERO_RESULTS"):
            client.geocode("nowhere at all")

    def test_denied(self):
        client = _make_client()
        client._traced_get = MagicMock(return_value={"status": "REQUEST_DENIED"})
        with pytest.raises(ValueError, match="Geocoding failed: REQUEST_DENIED"):
            client.geocode("anywhere")

    def test_missing_formatted_address_uses_input(self):
        client = _make_client()
        client._traced_get = MagicMock(return_value={
            "status": "OK",
            "results": [{"geometry": {"location": {"lat": 1.0, "lng": 2.0}}}],
        })
        assert client.geocode("1 Main").formatted_address == "1 Main"


class TestPlacesNearby:
    def test_params(self):
        client = _make_client()
        client._traced_get = MagicMock(return_value={"status": "OK", "results": [{"name": "a"}]})
        results = client.places_nearby(40.0, -74.0)
        assert results == [{"name": "a"}]
        params = client._traced_get.call_args[0][2]
        assert params["location"] == "40.0,-74.0"
        assert params["radius"] == 2000
        assert params["type"] == "establishment"

    def test_zero_results_is_empty(self):
        client = _make_client()
        client._traced_get = MagicMock(return_value={"status": "ZERO_RESULTS"})
        assert client.places_nearby(40.0, -74.0, "bar") == []

    def test_quota_exceeded_raises(self):
        client = _make_client()
        client._traced_get = MagicMock(return_value={
            "status": "OVER_QUERY_LIMIT",
            "error_message": "You have exceeded your daily request quota",
        })
        with pytest.raises(ValueError, match="Places API failed: OVER_QUERY_LIMIT"):
            client.places_nearby(40.0, -74.0)


class TestTransitStations:
    def test_merges_and_dedupes_in_type_order(self):
        client = _make_client()
        by_type = {
            "bus_station": [make_place(["bus_station"], name="bus", place_id="b1")],
            "train_station": [
                make_place(["train_station", "transit_station"], name="hub", place_id="h1"),
            ],
            "subway_station": [
                make_place(["subway_station", "transit_station"], name="hub", place_id="h1"),
                make_place(["subway_station"], name="sub", place_id="s1"),
            ],
        }
        client.places_nearby = MagicMock(side_effect=lambda lat, lng, t, r: by_type[t])
        results = client.transit_stations(40.0, -74.0)
        assert [p["name"] for p in results] == ["bus", "hub", "sub"]
        assert client.places_nearby.call_count == 3

    def test_error_propagates(self):
        client = _make_client()
        client.places_nearby = MagicMock(side_effect=ValueError("Places API failed: REQUEST_DENIED"))
        with pytest.raises(ValueError, match="REQUEST_DENIED"):
            client.transit_stations(40.0, -74.0)


class TestPlaceDetails:
    def test_default_fields(self):
        client = _make_client()
        client._traced_get = MagicMock(return_value={"status": "OK", "result": {"name": "Diner"}})
        assert client.place_details("abc") == {"name": "Diner"}
        params = client._traced_get.call_args[0][2]
        assert params["place_id"] == "abc"
        assert params["fields"] == ",".join(PLACE_DETAILS_FIELDS)

    def test_not_found(self):
        client = _make_client()
        client._traced_get = MagicMock(return_value={"status": "NOT_FOUND"})
        with pytest.raises(ValueError, match="Place Details API failed: NOT_FOUND"):
            client.place_details("gone")


class TestAutocomplete:
    @pytest.mark.parametrize("text", ["", "a", "ab"])
    def test_short_input_makes_no_request(self, text):
        client = _make_client()
        client._traced_get = MagicMock()
        assert client.autocomplete(text) == []
        client._traced_get.assert_not_called()

    def test_predictions(self):
        client = _make_client()
        client._traced_get = MagicMock(return_value={
            "status": "OK",
            "predictions": [{"description": "350 5th Ave"}],
        })
        assert client.autocomplete("350 5th") == [{"description": "350 5th Ave"}]


class TestTracedGet:
    def setup_method(self):
        self.ctx = TraceContext(trace_id="t-1")
        set_trace(self.ctx)

    def teardown_method(self):
        clear_trace()

    def test_records_call(self):
        client = GoogleMapsClient("fake-key")
        client.session = MagicMock()
        client.session.get.return_value = _response({"status": "OK", "results": []})
        with self.ctx.stage("geocode"):
            client._traced_get("geocode", "https://example.test", {})
        assert len(self.ctx.api_calls) == 1
        call = self.ctx.api_calls[0]
        assert call.endpoint == "geocode"
        assert call.status_code == 200
        assert call.provider_status == "OK"
        assert call.stage == "geocode"

    def test_http_error_recorded_then_raised(self):
        client = GoogleMapsClient("fake-key")
        client.session = MagicMock()
        client.session.get.return_value = _response({}, status_code=500)
        with pytest.raises(requests.HTTPError):
            client._traced_get("places_nearby", "https://example.test", {})
        assert self.ctx.api_calls[0].status_code == 500

    def test_passes_timeout(self):
        client = GoogleMapsClient("fake-key")
        client.session = MagicMock()
        client.session.get.return_value = _response({"status": "OK"})
        client._traced_get("geocode", "https://example.test", {"a": 1})
        _, kwargs = client.session.get.call_args
        assert kwargs["timeout"] == GoogleMapsClient.DEFAULT_TIMEOUT
        assert kwargs["params"] == {"a": 1}
