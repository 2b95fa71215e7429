import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from voicenotes.capabilities import Capability, CapabilityStatus
from voicenotes.location import LocationSnapshotService, NominatimGeocoder, place_from_payload
from voicenotes.models import LocationFix, LocationSnapshot, Place

from .helpers import FakeGate, FakeGeocoder, FakeProvider

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _service(gate=None, provider=None, geocoder=None, **options):
    options.setdefault("grace_period", 0.05)
    options.setdefault("timeout", 0.2)
    return LocationSnapshotService(
        gate or FakeGate(),
        provider or FakeProvider(),
        geocoder if geocoder is not None else FakeGeocoder(),
        now=lambda: NOW,
        **options,
    )


def test_granted_location_is_geocoded():
    provider = FakeProvider(fix=LocationFix(52.5163, 13.3777, NOW))
    snapshot = asyncio.run(_service(provider=provider).capture_location())

    assert snapshot == LocationSnapshot(
        latitude=52.5163,
        longitude=13.3777,
        place_name="Brandenburg Gate",
        address="Pariser Platz, Berlin, Berlin",
    )
    assert provider.requests == 1


def test_denied_location_returns_none_without_lookup():
    gate = FakeGate({Capability.LOCATION: CapabilityStatus.DENIED})
    provider = FakeProvider()

    assert asyncio.run(_service(gate, provider).capture_location()) is None
    assert provider.requests == 0


def test_undetermined_permission_granted_within_grace_period():
    gate = FakeGate({Capability.LOCATION: CapabilityStatus.UNDETERMINED})
    snapshot = asyncio.run(_service(gate).capture_location())

    assert snapshot is not None
    assert gate.requests == [Capability.LOCATION]


def test_slow_permission_answer_yields_no_location():
    gate = FakeGate({Capability.LOCATION: CapabilityStatus.UNDETERMINED}, delay=0.3)
    provider = FakeProvider()

    async def scenario():
        snapshot = await _service(gate, provider).capture_location()
        # The answer still lands and applies to the next attempt.
        await asyncio.sleep(0.35)
        return snapshot

    assert asyncio.run(scenario()) is None
    assert provider.requests == 0
    assert gate.status(Capability.LOCATION) is CapabilityStatus.GRANTED


def test_fix_that_never_arrives_times_out():
    provider = FakeProvider(hang=True)
    assert asyncio.run(_service(provider=provider, timeout=0.05).capture_location()) is None
    assert provider.requests == 1


def test_geocoding_failure_keeps_coordinates():
    geocoder = FakeGeocoder(error=httpx.ConnectError("offline"))
    provider = FakeProvider(fix=LocationFix(48.8584, 2.2945, NOW))
    snapshot = asyncio.run(_service(provider=provider, geocoder=geocoder).capture_location())

    assert snapshot == LocationSnapshot(48.8584, 2.2945, None, None)


def test_recent_cached_fix_is_reused():
    cached = LocationFix(40.0, -3.7, NOW - timedelta(seconds=30))
    provider = FakeProvider(cached=cached)
    snapshot = asyncio.run(_service(provider=provider).capture_location())

    assert (snapshot.latitude, snapshot.longitude) == (40.0, -3.7)
    assert provider.requests == 0


def test_stale_cached_fix_triggers_new_request():
    cached = LocationFix(40.0, -3.7, NOW - timedelta(seconds=61))
    provider = FakeProvider(fix=LocationFix(41.0, 2.17, NOW), cached=cached)
    snapshot = asyncio.run(_service(provider=provider).capture_location())

    assert (snapshot.latitude, snapshot.longitude) == (41.0, 2.17)
    assert provider.requests == 1


def test_provider_errors_are_swallowed():
    class BrokenProvider(FakeProvider):
        async def request_fix(self):
            raise OSError("gps offline")

    assert asyncio.run(_service(provider=BrokenProvider()).capture_location()) is None


def test_place_from_payload_prefers_name():
    payload = {
        "name": "Brandenburg Gate",
        "address": {"road": "Pariser Platz", "city": "Berlin", "state": "Berlin"},
    }
    assert place_from_payload(payload) == Place("Brandenburg Gate", "Pariser Platz, Berlin, Berlin")

    unnamed = {"name": "", "address": {"village": "Hallstatt", "state": "Upper Austria"}}
    assert place_from_payload(unnamed) == Place("Hallstatt", "Hallstatt, Upper Austria")
    assert place_from_payload({}) == Place(None, None)


def _geocoder(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return NominatimGeocoder("https://geo.example", client=client)


def test_nominatim_geocoder_parses_response():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        seen["agent"] = request.headers["user-agent"]
        return httpx.Response(
            200,
            json={"name": "", "address": {"road": "Rue de Rivoli", "city": "Paris", "state": "Ile-de-France"}},
        )

    place = asyncio.run(_geocoder(handler).reverse_geocode(48.86, 2.34))

    assert place == Place("Paris", "Rue de Rivoli, Paris, Ile-de-France")
    assert seen["path"] == "/reverse"
    assert seen["params"]["format"] == "jsonv2"
    assert seen["params"]["lat"] == "48.86"
    assert seen["agent"].startswith("voicenotes")


def test_nominatim_error_payload_means_no_place():
    def handler(request):
        return httpx.Response(200, json={"error": "Unable to geocode"})

    assert asyncio.run(_geocoder(handler).reverse_geocode(0.0, 0.0)) is None


def test_nominatim_http_error_raises():
    def handler(request):
        return httpx.Response(500)

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(_geocoder(handler).reverse_geocode(1.0, 1.0))
