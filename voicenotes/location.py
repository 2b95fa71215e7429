"""Best-effort location capture and reverse geocoding."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

import httpx

from .capabilities import Capability, CapabilityGate
from .models import LocationFix, LocationSnapshot, Place


class LocationProvider(Protocol):
    def cached_fix(self) -> Optional[LocationFix]:
        """Return the last known fix without triggering a new lookup."""

    async def request_fix(self) -> LocationFix:
        """Acquire one fresh fix. May wait indefinitely."""


class Geocoder(Protocol):
    async def reverse_geocode(self, latitude: float, longitude: float) -> Optional[Place]:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StaticLocationProvider:
    """Report a fixed, configured coordinate (for machines without GPS)."""

    def __init__(self, latitude: float, longitude: float, now: Callable[[], datetime] = _utcnow) -> None:
        self._latitude = latitude
        self._longitude = longitude
        self._now = now
        self._last: Optional[LocationFix] = None

    def cached_fix(self) -> Optional[LocationFix]:
        return self._last

    async def request_fix(self) -> LocationFix:
        self._last = LocationFix(self._latitude, self._longitude, self._now())
        return self._last


class NominatimGeocoder:
    """Reverse geocoding against an OpenStreetMap Nominatim ``/reverse`` endpoint."""

    def __init__(
        self,
        base_url: str = "https://nominatim.openstreetmap.org",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 5.0,
        user_agent: str = "voicenotes/0.1",
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._timeout = timeout
        self._headers = {"User-Agent": user_agent}

    async def reverse_geocode(self, latitude: float, longitude: float) -> Optional[Place]:
        params = {"format": "jsonv2", "lat": latitude, "lon": longitude}
        if self._client is not None:
            response = await self._client.get(
                f"{self._base_url}/reverse", params=params, headers=self._headers
            )
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(
                    f"{self._base_url}/reverse", params=params, headers=self._headers
                )
        response.raise_for_status()
        payload = response.json()
        if not payload or "error" in payload:
            return None
        return place_from_payload(payload)


def place_from_payload(payload: dict) -> Place:
    address = payload.get("address") or {}
    locality = (
        address.get("city")
        or address.get("town")
        or address.get("village")
        or address.get("hamlet")
    )
    components = [
        part
        for part in (address.get("road"), locality, address.get("state"))
        if part
    ]
    return Place(
        place_name=payload.get("name") or locality,
        address=", ".join(components) or None,
    )


class LocationSnapshotService:
    """Capture at most one location snapshot per recording attempt.

    ``capture_location`` never raises: denied permission, a fix that does not
    arrive within ``timeout`` and geocoding failures all degrade to less (or
    no) location data.
    """

    def __init__(
        self,
        capabilities: CapabilityGate,
        provider: LocationProvider,
        geocoder: Optional[Geocoder] = None,
        grace_period: float = 0.5,
        timeout: float = 5.0,
        max_age: float = 60.0,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._capabilities = capabilities
        self._provider = provider
        self._geocoder = geocoder
        self._grace_period = grace_period
        self._timeout = timeout
        self._max_age = max_age
        self._now = now

    async def capture_location(self) -> Optional[LocationSnapshot]:
        try:
            return await self._capture()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logging.warning("Location capture failed: %s", exc)
            return None

    async def _capture(self) -> Optional[LocationSnapshot]:
        if not self._capabilities.has_capability(Capability.LOCATION):
            if not await self._await_permission():
                logging.info("Location permission not granted; recording without location")
                return None

        fix = self._recent_fix()
        if fix is None:
            try:
                fix = await asyncio.wait_for(self._provider.request_fix(), self._timeout)
            except asyncio.TimeoutError:
                logging.info("No location fix within %.1fs", self._timeout)
                return None

        place = await self._reverse_geocode(fix)
        return LocationSnapshot(
            latitude=fix.latitude,
            longitude=fix.longitude,
            place_name=place.place_name if place else None,
            address=place.address if place else None,
        )

    async def _await_permission(self) -> bool:
        request = asyncio.ensure_future(self._capabilities.request_capability(Capability.LOCATION))
        request.add_done_callback(_discard_result)
        # Bounded wait: an answer arriving later applies to the next recording.
        await asyncio.wait({request}, timeout=self._grace_period)
        return self._capabilities.has_capability(Capability.LOCATION)

    def _recent_fix(self) -> Optional[LocationFix]:
        fix = self._provider.cached_fix()
        if fix is None:
            return None
        age = (self._now() - fix.timestamp).total_seconds()
        return fix if age < self._max_age else None

    async def _reverse_geocode(self, fix: LocationFix) -> Optional[Place]:
        if self._geocoder is None:
            return None
        try:
            return await self._geocoder.reverse_geocode(fix.latitude, fix.longitude)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logging.info("Reverse geocoding failed: %s", exc)
            return None


def _discard_result(future: asyncio.Future) -> None:
    if not future.cancelled() and future.exception() is not None:
        logging.debug("Location permission request failed: %s", future.exception())
