"""
Location Resolver.

Best-effort geographic fix through an ordered fallback chain:

1. device position (high accuracy, no cached reading), reverse geocoded
2. IP locators in order: the backend's /location/ip, then public providers
3. an unresolved fix (0/0, Unknown) with manual entry switched on

Each stage is a small capability (PositionSource, Geocoder, IPLocator);
add a provider by appending to the locator list.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

import httpx

from client_errors import FieldCaptureError, NetworkError, UpstreamServiceError
from field_types import UNKNOWN, CityState, GeoFix, now_iso

logger = logging.getLogger(__name__)


# --- Device position ---

class PositionError(Exception):
    PERMISSION_DENIED = 1
    POSITION_UNAVAILABLE = 2
    TIMEOUT = 3

    def __init__(self, code: int, message: str = ""):
        super().__init__(message or f"position error {code}")
        self.code = code


@dataclass(frozen=True)
class Position:
    latitude: float
    longitude: float
    accuracy: float = 0.0


class PositionSource(Protocol):
    async def current_position(
        self, high_accuracy: bool, timeout: float, maximum_age: float
    ) -> Position:
        ...


class UnavailablePositionSource:
    """No positioning hardware on this device."""

    async def current_position(self, high_accuracy=True, timeout=10.0, maximum_age=0):
        raise PositionError(
            PositionError.POSITION_UNAVAILABLE, "Geolocation is not supported on this device"
        )


class StaticPositionSource:
    """Coordinates supplied up front, e.g. read off a handheld GPS."""

    def __init__(self, latitude: float, longitude: float, accuracy: float = 0.0):
        self.position = Position(latitude, longitude, accuracy)

    async def current_position(self, high_accuracy=True, timeout=10.0, maximum_age=0):
        return self.position


class LocationFailure(str, Enum):
    PERMISSION_DENIED = "permission-denied"
    POSITION_UNAVAILABLE = "position-unavailable"
    TIMEOUT = "timeout"


FAILURE_BY_CODE = {
    PositionError.PERMISSION_DENIED: LocationFailure.PERMISSION_DENIED,
    PositionError.POSITION_UNAVAILABLE: LocationFailure.POSITION_UNAVAILABLE,
    PositionError.TIMEOUT: LocationFailure.TIMEOUT,
}

REMEDIATION = {
    LocationFailure.PERMISSION_DENIED: (
        "Location permission denied. Grant this app location access, "
        "then refresh the location to try again."
    ),
    LocationFailure.POSITION_UNAVAILABLE: (
        "Location service unavailable. Check the network connection and that "
        "location services are enabled, then refresh the location."
    ),
    LocationFailure.TIMEOUT: "Location request timed out. Using IP-based fallback instead.",
}


# --- Reverse geocoding ---

class Geocoder(Protocol):
    async def resolve(self, latitude: float, longitude: float) -> CityState:
        ...


class NominatimGeocoder:
    """OpenStreetMap reverse lookup at city granularity."""

    def __init__(self, client: httpx.AsyncClient, url: str, user_agent: str = "FieldCapture/1.0"):
        self.client = client
        self.url = url
        self.user_agent = user_agent

    async def resolve(self, latitude: float, longitude: float) -> CityState:
        params = {
            "format": "json",
            "lat": latitude,
            "lon": longitude,
            "zoom": 10,
            "addressdetails": 1,
        }
        try:
            resp = await self.client.get(self.url, params=params, headers={"User-Agent": self.user_agent})
        except httpx.TransportError as e:
            raise NetworkError(f"Reverse geocoding unreachable: {e}") from e
        if resp.status_code != 200:
            raise UpstreamServiceError("Geocoding failed", status_code=resp.status_code)

        try:
            body = resp.json()
        except ValueError as e:
            raise UpstreamServiceError(f"Geocoding returned an unreadable body: {e}") from e
        if not isinstance(body, dict):
            raise UpstreamServiceError("Geocoding returned an unexpected body")
        address = body.get("address") or {}
        if not isinstance(address, dict):
            raise UpstreamServiceError("Geocoding returned an unexpected address")
        return CityState(
            city=address.get("city") or address.get("town") or address.get("village") or UNKNOWN,
            state=address.get("state") or UNKNOWN,
        )


# --- IP geolocation ---

class IPLocator(Protocol):
    name: str

    async def resolve_by_ip(self) -> CityState:
        ...


class BackendIPLocator:
    """The backend's /location/ip, which keeps the client IP away from third parties."""

    name = "backend"

    def __init__(self, api):
        self.api = api

    async def resolve_by_ip(self) -> CityState:
        data = await self.api.location_by_ip()
        if not data.get("success"):
            raise UpstreamServiceError("Backend location lookup failed")
        return CityState(city=data.get("city") or UNKNOWN, state=data.get("state") or UNKNOWN)


class DirectIPLocator:
    """One public IP geolocation service with its own field names."""

    def __init__(
        self,
        name: str,
        url: str,
        client: httpx.AsyncClient,
        region_field: str = "region",
        status_field: Optional[str] = None,
        timeout: float = 5.0,
    ):
        self.name = name
        self.url = url
        self.client = client
        self.region_field = region_field
        self.status_field = status_field
        self.timeout = timeout

    async def resolve_by_ip(self) -> CityState:
        try:
            resp = await self.client.get(self.url, timeout=self.timeout)
        except httpx.TransportError as e:
            raise NetworkError(f"{self.name} unreachable: {e}") from e
        if resp.status_code != 200:
            raise UpstreamServiceError(f"{self.name} returned {resp.status_code}", resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamServiceError(f"{self.name} returned an unreadable body: {e}") from e
        if not isinstance(data, dict):
            raise UpstreamServiceError(f"{self.name} returned an unexpected body")
        if self.status_field and data.get(self.status_field) != "success":
            raise UpstreamServiceError(f"{self.name} reported {data.get(self.status_field)!r}")
        return CityState(
            city=data.get("city") or UNKNOWN,
            state=data.get(self.region_field) or UNKNOWN,
        )


def default_ip_locators(api, client: httpx.AsyncClient, timeout: float = 5.0) -> list:
    return [
        BackendIPLocator(api),
        DirectIPLocator("ipapi.co", "https://ipapi.co/json/", client, timeout=timeout),
        DirectIPLocator(
            "ip-api.com", "http://ip-api.com/json/", client,
            region_field="regionName", status_field="status", timeout=timeout,
        ),
        DirectIPLocator("ipinfo.io", "https://ipinfo.io/json", client, timeout=timeout),
    ]


# --- Resolver ---

class LocationResolver:
    def __init__(
        self,
        position_source: PositionSource,
        geocoder: Geocoder,
        ip_locators: list,
        gps_timeout: float = 10.0,
    ):
        self.position_source = position_source
        self.geocoder = geocoder
        self.ip_locators = list(ip_locators)
        self.gps_timeout = gps_timeout

        self.fix: Optional[GeoFix] = None
        self.failure: Optional[LocationFailure] = None
        self.message: Optional[str] = None
        self.manual_entry = False

    @property
    def remediation(self) -> Optional[str]:
        return REMEDIATION.get(self.failure) if self.failure else None

    async def acquire(self) -> GeoFix:
        """Run the whole chain and return the best fix available."""
        self.failure = None
        try:
            position = await self._current_position()
        except PositionError as e:
            self.failure = FAILURE_BY_CODE.get(e.code, LocationFailure.POSITION_UNAVAILABLE)
            logger.warning(f"GPS capture failed ({self.failure.value}): {e}; trying IP fallback")
            return self._set(await self._from_ip())

        try:
            place = await self.geocoder.resolve(position.latitude, position.longitude)
        except FieldCaptureError as e:
            logger.warning(f"Reverse geocoding failed: {e}")
            place = CityState()

        self.manual_entry = False
        self.message = "Location captured successfully"
        return self._set(GeoFix(
            latitude=position.latitude,
            longitude=position.longitude,
            city=place.city,
            state=place.state,
            accuracy=position.accuracy,
            timestamp=now_iso(),
            source="gps",
        ))

    async def refresh(self) -> GeoFix:
        return await self.acquire()

    def set_manual(self, **fields) -> GeoFix:
        """Replace only the given fields; numbers that do not parse are ignored."""
        current = self.fix or GeoFix(timestamp=now_iso())
        updates = {"source": "manual", "approximate": False}
        for name in ("latitude", "longitude"):
            if fields.get(name) is None:
                continue
            try:
                updates[name] = float(fields[name])
            except (TypeError, ValueError):
                logger.info(f"Ignoring unparsable {name}: {fields[name]!r}")
        for name in ("city", "state"):
            if fields.get(name) is not None:
                updates[name] = str(fields[name]).strip() or UNKNOWN
        return self._set(current.model_copy(update=updates))

    async def _current_position(self) -> Position:
        try:
            return await asyncio.wait_for(
                self.position_source.current_position(
                    high_accuracy=True, timeout=self.gps_timeout, maximum_age=0
                ),
                timeout=self.gps_timeout,
            )
        except asyncio.TimeoutError:
            raise PositionError(PositionError.TIMEOUT, "Location request timed out")

    async def _from_ip(self) -> GeoFix:
        self.manual_entry = True
        for locator in self.ip_locators:
            try:
                logger.info(f"Trying IP locator: {locator.name}")
                place = await locator.resolve_by_ip()
            except FieldCaptureError as e:
                logger.warning(f"IP locator {locator.name} failed: {e}")
                continue
            logger.info(f"Got location from {locator.name}: {place.city}, {place.state}")
            self.message = "Using approximate location based on your IP address. GPS not available."
            return GeoFix(
                city=place.city,
                state=place.state,
                timestamp=now_iso(),
                source="ip",
                approximate=True,
            )

        logger.warning("All automated location methods failed; manual entry required")
        self.message = "Could not automatically detect location. Please enter your details manually."
        return GeoFix(timestamp=now_iso(), source="manual", approximate=True)

    def _set(self, fix: GeoFix) -> GeoFix:
        self.fix = fix
        return fix
