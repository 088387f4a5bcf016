"""Server-side IP geolocation.

Providers are tried in order; each one maps its own response fields onto
city/state. Add a provider by appending to PROVIDERS.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"


class IPLocationUnavailable(Exception):
    """Every provider failed."""


@dataclass(frozen=True)
class IPLocationProvider:
    name: str
    url: str
    city_field: str
    region_field: str
    ip_fields: tuple
    status_field: Optional[str] = None  # providers that answer 200 with a failure flag

    def parse(self, data: dict) -> dict:
        if self.status_field and data.get(self.status_field) != "success":
            raise ValueError(f"{self.name} reported {data.get(self.status_field)!r}")
        ip = next((data[f] for f in self.ip_fields if data.get(f)), None)
        return {
            "city": data.get(self.city_field) or UNKNOWN,
            "state": data.get(self.region_field) or UNKNOWN,
            "ip": ip,
        }


PROVIDERS = [
    IPLocationProvider("ipapi.co", "https://ipapi.co/json/", "city", "region", ("ip_address", "ip")),
    IPLocationProvider("ip-api.com", "http://ip-api.com/json/", "city", "regionName", ("query",), "status"),
]


async def lookup(
    client: httpx.AsyncClient,
    providers: list[IPLocationProvider] = PROVIDERS,
    timeout: float = 5.0,
) -> dict:
    """Return {city, state, ip, provider} from the first provider that answers."""
    for provider in providers:
        try:
            logger.info(f"Trying IP location provider: {provider.name}")
            resp = await client.get(provider.url, timeout=timeout)
            resp.raise_for_status()
            result = provider.parse(resp.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"IP location provider {provider.name} failed: {e}")
            continue
        logger.info(f"Got location from {provider.name}: {result['city']}, {result['state']}")
        return {**result, "provider": provider.name}

    logger.warning("All IP location providers failed")
    raise IPLocationUnavailable("All IP location providers failed")
