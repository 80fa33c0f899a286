"""
Geolocation Resolver: best-effort IP → country code.

Private, loopback and unparseable addresses short-circuit to "Unknown"
without any network call. Every lookup failure (HTTP error, timeout,
malformed body) also resolves to "Unknown"; ingestion is never blocked.
"""

import ipaddress
import logging

import aiohttp

from analytics_api.schemas.dimensions import UNKNOWN_COUNTRY, normalize_country

logger = logging.getLogger("analytics.geo")

USER_AGENT = "VisitorAnalytics/1.0"


def is_public_ip(ip: str | None) -> bool:
    """True only for globally routable addresses worth looking up."""
    if not ip:
        return False
    try:
        addr = ipaddress.ip_address(ip.strip())
    except ValueError:
        return False
    return not (
        addr.is_private
        or addr.is_loopback
        or addr.is_link_local
        or addr.is_reserved
        or addr.is_multicast
        or addr.is_unspecified
    )


class GeoResolver:
    """Resolve a client IP to an ISO country code, failing open to "Unknown"."""

    def __init__(self, lookup_url: str, timeout_seconds: float = 2.0):
        self.lookup_url = lookup_url
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def resolve(self, ip: str | None) -> str:
        if not is_public_ip(ip):
            return UNKNOWN_COUNTRY
        try:
            code = await self._fetch_country_code(ip.strip())
        except Exception as e:
            logger.warning("Geolocation lookup for %s failed: %s", ip, e)
            return UNKNOWN_COUNTRY
        return normalize_country(code)

    async def _fetch_country_code(self, ip: str) -> str | None:
        url = self.lookup_url.format(ip=ip)
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.get(url, headers={"User-Agent": USER_AGENT}) as resp:
                if resp.status != 200:
                    logger.debug("Geolocation HTTP %d for %s", resp.status, ip)
                    return None
                data = await resp.json(content_type=None)
        if not isinstance(data, dict):
            return None
        code = data.get("countryCode")
        return code if isinstance(code, str) else None
