"""
Beacon transport: POSTs tracker payloads to the ingest endpoint.
"""

import logging

import aiohttp

logger = logging.getLogger("analytics.tracker")

DEFAULT_TIMEOUT = 5.0


class BeaconTransport:
    """Fire one JSON POST per beacon. ``send`` reports success and never raises."""

    def __init__(self, endpoint: str, timeout_seconds: float = DEFAULT_TIMEOUT, headers: dict | None = None):
        self.endpoint = endpoint
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.headers = {"Content-Type": "application/json", **(headers or {})}

    async def send(self, payload: dict) -> bool:
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.endpoint, json=payload, headers=self.headers) as resp:
                    if resp.status >= 400:
                        body = await resp.text()
                        logger.warning(
                            "Beacon for %s rejected: HTTP %d %s",
                            payload.get("sessionId"), resp.status, body[:200],
                        )
                        return False
                    return True
        except Exception as e:
            logger.warning("Beacon for %s not delivered: %s", payload.get("sessionId"), e)
            return False
