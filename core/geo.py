"""
core/geo.py -- IP address to human-readable location.

A GeoLookup is any callable taking an IP string and returning a location
string ("City, Region, Country") or None. The account-security core never
treats a missing location as an error: resolve_location() swallows every
lookup failure and returns None.

HttpGeoLookup talks to an ip-api style JSON endpoint. It is only wired in when
GEO_LOOKUP_URL is configured; otherwise the core runs with no_geo_lookup.
"""

from __future__ import annotations

import ipaddress
import logging
from typing import Any, Callable, Optional

import requests

logger = logging.getLogger("accountguard.geo")

GeoLookup = Callable[[str], Optional[str]]


def no_geo_lookup(ip_address: str) -> str | None:
    """GeoLookup that never resolves anything."""
    return None


def is_public_ip(ip_address: str) -> bool:
    """Return True for globally routable addresses.

    Private, loopback, link-local and unparseable addresses are never sent to
    a remote lookup service.
    """
    try:
        ip = ipaddress.ip_address(ip_address)
    except ValueError:
        return False
    return not (ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_reserved or ip.is_multicast)


def format_location(payload: dict[str, Any]) -> str | None:
    """Build "City, Region, Country" from a geo JSON payload.

    Accepts both ip-api field names (regionName) and the plain ones (region).
    Empty parts are dropped; a payload with no parts at all yields None.
    """
    parts = [
        payload.get("city"),
        payload.get("regionName") or payload.get("region"),
        payload.get("country"),
    ]
    cleaned = [str(p).strip() for p in parts if p and str(p).strip()]
    return ", ".join(cleaned) if cleaned else None


class HttpGeoLookup:
    """GeoLookup backed by an HTTP JSON endpoint.

    Usage:
        lookup = HttpGeoLookup("http://ip-api.com/json/{ip}", timeout=2.0)
        lookup("8.8.8.8")   # "Ashburn, Virginia, United States" or None

    Every call carries a timeout; a slow provider costs at most `timeout`
    seconds and then degrades to None.
    """

    def __init__(self, url_template: str, timeout: float = 2.0, session: requests.Session | None = None) -> None:
        self.url_template = url_template
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.max_redirects = 3

    def __call__(self, ip_address: str) -> str | None:
        if not is_public_ip(ip_address):
            return None
        try:
            resp = self._session.get(self.url_template.format(ip=ip_address), timeout=self.timeout)
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("Geo lookup failed for %s: %s", ip_address, e)
            return None
        if not isinstance(payload, dict) or payload.get("status") == "fail":
            return None
        return format_location(payload)


def resolve_location(geo_lookup: GeoLookup, ip_address: str | None) -> str | None:
    """Best-effort location for ip_address. Never raises."""
    if not ip_address:
        return None
    try:
        return geo_lookup(ip_address)
    except Exception:
        logger.warning("Geo lookup raised for %s; continuing without location", ip_address, exc_info=True)
        return None
