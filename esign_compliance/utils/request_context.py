"""Client context (IP, device, geography) captured for audit evidence."""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from fastapi import Request


# Cloudflare reports these when it cannot resolve a country
UNKNOWN_COUNTRY_CODES = frozenset({"XX", "T1"})

# Column widths of the audit and recipient tables
MAX_IP_LENGTH = 64
MAX_COUNTRY_LENGTH = 8
MAX_REGION_LENGTH = 64
MAX_CITY_LENGTH = 128


def clip(value: Optional[str], length: int) -> Optional[str]:
    """Strip and cut a client-supplied value to fit its column; blank becomes None."""
    if value is None:
        return None
    value = value.strip()
    return value[:length] or None


@dataclass(frozen=True)
class GeoLocation:
    """Coarse geography resolved from edge-provider headers."""

    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None

    @property
    def location_key(self) -> Optional[str]:
        """Key used to count distinct geographies; None when unknown."""
        return self.country

    @classmethod
    def from_headers(cls, headers: Any) -> "GeoLocation":
        """
        Resolve geography from request headers.

        Cloudflare's country header is canonical; the Vercel header is only
        consulted when Cloudflare is absent or unresolved.
        """
        country = None
        for header in ("cf-ipcountry", "x-vercel-ip-country"):
            value = (clip(headers.get(header), MAX_COUNTRY_LENGTH) or "").upper()
            if value and value not in UNKNOWN_COUNTRY_CODES:
                country = value
                break

        return cls(
            country=country,
            region=clip(headers.get("x-vercel-ip-country-region"), MAX_REGION_LENGTH),
            city=clip(headers.get("x-vercel-ip-city"), MAX_CITY_LENGTH),
        )


def get_client_ip(request: Request) -> str:
    """Client IP, honouring the first hop of X-Forwarded-For."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first_hop = clip(forwarded.split(",")[0], MAX_IP_LENGTH)
        if first_hop:
            return first_hop

    real_ip = clip(request.headers.get("X-Real-IP"), MAX_IP_LENGTH)
    if real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"


@dataclass(frozen=True)
class RequestContext:
    """Who/where an action came from, as recorded in the audit stream."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    geo: GeoLocation = field(default_factory=GeoLocation)

    @classmethod
    def from_request(cls, request: Request) -> "RequestContext":
        return cls(
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("user-agent"),
            geo=GeoLocation.from_headers(request.headers),
        )

    @classmethod
    def system(cls) -> "RequestContext":
        return cls()

    def prefer(
        self,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> "RequestContext":
        """Return a copy using the given values where present."""
        return replace(
            self,
            ip_address=clip(ip_address, MAX_IP_LENGTH) or self.ip_address,
            user_agent=user_agent or self.user_agent,
        )

    def audit_fields(self) -> Dict[str, Optional[str]]:
        return {
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "geo_country": self.geo.country,
            "geo_region": self.geo.region,
            "geo_city": self.geo.city,
        }


def get_request_context(request: Request) -> RequestContext:
    """FastAPI dependency wrapper around RequestContext.from_request."""
    return RequestContext.from_request(request)
