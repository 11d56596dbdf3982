from __future__ import annotations

import logging
import math

from urllib.parse import quote

import requests

from kasi.integrations.common import IntegrationMisconfiguredError

logger = logging.getLogger(__name__)

GEOCODING_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places"

# Modimolle town centre, [lng, lat].
DEFAULT_CENTER = (28.4206, -24.6958)
# [minLng, minLat, maxLng, maxLat]
SERVICE_AREA_BBOX = (28.30, -24.80, 28.55, -24.60)

EARTH_RADIUS_KM = 6371.0


class MapboxClient:
    def __init__(self, access_token: str, *, timeout: int = 10):
        if not access_token:
            raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing MAPBOX_ACCESS_TOKEN")
        self.access_token = access_token
        self.timeout = timeout

    def _get(self, query: str, params: dict) -> dict:
        params = dict(params)
        params["access_token"] = self.access_token
        url = f"{GEOCODING_URL}/{quote(query, safe=',.-')}.json"
        r = requests.get(url, params=params, timeout=self.timeout)
        if r.status_code < 200 or r.status_code >= 300:
            logger.warning("mapbox_request_failed status=%s", r.status_code)
            raise RuntimeError(f"MAPBOX_REQUEST_FAILED:HTTP {r.status_code}")
        return r.json()

    def search(self, query: str, *, limit: int = 5, proximity: tuple[float, float] | None = None, bbox=None) -> list[dict]:
        params = {
            "country": "ZA",
            "types": "address,place",
            "limit": str(max(1, min(int(limit), 10))),
            "autocomplete": "true",
            "proximity": ",".join(str(v) for v in (proximity or DEFAULT_CENTER)),
        }
        if bbox:
            params["bbox"] = ",".join(str(v) for v in bbox)
        data = self._get(query, params)
        return [parse_feature(f) for f in data.get("features") or []]

    def forward(self, address: str) -> dict | None:
        results = self.search(address, limit=1)
        return results[0] if results else None

    def reverse(self, lat: float, lng: float) -> dict | None:
        data = self._get(f"{lng},{lat}", {"types": "address", "limit": "1"})
        features = data.get("features") or []
        return parse_feature(features[0]) if features else None


def parse_feature(feature: dict) -> dict:
    lng, lat = (feature.get("center") or [None, None])[:2]
    out = {
        "formatted": feature.get("place_name") or "",
        "street": feature.get("text") or "",
        "street_number": (feature.get("properties") or {}).get("address") or "",
        "locality": "",
        "region": "",
        "postal_code": "",
        "country": "South Africa",
        "latitude": lat,
        "longitude": lng,
    }
    for ctx in feature.get("context") or []:
        ctx_id = ctx.get("id") or ""
        if ctx_id.startswith("place"):
            out["locality"] = ctx.get("text") or ""
        elif ctx_id.startswith("region"):
            out["region"] = ctx.get("text") or ""
        elif ctx_id.startswith("postcode"):
            out["postal_code"] = ctx.get("text") or ""
        elif ctx_id.startswith("country"):
            out["country"] = ctx.get("text") or ""
    return out


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def within_service_area(lat: float, lng: float, bbox=SERVICE_AREA_BBOX) -> bool:
    min_lng, min_lat, max_lng, max_lat = bbox
    return min_lng <= lng <= max_lng and min_lat <= lat <= max_lat
