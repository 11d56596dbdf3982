from __future__ import annotations

import math

from flask import current_app

from kasi.integrations.geo.mapbox_client import haversine_km

# (max distance km, fee) in ascending order.
FEE_TIERS = (
    (2.0, 15.0),
    (5.0, 25.0),
    (10.0, 40.0),
    (15.0, 60.0),
)
PER_KM_BEYOND = 5.0


def fee_for_distance(distance_km: float) -> float:
    for max_km, fee in FEE_TIERS:
        if distance_km <= max_km:
            return fee
    last_km, last_fee = FEE_TIERS[-1]
    return last_fee + math.ceil(distance_km - last_km) * PER_KM_BEYOND


def flat_fee() -> float:
    return round(float(current_app.config.get("DEFAULT_DELIVERY_FEE", 15.0)), 2)


def delivery_fee(store_lat, store_lng, dest_lat, dest_lng) -> tuple[float, float | None]:
    """Return ``(fee, distance_km)``; distance is None when GPS is missing."""
    if None in (store_lat, store_lng, dest_lat, dest_lng):
        return flat_fee(), None
    distance = haversine_km(float(store_lat), float(store_lng), float(dest_lat), float(dest_lng))
    return round(fee_for_distance(distance), 2), round(distance, 2)
