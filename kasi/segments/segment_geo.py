from __future__ import annotations

import math

import requests
from flask import Blueprint, current_app, jsonify, request

from kasi.extensions import db
from kasi.integrations.common import IntegrationMisconfiguredError
from kasi.integrations.geo.mapbox_client import MapboxClient, SERVICE_AREA_BBOX, within_service_area
from kasi.models import Store
from kasi.services.delivery_pricing import delivery_fee

geo_bp = Blueprint("geo_bp", __name__, url_prefix="/api/geo")


def _client():
    return MapboxClient(current_app.config.get("MAPBOX_ACCESS_TOKEN") or "")


def _bad_request(message: str):
    return jsonify({"ok": False, "error": "VALIDATION_FAILED", "message": message}), 400


def _provider_error(exc: Exception):
    if isinstance(exc, IntegrationMisconfiguredError):
        return jsonify({"ok": False, "error": "INTEGRATION_MISCONFIGURED", "message": "Mapbox token not configured"}), 503
    current_app.logger.warning("geo_lookup_failed err=%s", exc)
    return jsonify({"ok": False, "error": "GEO_LOOKUP_FAILED", "message": "Address lookup failed"}), 502


def _float_arg(name: str):
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


@geo_bp.get("/search")
def search():
    q = (request.args.get("q") or "").strip()
    if not q:
        return _bad_request("Query parameter is required")
    try:
        limit = int(request.args.get("limit") or 5)
    except ValueError:
        limit = 5
    try:
        results = _client().search(q, limit=limit, bbox=SERVICE_AREA_BBOX)
    except (IntegrationMisconfiguredError, RuntimeError, requests.RequestException) as exc:
        return _provider_error(exc)
    return jsonify({"ok": True, "items": results}), 200


@geo_bp.get("/forward")
def forward():
    address = (request.args.get("address") or "").strip()
    if not address:
        return _bad_request("Address parameter is required")
    try:
        result = _client().forward(address)
    except (IntegrationMisconfiguredError, RuntimeError, requests.RequestException) as exc:
        return _provider_error(exc)
    return jsonify({"ok": True, "result": result}), 200


@geo_bp.get("/reverse")
def reverse():
    lat, lng = _float_arg("lat"), _float_arg("lng")
    if lat is None or lng is None:
        return _bad_request("Longitude and latitude parameters are required")
    try:
        result = _client().reverse(lat, lng)
    except (IntegrationMisconfiguredError, RuntimeError, requests.RequestException) as exc:
        return _provider_error(exc)
    return jsonify({"ok": True, "result": result}), 200


@geo_bp.get("/delivery-fee")
def quote_delivery_fee():
    lat, lng = _float_arg("lat"), _float_arg("lng")
    store_lat, store_lng = _float_arg("store_lat"), _float_arg("store_lng")
    store_id = request.args.get("store_id")
    if store_id:
        try:
            store = db.session.get(Store, int(store_id))
        except ValueError:
            store = None
        if store is None:
            return jsonify({"ok": False, "error": "NOT_FOUND", "message": "Store not found"}), 404
        store_lat, store_lng = store.gps_latitude, store.gps_longitude
    fee, distance = delivery_fee(store_lat, store_lng, lat, lng)
    in_area = within_service_area(lat, lng) if lat is not None and lng is not None else None
    return jsonify({"ok": True, "delivery_fee": fee, "distance_km": distance, "within_service_area": in_area}), 200
