"""
Store proximity search.

Candidates are narrowed in MongoDB with a lat/lng bounding box on
location.coordinates, then filtered exactly by great-circle distance and
sorted nearest first. At store-catalog scale (a few thousand points) this is
a handful of documents per query.
"""

import math
from typing import Optional, Tuple

from catalog import paginate
from database import get_documents, to_str_id
from errors import ValidationError

EARTH_RADIUS_M = 6371008.8
DEFAULT_RADIUS_M = 10000


def haversine_m(lng1: float, lat1: float, lng2: float, lat2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = phi2 - phi1
    dlmb = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def parse_radius(value) -> float:
    try:
        radius = float(value)
    except (TypeError, ValueError):
        return DEFAULT_RADIUS_M
    if not math.isfinite(radius) or radius <= 0:
        return DEFAULT_RADIUS_M
    return radius


def check_point(longitude: float, latitude: float) -> None:
    if longitude is None or latitude is None:
        raise ValidationError("Both longitude and latitude are required")
    if not (-180 <= longitude <= 180) or not (-90 <= latitude <= 90):
        raise ValidationError("Coordinates must hold a valid longitude and latitude")


def parse_near(value: str) -> Tuple[float, float]:
    """Parse 'lng,lat'."""
    parts = [p.strip() for p in (value or "").split(",")]
    if len(parts) != 2 or not all(parts):
        raise ValidationError("Invalid near parameter. Expected format: lng,lat")
    try:
        longitude, latitude = float(parts[0]), float(parts[1])
    except ValueError:
        raise ValidationError("Invalid near parameter. Expected format: lng,lat")
    if not (math.isfinite(longitude) and math.isfinite(latitude)):
        raise ValidationError("Invalid near parameter. Expected format: lng,lat")
    check_point(longitude, latitude)
    return longitude, latitude


def bounding_filter(longitude: float, latitude: float, radius: float) -> dict:
    dlat = math.degrees(radius / EARTH_RADIUS_M)
    query = {"location.coordinates.1": {"$gte": latitude - dlat, "$lte": latitude + dlat}}
    if abs(latitude) + dlat >= 90:
        return query
    dlng = math.degrees(radius / (EARTH_RADIUS_M * math.cos(math.radians(latitude))))
    # boxes that wrap the antimeridian only keep the latitude band
    if longitude - dlng < -180 or longitude + dlng > 180:
        return query
    query["location.coordinates.0"] = {"$gte": longitude - dlng, "$lte": longitude + dlng}
    return query


def find_nearby(database, longitude: float, latitude: float, radius=None, page: int = 1,
                limit: int = 10, active_only: bool = True) -> dict:
    check_point(longitude, latitude)
    radius = parse_radius(radius)
    filter_dict = bounding_filter(longitude, latitude, radius)
    if active_only:
        filter_dict["is_active"] = True

    hits = []
    for store in get_documents(database, "store", filter_dict):
        coords = (store.get("location") or {}).get("coordinates") or []
        if len(coords) != 2:
            continue
        distance = haversine_m(longitude, latitude, coords[0], coords[1])
        if distance <= radius:
            hits.append((distance, str(store["_id"]), store))
    hits.sort(key=lambda h: (h[0], h[1]))

    total = len(hits)
    start = (page - 1) * limit
    stores = []
    for distance, _, store in hits[start:start + limit]:
        out = to_str_id(store)
        out["distance"] = round(distance, 1)
        stores.append(out)
    return {**paginate(total, page, limit), "radius": radius, "totalStores": total, "stores": stores}


def list_stores(database, page: int = 1, limit: int = 10, active: Optional[bool] = None) -> dict:
    filter_dict = {}
    if active is not None:
        filter_dict["is_active"] = active
    total = database["store"].count_documents(filter_dict)
    docs = get_documents(database, "store", filter_dict, limit=limit, skip=(page - 1) * limit,
                         sort=[("name", 1), ("_id", 1)])
    return {**paginate(total, page, limit), "totalStores": total, "stores": [to_str_id(d) for d in docs]}
