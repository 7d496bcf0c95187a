"""SeaTrack - Great-circle and local distance helpers.

All functions take points exposing ``lat`` / ``lng`` in decimal degrees
(Position, PeerVessel, AnchorState, ...) or plain ``(lat, lng)`` tuples.
"""

import math

EARTH_RADIUS_M = 6_371_000.0  # Mean Earth radius


def _coords(point) -> tuple[float, float]:
    if isinstance(point, (tuple, list)):
        return float(point[0]), float(point[1])
    return float(point.lat), float(point.lng)


def haversine_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in meters on a spherical Earth."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lng2 - lng1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    # Clamp for float noise on near-antipodal points
    a = min(1.0, max(0.0, a))
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_meters(a, b) -> float:
    """Haversine distance between two points. Symmetric, zero for identical points."""
    lat1, lng1 = _coords(a)
    lat2, lng2 = _coords(b)
    return haversine_meters(lat1, lng1, lat2, lng2)


def local_distance_meters(a, b) -> float:
    """Equirectangular approximation for short distances.

    Longitude difference is scaled by cos(mean latitude) and the result
    treated as planar. Error stays well under a meter for separations of a
    few hundred meters away from the poles, which is the anchor-watch regime.
    Not valid across the antimeridian.
    """
    lat1, lng1 = _coords(a)
    lat2, lng2 = _coords(b)
    mean_lat = math.radians((lat1 + lat2) / 2)
    dx = math.radians(lng2 - lng1) * math.cos(mean_lat)
    dy = math.radians(lat2 - lat1)
    return EARTH_RADIUS_M * math.hypot(dx, dy)


def initial_bearing(a, b) -> float:
    """Forward azimuth from a to b in degrees, normalized to [0, 360)."""
    lat1, lng1 = _coords(a)
    lat2, lng2 = _coords(b)
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dlmb = math.radians(lng2 - lng1)

    x = math.sin(dlmb) * math.cos(phi2)
    y = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlmb)
    return normalize_heading(math.degrees(math.atan2(x, y)))


def normalize_heading(degrees):
    """Wrap a heading into [0, 360); None and non-finite values map to None."""
    if degrees is None:
        return None
    degrees = float(degrees)
    if not math.isfinite(degrees):
        return None
    wrapped = degrees % 360.0
    # -1e-15 % 360 rounds to 360.0
    return 0.0 if wrapped >= 360.0 else wrapped
