"""SeaTrack - Barometric Weather Watch.

A falling barometer is the oldest storm warning aboard. The latest hourly
surface pressure is compared with the reading three hours earlier.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from seatrack.backend.models import WeatherAlert

logger = logging.getLogger("seatrack.weather")

LOOKBACK_HOURS = 3
ALERT_DROP_HPA = 2.0
CAUTION_DROP_HPA = 1.0

ALERT_MESSAGE = "ALERT: sharp pressure drop, storm likely"
CAUTION_MESSAGE = "CAUTION: pressure falling"


def classify_pressure_trend(pressures_hpa: list[Optional[float]], now_ms: float = 0.0) -> Optional[WeatherAlert]:
    """Return an alert for a falling barometer, or None when the trend is benign."""
    readings = [p for p in pressures_hpa if p is not None]
    if len(readings) < 2:
        return None
    current = readings[-1]
    earlier = readings[max(0, len(readings) - 1 - LOOKBACK_HOURS)]
    drop = earlier - current

    if drop >= ALERT_DROP_HPA:
        return WeatherAlert(level="alert", message=ALERT_MESSAGE, pressure_drop_hpa=round(drop, 1), raised_at_ms=now_ms)
    if drop >= CAUTION_DROP_HPA:
        return WeatherAlert(level="caution", message=CAUTION_MESSAGE, pressure_drop_hpa=round(drop, 1), raised_at_ms=now_ms)
    return None


def pressures_up_to_now(hourly: dict, now: Optional[datetime] = None) -> list[Optional[float]]:
    """Cut an Open-Meteo ``hourly`` block at the current hour.

    The forecast API returns past and future hours together; only readings
    at or before the current hour describe the actual trend.
    """
    times = hourly.get("time") or []
    values = hourly.get("surface_pressure") or []
    if not times or len(times) != len(values):
        return list(values)

    now = now or datetime.now(timezone.utc)
    cutoff = now.strftime("%Y-%m-%dT%H:%M")
    # ISO timestamps in a fixed format compare correctly as strings
    kept = [v for t, v in zip(times, values) if t <= cutoff]
    return kept or list(values)
