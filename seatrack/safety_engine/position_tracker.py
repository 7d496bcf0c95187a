"""SeaTrack - Position Tracker.

Turns raw GPS fixes into normalized Position objects. A fix is only
accepted when enough time has passed since the last accepted one and the
vessel has moved beyond the GPS noise floor, so downstream watchers do not
jitter on a stationary boat.
"""

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from pydantic import BaseModel, Field

from seatrack.backend.models import Position, RawPositionSample
from seatrack.safety_engine.errors import SensorUnavailable
from seatrack.safety_engine.geomath import distance_meters, normalize_heading

logger = logging.getLogger("seatrack.position")

DEFAULT_ACCURACY_M = 10.0


class PositionTracker:
    """Movement / interval gate in front of every position consumer."""

    def __init__(
        self,
        min_update_interval_ms: float = 1000,
        min_movement_m: float = 2.0,
        on_accepted: Optional[Callable[[Position], None]] = None,
        on_unavailable: Optional[Callable[[SensorUnavailable], None]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.min_update_interval_ms = min_update_interval_ms
        self.min_movement_m = min_movement_m
        self.on_accepted = on_accepted
        self.on_unavailable = on_unavailable
        self._clock = clock or (lambda: time.time() * 1000)
        self._last: Optional[Position] = None
        self._unavailable: Optional[SensorUnavailable] = None
        self.rejected = 0

    @property
    def current(self) -> Optional[Position]:
        return self._last

    @property
    def available(self) -> bool:
        return self._unavailable is None

    def on_raw_sample(self, sample: Union[RawPositionSample, dict]) -> Optional[Position]:
        """Return the new Position, or None when the sample is filtered out."""
        if self._unavailable is not None:
            return None
        if isinstance(sample, dict):
            sample = RawPositionSample(**sample)

        now = sample.timestamp_ms if sample.timestamp_ms is not None else self._clock()

        last = self._last
        if last is not None:
            elapsed = now - last.captured_at_ms
            if elapsed < self.min_update_interval_ms:
                self.rejected += 1
                logger.debug("Sample rejected: %.0fms since last fix", elapsed)
                return None
            moved = distance_meters(last, (sample.lat, sample.lng))
            if moved <= self.min_movement_m:
                self.rejected += 1
                logger.debug("Sample rejected: moved %.2fm (noise floor %.1fm)", moved, self.min_movement_m)
                return None

        speed = sample.speed
        if speed is not None and (speed != speed or speed < 0):  # NaN or negative
            speed = None

        position = Position(
            lat=sample.lat,
            lng=sample.lng,
            accuracy_m=sample.accuracy if sample.accuracy is not None else DEFAULT_ACCURACY_M,
            speed_mps=speed,
            heading_deg=normalize_heading(sample.heading),
            captured_at_ms=now,
        )
        self._last = position

        if self.on_accepted is not None:
            self.on_accepted(position)
        return position

    def report_sensor_error(self, reason: str, sensor: str = "gps") -> SensorUnavailable:
        """Stop emitting positions and notify the caller, who picks any fallback."""
        err = SensorUnavailable(sensor, reason)
        first = self._unavailable is None
        self._unavailable = err
        if first:
            logger.warning("Position sensor unavailable: %s", err)
            if self.on_unavailable is not None:
                self.on_unavailable(err)
        return err

    def resume(self):
        """Accept samples again after the caller restarted (or replaced) the sensor."""
        if self._unavailable is not None:
            logger.info("Position sensor resumed")
        self._unavailable = None


# ─── Track recording ───────────────────────────────

class TrackPoint(BaseModel):
    lat: float
    lng: float
    timestamp_ms: float
    speed: Optional[float] = None


class RecordedTrack(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    points: list[TrackPoint]
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TrackRecorder:
    """Collects accepted positions while recording is switched on."""

    def __init__(self):
        self.recording = False
        self._points: list[TrackPoint] = []

    def start(self):
        self.recording = True
        self._points = []
        logger.info("Track recording started")

    def add(self, position: Position):
        if not self.recording:
            return
        self._points.append(TrackPoint(
            lat=position.lat,
            lng=position.lng,
            timestamp_ms=position.captured_at_ms,
            speed=position.speed_mps,
        ))

    def stop(self, name: str = "") -> Optional[RecordedTrack]:
        """Stop recording; returns the finished track, or None when nothing was captured."""
        points, self._points = self._points, []
        self.recording = False
        if not points:
            logger.info("Track recording stopped (no points)")
            return None
        track = RecordedTrack(
            name=name or datetime.now(timezone.utc).strftime("Track %Y-%m-%d %H:%M"),
            points=points,
        )
        logger.info("Track recording stopped: %s (%d points)", track.name, len(points))
        return track

    @property
    def point_count(self) -> int:
        return len(self._points)
