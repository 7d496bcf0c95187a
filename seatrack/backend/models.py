"""SeaTrack - Safety Engine Data Models."""

import math
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AlarmKind(str, Enum):
    """Alarm channels played by the alarm signaler."""
    ANCHOR = "anchor"
    COLLISION = "collision"
    EMERGENCY = "emergency"
    WEATHER = "weather"


class AnchorPhase(str, Enum):
    INACTIVE = "inactive"
    ARMED = "armed"
    TRIGGERED = "triggered"
    ACKNOWLEDGED = "acknowledged"


class EventKind(str, Enum):
    """Safety engine state transitions."""
    ANCHOR_DROPPED = "anchor_dropped"
    ANCHOR_TRIGGERED = "anchor_triggered"
    ANCHOR_ACKNOWLEDGED = "anchor_acknowledged"
    ANCHOR_REARMED = "anchor_rearmed"
    ANCHOR_LIFTED = "anchor_lifted"
    COLLISION_COUNTDOWN_STARTED = "collision_countdown_started"
    COLLISION_COUNTDOWN_DISMISSED = "collision_countdown_dismissed"
    COLLISION_COUNTDOWN_EXPIRED = "collision_countdown_expired"
    EMERGENCY_ACTIVATED = "emergency_activated"
    EMERGENCY_DISMISSED = "emergency_dismissed"
    WEATHER_ALERT = "weather_alert"
    WEATHER_CLEARED = "weather_cleared"
    SENSOR_UNAVAILABLE = "sensor_unavailable"


# ─── Sensor inputs ─────────────────────────────────

class RawPositionSample(BaseModel):
    """A location fix as delivered by a GPS / geolocation provider."""
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    accuracy: Optional[float] = Field(default=None, ge=0)
    speed: Optional[float] = None
    heading: Optional[float] = None
    timestamp_ms: Optional[float] = None


class MotionSample(BaseModel):
    """Device acceleration in m/s²; missing axes read as zero."""
    ax: Optional[float] = None
    ay: Optional[float] = None
    az: Optional[float] = None

    @property
    def magnitude(self) -> float:
        return math.sqrt((self.ax or 0.0) ** 2 + (self.ay or 0.0) ** 2 + (self.az or 0.0) ** 2)


class Position(BaseModel):
    """Normalized, accepted position of the local vessel."""
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    accuracy_m: float = Field(ge=0)
    speed_mps: Optional[float] = None
    heading_deg: Optional[float] = Field(default=None, ge=0, lt=360)
    captured_at_ms: float

    model_config = {"frozen": True}


# ─── Peers ─────────────────────────────────────────

class PeerVessel(BaseModel):
    """Another vessel visible on the radar channel."""
    id: str
    lat: Optional[float] = None
    lng: Optional[float] = None
    heading_deg: Optional[float] = None
    speed_mps: float = 0.0
    distress: bool = False
    anchored: bool = False
    last_updated_ms: float = 0.0
    label: str = ""

    model_config = {"frozen": True}

    @property
    def has_fix(self) -> bool:
        return self.lat is not None and self.lng is not None


class PresenceBroadcast(BaseModel):
    """Outgoing presence payload for the local vessel."""
    id: str
    label: str = ""
    lat: float
    lng: float
    heading: Optional[float] = None
    speed: Optional[float] = None
    sos: bool = False
    is_anchored: bool = Field(default=False, serialization_alias="isAnchored")
    updated_at: float = Field(serialization_alias="updatedAt")


# ─── Engine state ──────────────────────────────────

class AnchorState(BaseModel):
    active: bool = False
    lat: float = 0.0
    lng: float = 0.0
    radius_m: float = 0.0
    triggered: bool = False
    acknowledged: bool = False

    @property
    def phase(self) -> AnchorPhase:
        if not self.active:
            return AnchorPhase.INACTIVE
        if self.acknowledged:
            return AnchorPhase.ACKNOWLEDGED
        if self.triggered:
            return AnchorPhase.TRIGGERED
        return AnchorPhase.ARMED


class CollisionState(BaseModel):
    countdown_s: Optional[int] = None
    reason: Optional[str] = None  # "radar" | "impact"


class EmergencyState(BaseModel):
    active: bool = False
    source: Optional[str] = None  # "manual" | "collision"
    activated_at_ms: Optional[float] = None


class WeatherAlert(BaseModel):
    level: str  # "caution" | "alert"
    message: str
    pressure_drop_hpa: float
    raised_at_ms: float = 0.0


class DistressRecord(BaseModel):
    """Row written to the emergencies table when SOS goes active."""
    user_id: str
    lat: Optional[float] = None
    lng: Optional[float] = None
    type: str = "sos"
    status: str = "active"


class SafetyEvent(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    kind: EventKind
    timestamp: datetime = Field(default_factory=_utcnow)
    data: dict[str, Any] = Field(default_factory=dict)


class EngineSnapshot(BaseModel):
    """Read-only view of everything the UI renders."""
    vessel_id: str
    position: Optional[Position] = None
    anchor: AnchorState
    anchor_phase: AnchorPhase
    collision: CollisionState
    emergency: EmergencyState
    weather: Optional[WeatherAlert] = None
    peers: list[PeerVessel] = Field(default_factory=list)
    sensor_available: bool = True
    recording: bool = False


# ─── API bodies ────────────────────────────────────

class DropAnchorRequest(BaseModel):
    radius_m: float
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)


class StopRecordingRequest(BaseModel):
    name: str = ""


class SensorErrorRequest(BaseModel):
    reason: str = "sensor unavailable"
    sensor: str = "gps"  # "gps" | "motion"

    @field_validator("reason")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        return v.strip() or "sensor unavailable"


class WebSocketMessage(BaseModel):
    """WebSocket message envelope."""
    action: str  # "initial_state", "safety_event"
    data: Any
    timestamp: datetime = Field(default_factory=_utcnow)
