"""SeaTrack - Safety Engine.

Single owner of the anchor, collision, emergency and weather state. All
collaborators (alarm sink, presence transport, distress store, settings
accessors) are injected, so the engine runs the same under the FastAPI
service, a CLI or a test.

Every mutation happens on the event loop that called ``start()``. Sensor
drivers living on other threads must go through ``call_threadsafe``.
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Union

from seatrack.backend.config import EngineConfig
from seatrack.backend.models import (
    AlarmKind,
    AnchorState,
    EngineSnapshot,
    EventKind,
    MotionSample,
    PeerVessel,
    Position,
    PresenceBroadcast,
    RawPositionSample,
    SafetyEvent,
    WeatherAlert,
)
from seatrack.safety_engine.alarms import AlarmSignaler
from seatrack.safety_engine.anchor_watch import AnchorWatch
from seatrack.safety_engine.collision_watch import CollisionWatch
from seatrack.safety_engine.emergency import SOS_SEQUENCE, DistressSink, EmergencyController
from seatrack.safety_engine.errors import InvalidCommand, SensorUnavailable
from seatrack.safety_engine.position_tracker import PositionTracker, RecordedTrack, TrackRecorder
from seatrack.safety_engine.presence import PeerPresenceRegistry, PresenceBroadcaster, PresenceTransport
from seatrack.safety_engine.timers import TaskGroup

logger = logging.getLogger("seatrack.engine")

EventCallback = Callable[[SafetyEvent], Union[None, Awaitable[None]]]


class SafetyEngine:
    """Wires tracker, registry, watchers and signaler into one state owner."""

    def __init__(
        self,
        vessel_id: str,
        *,
        signaler: Optional[AlarmSignaler] = None,
        presence_transport: Optional[PresenceTransport] = None,
        distress_store: Optional[DistressSink] = None,
        is_radar_enabled: Callable[[], bool] = lambda: True,
        is_offline: Callable[[], bool] = lambda: False,
        on_event: Optional[EventCallback] = None,
        on_track_point: Optional[Callable[[Position], None]] = None,
        config: Optional[EngineConfig] = None,
        vessel_label: str = "",
        sos_sequence=SOS_SEQUENCE,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.vessel_id = vessel_id
        self.config = config or EngineConfig()
        self._clock = clock or (lambda: time.time() * 1000)
        self._is_radar_enabled = is_radar_enabled
        self._is_offline = is_offline
        self._on_event = on_event
        self._on_track_point = on_track_point
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks = TaskGroup("engine")
        self._weather: Optional[WeatherAlert] = None
        self._motion_available = True
        self._closed = False

        cfg = self.config
        self.signaler = signaler or AlarmSignaler(min_gap_ms=cfg.alarm_min_gap_ms)
        self.recorder = TrackRecorder()
        self.tracker = PositionTracker(
            min_update_interval_ms=cfg.min_update_interval_ms,
            min_movement_m=cfg.min_movement_m,
            on_accepted=self._record_point,
            on_unavailable=self._sensor_lost,
            clock=self._clock,
        )
        self.registry = PeerPresenceRegistry(vessel_id)
        self.broadcaster = PresenceBroadcaster(
            vessel_id,
            presence_transport,
            throttle_ms=cfg.presence_throttle_ms,
            is_enabled=self._sharing_enabled,
            label=vessel_label,
            clock=self._clock,
        )
        self.anchor = AnchorWatch(
            self.signaler,
            alarm_interval_ms=cfg.anchor_alarm_interval_ms,
            rearm_on_return=cfg.anchor_rearm_on_return,
            emit=self._emit,
        )
        self.emergency = EmergencyController(
            self.signaler,
            vessel_id=vessel_id,
            get_position=lambda: self.tracker.current,
            broadcast_distress=lambda: self._broadcast_presence(urgent=True),
            reset_collision=self._reset_collision,
            persist_distress=distress_store,
            rebroadcast_interval_ms=cfg.sos_rebroadcast_interval_ms,
            sequence=sos_sequence,
            emit=self._emit,
            clock=self._clock,
        )
        self.collision = CollisionWatch(
            self.registry,
            self.signaler,
            get_position=lambda: self.tracker.current,
            is_radar_enabled=is_radar_enabled,
            is_offline=is_offline,
            is_emergency_active=lambda: self.emergency.active,
            on_expired=lambda: self.emergency.activate("collision"),
            scan_interval_ms=cfg.collision_scan_interval_ms,
            distance_threshold_m=cfg.collision_distance_m,
            min_peer_speed_mps=cfg.collision_min_peer_speed_mps,
            impact_threshold_mps2=cfg.impact_threshold_mps2,
            countdown_s=cfg.collision_countdown_s,
            tick_ms=cfg.countdown_tick_ms,
            emit=self._emit,
        )

    # ── Lifecycle ────────────────────────────────

    async def start(self):
        self._loop = asyncio.get_running_loop()
        self._closed = False
        self.collision.start()
        logger.info("Safety engine started for vessel %s", self.vessel_id)

    async def close(self):
        """Cancel every timer and background task."""
        self._closed = True
        self.anchor.close()
        self.collision.close()
        await self.emergency.close()
        await self.broadcaster.close()
        await self.signaler.close()
        await self._tasks.cancel_all()
        logger.info("Safety engine stopped")

    def call_threadsafe(self, fn: Callable[..., Any], *args) -> None:
        """Hand a call from a sensor thread over to the engine's loop."""
        if self._loop is None:
            raise RuntimeError("Safety engine is not started")
        self._loop.call_soon_threadsafe(fn, *args)

    # ── Sensor inputs ────────────────────────────

    def on_position_sample(self, sample: Union[RawPositionSample, dict]) -> Optional[Position]:
        position = self.tracker.on_raw_sample(sample)
        if position is None:
            return None
        self.anchor.on_position(position)
        self._broadcast_presence()
        return position

    def on_motion_sample(self, sample: Union[MotionSample, dict]) -> bool:
        if not self._motion_available:
            return False
        if isinstance(sample, dict):
            sample = MotionSample(**sample)
        return self.collision.on_motion(sample)

    def on_sensor_error(self, reason: str, sensor: str = "gps") -> SensorUnavailable:
        if sensor == "gps":
            return self.tracker.report_sensor_error(reason, sensor)
        err = SensorUnavailable(sensor, reason)
        if sensor == "motion" and self._motion_available:
            self._motion_available = False
            self._sensor_lost(err)
        return err

    def resume_sensor(self, sensor: str = "gps"):
        if sensor == "gps":
            self.tracker.resume()
        elif sensor == "motion":
            self._motion_available = True

    def on_presence_upsert(self, payload: Union[PeerVessel, dict]) -> Optional[PeerVessel]:
        return self.registry.upsert(payload)

    def on_presence_remove(self, peer_id: str) -> bool:
        return self.registry.remove(peer_id)

    def on_presence_sync(self, peers) -> None:
        self.registry.sync(peers)

    def on_channel_joined(self):
        """Announce ourselves as soon as the radar channel is (re)joined."""
        self._broadcast_presence(urgent=True)

    # ── Commands ─────────────────────────────────

    def drop_anchor(self, radius_m: float, lat: Optional[float] = None, lng: Optional[float] = None) -> AnchorState:
        """Drop at the given point, or at the current fix when no point is given."""
        if lat is None or lng is None:
            position = self.tracker.current
            if position is None:
                raise InvalidCommand("No position fix; give the anchor point explicitly")
            lat, lng = position.lat, position.lng
        state = self.anchor.drop(lat, lng, radius_m)
        self._broadcast_presence(urgent=True)
        return state

    def lift_anchor(self) -> AnchorState:
        state = self.anchor.lift()
        self._broadcast_presence(urgent=True)
        return state

    def acknowledge_anchor(self) -> AnchorState:
        return self.anchor.acknowledge()

    def toggle_emergency(self):
        return self.emergency.toggle()

    def activate_emergency(self) -> bool:
        return self.emergency.activate("manual")

    def dismiss_emergency(self):
        return self.emergency.dismiss()

    def dismiss_collision_countdown(self):
        return self.collision.dismiss()

    def start_recording(self):
        self.recorder.start()

    def stop_recording(self, name: str = "") -> Optional[RecordedTrack]:
        return self.recorder.stop(name)

    def raise_weather_alert(self, alert: WeatherAlert) -> bool:
        """Store the alert; sound the weather alarm when the level changed."""
        previous = self._weather
        self._weather = alert
        if previous is not None and previous.level == alert.level:
            return False
        logger.warning("Weather: %s (%.1f hPa drop)", alert.message, alert.pressure_drop_hpa)
        self.signaler.trigger(AlarmKind.WEATHER)
        self._emit(EventKind.WEATHER_ALERT, level=alert.level, message=alert.message,
                   pressure_drop_hpa=alert.pressure_drop_hpa)
        return True

    def clear_weather_alert(self) -> bool:
        if self._weather is None:
            return False
        self._weather = None
        self._emit(EventKind.WEATHER_CLEARED)
        return True

    # ── Snapshot ─────────────────────────────────

    @property
    def position(self) -> Optional[Position]:
        return self.tracker.current

    @property
    def weather(self) -> Optional[WeatherAlert]:
        return self._weather

    def snapshot(self) -> EngineSnapshot:
        anchor = self.anchor.state
        return EngineSnapshot(
            vessel_id=self.vessel_id,
            position=self.tracker.current,
            anchor=anchor,
            anchor_phase=anchor.phase,
            collision=self.collision.state,
            emergency=self.emergency.state,
            weather=self._weather,
            peers=self.registry.snapshot(),
            sensor_available=self.tracker.available,
            recording=self.recorder.recording,
        )

    # ── Internals ────────────────────────────────

    def _sharing_enabled(self) -> bool:
        return self._is_radar_enabled() and not self._is_offline()

    def _presence(self) -> Optional[PresenceBroadcast]:
        return self.broadcaster.build(
            self.tracker.current,
            distress=self.emergency.active,
            anchored=self.anchor.state.active,
        )

    def _broadcast_presence(self, urgent: bool = False) -> bool:
        return self.broadcaster.maybe_broadcast(self._presence, urgent=urgent)

    def _reset_collision(self) -> bool:
        running = self.collision.countdown_running
        self.collision.reset()
        return running

    def _record_point(self, position: Position):
        self.recorder.add(position)
        if self._on_track_point is not None and self.recorder.recording:
            self._on_track_point(position)

    def _sensor_lost(self, err: SensorUnavailable):
        self._emit(EventKind.SENSOR_UNAVAILABLE, sensor=err.sensor, reason=err.reason)

    def _emit(self, kind: EventKind, **data):
        if self._on_event is None or self._closed:
            return
        event = SafetyEvent(kind=kind, data=data)
        try:
            result = self._on_event(event)
            if inspect.isawaitable(result):
                self._tasks.spawn(result, kind.value)
        except Exception as e:
            logger.error("Event callback failed for %s: %s", kind.value, e)
