"""SeaTrack - Anchor Watch.

Inactive → Armed → Triggered → Acknowledged, with lift returning to
Inactive from any state. Drift is measured from the stored anchor point
with the equirectangular approximation, adequate for anchoring radii.
"""

import logging
from typing import Callable, Optional

from seatrack.backend.models import AlarmKind, AnchorPhase, AnchorState, EventKind, Position
from seatrack.safety_engine.alarms import AlarmSignaler
from seatrack.safety_engine.errors import InvalidCommand
from seatrack.safety_engine.geomath import local_distance_meters
from seatrack.safety_engine.timers import RepeatingTimer

logger = logging.getLogger("seatrack.anchor")


class AnchorWatch:

    def __init__(
        self,
        signaler: AlarmSignaler,
        *,
        alarm_interval_ms: float = 3000,
        rearm_on_return: bool = False,
        emit: Optional[Callable[..., None]] = None,
    ):
        self.signaler = signaler
        self.alarm_interval_ms = alarm_interval_ms
        self.rearm_on_return = rearm_on_return
        self._emit = emit or (lambda kind, **data: None)
        self._state = AnchorState()
        self._repeat = RepeatingTimer("anchor-alarm", alarm_interval_ms, self._repeat_alarm)
        self.last_drift_m: Optional[float] = None

    @property
    def state(self) -> AnchorState:
        return self._state.model_copy()

    @property
    def phase(self) -> AnchorPhase:
        return self._state.phase

    @property
    def alarm_repeating(self) -> bool:
        return self._repeat.running

    def drop(self, lat: float, lng: float, radius_m: float) -> AnchorState:
        if radius_m is None or not radius_m > 0:
            raise InvalidCommand(f"Anchor radius must be positive, got {radius_m}")
        if not (-90 <= lat <= 90 and -180 <= lng <= 180):
            raise InvalidCommand(f"Invalid anchor point ({lat}, {lng})")
        if self._state.active:
            raise InvalidCommand("Anchor is already down; lift it before dropping again")

        self._state = AnchorState(active=True, lat=lat, lng=lng, radius_m=float(radius_m))
        self.last_drift_m = 0.0
        logger.info("Anchor dropped at (%.6f, %.6f), radius %.0fm", lat, lng, radius_m)
        self._emit(EventKind.ANCHOR_DROPPED, lat=lat, lng=lng, radius_m=float(radius_m))
        return self.state

    def on_position(self, position: Position) -> AnchorPhase:
        state = self._state
        if not state.active:
            return AnchorPhase.INACTIVE

        drift = local_distance_meters(state, position)
        self.last_drift_m = drift
        phase = state.phase

        if phase is AnchorPhase.ARMED and drift > state.radius_m:
            state.triggered = True
            state.acknowledged = False
            logger.warning("Anchor dragging: drift %.1fm exceeds radius %.0fm", drift, state.radius_m)
            self.signaler.trigger(AlarmKind.ANCHOR)
            self._repeat.start()
            self._emit(EventKind.ANCHOR_TRIGGERED, drift_m=round(drift, 1), radius_m=state.radius_m)
        elif phase is AnchorPhase.ACKNOWLEDGED and self.rearm_on_return and drift <= state.radius_m:
            state.triggered = False
            state.acknowledged = False
            logger.info("Back within anchor radius (%.1fm); watch re-armed", drift)
            self._emit(EventKind.ANCHOR_REARMED, drift_m=round(drift, 1))

        # Triggered stays triggered even when drift falls back under the radius
        return state.phase

    def acknowledge(self) -> AnchorState:
        if self._state.phase is not AnchorPhase.TRIGGERED:
            raise InvalidCommand(f"Nothing to acknowledge: anchor watch is {self._state.phase.value}")
        self._state.acknowledged = True
        self._repeat.cancel()
        logger.info("Anchor alarm acknowledged")
        self._emit(EventKind.ANCHOR_ACKNOWLEDGED, drift_m=self._drift_for_event())
        return self.state

    def lift(self) -> AnchorState:
        was_active = self._state.active
        self._repeat.cancel()
        self._state = AnchorState()
        self.last_drift_m = None
        if was_active:
            logger.info("Anchor lifted")
            self._emit(EventKind.ANCHOR_LIFTED)
        return self.state

    def close(self):
        self._repeat.cancel()

    def _repeat_alarm(self):
        if self._state.phase is not AnchorPhase.TRIGGERED:
            self._repeat.cancel()
            return
        self.signaler.trigger(AlarmKind.ANCHOR)

    def _drift_for_event(self) -> Optional[float]:
        return round(self.last_drift_m, 1) if self.last_drift_m is not None else None
