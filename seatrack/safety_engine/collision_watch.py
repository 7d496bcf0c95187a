"""SeaTrack - Collision Watch.

Two trigger paths feed one countdown:
  - radar: every scan tick, any peer closer than the proximity threshold
    and moving faster than the minimum speed flags risk
  - impact: an accelerometer magnitude above the impact threshold flags
    risk immediately, whether or not radar is on

A flagged risk starts a countdown; if nobody dismisses it before it
reaches zero the emergency is raised automatically.
"""

import logging
from typing import Callable, Optional

from seatrack.backend.models import AlarmKind, CollisionState, EventKind, MotionSample, PeerVessel, Position
from seatrack.safety_engine.alarms import AlarmSignaler
from seatrack.safety_engine.errors import InvalidCommand
from seatrack.safety_engine.geomath import distance_meters
from seatrack.safety_engine.presence import PeerPresenceRegistry
from seatrack.safety_engine.timers import RepeatingTimer

logger = logging.getLogger("seatrack.collision")


class CollisionWatch:

    def __init__(
        self,
        registry: PeerPresenceRegistry,
        signaler: AlarmSignaler,
        *,
        get_position: Callable[[], Optional[Position]],
        is_radar_enabled: Callable[[], bool] = lambda: True,
        is_offline: Callable[[], bool] = lambda: False,
        is_emergency_active: Callable[[], bool] = lambda: False,
        on_expired: Callable[[], None] = lambda: None,
        scan_interval_ms: float = 3000,
        distance_threshold_m: float = 50.0,
        min_peer_speed_mps: float = 0.5,
        impact_threshold_mps2: float = 25.0,
        countdown_s: int = 30,
        tick_ms: float = 1000,
        emit: Optional[Callable[..., None]] = None,
    ):
        self.registry = registry
        self.signaler = signaler
        self.distance_threshold_m = distance_threshold_m
        self.min_peer_speed_mps = min_peer_speed_mps
        self.impact_threshold_mps2 = impact_threshold_mps2
        self.countdown_s = countdown_s
        self._get_position = get_position
        self._is_radar_enabled = is_radar_enabled
        self._is_offline = is_offline
        self._is_emergency_active = is_emergency_active
        self._on_expired = on_expired
        self._emit = emit or (lambda kind, **data: None)
        self._state = CollisionState()
        self._scan_timer = RepeatingTimer("collision-scan", scan_interval_ms, self.scan)
        self._tick_timer = RepeatingTimer("collision-countdown", tick_ms, self.tick)

    @property
    def state(self) -> CollisionState:
        return self._state.model_copy()

    @property
    def countdown_running(self) -> bool:
        return self._state.countdown_s is not None

    def start(self):
        """Start the periodic radar scan."""
        self._scan_timer.start()

    def close(self):
        self._scan_timer.cancel()
        self._tick_timer.cancel()

    # ── Risk detection ────────────────────────────

    def _can_arm(self) -> bool:
        return self._state.countdown_s is None and not self._is_emergency_active()

    def find_threat(self, position: Position, peers: list[PeerVessel]) -> Optional[tuple[PeerVessel, float]]:
        """First peer that is both close and under way, with its distance."""
        for peer in peers:
            if not peer.has_fix:
                continue
            dist = distance_meters(position, peer)
            if dist < self.distance_threshold_m and peer.speed_mps > self.min_peer_speed_mps:
                return peer, dist
        return None

    def scan(self) -> bool:
        """One radar evaluation. Returns True when a countdown was started."""
        if not self._is_radar_enabled() or self._is_offline() or not self._can_arm():
            return False
        position = self._get_position()
        if position is None:
            return False

        threat = self.find_threat(position, self.registry.snapshot())
        if threat is None:
            return False
        peer, dist = threat
        logger.warning("Collision risk: peer %s at %.0fm moving %.1fm/s", peer.id, dist, peer.speed_mps)
        self._start_countdown("radar", peer_id=peer.id, distance_m=round(dist, 1))
        return True

    def on_motion(self, sample: MotionSample) -> bool:
        """Impact path. Returns True when a countdown was started."""
        if not self._can_arm():
            return False
        magnitude = sample.magnitude
        if magnitude <= self.impact_threshold_mps2:
            return False
        logger.warning("Impact detected: %.1fm/s²", magnitude)
        self._start_countdown("impact", acceleration_mps2=round(magnitude, 1))
        return True

    # ── Countdown ────────────────────────────────

    def _start_countdown(self, reason: str, **data):
        self._state = CollisionState(countdown_s=self.countdown_s, reason=reason)
        self.signaler.trigger(AlarmKind.COLLISION)
        self._tick_timer.start()
        self._emit(EventKind.COLLISION_COUNTDOWN_STARTED, reason=reason, countdown_s=self.countdown_s, **data)

    def tick(self):
        """Advance the countdown by one second; promotes to emergency at zero."""
        if self._state.countdown_s is None:
            self._tick_timer.cancel()
            return
        self._state.countdown_s -= 1
        if self._state.countdown_s > 0:
            return

        reason = self._state.reason
        self._tick_timer.cancel()
        self._state = CollisionState()
        logger.warning("Collision countdown expired (%s); raising emergency", reason)
        self._emit(EventKind.COLLISION_COUNTDOWN_EXPIRED, reason=reason)
        self._on_expired()

    def dismiss(self) -> CollisionState:
        if self._state.countdown_s is None:
            raise InvalidCommand("No collision countdown is running")
        remaining = self._state.countdown_s
        self.reset()
        logger.info("Collision countdown dismissed with %ds left", remaining)
        self._emit(EventKind.COLLISION_COUNTDOWN_DISMISSED, remaining_s=remaining)
        return self.state

    def reset(self):
        """Drop any countdown silently."""
        self._tick_timer.cancel()
        self._state = CollisionState()
