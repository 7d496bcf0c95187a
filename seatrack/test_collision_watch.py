import asyncio

import pytest

from seatrack.backend.models import AlarmKind, EventKind, MotionSample, PeerVessel, Position
from seatrack.safety_engine.alarms import ALARM_TONES
from seatrack.safety_engine.collision_watch import CollisionWatch
from seatrack.safety_engine.errors import InvalidCommand
from seatrack.safety_engine.presence import PeerPresenceRegistry

OWN = Position(lat=10.0, lng=20.0, accuracy_m=5, captured_at_ms=0)


def peer(peer_id="boat-2", dlat=0.00027, speed=2.0, **kw):
    # 0.00027° of latitude ≈ 30 m
    return PeerVessel(id=peer_id, lat=OWN.lat + dlat, lng=OWN.lng, speed_mps=speed, **kw)


class Harness:
    def __init__(self, signaler, tick_ms=10_000):
        self.registry = PeerPresenceRegistry("me")
        self.radar = True
        self.offline = False
        self.emergency = False
        self.expired = 0
        self.events = []
        self.position = OWN
        self.watch = CollisionWatch(
            self.registry,
            signaler,
            get_position=lambda: self.position,
            is_radar_enabled=lambda: self.radar,
            is_offline=lambda: self.offline,
            is_emergency_active=lambda: self.emergency,
            on_expired=self._expired,
            tick_ms=tick_ms,
            emit=lambda kind, **data: self.events.append((kind, data)),
        )

    def _expired(self):
        self.expired += 1
        self.emergency = True


@pytest.fixture
async def h(signaler):
    harness = Harness(signaler)
    yield harness
    harness.watch.close()
    await signaler.close()


async def test_close_moving_peer_starts_countdown(h, backend, signaler):
    h.registry.upsert(peer())
    assert h.watch.scan()

    state = h.watch.state
    assert state.countdown_s == 30
    assert state.reason == "radar"
    kind, data = h.events[-1]
    assert kind is EventKind.COLLISION_COUNTDOWN_STARTED
    assert data["peer_id"] == "boat-2"
    assert data["distance_m"] == pytest.approx(30.0, abs=0.5)

    await signaler.drain()
    assert backend.tones == [ALARM_TONES[AlarmKind.COLLISION]]


@pytest.mark.parametrize("candidate", [
    peer(dlat=0.00054),        # ~60 m away
    peer(speed=0.2),           # drifting, not under way
    PeerVessel(id="nofix", speed_mps=5.0),
])
async def test_non_threats_are_ignored(h, candidate):
    h.registry.upsert(candidate)
    assert not h.watch.scan()
    assert h.watch.state.countdown_s is None


async def test_scan_needs_radar_online_and_a_fix(h):
    h.registry.upsert(peer())

    h.radar = False
    assert not h.watch.scan()
    h.radar, h.offline = True, True
    assert not h.watch.scan()
    h.offline = False
    h.position = None
    assert not h.watch.scan()


async def test_countdown_expiry_raises_exactly_one_emergency(h):
    h.registry.upsert(peer())
    h.watch.scan()

    for _ in range(29):
        h.watch.tick()
        assert not h.watch.scan()  # already counting down
    assert h.watch.state.countdown_s == 1
    assert h.expired == 0

    h.watch.tick()
    assert h.expired == 1
    assert h.watch.state.countdown_s is None
    assert h.events[-1][0] is EventKind.COLLISION_COUNTDOWN_EXPIRED

    # The same peer is still close, but the emergency blocks a new countdown
    assert not h.watch.scan()
    h.watch.tick()
    assert h.expired == 1


async def test_countdown_ticks_on_its_own(signaler):
    harness = Harness(signaler, tick_ms=5)
    harness.watch.countdown_s = 3
    harness.registry.upsert(peer())
    harness.watch.scan()

    await asyncio.sleep(0.1)
    assert harness.expired == 1
    harness.watch.close()
    await signaler.close()


async def test_dismiss_cancels_the_countdown(h):
    h.registry.upsert(peer())
    h.watch.scan()
    h.watch.tick()

    h.watch.dismiss()
    assert h.watch.state.countdown_s is None
    assert h.events[-1] == (EventKind.COLLISION_COUNTDOWN_DISMISSED, {"remaining_s": 29})

    h.watch.tick()
    assert h.expired == 0


async def test_dismiss_without_countdown_is_invalid(h):
    with pytest.raises(InvalidCommand):
        h.watch.dismiss()


async def test_hard_impact_starts_countdown_without_radar(h):
    h.radar = False
    assert h.watch.on_motion(MotionSample(ax=20.0, ay=20.0, az=0.0))
    assert h.watch.state.reason == "impact"


async def test_gravity_alone_is_not_an_impact(h):
    assert not h.watch.on_motion(MotionSample(ax=0.1, ay=0.2, az=9.81))
    assert h.watch.state.countdown_s is None


async def test_impact_during_countdown_does_not_restart_it(h):
    h.registry.upsert(peer())
    h.watch.scan()
    h.watch.tick()
    assert not h.watch.on_motion(MotionSample(ax=40.0, ay=0.0, az=0.0))
    assert h.watch.state.countdown_s == 29
