"""SeaTrack - Peer Presence Registry & own-presence broadcaster."""

import asyncio
import logging
import time
from typing import Any, Callable, Iterable, Optional, Protocol, Union

from seatrack.backend.models import PeerVessel, Position, PresenceBroadcast
from seatrack.safety_engine.geomath import normalize_heading
from seatrack.safety_engine.timers import TaskGroup

logger = logging.getLogger("seatrack.presence")


def _coord(value: Any, limit: float) -> Optional[float]:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    if v != v or abs(v) > limit:
        return None
    return v


def peer_from_presence(payload: dict, now_ms: Optional[float] = None) -> Optional[PeerVessel]:
    """Build a PeerVessel from a presence payload as sent by other SeaTrack clients.

    Returns None when the payload has no usable id. Missing or out-of-range
    coordinates are kept as "no fix" rather than rejected.
    """
    peer_id = payload.get("id") or payload.get("key")
    if not peer_id:
        return None

    try:
        speed = float(payload.get("speed") or 0.0)
    except (TypeError, ValueError):
        speed = 0.0
    if speed != speed or speed < 0:
        speed = 0.0

    try:
        heading = normalize_heading(payload.get("heading"))
    except (TypeError, ValueError):
        heading = None

    updated = payload.get("updatedAt", payload.get("updated_at"))
    try:
        updated = float(updated) if updated is not None else None
    except (TypeError, ValueError):
        updated = None
    if updated is None:
        updated = now_ms if now_ms is not None else time.time() * 1000

    return PeerVessel(
        id=str(peer_id),
        lat=_coord(payload.get("lat"), 90.0),
        lng=_coord(payload.get("lng"), 180.0),
        heading_deg=heading,
        speed_mps=speed,
        distress=bool(payload.get("sos", payload.get("distress", False))),
        anchored=bool(payload.get("isAnchored", payload.get("is_anchored", False))),
        last_updated_ms=updated,
        label=str(payload.get("label") or payload.get("email") or ""),
    )


class PeerPresenceRegistry:
    """Other vessels currently on the radar channel, keyed by id.

    Driven entirely by transport events; there is no timeout-based expiry.
    Peers stay visible through a disconnect until the transport resyncs.
    """

    def __init__(self, self_id: str):
        self.self_id = self_id
        self._peers: dict[str, PeerVessel] = {}

    def upsert(self, peer: Union[PeerVessel, dict]) -> Optional[PeerVessel]:
        if isinstance(peer, dict):
            peer = peer_from_presence(peer)
            if peer is None:
                logger.debug("Ignoring presence without id")
                return None
        if peer.id == self.self_id:
            return None
        if not peer.has_fix:
            logger.debug("Peer %s has no usable position", peer.id)
        self._peers[peer.id] = peer
        return peer

    def remove(self, peer_id: str) -> bool:
        removed = self._peers.pop(peer_id, None) is not None
        if removed:
            logger.debug("Peer %s left (%d remaining)", peer_id, len(self._peers))
        return removed

    def sync(self, peers: Iterable[Union[PeerVessel, dict]]):
        """Replace the whole set from a sync snapshot."""
        self._peers.clear()
        for peer in peers:
            self.upsert(peer)
        logger.info("Presence sync: %d peers", len(self._peers))

    def snapshot(self) -> list[PeerVessel]:
        return list(self._peers.values())

    def get(self, peer_id: str) -> Optional[PeerVessel]:
        return self._peers.get(peer_id)

    def __len__(self) -> int:
        return len(self._peers)


class PresenceTransport(Protocol):
    async def track(self, payload: dict) -> None:
        ...


class PresenceBroadcaster:
    """Throttles the local vessel's outgoing presence.

    At most one send per ``throttle_ms``. An urgent broadcast (distress flag
    change) that lands inside the window is sent once when the window ends,
    carrying the latest state at that moment.
    """

    def __init__(
        self,
        vessel_id: str,
        transport: Optional[PresenceTransport] = None,
        *,
        throttle_ms: float = 5000,
        is_enabled: Callable[[], bool] = lambda: True,
        label: str = "",
        clock: Optional[Callable[[], float]] = None,
    ):
        self.vessel_id = vessel_id
        self.transport = transport
        self.throttle_ms = throttle_ms
        self.label = label
        self._is_enabled = is_enabled
        self._clock = clock or (lambda: time.time() * 1000)
        self._last_sent_ms: Optional[float] = None
        self._state_fn: Optional[Callable[[], Optional[PresenceBroadcast]]] = None
        self._trailing: Optional[asyncio.Task] = None
        self._tasks = TaskGroup("presence")
        self.sent = 0

    def build(self, position: Optional[Position], *, distress: bool, anchored: bool) -> Optional[PresenceBroadcast]:
        if position is None:
            return None
        return PresenceBroadcast(
            id=self.vessel_id,
            label=self.label,
            lat=position.lat,
            lng=position.lng,
            heading=position.heading_deg,
            speed=position.speed_mps,
            sos=distress,
            is_anchored=anchored,
            updated_at=self._clock(),
        )

    def maybe_broadcast(self, state_fn: Callable[[], Optional[PresenceBroadcast]], *, urgent: bool = False) -> bool:
        """Send the presence built by ``state_fn`` unless throttled, disabled or location unknown."""
        if self.transport is None or not self._is_enabled():
            return False
        payload = state_fn()
        if payload is None:
            return False

        now = self._clock()
        if self._last_sent_ms is not None and now - self._last_sent_ms < self.throttle_ms:
            if urgent:
                self._schedule_trailing(state_fn, self.throttle_ms - (now - self._last_sent_ms))
            return False

        self._send(payload)
        return True

    def _send(self, payload: PresenceBroadcast):
        self._last_sent_ms = self._clock()
        self.sent += 1
        self._tasks.spawn(self._track(payload.model_dump(by_alias=True)), "track")

    async def _track(self, body: dict):
        try:
            await self.transport.track(body)
        except Exception as e:
            logger.warning("Presence broadcast failed: %s", e)

    def _schedule_trailing(self, state_fn, delay_ms: float):
        self._state_fn = state_fn
        if self._trailing is not None and not self._trailing.done():
            return
        self._trailing = self._tasks.spawn(self._flush_after(delay_ms), "trailing")

    async def _flush_after(self, delay_ms: float):
        await asyncio.sleep(max(0.0, delay_ms) / 1000)
        state_fn, self._state_fn = self._state_fn, None
        if state_fn is None or self.transport is None or not self._is_enabled():
            return
        payload = state_fn()
        if payload is not None:
            self._send(payload)

    async def close(self):
        await self._tasks.cancel_all()
