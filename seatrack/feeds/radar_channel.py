"""SeaTrack - Radar Presence Channel (Supabase Realtime).

Joins the shared ``radar`` channel with the vessel id as presence key,
tracks the local vessel's presence and turns presence_state /
presence_diff frames into registry upserts, removals and syncs.

Wire format: Phoenix channel frames, JSON serializer vsn 1.0.0.
"""

import asyncio
import itertools
import json
import logging
from typing import Callable, Optional

import websockets

logger = logging.getLogger("seatrack.radar")

HEARTBEAT_SECONDS = 25
RECONNECT_SECONDS = 10


def realtime_url(supabase_url: str, api_key: str) -> str:
    base = supabase_url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://"):]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://"):]
    return f"{base}/realtime/v1/websocket?apikey={api_key}&vsn=1.0.0"


class RadarChannel:
    """Presence channel client; doubles as the engine's presence transport."""

    def __init__(
        self,
        url: str,
        vessel_id: str,
        *,
        channel: str = "radar",
        access_token: Optional[str] = None,
        on_upsert: Callable[[dict], None],
        on_remove: Callable[[str], None],
        on_sync: Callable[[list[dict]], None],
        on_joined: Callable[[], None] = lambda: None,
    ):
        self.url = url
        self.vessel_id = vessel_id
        self.topic = f"realtime:{channel}"
        self.access_token = access_token
        self._on_upsert = on_upsert
        self._on_remove = on_remove
        self._on_sync = on_sync
        self._on_joined = on_joined
        self._refs = itertools.count(1)
        self._join_ref: Optional[str] = None
        self._ws = None
        self._running = False
        self.joined = False
        # presence key -> metas currently known for it
        self._presence: dict[str, list[dict]] = {}

    # ── Frames ───────────────────────────────────

    def _frame(self, topic: str, event: str, payload: dict) -> str:
        ref = str(next(self._refs))
        frame = {"topic": topic, "event": event, "payload": payload, "ref": ref}
        if topic == self.topic and self._join_ref:
            frame["join_ref"] = self._join_ref
        return json.dumps(frame, default=str)

    def join_frame(self) -> str:
        self._join_ref = None
        payload = {
            "config": {
                "broadcast": {"self": False},
                "presence": {"key": self.vessel_id},
            },
        }
        if self.access_token:
            payload["access_token"] = self.access_token
        frame = self._frame(self.topic, "phx_join", payload)
        self._join_ref = json.loads(frame)["ref"]
        return frame

    def track_frame(self, payload: dict) -> str:
        return self._frame(self.topic, "presence", {"type": "presence", "event": "track", "payload": payload})

    def heartbeat_frame(self) -> str:
        return self._frame("phoenix", "heartbeat", {})

    # ── Presence handling ────────────────────────

    def _peer_payload(self, key: str) -> Optional[dict]:
        metas = self._presence.get(key) or []
        if not metas:
            return None
        meta = {k: v for k, v in metas[-1].items() if k != "phx_ref" and k != "phx_ref_prev"}
        meta.setdefault("id", key)
        return meta

    def handle_message(self, raw) -> Optional[str]:
        """Apply one incoming frame; returns the event name handled, if any."""
        try:
            msg = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug("[radar] Unparseable frame")
            return None
        if not isinstance(msg, dict) or msg.get("topic") != self.topic:
            return None

        event = msg.get("event")
        payload = msg.get("payload") or {}

        if event == "phx_reply" and msg.get("ref") == self._join_ref:
            if payload.get("status") == "ok":
                self.joined = True
                logger.info("[radar] Joined %s as %s", self.topic, self.vessel_id)
                self._on_joined()
            else:
                logger.warning("[radar] Join refused: %s", payload.get("response"))
        elif event == "presence_state":
            self._presence = {
                key: list((entry or {}).get("metas") or [])
                for key, entry in payload.items()
                if key != self.vessel_id
            }
            peers = [p for p in (self._peer_payload(k) for k in self._presence) if p is not None]
            self._on_sync(peers)
        elif event == "presence_diff":
            self._apply_diff(payload)
        elif event in ("phx_error", "phx_close"):
            self.joined = False
            logger.warning("[radar] Channel %s: %s", event, payload)
        return event

    def _apply_diff(self, payload: dict):
        changed = set()
        for key, entry in (payload.get("joins") or {}).items():
            if key == self.vessel_id:
                continue
            metas = (entry or {}).get("metas") or []
            known = self._presence.setdefault(key, [])
            # A re-track replaces the meta it supersedes
            superseded = {m.get("phx_ref_prev") for m in metas if m.get("phx_ref_prev")}
            known[:] = [m for m in known if m.get("phx_ref") not in superseded]
            known.extend(metas)
            changed.add(key)

        for key, entry in (payload.get("leaves") or {}).items():
            if key == self.vessel_id or key not in self._presence:
                continue
            gone = {m.get("phx_ref") for m in (entry or {}).get("metas") or []}
            self._presence[key] = [m for m in self._presence[key] if m.get("phx_ref") not in gone]
            changed.add(key)

        for key in changed:
            peer = self._peer_payload(key)
            if peer is None:
                self._presence.pop(key, None)
                self._on_remove(key)
            else:
                self._on_upsert(peer)

    # ── Transport ────────────────────────────────

    async def track(self, payload: dict) -> None:
        """Send our presence; dropped while not joined (the next update resends)."""
        if self._ws is None or not self.joined:
            logger.debug("[radar] Not joined; presence update dropped")
            return
        await self._ws.send(self.track_frame(payload))

    async def _heartbeat(self, ws):
        while True:
            await asyncio.sleep(HEARTBEAT_SECONDS)
            await ws.send(self.heartbeat_frame())

    async def run(self):
        self._running = True
        while self._running:
            heartbeat = None
            try:
                async with websockets.connect(self.url) as ws:
                    self._ws = ws
                    await ws.send(self.join_frame())
                    heartbeat = asyncio.create_task(self._heartbeat(ws))
                    async for raw in ws:
                        self.handle_message(raw)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Known peers stay in the registry until the next presence_state
                logger.warning("[radar] Disconnected: %s; reconnecting in %ds", e, RECONNECT_SECONDS)
            finally:
                self._ws = None
                self.joined = False
                if heartbeat is not None:
                    heartbeat.cancel()
            if self._running:
                await asyncio.sleep(RECONNECT_SECONDS)

    async def stop(self):
        self._running = False
        if self._ws is not None:
            await self._ws.close()
