"""
Room registry for the signaling relay.

Groups registered peers into rooms keyed by network locality, tells
each room about joins and departures, and evicts peers that stop
answering liveness probes.
"""

import asyncio
import logging
import time

from config import PING_INTERVAL
from signaling.identity import display_name_for, locality_key
from signaling.models import (
    Peer,
    PeerInfo,
    PeerJoinedMessage,
    PeerLeftMessage,
    PingMessage,
    WireModel,
)

logger = logging.getLogger(__name__)


class RoomRegistry:
    """In-memory rooms. Rebuilt from scratch on every restart."""

    def __init__(self, ping_interval: float = PING_INTERVAL) -> None:
        self._rooms: dict[str, dict[str, Peer]] = {}
        self._ping_interval = ping_interval
        self._liveness_task: asyncio.Task | None = None

    @property
    def ping_interval(self) -> float:
        return self._ping_interval

    @property
    def peer_timeout(self) -> float:
        return 2 * self._ping_interval

    def rooms(self) -> dict[str, list[Peer]]:
        """Snapshot of every room and its members."""
        return {key: list(room.values()) for key, room in self._rooms.items()}

    def get_peer(self, peer_id: str) -> Peer | None:
        for room in self._rooms.values():
            peer = room.get(peer_id)
            if peer:
                return peer
        return None

    def members(self, locality: str) -> list[Peer]:
        return list(self._rooms.get(locality, {}).values())

    def is_registered(self, peer: Peer) -> bool:
        return peer.id in self._rooms.get(peer.locality_key, {})

    async def register(self, peer: Peer) -> list[PeerInfo]:
        """
        Insert a peer into its room.

        Existing members are told about the newcomer; the returned list
        is the room as it was before the newcomer joined.
        """
        peer.locality_key = locality_key(peer.address)
        peer.display_name = display_name_for(peer.id)
        peer.last_seen = time.monotonic()

        room = self._rooms.setdefault(peer.locality_key, {})
        others = [p for p in room.values() if p.id != peer.id]
        # Snapshot and insert before any write suspends, so a concurrent
        # register in this room sees the newcomer
        room[peer.id] = peer
        logger.info(f"{peer} joined room {peer.locality_key} ({len(room)} members)")

        joined = PeerJoinedMessage(peer=peer.info())
        for other in others:
            await self.send(other, joined)
        return [p.info() for p in others]

    async def unregister(self, peer: Peer) -> None:
        """Remove a peer from its room. Safe to call more than once."""
        room = self._rooms.get(peer.locality_key)
        if not room or peer.id not in room:
            return

        del room[peer.id]
        logger.info(f"{peer} left room {peer.locality_key}")

        if not room:
            del self._rooms[peer.locality_key]
            return

        left = PeerLeftMessage(peer_id=peer.id)
        for other in list(room.values()):
            await self.send(other, left)

    def touch(self, peer: Peer) -> None:
        """Record that the peer answered a liveness probe."""
        peer.last_seen = time.monotonic()

    async def send(self, peer: Peer, message: WireModel) -> bool:
        """Best-effort write. A failing peer is left for liveness cleanup."""
        if peer.socket is None:
            return False
        try:
            await peer.socket.send_text(message.to_json())
            return True
        except Exception as e:
            logger.debug(f"Dropping {message.type} to {peer}: {e}")
            return False

    # --- Liveness ---

    async def start(self) -> None:
        """Start the periodic liveness check."""
        if self._liveness_task is None:
            self._liveness_task = asyncio.create_task(self._liveness_loop())
            logger.info(f"Liveness checks every {self._ping_interval}s")

    async def stop(self) -> None:
        if self._liveness_task:
            self._liveness_task.cancel()
            try:
                await self._liveness_task
            except asyncio.CancelledError:
                pass
            self._liveness_task = None

    async def _liveness_loop(self) -> None:
        while True:
            await asyncio.sleep(self._ping_interval)
            try:
                await self.check_liveness()
            except Exception as e:
                logger.error(f"Liveness check failed: {e}", exc_info=True)

    async def check_liveness(self, now: float | None = None) -> list[Peer]:
        """
        Evict silent peers and probe the rest.

        Returns the evicted peers.
        """
        now = time.monotonic() if now is None else now
        evicted: list[Peer] = []

        for room in list(self._rooms.values()):
            for peer in list(room.values()):
                if now - peer.last_seen > self.peer_timeout:
                    evicted.append(peer)
                else:
                    await self.send(peer, PingMessage())

        for peer in evicted:
            logger.info(f"{peer} missed liveness probes, evicting")
            await self.unregister(peer)
            await self._close_socket(peer)

        return evicted

    async def _close_socket(self, peer: Peer) -> None:
        if peer.socket is None:
            return
        try:
            await peer.socket.close()
        except Exception as e:
            logger.debug(f"Closing socket of {peer} failed: {e}")
