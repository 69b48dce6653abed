"""
Connection Manager: owns the direct channels of one endpoint.

Peers announced in the relay's initial member list are dialled (this
side initiates); peers announced later via "peer-joined" are waited
for (this side responds). Once a channel is open it exposes a plain
per-peer send/receive primitive.
"""

import logging
from typing import Any, Awaitable, Callable

from errors import NotConnected
from peering.models import Connection, ConnectionState
from peering.transport import PeerTransport, TransportFactory
from signaling.models import PeerInfo

logger = logging.getLogger(__name__)

SignalSender = Callable[[str, Any], Awaitable[None]]


class ConnectionManager:
    """Manages the direct channels to every peer in the room."""

    def __init__(self, transport_factory: TransportFactory, send_signal: SignalSender) -> None:
        self._transport_factory = transport_factory
        self._send_signal = send_signal
        self._connections: dict[str, Connection] = {}
        self._transports: dict[str, PeerTransport] = {}
        self._open_callbacks: list = []  # async fn(connection)
        self._message_callbacks: list = []  # async fn(peer_id, data)
        self._close_callbacks: list = []  # async fn(peer_id)

    # --- Callback registration ---

    def on_open(self, callback) -> None:
        self._open_callbacks.append(callback)

    def on_message(self, callback) -> None:
        self._message_callbacks.append(callback)

    def on_close(self, callback) -> None:
        self._close_callbacks.append(callback)

    async def _notify(self, callbacks: list, *args) -> None:
        for cb in callbacks:
            try:
                await cb(*args)
            except Exception as e:
                logger.error(f"Connection callback error: {e}", exc_info=True)

    # --- Queries ---

    def get_connection(self, peer_id: str) -> Connection | None:
        return self._connections.get(peer_id)

    def get_connections(self) -> list[Connection]:
        return list(self._connections.values())

    def is_open(self, peer_id: str) -> bool:
        conn = self._connections.get(peer_id)
        return conn is not None and conn.state == ConnectionState.OPEN

    # --- Relay events ---

    async def add_peers(self, peers: list[PeerInfo]) -> None:
        """Peers already in the room when we joined: we initiate."""
        for peer in peers:
            await self._create(peer, initiator=True)

    async def peer_joined(self, peer: PeerInfo) -> None:
        """A newcomer announced by the relay: it will dial us."""
        await self._create(peer, initiator=False)

    async def peer_left(self, peer_id: str) -> None:
        await self.close(peer_id)

    async def handle_signal(self, sender_id: str | None, payload: Any) -> None:
        transport = self._transports.get(sender_id or "")
        if transport is None:
            logger.debug(f"Dropping signal from unknown peer {sender_id}")
            return
        await transport.signal(payload)

    # --- Channel primitive ---

    async def send(self, peer_id: str, data: bytes) -> None:
        if not self.is_open(peer_id):
            raise NotConnected(peer_id)
        await self._transports[peer_id].send(data)

    async def close(self, peer_id: str) -> None:
        transport = self._transports.get(peer_id)
        if transport is not None:
            try:
                await transport.close()
            except Exception as e:
                logger.warning(f"Error closing channel to {peer_id}: {e}")
        await self._closed(peer_id)

    async def close_all(self) -> None:
        for peer_id in list(self._connections):
            await self.close(peer_id)

    # --- Internals ---

    async def _create(self, peer: PeerInfo, initiator: bool) -> None:
        if peer.id in self._connections:
            logger.debug(f"Peer already exists: {peer.id}")
            return

        logger.info(f"Creating connection to {peer.display_name} ({peer.id}), initiator={initiator}")
        conn = Connection(
            peer_id=peer.id,
            initiator=initiator,
            display_name=peer.display_name,
            device_info=peer.device_info,
        )
        transport = self._transport_factory(peer.id, initiator)
        self._connections[peer.id] = conn
        self._transports[peer.id] = transport

        async def on_signal(payload: Any) -> None:
            await self._send_signal(peer.id, payload)

        async def on_open() -> None:
            await self._opened(peer.id)

        async def on_data(data: bytes) -> None:
            await self._notify(self._message_callbacks, peer.id, data)

        async def on_close() -> None:
            await self._closed(peer.id)

        transport.on_signal = on_signal
        transport.on_open = on_open
        transport.on_data = on_data
        transport.on_close = on_close

        await transport.start()

    async def _opened(self, peer_id: str) -> None:
        conn = self._connections.get(peer_id)
        if conn is None or conn.state != ConnectionState.CONNECTING:
            return
        conn.state = ConnectionState.OPEN
        logger.info(f"Connected to peer: {conn.display_name} ({peer_id})")
        await self._notify(self._open_callbacks, conn)

    async def _closed(self, peer_id: str) -> None:
        conn = self._connections.pop(peer_id, None)
        self._transports.pop(peer_id, None)
        if conn is None:
            return
        conn.state = ConnectionState.CLOSED
        logger.info(f"Connection closed: {conn.display_name} ({peer_id})")
        await self._notify(self._close_callbacks, peer_id)
