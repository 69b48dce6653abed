"""
Endpoint side of the relay protocol.

Registers with the relay over a WebSocket, answers liveness probes and
feeds membership and negotiation messages to the connection manager.
"""

import asyncio
import logging
from typing import Any

import websockets

from config import SIGNALING_URL
from errors import MalformedMessage
from signaling.models import (
    PeerInfo,
    PeerInfoMessage,
    PeerJoinedMessage,
    PeerLeftMessage,
    PeersMessage,
    PingMessage,
    PongMessage,
    RegisterMessage,
    SignalMessage,
    WireModel,
    parse_server_message,
)

logger = logging.getLogger(__name__)


class SignalingClient:
    """One endpoint's session with the relay."""

    def __init__(self, url: str = SIGNALING_URL, device_info: dict[str, Any] | None = None) -> None:
        self.url = url
        self.device_info = device_info or {}
        self.identity: PeerInfo | None = None
        self.manager = None  # ConnectionManager, attached by the owner
        self._ws = None
        self._registered = asyncio.Event()

    @property
    def peer_id(self) -> str | None:
        return self.identity.id if self.identity else None

    async def wait_registered(self, timeout: float | None = None) -> PeerInfo:
        await asyncio.wait_for(self._registered.wait(), timeout=timeout)
        return self.identity

    async def run(self) -> None:
        """Connect, register and process relay messages until the socket closes."""
        logger.info(f"Connecting to signaling server at {self.url}")
        async with websockets.connect(self.url) as ws:
            self._ws = ws
            try:
                await self._send(RegisterMessage(device_info=self.device_info))
                async for raw in ws:
                    await self.handle(raw)
            except websockets.exceptions.ConnectionClosed as e:
                logger.info(f"Disconnected from signaling server: {e}")
            finally:
                self._ws = None
                self._registered.clear()

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()

    async def send_signal(self, peer_id: str, payload: Any) -> None:
        await self._send(SignalMessage(to=peer_id, payload=payload))

    async def _send(self, message: WireModel) -> None:
        if self._ws is None:
            logger.warning(f"Not connected to signaling server, dropping {message.type}")
            return
        await self._ws.send(message.to_json())

    async def handle(self, raw: str | bytes) -> None:
        """Dispatch one relay message."""
        try:
            message = parse_server_message(raw)
        except MalformedMessage as e:
            logger.warning(f"Ignoring malformed relay message: {e}")
            return

        if isinstance(message, PingMessage):
            await self._send(PongMessage())
        elif isinstance(message, PeerInfoMessage):
            self.identity = message.peer
            logger.info(f"Registered as {message.peer.display_name} ({message.peer.id})")
            self._registered.set()
        elif isinstance(message, PeersMessage):
            logger.info(f"Room has {len(message.peers)} other peer(s)")
            if self.manager:
                await self.manager.add_peers(message.peers)
        elif isinstance(message, PeerJoinedMessage):
            logger.info(f"New peer joined: {message.peer.display_name}")
            if self.manager:
                await self.manager.peer_joined(message.peer)
        elif isinstance(message, PeerLeftMessage):
            logger.info(f"Peer left: {message.peer_id}")
            if self.manager:
                await self.manager.peer_left(message.peer_id)
        elif isinstance(message, SignalMessage):
            if self.manager:
                await self.manager.handle_signal(message.sender, message.payload)
        else:
            raise TypeError(f"Unhandled relay message: {message!r}")
