"""WebSocket handler for the signaling relay."""

import logging

from fastapi import WebSocket, WebSocketDisconnect

from errors import MalformedMessage
from signaling.identity import new_peer_id, normalize_address
from signaling.models import (
    Peer,
    PeerInfoMessage,
    PeersMessage,
    PongMessage,
    RegisterMessage,
    SignalMessage,
    parse_client_message,
)
from signaling.registry import RoomRegistry
from signaling.relay import SignalRelay

logger = logging.getLogger(__name__)


def client_address(websocket: WebSocket) -> str:
    """Prefer the first X-Forwarded-For hop over the socket address."""
    forwarded_for = websocket.headers.get("x-forwarded-for")
    if forwarded_for:
        return normalize_address(forwarded_for.split(",")[0])
    if websocket.client:
        return normalize_address(websocket.client.host)
    return ""


class SignalingEndpoint:
    """Serves one relay connection per endpoint."""

    def __init__(self, registry: RoomRegistry, relay: SignalRelay) -> None:
        self._registry = registry
        self._relay = relay

    async def serve(self, websocket: WebSocket) -> None:
        await websocket.accept()
        peer = Peer(
            id=new_peer_id(),
            address=client_address(websocket),
            socket=websocket,
        )
        logger.info(f"New client connected: {peer}")

        try:
            while True:
                raw = await websocket.receive_text()
                await self.handle(peer, raw, websocket.headers.get("user-agent", ""))
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.error(f"Signaling connection error for {peer}: {e}")
        finally:
            await self._registry.unregister(peer)
            logger.info(f"Client disconnected: {peer}")

    async def handle(self, peer: Peer, raw: str, user_agent: str = "") -> None:
        """Dispatch one message from `peer`."""
        try:
            message = parse_client_message(raw)
        except MalformedMessage as e:
            logger.warning(f"Ignoring malformed message from {peer.id}: {e}")
            return

        if isinstance(message, RegisterMessage):
            if self._registry.is_registered(peer):
                logger.debug(f"{peer} registered twice, ignoring")
                return
            if message.device_info is not None:
                peer.device_info = message.device_info
            else:
                peer.device_info = {"userAgent": user_agent}
            others = await self._registry.register(peer)
            await self._registry.send(peer, PeersMessage(peers=others))
            await self._registry.send(peer, PeerInfoMessage(peer=peer.info()))
        elif isinstance(message, SignalMessage):
            await self._relay.relay(peer, message.to, message.payload)
        elif isinstance(message, PongMessage):
            self._registry.touch(peer)
        else:
            raise TypeError(f"Unhandled signaling message: {message!r}")
