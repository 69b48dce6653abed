"""
In-process transport.

Two endpoints running on the same event loop connect through a shared
hub. Negotiation still goes through the relay: the initiator emits an
offer token, the responder claims it and answers.
"""

import asyncio
import logging
import uuid
from typing import Any

from errors import NotConnected
from peering.transport import PeerTransport

logger = logging.getLogger(__name__)

_CLOSED = object()


class LoopbackHub:
    """Pairs loopback transports that share it."""

    def __init__(self) -> None:
        self._offers: dict[str, "LoopbackTransport"] = {}

    def factory(self, peer_id: str, initiator: bool) -> "LoopbackTransport":
        return LoopbackTransport(self, peer_id, initiator)

    def offer(self, transport: "LoopbackTransport") -> str:
        token = str(uuid.uuid4())
        self._offers[token] = transport
        return token

    def claim(self, token: str) -> "LoopbackTransport | None":
        return self._offers.pop(token, None)


class LoopbackTransport(PeerTransport):

    def __init__(self, hub: LoopbackHub, peer_id: str, initiator: bool) -> None:
        super().__init__(peer_id, initiator)
        self._hub = hub
        self._remote: LoopbackTransport | None = None
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._pump_task: asyncio.Task | None = None
        self._open = False
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._open and not self._closed

    async def start(self) -> None:
        if self.initiator:
            token = self._hub.offer(self)
            await self._emit_signal({"type": "offer", "token": token})

    async def signal(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            logger.debug(f"Ignoring non-dict signal from {self.peer_id}")
            return

        kind = payload.get("type")
        if kind == "offer" and not self.initiator:
            remote = self._hub.claim(payload.get("token", ""))
            if remote is None:
                logger.warning(f"Offer from {self.peer_id} expired or unknown")
                return
            self._remote = remote
            remote._remote = self
            await self._opened()
            await self._emit_signal({"type": "answer", "token": payload["token"]})
        elif kind == "answer" and self.initiator:
            if self._remote is None:
                logger.warning(f"Answer from {self.peer_id} for an unclaimed offer")
                return
            await self._opened()

    async def send(self, data: bytes) -> None:
        if not self.is_open or self._remote is None:
            raise NotConnected(self.peer_id)
        self._remote._inbox.put_nowait(bytes(data))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        remote, self._remote = self._remote, None
        self._inbox.put_nowait(_CLOSED)
        if remote is not None:
            await remote.close()

    async def _opened(self) -> None:
        self._open = True
        self._pump_task = asyncio.create_task(self._pump())
        if self.on_open:
            await self.on_open()

    async def _pump(self) -> None:
        """Deliver inbound messages in arrival order."""
        while True:
            item = await self._inbox.get()
            if item is _CLOSED:
                break
            if self.on_data:
                try:
                    await self.on_data(item)
                except Exception as e:
                    logger.error(f"Data handler error for {self.peer_id}: {e}", exc_info=True)
        if self.on_close:
            await self.on_close()

    async def _emit_signal(self, payload: dict) -> None:
        if self.on_signal:
            await self.on_signal(payload)
