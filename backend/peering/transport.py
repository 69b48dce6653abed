"""
Abstract direct channel between two endpoints.

A transport negotiates itself by exchanging opaque payloads through the
relay (`on_signal` out, `signal()` in) and, once open, carries opaque
byte messages in order.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

SignalCallback = Callable[[Any], Awaitable[None]]
DataCallback = Callable[[bytes], Awaitable[None]]
StateCallback = Callable[[], Awaitable[None]]


class PeerTransport(ABC):
    """One side of a channel to a single remote peer."""

    def __init__(self, peer_id: str, initiator: bool) -> None:
        self.peer_id = peer_id
        self.initiator = initiator
        self.on_signal: SignalCallback | None = None
        self.on_open: StateCallback | None = None
        self.on_data: DataCallback | None = None
        self.on_close: StateCallback | None = None

    @property
    @abstractmethod
    def is_open(self) -> bool:
        ...

    @abstractmethod
    async def start(self) -> None:
        """Begin negotiation. Initiators emit their first payload here."""

    @abstractmethod
    async def signal(self, payload: Any) -> None:
        """Feed a negotiation payload relayed from the remote side."""

    @abstractmethod
    async def send(self, data: bytes) -> None:
        """Hand one message to the channel. Raises NotConnected if not open."""

    @abstractmethod
    async def close(self) -> None:
        ...


TransportFactory = Callable[[str, bool], PeerTransport]
