"""Pydantic models for endpoint-side connections."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class Connection(BaseModel):
    """A channel to one remote peer, as tracked by the connection manager."""
    peer_id: str
    initiator: bool
    state: ConnectionState = ConnectionState.CONNECTING
    display_name: str = ""
    device_info: dict[str, Any] = Field(default_factory=dict)
