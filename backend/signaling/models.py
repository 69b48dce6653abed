"""Pydantic models for the relay's signaling protocol."""

import time
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from errors import MalformedMessage


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class PeerInfo(WireModel):
    """The public part of a peer, as announced to its room."""
    id: str
    display_name: str
    device_info: dict[str, Any] = Field(default_factory=dict)


class Peer(BaseModel):
    """A registered peer. Owned by the room registry."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    address: str
    locality_key: str = ""
    display_name: str = ""
    device_info: dict[str, Any] = Field(default_factory=dict)
    last_seen: float = Field(default_factory=time.monotonic)
    socket: Any = Field(default=None, exclude=True)  # anything with send_text()/close()

    def info(self) -> PeerInfo:
        return PeerInfo(
            id=self.id,
            display_name=self.display_name,
            device_info=self.device_info,
        )

    def __str__(self) -> str:
        return f"<Peer id={self.id} ip={self.address} name={self.display_name}>"


# --- Client -> server ---

class RegisterMessage(WireModel):
    type: Literal["register"] = "register"
    device_info: dict[str, Any] | None = None


class PongMessage(WireModel):
    type: Literal["pong"] = "pong"


# --- Server -> client ---

class PeerInfoMessage(WireModel):
    type: Literal["peer-info"] = "peer-info"
    peer: PeerInfo


class PeersMessage(WireModel):
    type: Literal["peers"] = "peers"
    peers: list[PeerInfo]


class PeerJoinedMessage(WireModel):
    type: Literal["peer-joined"] = "peer-joined"
    peer: PeerInfo


class PeerLeftMessage(WireModel):
    type: Literal["peer-left"] = "peer-left"
    peer_id: str


class PingMessage(WireModel):
    type: Literal["ping"] = "ping"


# --- Both directions ---

class SignalMessage(WireModel):
    """Negotiation payload. Clients set `to`, the relay sets `from`."""
    type: Literal["signal"] = "signal"
    to: str | None = None
    sender: str | None = Field(default=None, alias="from")
    payload: Any = None


ClientMessage = Annotated[
    Union[RegisterMessage, SignalMessage, PongMessage],
    Field(discriminator="type"),
]

ServerMessage = Annotated[
    Union[
        PeerInfoMessage,
        PeersMessage,
        PeerJoinedMessage,
        PeerLeftMessage,
        SignalMessage,
        PingMessage,
    ],
    Field(discriminator="type"),
]

_client_adapter = TypeAdapter(ClientMessage)
_server_adapter = TypeAdapter(ServerMessage)


def parse_client_message(raw: str | bytes):
    """Parse a message sent by an endpoint to the relay."""
    try:
        return _client_adapter.validate_json(raw)
    except ValidationError as e:
        raise MalformedMessage(str(e)) from e


def parse_server_message(raw: str | bytes):
    """Parse a message sent by the relay to an endpoint."""
    try:
        return _server_adapter.validate_json(raw)
    except ValidationError as e:
        raise MalformedMessage(str(e)) from e
