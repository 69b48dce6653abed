"""Pydantic models for file transfer."""

import base64
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_serializer,
    field_validator,
)
from pydantic.alias_generators import to_camel

from errors import MalformedMessage


class TransferStatus(str, Enum):
    """States of an outgoing transfer. Cancelled and completed are terminal."""
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class OutgoingTransfer(BaseModel):
    """Sender-side state of one file."""
    transfer_id: str
    peer_id: str
    file_name: str
    mime_type: str = ""
    total_size: int
    sent_offset: int = 0
    status: TransferStatus = TransferStatus.ACTIVE

    @property
    def progress(self) -> float:
        if self.total_size <= 0:
            return 1.0
        return min(self.sent_offset / self.total_size, 1.0)


class IncomingTransfer(BaseModel):
    """Receiver-side state of one file."""
    transfer_id: str
    peer_id: str
    file_name: str
    mime_type: str = ""
    total_size: int
    chunks: list[bytes] = Field(default_factory=list)
    received_size: int = 0
    folder_path: str | None = None

    @property
    def progress(self) -> float:
        if self.total_size <= 0:
            return 1.0
        return min(self.received_size / self.total_size, 1.0)


class FolderMember(BaseModel):
    size: int
    mime_type: str = ""
    data: bytes | None = None  # None until the member's file-end


class FolderAggregate(BaseModel):
    """Files sharing a folder path, archived together once all have arrived."""
    peer_id: str
    folder_path: str
    files: dict[str, FolderMember] = Field(default_factory=dict)
    total_size: int = 0
    received_size: int = 0
    failed: bool = False

    @property
    def progress(self) -> float:
        if self.total_size <= 0:
            return 1.0
        return min(self.received_size / self.total_size, 1.0)

    @property
    def complete(self) -> bool:
        return all(member.data is not None for member in self.files.values())


class ReceivedFile(BaseModel):
    """A finished file or folder archive handed to the application."""
    peer_id: str
    file_name: str
    mime_type: str = ""
    data: bytes
    saved_path: str | None = None

    @property
    def size(self) -> int:
        return len(self.data)


# --- Data-channel messages ---

class ChannelMessage(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def encode(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")


class FileStart(ChannelMessage):
    type: Literal["file-start"] = "file-start"
    transfer_id: str
    file_name: str
    file_size: int = Field(ge=0)
    file_type: str = ""


class FileChunk(ChannelMessage):
    type: Literal["file-chunk"] = "file-chunk"
    transfer_id: str
    file_name: str
    data: bytes

    @field_validator("data", mode="before")
    @classmethod
    def _decode_data(cls, value):
        if isinstance(value, str):
            try:
                return base64.b64decode(value, validate=True)
            except ValueError as e:
                raise ValueError(f"invalid base64 chunk: {e}") from e
        if isinstance(value, list):
            # Older peers send a JSON array of byte values
            return bytes(value)
        return value

    @field_serializer("data")
    def _encode_data(self, value: bytes) -> str:
        return base64.b64encode(value).decode("ascii")


class FileEnd(ChannelMessage):
    type: Literal["file-end"] = "file-end"
    transfer_id: str
    file_name: str
    file_type: str = ""


class FileCancel(ChannelMessage):
    type: Literal["file-cancel"] = "file-cancel"
    transfer_id: str


DataMessage = Annotated[
    Union[FileStart, FileChunk, FileEnd, FileCancel],
    Field(discriminator="type"),
]

_data_adapter = TypeAdapter(DataMessage)


def parse_data_message(raw: bytes | str):
    """Parse one data-channel message."""
    try:
        return _data_adapter.validate_json(raw)
    except ValidationError as e:
        raise MalformedMessage(str(e)) from e
