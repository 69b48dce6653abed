"""Exceptions shared by the relay and the endpoint components."""


class DropooError(Exception):
    """Base class for every error raised by this package."""


class MalformedMessage(DropooError):
    """A control or data payload could not be parsed."""


class PeerNotFound(DropooError):
    """The target peer is not known."""

    def __init__(self, peer_id: str):
        super().__init__(f"Peer not found: {peer_id}")
        self.peer_id = peer_id


class NotConnected(DropooError):
    """A send was attempted on an absent or non-open connection."""

    def __init__(self, peer_id: str):
        super().__init__(f"Not connected to peer: {peer_id}")
        self.peer_id = peer_id


class InvalidFile(DropooError):
    """The file source is empty or cannot be read."""


class ReadError(DropooError):
    """The file source failed while a transfer was in progress."""


class TransferError(DropooError):
    """Generic failure while sending or receiving a file."""

    def __init__(self, peer_id: str, file_name: str, reason: str):
        super().__init__(f"Transfer of '{file_name}' with {peer_id} failed: {reason}")
        self.peer_id = peer_id
        self.file_name = file_name
        self.reason = reason
