"""
Transfer Manager: ties the transfer protocol to the connection manager.

Routes inbound channel messages to the receiver, tears down both sides'
state when a connection closes, stores received files and fans every
transfer event out to registered callbacks.
"""

import asyncio
import logging
import os

from config import DEFAULT_SAVE_DIR
from errors import TransferError
from transfer.models import ReceivedFile
from transfer.receiver import TransferReceiver
from transfer.sender import TransferSender
from transfer.source import FileSource

logger = logging.getLogger(__name__)


def is_safe_path(basedir: str, path: str) -> bool:
    basedir = os.path.realpath(basedir)
    return os.path.commonpath([basedir, os.path.realpath(path)]) == basedir


class TransferManager:
    """Manages all outgoing and incoming file transfers of one endpoint."""

    def __init__(self, connections, save_dir: str | None = DEFAULT_SAVE_DIR) -> None:
        self._connections = connections
        self._save_dir = save_dir
        self._event_callbacks: list = []  # async fn(event_type, data)

        self.sender = TransferSender(connections)
        self.receiver = TransferReceiver(sink=self._store)
        self.sender.on_event(self._emit)
        self.receiver.on_event(self._emit)

        connections.on_message(self.receiver.handle)
        connections.on_close(self._on_connection_closed)

    @property
    def save_dir(self) -> str | None:
        return self._save_dir

    @save_dir.setter
    def save_dir(self, path: str | None) -> None:
        if path:
            os.makedirs(path, exist_ok=True)
        self._save_dir = path

    def on_event(self, callback) -> None:
        """Register callback: async fn(event_type: str, data: dict)."""
        self._event_callbacks.append(callback)

    async def _emit(self, event_type: str, data: dict) -> None:
        for cb in self._event_callbacks:
            try:
                await cb(event_type, data)
            except Exception as e:
                logger.error(f"Event callback error: {e}")

    # --- Sending ---

    async def send_file(self, peer_id: str, source: FileSource, path: str | None = None) -> str:
        return await self.sender.send_file(peer_id, source, path)

    async def send_folder(self, peer_id: str, folder_name: str, sources: list[FileSource]) -> list[str]:
        """Send `sources` as members of `folder_name` (announced as folder_name/<name>)."""
        files = [(source, f"{folder_name}/{source.name}") for source in sources]
        return await self.sender.send_folder(peer_id, files)

    async def pause_transfer(self, transfer_id: str) -> bool:
        return await self.sender.pause(transfer_id)

    async def resume_transfer(self, transfer_id: str) -> bool:
        return await self.sender.resume(transfer_id)

    async def cancel_transfer(self, transfer_id: str) -> bool:
        return await self.sender.cancel(transfer_id)

    # --- Connection loss ---

    async def _on_connection_closed(self, peer_id: str) -> None:
        await self.sender.abandon_peer(peer_id)
        await self.receiver.abandon_peer(peer_id)

    # --- Storage ---

    async def _store(self, received: ReceivedFile) -> str | None:
        """Write a received file below the save directory, if one is set."""
        if not self._save_dir:
            return None

        path = os.path.join(self._save_dir, received.file_name)
        if not is_safe_path(self._save_dir, path):
            raise TransferError(received.peer_id, received.file_name, "Unsafe file name")

        await asyncio.to_thread(self._write, path, received.data)
        logger.info(f"Saved '{received.file_name}' to {path}")
        return path

    @staticmethod
    def _write(path: str, data: bytes) -> None:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
