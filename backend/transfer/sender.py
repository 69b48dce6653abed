"""
Sending side of the transfer protocol.

Each outgoing file runs as its own task that walks the file one chunk
at a time, yielding to the event loop between chunks so other
transfers and relay traffic interleave. Pause, resume and cancel only
flip the transfer's status; the task notices at its next checkpoint.
"""

import asyncio
import logging
import time

from config import CHUNK_SIZE
from errors import NotConnected, PeerNotFound, ReadError
from transfer.models import (
    ChannelMessage,
    FileCancel,
    FileChunk,
    FileEnd,
    FileStart,
    OutgoingTransfer,
    TransferStatus,
)
from transfer.source import FileSource, iter_slices

logger = logging.getLogger(__name__)

TERMINAL_STATES = (TransferStatus.CANCELLED, TransferStatus.COMPLETED)


class TransferSender:
    """Owns every outgoing transfer of one endpoint."""

    def __init__(self, connections, chunk_size: int = CHUNK_SIZE) -> None:
        self._connections = connections  # ConnectionManager
        self._chunk_size = chunk_size
        self._transfers: dict[str, OutgoingTransfer] = {}
        self._sources: dict[str, FileSource] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._wakeups: dict[str, asyncio.Event] = {}
        self._last_stamp = 0
        self._event_callbacks: list = []  # async fn(event_type, data)

    def on_event(self, callback) -> None:
        """Register callback: async fn(event_type: str, data: dict)."""
        self._event_callbacks.append(callback)

    async def _emit(self, event_type: str, data: dict) -> None:
        for cb in self._event_callbacks:
            try:
                await cb(event_type, data)
            except Exception as e:
                logger.error(f"Event callback error: {e}")

    def get_transfer(self, transfer_id: str) -> OutgoingTransfer | None:
        return self._transfers.get(transfer_id)

    def get_transfers(self) -> list[OutgoingTransfer]:
        return list(self._transfers.values())

    # --- Starting transfers ---

    async def send_file(self, peer_id: str, source: FileSource, path: str | None = None) -> str:
        """
        Start sending one file to a connected peer.

        Args:
            peer_id: Remote peer; must have an open connection.
            source: The file to send.
            path: Name to announce instead of the source name, e.g.
                "photos/1.jpg" for a folder member.

        Returns:
            The new transfer id.
        """
        transfer = await self._announce(peer_id, source, path)
        self._start(transfer.transfer_id)
        return transfer.transfer_id

    async def send_folder(self, peer_id: str, files: list[tuple[FileSource, str]]) -> list[str]:
        """
        Send several files sharing a folder path.

        Every member is announced before any member streams, so the
        receiver knows the whole group before the first one finishes.
        """
        for source, _ in files:
            source.validate()
        transfers: list[OutgoingTransfer] = []
        try:
            for source, path in files:
                transfers.append(await self._announce(peer_id, source, path))
        except Exception:
            await self._withdraw(transfers)
            raise
        for transfer in transfers:
            self._start(transfer.transfer_id)
        return [t.transfer_id for t in transfers]

    async def _announce(self, peer_id: str, source: FileSource, path: str | None) -> OutgoingTransfer:
        if self._connections.get_connection(peer_id) is None:
            raise PeerNotFound(peer_id)
        if not self._connections.is_open(peer_id):
            raise NotConnected(peer_id)
        source.validate()

        transfer = OutgoingTransfer(
            transfer_id=self._new_transfer_id(peer_id),
            peer_id=peer_id,
            file_name=path or source.name,
            mime_type=source.mime_type,
            total_size=source.size,
        )
        await self._connections.send(peer_id, FileStart(
            transfer_id=transfer.transfer_id,
            file_name=transfer.file_name,
            file_size=transfer.total_size,
            file_type=transfer.mime_type,
        ).encode())

        self._transfers[transfer.transfer_id] = transfer
        self._sources[transfer.transfer_id] = source
        wakeup = asyncio.Event()
        wakeup.set()
        self._wakeups[transfer.transfer_id] = wakeup

        logger.info(f"Sending '{transfer.file_name}' ({transfer.total_size} bytes) to {peer_id}")
        await self._emit("transfer_started", self._event_data(transfer))
        return transfer

    async def _withdraw(self, transfers: list[OutgoingTransfer]) -> None:
        """Cancel members of a folder that was only partly announced."""
        for transfer in transfers:
            transfer.status = TransferStatus.CANCELLED
            self._forget(transfer.transfer_id)
            try:
                await self._send(transfer, FileCancel(transfer_id=transfer.transfer_id))
            except Exception as e:
                logger.warning(f"Could not withdraw '{transfer.file_name}': {e}")
            await self._emit("transfer_cancelled", {
                **self._event_data(transfer),
                "reason": "Folder announcement failed",
            })

    def _start(self, transfer_id: str) -> None:
        self._tasks[transfer_id] = asyncio.create_task(self._run(transfer_id))

    def _new_transfer_id(self, peer_id: str) -> str:
        # Millisecond stamps, bumped so that ids never repeat within this sender
        stamp = max(time.time_ns() // 1_000_000, self._last_stamp + 1)
        self._last_stamp = stamp
        return f"{peer_id}-{stamp}"

    # --- Controls ---

    async def pause(self, transfer_id: str) -> bool:
        transfer = self._transfers.get(transfer_id)
        if not transfer or transfer.status != TransferStatus.ACTIVE:
            return False
        transfer.status = TransferStatus.PAUSED
        self._wakeups[transfer_id].clear()
        logger.info(f"Paused '{transfer.file_name}' at offset {transfer.sent_offset}")
        return True

    async def resume(self, transfer_id: str) -> bool:
        transfer = self._transfers.get(transfer_id)
        if not transfer or transfer.status != TransferStatus.PAUSED:
            return False
        transfer.status = TransferStatus.ACTIVE
        self._wakeups[transfer_id].set()
        logger.info(f"Resumed '{transfer.file_name}' from offset {transfer.sent_offset}")
        return True

    async def cancel(self, transfer_id: str) -> bool:
        transfer = self._transfers.get(transfer_id)
        if not transfer or transfer.status in TERMINAL_STATES:
            return False
        transfer.status = TransferStatus.CANCELLED
        self._wakeups[transfer_id].set()
        return True

    async def abandon_peer(self, peer_id: str) -> None:
        """Drop every transfer to a peer that is gone. Nothing is sent."""
        for transfer in [t for t in self._transfers.values() if t.peer_id == peer_id]:
            transfer.status = TransferStatus.CANCELLED
            task = self._tasks.get(transfer.transfer_id)
            if task and task is not asyncio.current_task():
                task.cancel()
            self._forget(transfer.transfer_id)
            logger.info(f"Abandoned '{transfer.file_name}': peer {peer_id} disconnected")
            await self._emit("transfer_cancelled", {
                **self._event_data(transfer),
                "reason": "Peer disconnected",
            })

    # --- Chunk loop ---

    async def _run(self, transfer_id: str) -> None:
        transfer = self._transfers[transfer_id]
        source = self._sources[transfer_id]

        try:
            slices = iter_slices(transfer.total_size, self._chunk_size, start=transfer.sent_offset)
            for offset, length in slices:
                if not await self._checkpoint(transfer):
                    return
                chunk = await source.read(offset, length)
                if not chunk:
                    raise ReadError(f"Unexpected end of file at offset {offset}")

                await self._send(transfer, FileChunk(
                    transfer_id=transfer_id,
                    file_name=transfer.file_name,
                    data=chunk,
                ))
                transfer.sent_offset += len(chunk)
                await self._emit("transfer_progress", {
                    **self._event_data(transfer),
                    "progress": transfer.progress,
                })

                # Let other transfers and relay traffic run between chunks
                await asyncio.sleep(0)

            if not await self._checkpoint(transfer):
                return

            await self._send(transfer, FileEnd(
                transfer_id=transfer_id,
                file_name=transfer.file_name,
                file_type=transfer.mime_type,
            ))
            transfer.status = TransferStatus.COMPLETED
            logger.info(f"Sent '{transfer.file_name}' to {transfer.peer_id}")
            await self._emit("transfer_completed", self._event_data(transfer))

        except asyncio.CancelledError:
            raise
        except ReadError as e:
            logger.error(f"Read error for {transfer.file_name}: {e}")
            await self._fail(transfer, "Error reading file")
        except Exception as e:
            logger.error(f"Send error for {transfer.file_name}: {e}")
            await self._fail(transfer, "Error sending file chunk")
        finally:
            self._forget(transfer_id)

    async def _checkpoint(self, transfer: OutgoingTransfer) -> bool:
        """Wait out a pause. Returns False once the transfer is cancelled."""
        while transfer.status == TransferStatus.PAUSED:
            await self._wakeups[transfer.transfer_id].wait()

        if transfer.status == TransferStatus.CANCELLED:
            await self._send(transfer, FileCancel(transfer_id=transfer.transfer_id))
            logger.info(f"Cancelled '{transfer.file_name}' at offset {transfer.sent_offset}")
            await self._emit("transfer_cancelled", {
                **self._event_data(transfer),
                "reason": "Sender cancelled the transfer",
            })
            return False
        return True

    async def _send(self, transfer: OutgoingTransfer, message: ChannelMessage) -> None:
        await self._connections.send(transfer.peer_id, message.encode())

    async def _fail(self, transfer: OutgoingTransfer, reason: str) -> None:
        # No file-cancel is sent: no retry, the caller may start a new transfer
        self._forget(transfer.transfer_id)
        await self._emit("transfer_error", {**self._event_data(transfer), "reason": reason})

    def _forget(self, transfer_id: str) -> None:
        self._transfers.pop(transfer_id, None)
        self._sources.pop(transfer_id, None)
        self._tasks.pop(transfer_id, None)
        self._wakeups.pop(transfer_id, None)

    @staticmethod
    def _event_data(transfer: OutgoingTransfer) -> dict:
        return {
            "peer_id": transfer.peer_id,
            "transfer_id": transfer.transfer_id,
            "file_name": transfer.file_name,
            "direction": "sending",
        }
