"""
Receiving side of the transfer protocol.

Buffers chunks per transfer, assembles files on file-end and groups
files whose names share a folder path into a single zip archive.
Chunks are assumed to arrive in send order; nothing is reordered.
"""

import asyncio
import io
import logging
import zipfile

from errors import MalformedMessage, TransferError
from transfer.models import (
    FileCancel,
    FileChunk,
    FileEnd,
    FileStart,
    FolderAggregate,
    FolderMember,
    IncomingTransfer,
    ReceivedFile,
    parse_data_message,
)

logger = logging.getLogger(__name__)

ARCHIVE_MIME_TYPE = "application/zip"


def folder_of(file_name: str) -> str | None:
    """All path segments but the last, or None for a bare file name."""
    if "/" not in file_name:
        return None
    return file_name.rsplit("/", 1)[0] or None


def build_archive(folder_path: str, files: dict[str, bytes]) -> bytes:
    """Zip `files`, naming entries relative to `folder_path`."""
    prefix = folder_path + "/"
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, data in files.items():
            arcname = name[len(prefix):] if name.startswith(prefix) else name
            zf.writestr(arcname, data)
    return buffer.getvalue()


class TransferReceiver:
    """Owns every incoming transfer and folder group of one endpoint."""

    def __init__(self, sink=None) -> None:
        # Keyed by (peer_id, transfer_id): ids are only unique per sender
        self._incoming: dict[tuple[str, str], IncomingTransfer] = {}
        self._folders: dict[tuple[str, str], FolderAggregate] = {}
        self._sink = sink  # async fn(ReceivedFile) -> saved path or None
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

    def get_incoming(self, peer_id: str, transfer_id: str) -> IncomingTransfer | None:
        return self._incoming.get((peer_id, transfer_id))

    def get_folder(self, peer_id: str, folder_path: str) -> FolderAggregate | None:
        return self._folders.get((peer_id, folder_path))

    async def handle(self, peer_id: str, raw: bytes) -> None:
        """Process one data-channel message from `peer_id`."""
        try:
            message = parse_data_message(raw)
        except MalformedMessage as e:
            logger.warning(f"Ignoring malformed data message from {peer_id}: {e}")
            return

        try:
            if isinstance(message, FileStart):
                await self._on_start(peer_id, message)
            elif isinstance(message, FileChunk):
                await self._on_chunk(peer_id, message)
            elif isinstance(message, FileEnd):
                await self._on_end(peer_id, message)
            elif isinstance(message, FileCancel):
                await self._on_cancel(peer_id, message)
            else:
                raise TypeError(f"Unhandled data message: {message!r}")
        except TransferError as e:
            logger.error(str(e))
            await self._emit("transfer_error", {
                "peer_id": peer_id,
                "transfer_id": message.transfer_id,
                "file_name": e.file_name,
                "direction": "receiving",
                "reason": e.reason,
            })
        except Exception as e:
            logger.error(f"Error processing {message.type} from {peer_id}: {e}", exc_info=True)
            await self._emit("transfer_error", {
                "peer_id": peer_id,
                "transfer_id": message.transfer_id,
                "file_name": getattr(message, "file_name", "Unknown"),
                "direction": "receiving",
                "reason": "Error processing incoming data",
            })

    # --- Message handlers ---

    async def _on_start(self, peer_id: str, msg: FileStart) -> None:
        key = (peer_id, msg.transfer_id)
        if key in self._incoming:
            logger.warning(f"Duplicate file-start for {msg.transfer_id}, restarting it")
            self._discard(key)

        folder_path = folder_of(msg.file_name)
        if folder_path:
            folder = self._folders.get((peer_id, folder_path))
            if folder is None:
                folder = FolderAggregate(peer_id=peer_id, folder_path=folder_path)
                self._folders[(peer_id, folder_path)] = folder
            previous = folder.files.get(msg.file_name)
            if previous is not None:
                folder.total_size -= previous.size
            folder.files[msg.file_name] = FolderMember(size=msg.file_size, mime_type=msg.file_type)
            folder.total_size += msg.file_size

        self._incoming[key] = IncomingTransfer(
            transfer_id=msg.transfer_id,
            peer_id=peer_id,
            file_name=msg.file_name,
            mime_type=msg.file_type,
            total_size=msg.file_size,
            folder_path=folder_path,
        )
        logger.info(f"Receiving '{msg.file_name}' ({msg.file_size} bytes) from {peer_id}")
        await self._emit("transfer_started", {
            "peer_id": peer_id,
            "transfer_id": msg.transfer_id,
            "file_name": msg.file_name,
            "direction": "receiving",
        })

    async def _on_chunk(self, peer_id: str, msg: FileChunk) -> None:
        incoming = self._incoming.get((peer_id, msg.transfer_id))
        if incoming is None:
            # Late chunk of a cancelled or unknown transfer
            logger.debug(f"Dropping chunk for unknown transfer {msg.transfer_id}")
            return

        incoming.chunks.append(msg.data)
        incoming.received_size += len(msg.data)

        folder = self._folder_for(incoming)
        if folder is not None:
            folder.received_size += len(msg.data)
            name, progress = folder.folder_path, folder.progress
        else:
            name, progress = incoming.file_name, incoming.progress

        await self._emit("transfer_progress", {
            "peer_id": peer_id,
            "transfer_id": msg.transfer_id,
            "file_name": name,
            "direction": "receiving",
            "progress": progress,
        })

    async def _on_end(self, peer_id: str, msg: FileEnd) -> None:
        incoming = self._incoming.pop((peer_id, msg.transfer_id), None)
        if incoming is None:
            logger.debug(f"Dropping file-end for unknown transfer {msg.transfer_id}")
            return

        folder = self._folder_for(incoming)
        if incoming.received_size != incoming.total_size:
            reason = f"Expected {incoming.total_size} bytes, received {incoming.received_size}"
            logger.error(f"Incomplete file '{incoming.file_name}' from {peer_id}: {reason}")
            if folder is not None:
                self._drop_member(folder, incoming)
            await self._emit("transfer_error", {
                "peer_id": peer_id,
                "transfer_id": incoming.transfer_id,
                "file_name": incoming.file_name,
                "direction": "receiving",
                "reason": reason,
            })
            if folder is not None:
                await self._settle_folder(folder)
            return

        data = b"".join(incoming.chunks)
        if folder is None:
            await self._deliver(ReceivedFile(
                peer_id=peer_id,
                file_name=incoming.file_name,
                mime_type=msg.file_type or incoming.mime_type,
                data=data,
            ))
            return

        folder.files[incoming.file_name].data = data
        logger.info(f"Received '{incoming.file_name}' ({len(data)} bytes), part of '{folder.folder_path}'")
        await self._settle_folder(folder)

    async def _on_cancel(self, peer_id: str, msg: FileCancel) -> None:
        incoming = self._incoming.pop((peer_id, msg.transfer_id), None)
        if incoming is None:
            return

        folder = self._folder_for(incoming)
        if folder is not None:
            self._drop_member(folder, incoming)

        logger.info(f"'{incoming.file_name}' cancelled by {peer_id}")
        await self._emit("transfer_cancelled", {
            "peer_id": peer_id,
            "transfer_id": incoming.transfer_id,
            "file_name": incoming.file_name,
            "direction": "receiving",
            "reason": "Sender cancelled the transfer",
        })
        if folder is not None:
            await self._settle_folder(folder)

    # --- Folder groups ---

    def _folder_for(self, incoming: IncomingTransfer) -> FolderAggregate | None:
        if not incoming.folder_path:
            return None
        return self._folders.get((incoming.peer_id, incoming.folder_path))

    def _drop_member(self, folder: FolderAggregate, incoming: IncomingTransfer) -> None:
        """Remove a member's partial entry; the group can no longer be archived."""
        member = folder.files.pop(incoming.file_name, None)
        if member is not None:
            folder.total_size -= member.size
        folder.received_size -= incoming.received_size
        folder.failed = True

    async def _settle_folder(self, folder: FolderAggregate) -> None:
        """Archive (or give up on) a group once no member is still pending."""
        if not folder.complete:
            return

        del self._folders[(folder.peer_id, folder.folder_path)]
        archive_name = f"{folder.folder_path}.zip"

        if folder.failed:
            logger.warning(f"Folder '{folder.folder_path}' from {folder.peer_id} is incomplete, no archive")
            await self._emit("transfer_cancelled", {
                "peer_id": folder.peer_id,
                "transfer_id": None,
                "file_name": folder.folder_path,
                "direction": "receiving",
                "reason": "Folder incomplete: a member file did not arrive",
            })
            return

        files = {name: member.data for name, member in folder.files.items()}
        archive = await asyncio.to_thread(build_archive, folder.folder_path, files)
        await self._deliver(ReceivedFile(
            peer_id=folder.peer_id,
            file_name=archive_name,
            mime_type=ARCHIVE_MIME_TYPE,
            data=archive,
        ))

    async def _deliver(self, received: ReceivedFile) -> None:
        if self._sink is not None:
            received.saved_path = await self._sink(received)
        logger.info(f"Received '{received.file_name}' ({received.size} bytes) from {received.peer_id}")
        await self._emit("file_received", {
            "peer_id": received.peer_id,
            "file_name": received.file_name,
            "mime_type": received.mime_type,
            "size": received.size,
            "data": received.data,
            "saved_path": received.saved_path,
        })

    # --- Connection loss ---

    def _discard(self, key: tuple[str, str]) -> None:
        incoming = self._incoming.pop(key, None)
        if incoming is None:
            return
        folder = self._folder_for(incoming)
        if folder is not None:
            member = folder.files.pop(incoming.file_name, None)
            if member is not None:
                folder.total_size -= member.size
            folder.received_size -= incoming.received_size

    async def abandon_peer(self, peer_id: str) -> None:
        """Forget every partial transfer and folder group from a vanished peer."""
        dropped = [key for key in self._incoming if key[0] == peer_id]
        for key in dropped:
            del self._incoming[key]
        for key in [key for key in self._folders if key[0] == peer_id]:
            del self._folders[key]
        if dropped:
            logger.info(f"Dropped {len(dropped)} partial transfer(s) from {peer_id}")
