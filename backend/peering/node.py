"""One endpoint: relay session, direct channels and file transfers."""

import asyncio
import logging
from typing import Any

from config import SIGNALING_URL
from peering.manager import ConnectionManager
from peering.signaling_client import SignalingClient
from peering.transport import TransportFactory
from transfer.manager import TransferManager

logger = logging.getLogger(__name__)


class PeerNode:
    """Wires the signaling client, connection manager and transfer manager together."""

    def __init__(
        self,
        transport_factory: TransportFactory,
        url: str = SIGNALING_URL,
        device_info: dict[str, Any] | None = None,
        save_dir: str | None = None,
    ) -> None:
        self.signaling = SignalingClient(url, device_info)
        self.connections = ConnectionManager(transport_factory, self.signaling.send_signal)
        self.signaling.manager = self.connections
        self.transfers = TransferManager(self.connections, save_dir=save_dir)
        self._task: asyncio.Task | None = None

    @property
    def peer_id(self) -> str | None:
        return self.signaling.peer_id

    async def start(self, timeout: float | None = 10.0) -> None:
        """Connect to the relay and wait until it has assigned our identity."""
        self._task = asyncio.create_task(self._run())
        await self.signaling.wait_registered(timeout=timeout)

    async def _run(self) -> None:
        try:
            await self.signaling.run()
        except Exception as e:
            # Open channels stay usable without the relay
            logger.error(f"Signaling session ended: {e}")

    async def stop(self) -> None:
        await self.connections.close_all()
        await self.signaling.close()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
