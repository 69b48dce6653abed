"""Forwards negotiation payloads between members of the same room."""

import logging
from typing import Any

from signaling.models import Peer, SignalMessage
from signaling.registry import RoomRegistry

logger = logging.getLogger(__name__)


class SignalRelay:
    """Payloads are forwarded verbatim and never inspected."""

    def __init__(self, registry: RoomRegistry) -> None:
        self._registry = registry

    async def relay(self, sender: Peer, recipient_id: str | None, payload: Any) -> bool:
        """
        Forward `payload` from `sender` to `recipient_id`.

        A recipient outside the sender's room (or already gone) is not an
        error: the message is dropped and False is returned.
        """
        recipient = None
        if recipient_id:
            recipient = next(
                (p for p in self._registry.members(sender.locality_key) if p.id == recipient_id),
                None,
            )
        if recipient is None:
            logger.debug(f"Dropping signal from {sender.id}: {recipient_id} not in room")
            return False

        message = SignalMessage(sender=sender.id, payload=payload)
        return await self._registry.send(recipient, message)
