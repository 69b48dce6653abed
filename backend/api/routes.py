"""HTTP routes for the relay."""

import logging

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from config import APP_NAME

logger = logging.getLogger(__name__)

router = APIRouter()

# Injected by main.py at startup
_registry = None


def init_routes(registry) -> None:
    """Inject service dependencies into the routes module."""
    global _registry
    _registry = registry


@router.get("/", response_class=PlainTextResponse)
async def health():
    return f"{APP_NAME} server is running"


@router.get("/api/rooms")
async def list_rooms():
    """Room sizes only; member identities are never exposed here."""
    rooms = _registry.rooms()
    return {
        "room_count": len(rooms),
        "rooms": [len(members) for members in rooms.values()],
    }
