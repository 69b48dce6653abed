"""
Dropoo relay: FastAPI application entry point.

Groups peers into rooms by network locality, relays their
connection-negotiation messages and evicts unresponsive peers.
File data never passes through this server.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from api.routes import init_routes, router
from api.websocket import SignalingEndpoint
from config import ALLOWED_ORIGIN, API_HOST, API_PORT, APP_NAME, LOG_LEVEL
from signaling.registry import RoomRegistry
from signaling.relay import SignalRelay

# --- Logging ---
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# --- Service singletons ---
registry = RoomRegistry()
relay = SignalRelay(registry)
signaling_endpoint = SignalingEndpoint(registry, relay)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start/stop background services."""
    logger.info(f"Starting {APP_NAME} relay...")
    try:
        await registry.start()
        logger.info(f"{APP_NAME} relay ready on {API_HOST}:{API_PORT}")
        yield
    except Exception as e:
        logger.error(f"Startup failed: {e}", exc_info=True)
        raise
    finally:
        logger.info(f"Shutting down {APP_NAME} relay...")
        await registry.stop()


# --- FastAPI app ---
app = FastAPI(
    title=APP_NAME,
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[ALLOWED_ORIGIN],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

init_routes(registry)
app.include_router(router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await signaling_endpoint.serve(websocket)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=API_HOST,
        port=API_PORT,
        log_level=LOG_LEVEL.lower(),
    )
