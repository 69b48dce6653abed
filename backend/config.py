"""Application-wide configuration constants."""

import os

# --- Identity ---
APP_NAME = "Dropoo"

# --- Networking ---
API_HOST = os.environ.get("HOST", "0.0.0.0")
API_PORT = int(os.environ.get("PORT", "8080"))
# Origin allowed to call the relay's HTTP routes
ALLOWED_ORIGIN = os.environ.get("FRONTEND_URL", "http://localhost:8081")

SIGNALING_URL = os.environ.get("SIGNALING_URL", f"ws://localhost:{API_PORT}/ws")

# --- Liveness ---
PING_INTERVAL = float(os.environ.get("PING_INTERVAL", "30"))  # seconds

# --- Transfer ---
CHUNK_SIZE = 16 * 1024  # 16 KB

# --- Storage ---
# Unset means received files are only surfaced as events
DEFAULT_SAVE_DIR = os.environ.get("SAVE_DIR") or None

# --- Logging ---
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
