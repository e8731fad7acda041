# Strongbox - FastAPI Backend
#
# Loopback REST API through which the desktop shell reaches the vault and
# the backup engine.

import logging

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from .backup_routes import router as backup_router
from .vault_routes import router as vault_router

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Strongbox API",
    description="Local trust subsystem: encrypted vault and data backups",
    version=__version__,
)

# Only the local desktop shell may call us
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://127.0.0.1", "http://localhost"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(vault_router)
app.include_router(backup_router)


@app.get("/api/health")
async def health():
    """Liveness probe (no token required, exposes nothing)."""
    return {"status": "ok", "version": __version__}


def start_api_server(host: str = "127.0.0.1", port: int = 8000):
    """
    Start FastAPI server.

    Args:
        host: Host to bind to (default: localhost only for security)
        port: Port to listen on
    """
    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    start_api_server()
