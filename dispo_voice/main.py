"""Main FastAPI application."""
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from dispo_voice.api import active_calls, calls, health, transfers
from dispo_voice.api.webhooks import telnyx
from dispo_voice.core.errors import add_error_handlers
from dispo_voice.core.logging import setup_logging
from dispo_voice.db.database import init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    await init_db()
    yield


app = FastAPI(
    title="Dispo Voice",
    description="Call transfer orchestration on Telnyx Call Control",
    version="0.1.0",
    lifespan=lifespan,
)

add_error_handlers(app)

app.include_router(health.router, tags=["health"])
app.include_router(transfers.router, tags=["transfers"])
app.include_router(calls.router, tags=["calls"])
app.include_router(active_calls.router, tags=["active-calls"])
app.include_router(telnyx.router, prefix="/webhooks", tags=["webhooks"])

# Hold music and other sounds served to the platform
sounds_dir = os.path.join(os.path.dirname(__file__), "static", "sounds")
if os.path.exists(sounds_dir):
    app.mount("/sounds", StaticFiles(directory=sounds_dir), name="sounds")


def run() -> None:
    """Serve the app with uvicorn."""
    import uvicorn

    from dispo_voice.core.config import settings

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
