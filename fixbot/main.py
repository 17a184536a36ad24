import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import fastapi
import uvicorn

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from fixbot import __version__
from fixbot.dependencies import close_scan_clients
from fixbot.logger import get_logger
from fixbot.oauth import router as oauth_router
from fixbot.problems import router as problems_router
from fixbot.sessions import SessionStore
from fixbot.utils.paths import STATIC_DIR

logger = get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    store = SessionStore()
    store.start()
    app.state.session_store = store
    logger.info("Session store started")
    try:
        yield
    finally:
        await store.stop()
        app.state.session_store = None
        await close_scan_clients()
        logger.info("Session store stopped")


app = FastAPI(title="fixbot", version=__version__, lifespan=lifespan)

app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

app.include_router(problems_router, tags=["problems"])
app.include_router(oauth_router, tags=["fix"])


@app.get("/health")
def health() -> dict[str, Any]:
    store = getattr(app.state, "session_store", None)
    return {
        "status": "fixbot is operational.",
        "pending_sessions": store.pending() if store is not None else 0,
        "session_sweep": store is not None and store.running,
        "environment": {
            "python version": sys.version,
            "fastapi version": fastapi.__version__,
            "uvicorn version": uvicorn.__version__,
        },
    }
