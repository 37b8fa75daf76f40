"""Gooseherd dashboard FastAPI app and entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gooseherd import config
from gooseherd.observability import (
    initialize as initialize_observability,
    is_enabled as observability_enabled,
    shutdown as shutdown_observability,
)
from gooseherd.routers.runs import runs_router
from gooseherd.run_store import run_store

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("gooseherd")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("%s dashboard starting up", config.APP_NAME)
    initialize_observability(app)
    run_store.init()
    yield
    logger.info("%s dashboard shutting down", config.APP_NAME)
    shutdown_observability(app)


app = FastAPI(
    title=f"{config.APP_NAME} Dashboard API",
    description="Run history, parsed agent transcripts and feedback for coding-agent runs",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(runs_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "runsFile": str(run_store.storage_path),
        "telemetry": "enabled" if observability_enabled() else "disabled",
    }


def run() -> None:
    uvicorn.run("gooseherd.main:app", host=config.DASHBOARD_HOST, port=config.DASHBOARD_PORT)


if __name__ == "__main__":
    run()
