"""devarchive FastAPI server: main application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from devarchive import config
from devarchive.db import connection, sqlite_migrations
from devarchive.observability import initialize as initialize_observability, shutdown as shutdown_observability
from devarchive.routers.collectors import collectors_router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("devarchive")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("devarchive server starting up")
    initialize_observability(app)

    db = await connection.get_connection()
    await sqlite_migrations.run_migrations(db)
    if not config.API_KEYS:
        logger.warning("DEVARCHIVE_API_KEYS is empty; collector endpoints accept unauthenticated requests")

    yield

    logger.info("devarchive server shutting down")
    shutdown_observability(app)
    await connection.close_connection()


app = FastAPI(
    title="devarchive API",
    description="Archive of git state and coding-session transcripts collected from developer hosts",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(collectors_router)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"error": type(exc).__name__, "message": str(exc) or "Internal server error"},
    )


@app.get("/api/health")
def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "db": "connected" if connection._connection else "disconnected",
        "version": app.version,
    }


def run() -> None:
    import uvicorn

    uvicorn.run("devarchive.main:app", host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    run()
