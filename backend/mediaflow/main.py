"""
mediaflow HTTP service.

Run with: uvicorn mediaflow.main:app
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from mediaflow import __version__
from mediaflow.api import routes, websocket
from mediaflow.config import ProcessingConfig, get_settings
from mediaflow.logging_config import setup_logging
from mediaflow.services.pipeline import MediaOrchestrator

settings = get_settings()
setup_logging(settings)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build and probe the orchestrator, run the periodic sweep, release clients on exit."""
    config = ProcessingConfig.from_settings(settings)
    logger.info(f"mediaflow {__version__} starting, config dir: {settings.config_dir}")

    orchestrator = MediaOrchestrator(settings, config)
    await orchestrator.initialize()
    orchestrator.start_periodic_cleanup()
    app.state.orchestrator = orchestrator

    yield

    logger.info("mediaflow shutting down")
    await orchestrator.shutdown()


app = FastAPI(
    title="mediaflow",
    description="Multimedia processing orchestration with provider fallback",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(routes.router)
app.include_router(websocket.router)


@app.get("/health")
async def health_check(request: Request) -> dict:
    """Liveness plus whether providers have been probed."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    return {
        "status": "ok",
        "version": __version__,
        "ready": bool(orchestrator and orchestrator.initialized),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("mediaflow.main:app", host="0.0.0.0", port=8000)
