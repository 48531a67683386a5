"""Main entry point for the BandHub worker service."""

import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from bandhub_worker.config import get_settings
from bandhub_worker.lib.json_logger import setup_json_logging
from bandhub_worker.queue.worker import build_stack, run_worker
from bandhub_worker.routes import health
from bandhub_worker.routes.metrics import router as metrics_router

logger = logging.getLogger(__name__)

settings = get_settings()

if settings.log_format == "json":
    setup_json_logging(
        level=settings.log_level,
        service="bandhub-worker",
        environment=settings.environment,
    )
else:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the worker stack alongside the HTTP server."""
    stack = build_stack(settings)
    app.state.stack = stack

    worker_task = asyncio.create_task(run_worker(stack, install_signal_handlers=False))
    logger.info("Background worker started")
    yield
    stack.scheduler.stop()
    stack.worker.stop()
    worker_task.cancel()
    try:
        await worker_task
    except asyncio.CancelledError:
        pass
    except Exception as e:
        # Already logged by the worker when it failed
        logger.error(f"Background worker exited with error: {e}")
    logger.info("Background worker stopped")


app = FastAPI(
    title="BandHub Worker",
    description="Video sync, processing and maintenance jobs for the band video hub",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(metrics_router, tags=["Metrics"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "BandHub Worker",
        "version": "0.1.0",
        "status": "running",
        "environment": settings.environment,
    }


def run():
    uvicorn.run(
        "bandhub_worker.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
