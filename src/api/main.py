"""
Review Synthesis FastAPI Application
====================================

REST API serving cached, periodically refreshed review syntheses.

Endpoints:
    GET  /api/health                       - Health check
    GET  /api/synthesis/{subject_id}        - Current synthesis
    GET  /api/synthesis/{subject_id}/status - Processing status
    POST /api/synthesis/{subject_id}        - Queue forced regeneration (admin)

Usage:
    uvicorn src.api.main:app --reload --port 8000

    Or with CLI:
    python -m src.api.main
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from ..data.config import get_settings
from ..orchestrator.logging_config import setup_logging
from . import db
from .models import HealthResponse
from .services import SynthesisServices, build_services
from .synthesis_routes import router as synthesis_router

logger = logging.getLogger(__name__)


def create_app(services: Optional[SynthesisServices] = None) -> FastAPI:
    """
    Build the application.

    Args:
        services: Prebuilt services (tests). Built from settings at startup if None.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Review Synthesis API...")

        app.state.services = services or build_services()
        settings = app.state.services.settings
        app.state.services.scheduler.start(periodic=settings.api.run_scheduler)
        logger.info("Services initialized")

        yield

        await app.state.services.scheduler.stop()
        if settings.synthesis.store_backend == "postgres":
            db.close_pool()
        logger.info("Shutting down Review Synthesis API...")

    settings = services.settings if services else get_settings()

    app = FastAPI(
        title="Review Synthesis API",
        description="Aggregated, analyzed audience reviews per movie",
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(synthesis_router)

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """
        Health check endpoint.

        Reports store reachability, record counts by status, in-flight runs,
        refresh queue depth and scheduler state.
        """
        current: SynthesisServices = request.app.state.services
        store_ok = await asyncio.to_thread(current.store.ping)
        records = {}
        if store_ok:
            try:
                records = await asyncio.to_thread(current.store.count_by_status)
            except Exception as e:
                logger.warning(f"Record count failed: {e}")
                store_ok = False

        return HealthResponse(
            status="healthy" if store_ok else "degraded",
            version=current.settings.app_version,
            store="connected" if store_ok else "disconnected",
            store_backend=current.settings.synthesis.store_backend,
            records=records,
            in_progress=sorted(current.guard.in_progress),
            queue_depth=current.refresh_queue.depth(),
            scheduler=current.scheduler.get_status(),
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    log_config = get_settings().logging
    setup_logging(level=log_config.level, json_output=log_config.json_logs, log_file=log_config.log_file)
    uvicorn.run("src.api.main:app", host="0.0.0.0", port=8000, reload=False)
