"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the repository and the intelligence service, registers the capacity
router, and runs startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from capacity_engine.controllers.intelligence_controller import router as capacity_router
from capacity_engine.repository.data_repository import DataRepository
from capacity_engine.services.intelligence_service import CapacityIntelligenceService
from capacity_engine.services.scenario_cache import ScenarioResultCache
from capacity_engine.utils.config import Settings, get_settings
from capacity_engine.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None, *, seed: bool = True) -> FastAPI:
    """
    Build and wire the FastAPI application.

    The repository is handed to the intelligence service as its data source;
    both live on app.state so every dependency is traceable from here.
    """
    settings = settings or get_settings()

    repository = DataRepository(settings)
    intelligence_service = CapacityIntelligenceService(
        data_source=repository,
        settings=settings,
        cache=ScenarioResultCache(settings.scenario_cache_size),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app, seed=seed)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.include_router(capacity_router)

    app.state.repository = repository
    app.state.intelligence_service = intelligence_service

    return app


def _startup(app: FastAPI, *, seed: bool) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Schema must exist before seeding; seeding is skipped when employees exist.
    """
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if seed:
        logger.info("Startup: seeding synthetic capacity history")
        repository.seed_synthetic_data()

    logger.info("Startup complete | snapshots=%s", repository.count_snapshots())


# Module-level app object for uvicorn
app = create_app()
