"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from capacity_engine.services.intelligence_service import CapacityIntelligenceService
from capacity_engine.services.scenario_cache import ScenarioResultCache
from capacity_engine.utils.config import get_settings


def get_intelligence_service(request: Request) -> CapacityIntelligenceService:
    service = getattr(request.app.state, "intelligence_service", None)
    if service is None:
        repository = getattr(request.app.state, "repository", None)
        if repository is not None:
            settings = get_settings()
            service = CapacityIntelligenceService(
                data_source=repository,
                settings=settings,
                cache=ScenarioResultCache(settings.scenario_cache_size),
            )
            request.app.state.intelligence_service = service
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Capacity intelligence service is not initialized",
        )
    return service
