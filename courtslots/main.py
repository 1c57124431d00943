"""FastAPI application bootstrap and lifecycle wiring."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from courtslots.controllers.booking_controller import router as booking_router
from courtslots.controllers.court_controller import router as court_router
from courtslots.repository.data_repository import DataRepository
from courtslots.services.allocation_service import Clock, CourtAllocationService
from courtslots.services.identity_service import IdentityService
from courtslots.services.priority_scorer import PriorityScorer
from courtslots.services.roster_service import RosterService
from courtslots.utils.config import Settings, get_settings
from courtslots.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None, clock: Optional[Clock] = None) -> FastAPI:
    """Build the app with every service wired onto ``app.state``."""
    settings = settings or get_settings()
    repository = DataRepository(settings)
    identity_service = IdentityService(repository=repository, settings=settings)
    allocation_service = CourtAllocationService(
        repository=repository,
        settings=settings,
        scorer=PriorityScorer(settings),
        clock=clock,
    )
    roster_service = RosterService(
        repository=repository,
        allocation_service=allocation_service,
        identity_service=identity_service,
        settings=settings,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        startup(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.include_router(court_router)
    app.include_router(booking_router)

    app.state.settings = settings
    app.state.repository = repository
    app.state.identity_service = identity_service
    app.state.allocation_service = allocation_service
    app.state.roster_service = roster_service

    return app


def startup(app: FastAPI) -> None:
    """Create the schema, then seed the demo catalog when enabled. Idempotent."""
    repository: DataRepository = app.state.repository
    settings: Settings = app.state.settings

    repository.initialize_database()
    if settings.seed_demo_data:
        repository.seed_demo_catalog()
    logger.info("System startup completed | database=%s", repository.database_path)
