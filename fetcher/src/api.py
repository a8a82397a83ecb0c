"""
HTTP control surface for the fetcher.

Routes:
- ``POST /start-fetch``: start a fetch session, refresh the meters and arm
  the quarter-hour scheduler.
- ``POST /stop-fetch``: flush with one final cycle and disarm.
- ``GET /status``: per-meter status plus scheduler state.
- ``POST /refresh``: reload active meters from the database.

Start and stop are idempotent: calling them in the state they lead to
returns HTTP 200 with ``changed: false``.

CHANGELOG:
- 2026-10-08: Initial creation (STORY-107)
- 2026-10-11: Report last cycle in /status (STORY-108)
- 2026-10-20: Serialize /start-fetch and report the scheduler's answer (STORY-110)

TODO:
- None
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from functools import partial
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from fetcher.src.config import get_settings
from fetcher.src.db.session import dispose_engine, init_engine
from fetcher.src.device import HttpDeviceAdapter
from fetcher.src.logging_config import start_fetch_logger
from fetcher.src.registry import DeviceRegistry, RegistrySource
from fetcher.src.scheduler import FetchScheduler
from fetcher.src.storage import SqlPersistenceSink, load_active_meters

logger = logging.getLogger(__name__)


@dataclass
class FetchService:
    """Everything the routes operate on, owned by the application."""

    registry: DeviceRegistry
    scheduler: FetchScheduler
    source: RegistrySource
    log_dir: str = ""
    # Serializes /start-fetch so one session and one refresh run per real start.
    start_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


def build_service() -> FetchService:
    """Wire registry, scheduler and storage from environment settings."""
    settings = get_settings()
    session_factory = init_engine(settings.database_url)
    registry = DeviceRegistry(
        adapter_factory=partial(HttpDeviceAdapter, timeout=settings.device_timeout_s),
    )
    scheduler = FetchScheduler(
        registry,
        SqlPersistenceSink(session_factory),
        tz=settings.fetch_timezone,
    )
    return FetchService(
        registry=registry,
        scheduler=scheduler,
        source=partial(load_active_meters, session_factory),
        log_dir=settings.fetch_log_dir,
    )


# ---------------------------------------------------------------------------
# Pydantic response schemas
# ---------------------------------------------------------------------------


class ControlResponse(BaseModel):
    """Result of a start/stop request.

    Attributes:
        status: State the scheduler is in after the request.
        changed: Whether the request caused a transition.
    """

    status: str
    changed: bool


class StatusResponse(BaseModel):
    devices: list[dict[str, Any]]
    fetching: bool
    next_fetch: str | None
    last_cycle: dict[str, Any] | None


def get_service(request: Request) -> FetchService:
    return request.app.state.service


Service = Annotated[FetchService, Depends(get_service)]


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


async def start_fetch(service: Service) -> ControlResponse:
    """Begin a new fetch session and arm the scheduler."""
    async with service.start_lock:
        if service.scheduler.is_armed:
            return ControlResponse(status="started", changed=False)

        session_logger = start_fetch_logger(service.log_dir)
        session_logger.info("Running query to initialize devices...")
        await service.registry.refresh(service.source)
        changed = service.scheduler.start()
    return ControlResponse(status="started", changed=changed)


async def stop_fetch(service: Service) -> ControlResponse:
    """Flush open intervals and disarm the scheduler."""
    changed = await service.scheduler.stop()
    return ControlResponse(status="stopped", changed=changed)


async def status(service: Service) -> StatusResponse:
    """Collect every meter's status concurrently."""
    devices = await asyncio.gather(
        *(device.get_status() for device in service.registry.all())
    )
    scheduler = service.scheduler

    last_cycle = None
    if scheduler.last_result is not None and scheduler.last_cycle_at is not None:
        last_cycle = {
            "finished_at": scheduler.last_cycle_at.isoformat(),
            "readings": len(scheduler.last_result.readings),
            "failed": list(scheduler.last_result.failed),
        }

    return StatusResponse(
        devices=list(devices),
        fetching=scheduler.is_armed,
        next_fetch=(
            scheduler.armed_until.isoformat() if scheduler.armed_until is not None else None
        ),
        last_cycle=last_cycle,
    )


async def refresh(service: Service) -> JSONResponse:
    """Reload active meters; 503 when the meters table cannot be read."""
    ok = await service.registry.refresh(service.source)
    if not ok:
        return JSONResponse(status_code=503, content={"msg": "DB connection error"})
    return JSONResponse(status_code=200, content={"msg": "Devices refreshed successfully"})


def create_app(service: FetchService | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        service: Pre-built service (tests). When omitted, the lifespan
            builds one from settings and tears it down on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        owned = service is None
        if owned:
            app.state.service = build_service()
        logger.info("Fetcher API ready")
        yield
        if owned:
            await app.state.service.scheduler.stop()
            await dispose_engine()

    app = FastAPI(
        title="Meter Fetcher API",
        description="Quarter-hour interval collection from consumption meters.",
        version="0.1.0",
        lifespan=lifespan,
    )
    if service is not None:
        app.state.service = service

    app.add_api_route("/start-fetch", start_fetch, methods=["POST"], response_model=ControlResponse)
    app.add_api_route("/stop-fetch", stop_fetch, methods=["POST"], response_model=ControlResponse)
    app.add_api_route("/status", status, methods=["GET"], response_model=StatusResponse)
    app.add_api_route("/refresh", refresh, methods=["POST"])
    return app
