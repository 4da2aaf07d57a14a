from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from starlette.concurrency import run_in_threadpool
from starlette.middleware.trustedhost import TrustedHostMiddleware

from gridwatch.api import deps
from gridwatch.api.router import api_router
from gridwatch.api.routes import historian
from gridwatch.core.config import Settings, load_settings
from gridwatch.core.logging import setup_logging
from gridwatch.services.dashboard import DashboardState
from gridwatch.services.monitor import PMUMonitorService

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    monitor: PMUMonitorService | None = None,
) -> FastAPI:
    settings = settings or load_settings()
    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Topology load and the first cycle do blocking I/O; keep them off the event loop.
        if monitor is not None:
            service = monitor
        else:
            service = await run_in_threadpool(PMUMonitorService.create, settings)
        dashboard = DashboardState(
            total_pmus=len(service.get_all_points()),
            nominal_frequency_hz=settings.nominal_frequency_hz,
        )
        app.state.monitor = service
        app.state.dashboard = dashboard

        # First subscriber starts polling when autostart is on.
        await run_in_threadpool(dashboard.attach, service)
        logger.info("Monitor ready, polling state %s", service.state.value)

        yield
        dashboard.detach()
        await run_in_threadpool(service.dispose)

    docs_enabled = settings.docs_enabled and not settings.is_production
    app = FastAPI(
        title="Gridwatch PMU API",
        version="0.1.0",
        debug=settings.debug,
        docs_url="/docs" if docs_enabled else None,
        redoc_url=None,
        openapi_url="/openapi.json" if docs_enabled else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(GZipMiddleware, minimum_size=1024)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )
    if settings.trusted_hosts:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_hosts)

    @app.middleware("http")
    async def security_headers(request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        return response

    @app.get("/", tags=["meta"])
    def root():
        return {"name": "gridwatch", "status": "ok"}

    @app.get("/health", tags=["meta"])
    def health(monitor: deps.Monitor) -> dict[str, str]:
        return {"status": "ok", "polling": monitor.state.value}

    app.include_router(api_router)
    app.include_router(historian.router, tags=["historian"])
    return app
