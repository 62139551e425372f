import os
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .config import settings, Settings
from .db import Base, make_engine, make_session_factory
from .errors import SolYieldError
from .logging import setup_logging, RequestIdMiddleware
from .routes.schedules import router as schedules_router
from .routes.activities import router as activities_router
from .routes.sites import router as sites_router
from .routes.sync import router as sync_router
from .services.activity_trail import ActivityTrail
from .services.conflict import ConflictValidator
from .services.connectivity import ConnectivityObserver, ManualConnectivity, HttpConnectivityProbe
from .services.remote_sync import RemoteReconciler, HttpRemoteReconciler, SimulatedRemoteReconciler
from .services.schedule_store import ScheduleStore
from .services.sites import SiteDirectory
from .services.sync_orchestrator import SyncOrchestrator
from .services.time_rules import StoreClock

logger = structlog.get_logger(__name__)


def build_remote(config: Settings) -> RemoteReconciler:
    if config.remote_sync_url:
        return HttpRemoteReconciler(config.remote_sync_url, timeout_s=config.remote_sync_timeout_s)
    return SimulatedRemoteReconciler(delay_s=config.simulated_sync_delay_s)


def build_connectivity(config: Settings) -> ConnectivityObserver:
    # Without a probe URL the device reports its state through /sync/connectivity
    if config.connectivity_probe_url:
        return HttpConnectivityProbe(config.connectivity_probe_url, interval_s=config.connectivity_probe_interval_s)
    return ManualConnectivity(is_online=True)


def create_app(
    config: Optional[Settings] = None,
    engine=None,
    connectivity: Optional[ConnectivityObserver] = None,
    remote: Optional[RemoteReconciler] = None,
    clock: Optional[StoreClock] = None,
) -> FastAPI:
    config = config or settings
    setup_logging(config.log_level, config.log_json)
    app = FastAPI(title=config.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[config.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    @app.exception_handler(SolYieldError)
    async def _solyield_error(request: Request, exc: SolYieldError):
        logger.info("request_rejected", path=request.url.path, error=type(exc).__name__, message=exc.message)
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    # Storage and services
    if engine is None:
        # Ensure local SQLite directory exists
        if config.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        engine = make_engine(config.database_url)
    if config.auto_create_db:
        Base.metadata.create_all(bind=engine)
    session_factory = make_session_factory(engine)

    clock = clock or StoreClock()
    sites = SiteDirectory(session_factory, clock)
    store = ScheduleStore(session_factory, sites=sites, clock=clock, id_prefix=config.user_schedule_prefix)
    connectivity = connectivity or build_connectivity(config)
    remote = remote or build_remote(config)

    app.state.engine = engine
    app.state.schedule_store = store
    app.state.conflict_validator = ConflictValidator(session_factory, buffer_minutes=config.conflict_buffer_min)
    app.state.activity_trail = ActivityTrail(session_factory)
    app.state.sync_orchestrator = SyncOrchestrator(
        store,
        connectivity,
        remote,
        settle_delay_s=config.sync_settle_delay_s,
        interval_s=config.sync_interval_s,
    )

    # Routers
    app.include_router(schedules_router)
    app.include_router(activities_router)
    app.include_router(sites_router)
    app.include_router(sync_router)

    # Metrics
    if config.metrics_enabled:
        Instrumentator().instrument(app).expose(app)

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    @app.on_event("startup")
    async def _startup():
        logger.info("startup", app=config.app_name, database=config.database_url)
        if isinstance(connectivity, HttpConnectivityProbe):
            await connectivity.probe()
            connectivity.start()
        await app.state.sync_orchestrator.start()

    @app.on_event("shutdown")
    async def _shutdown():
        await app.state.sync_orchestrator.stop()
        if isinstance(connectivity, HttpConnectivityProbe):
            await connectivity.stop()
        if isinstance(remote, HttpRemoteReconciler):
            await remote.aclose()

    return app


app = create_app()
