# apps/backend/main.py
import logging
import time

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from apps.backend.config.settings import settings
from apps.backend.middleware.errors import install_error_handlers
from apps.backend.routes.admin import router as admin_router
from apps.backend.routes.auth import router as auth_router
from apps.backend.routes.awards import router as awards_router
from apps.backend.routes.health import router as health_router
from apps.backend.routes.leaderboard import router as leaderboard_router
from apps.backend.services.admin.logger import log_request_response
from apps.backend.services.points.read_cache import NullCache, ReadCache

log = logging.getLogger("clanpoints.main")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Clan Points",
        version=settings.APP_VERSION,
        description="Clan points ledger, leaderboard and calendar",
    )

    # -------------------------------------------------------------------
    # Error handling (stable envelopes, no stack leaks)
    # -------------------------------------------------------------------
    install_error_handlers(app)

    # -------------------------------------------------------------------
    # CORS (controlled)
    # -------------------------------------------------------------------
    if settings.CORS_MODE == "allowlist":
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.CORS_ALLOW_ORIGINS,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    # -------------------------------------------------------------------
    # Session cookies + request log
    # -------------------------------------------------------------------
    @app.middleware("http")
    async def session_and_log(request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        storage = getattr(request.state, "session_storage", None)
        if storage is not None:
            storage.apply(response)
        log_request_response(request, response, start)
        return response

    # -------------------------------------------------------------------
    # Routers
    # -------------------------------------------------------------------
    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(leaderboard_router)
    app.include_router(awards_router)
    app.include_router(admin_router)

    # -------------------------------------------------------------------
    # Root
    # -------------------------------------------------------------------
    @app.get("/")
    async def root():
        return {
            "status": "Clan Points Online",
            "routes": [
                "/health",
                "/login",
                "/auth/login",
                "/me",
                "/leaderboard",
                "/calendar",
                "/profile/{id}",
                "/captain",
                "/organizer",
                "/admin/members",
            ],
        }

    # -------------------------------------------------------------------
    # Startup / shutdown: one read cache per process
    # -------------------------------------------------------------------
    @app.on_event("startup")
    async def startup_event():
        if not settings.CACHE_ENABLED:
            app.state.read_cache = NullCache()
            log.info("Clan Points starting, read cache disabled")
            return
        scheduler = BackgroundScheduler(timezone="UTC")
        scheduler.start()
        app.state.scheduler = scheduler
        app.state.read_cache = ReadCache(ttl_seconds=settings.CACHE_TTL_SECONDS, scheduler=scheduler)
        log.info("Clan Points starting, read cache ttl=%ss", settings.CACHE_TTL_SECONDS)

    @app.on_event("shutdown")
    async def shutdown_event():
        scheduler = getattr(app.state, "scheduler", None)
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        log.info("Clan Points stopped")

    return app


app = create_app()
