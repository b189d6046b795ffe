from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.dependencies import get_log_sync
from app.api.v1.health import router as health_router
from app.api.v1.logs import router as logs_router
from app.api.v1.router import router as v1_router
from app.application.log_sync import LogSyncScheduler
from app.core.config import get_settings
from app.core.logging import configure_logging
from app.infra.db.session import init_db

settings = get_settings()
configure_logging(settings.log_level)
if settings.store_backend == "db":
    init_db()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    scheduler = None
    if settings.log_sync_interval_seconds > 0:
        scheduler = LogSyncScheduler(get_log_sync(), interval_seconds=settings.log_sync_interval_seconds)
        scheduler.start()
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()


app = FastAPI(title=settings.app_name, version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(v1_router)
app.include_router(logs_router)
app.include_router(health_router)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    return {"ok": "true"}
