from __future__ import annotations

from functools import lru_cache

from app.application.jobs import JobOrchestrator
from app.application.log_sync import LogSyncService
from app.core.config import get_settings
from app.infra.db.log_store import DatabaseLogStore
from app.infra.db.store import DatabaseJobStore
from app.infra.engine.dify import DifyEngine
from app.infra.engine.mock import MockEngine
from app.infra.files.log_store import FileLogStore
from app.infra.files.store import FileJobStore
from app.infra.memory.log_store import InMemoryLogStore
from app.infra.memory.store import InMemoryJobStore
from app.infra.ports.engine import WorkflowEnginePort
from app.infra.ports.job_store import JobStorePort
from app.infra.ports.log_store import LogStorePort


@lru_cache(maxsize=1)
def get_store() -> JobStorePort:
    settings = get_settings()
    if settings.store_backend == "memory":
        return InMemoryJobStore()
    if settings.store_backend == "file":
        return FileJobStore(settings.data_dir, max_attempts=settings.store_max_attempts)
    if settings.store_backend != "db":
        raise RuntimeError(f"Unknown JOBS_STORE_BACKEND: {settings.store_backend}")
    return DatabaseJobStore(max_attempts=settings.store_max_attempts)


@lru_cache(maxsize=1)
def get_engine() -> WorkflowEnginePort:
    settings = get_settings()
    if settings.engine_backend == "dify":
        if not settings.dify_api_key or not settings.dify_api_base_url:
            raise RuntimeError("DIFY_API_KEY and DIFY_API_BASE_URL are required when JOBS_ENGINE_BACKEND=dify")
        return DifyEngine(
            api_key=settings.dify_api_key,
            base_url=settings.dify_api_base_url,
            timeout_seconds=settings.engine_timeout_seconds,
        )
    return MockEngine()


@lru_cache(maxsize=1)
def get_orchestrator() -> JobOrchestrator:
    # One instance per process: it owns the set of in-flight job ids.
    settings = get_settings()
    return JobOrchestrator(
        store=get_store(),
        engine=get_engine(),
        persist_every=settings.persist_every,
        terminal_write_attempts=settings.terminal_write_attempts,
        sync_processing=settings.sync_processing,
    )


async def provide_orchestrator() -> JobOrchestrator:
    return get_orchestrator()


@lru_cache(maxsize=1)
def get_log_store() -> LogStorePort:
    # Engine logs live beside the jobs, in the same backend.
    settings = get_settings()
    if settings.store_backend == "memory":
        return InMemoryLogStore()
    if settings.store_backend == "file":
        return FileLogStore(settings.data_dir, max_attempts=settings.store_max_attempts)
    if settings.store_backend != "db":
        raise RuntimeError(f"Unknown JOBS_STORE_BACKEND: {settings.store_backend}")
    return DatabaseLogStore(max_attempts=settings.store_max_attempts)


@lru_cache(maxsize=1)
def get_log_sync() -> LogSyncService:
    settings = get_settings()
    return LogSyncService(
        engine=get_engine(),
        store=get_log_store(),
        user=settings.log_sync_user,
        limit=settings.log_sync_limit,
    )


async def provide_log_store() -> LogStorePort:
    return get_log_store()


async def provide_log_sync() -> LogSyncService:
    return get_log_sync()
