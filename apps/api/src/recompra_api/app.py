from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from recompra_api.core.settings import settings
from recompra_api.db.session import async_session
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .workers import CashbackExpirationWorker, InteractionDispatchWorker, SalesImportWorker


APP_VERSION = "0.1.0"
SERVICE_NAME = "recompra-api"


def _session_factory():
    return async_session()


@asynccontextmanager
async def lifespan(app: FastAPI):
    workers = {
        "sales_import_worker": (
            SalesImportWorker(session_factory=_session_factory),
            settings.sales_import_worker_enabled,
        ),
        "interaction_dispatch_worker": (
            InteractionDispatchWorker(session_factory=_session_factory),
            settings.interaction_dispatch_worker_enabled,
        ),
        "cashback_expiration_worker": (
            CashbackExpirationWorker(session_factory=_session_factory),
            settings.cashback_expiration_worker_enabled,
        ),
    }

    started = []
    for state_name, (worker, enabled) in workers.items():
        if not enabled:
            logger.info("Worker disabled", worker=worker.name, reason=f"{state_name}_enabled is false")
            continue
        if settings.celery_broker_url:
            logger.info("Worker managed via Celery", worker=worker.name)
            continue
        setattr(app.state, state_name, worker)
        worker.start()
        started.append(worker)

    try:
        yield
    finally:
        for worker in started:
            if worker.is_running:
                await worker.stop()


def create_app() -> FastAPI:
    """Application factory for the Recompra FastAPI service."""
    configure_logging(
        service_name=SERVICE_NAME,
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Recompra API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name=SERVICE_NAME,
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
