from __future__ import annotations

from loguru import logger

from recompra_api.celery_app import celery_app
from recompra_api.core.settings import settings
from recompra_api.tasks.sweeps import (
    run_cashback_expiration_sync,
    run_interaction_dispatch_sync,
    run_sales_import_sync,
)


@celery_app.task(name="sales_import.run", queue=settings.sales_import_task_queue)
def run_sales_import() -> dict[str, object]:
    """Poll every integrated organization's sales feed once via Celery."""

    if not settings.sales_import_worker_enabled:
        logger.info("Sales import disabled; skipping Celery task.")
        return {"organizations": 0, "skipped": True}
    return run_sales_import_sync()


@celery_app.task(name="interaction_dispatch.run", queue=settings.interaction_dispatch_task_queue)
def run_interaction_dispatch(batch_size: int | None = None) -> dict[str, object]:
    """Deliver due campaign interactions once via Celery."""

    if not settings.interaction_dispatch_worker_enabled:
        logger.info("Interaction dispatch disabled; skipping Celery task.")
        return {"dispatched": 0, "skipped": True}
    return run_interaction_dispatch_sync(batch_size=batch_size)


@celery_app.task(name="cashback_expiration.run", queue=settings.cashback_expiration_task_queue)
def run_cashback_expiration() -> dict[str, object]:
    """Expire due cashback grants once via Celery."""

    if not settings.cashback_expiration_worker_enabled:
        logger.info("Cashback expiration disabled; skipping Celery task.")
        return {"expired": 0, "skipped": True}
    return run_cashback_expiration_sync()
