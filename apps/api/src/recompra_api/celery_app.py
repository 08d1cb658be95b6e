"""Celery application running the periodic sweeps when a broker is configured."""

from __future__ import annotations

from celery import Celery

from recompra_api.core.settings import settings


def _resolve_backend_url() -> str:
    return settings.celery_result_backend or settings.redis_url


def _resolve_broker_url() -> str:
    return settings.celery_broker_url or settings.redis_url


celery_app = Celery(
    "recompra_api",
    broker=_resolve_broker_url(),
    backend=_resolve_backend_url(),
)

celery_app.conf.update(
    task_default_queue=settings.celery_default_queue,
    timezone="UTC",
    broker_connection_retry_on_startup=True,
    beat_schedule={
        "sales-import": {
            "task": "sales_import.run",
            "schedule": float(settings.sales_import_interval_seconds),
        },
        "interaction-dispatch": {
            "task": "interaction_dispatch.run",
            "schedule": float(settings.interaction_dispatch_interval_seconds),
        },
        "cashback-expiration": {
            "task": "cashback_expiration.run",
            "schedule": float(settings.cashback_expiration_interval_seconds),
        },
    },
)

celery_app.autodiscover_tasks(["recompra_api.celery_tasks"])

__all__ = ["celery_app"]
