"""Entry points for the periodic sweeps outside the API process.

Celery tasks and cron call these instead of the in-process workers. The
session and channel factories stay injectable for tests and queue runners.
"""

from __future__ import annotations

import argparse
import asyncio
from typing import Awaitable, Callable, TypeVar

from loguru import logger

from recompra_api.db.session import async_session, engine
from recompra_api.services.messaging import MessageChannel
from recompra_api.workers import CashbackExpirationWorker, InteractionDispatchWorker, SalesImportWorker
from recompra_api.workers.periodic import SessionFactory

T = TypeVar("T")


def _default_session_factory() -> SessionFactory:
    return async_session()


async def run_sales_import(
    *,
    session_factory: SessionFactory | None = None,
    channel_factory: Callable[[], MessageChannel] | None = None,
) -> dict[str, int]:
    worker = SalesImportWorker(session_factory or _default_session_factory, channel_factory=channel_factory)
    return await worker.run_once()


async def run_interaction_dispatch(
    *,
    session_factory: SessionFactory | None = None,
    channel_factory: Callable[[], MessageChannel] | None = None,
    batch_size: int | None = None,
) -> dict[str, int]:
    worker = InteractionDispatchWorker(
        session_factory or _default_session_factory,
        channel_factory=channel_factory,
        batch_size=batch_size,
    )
    return await worker.run_once()


async def run_cashback_expiration(*, session_factory: SessionFactory | None = None) -> dict[str, int]:
    worker = CashbackExpirationWorker(session_factory or _default_session_factory)
    return await worker.run_once()


async def _run_and_dispose(job: Awaitable[T]) -> T:
    # Pooled connections are bound to the loop that opened them.
    try:
        return await job
    finally:
        await engine.dispose()


def run_sales_import_sync() -> dict[str, int]:
    return asyncio.run(_run_and_dispose(run_sales_import()))


def run_interaction_dispatch_sync(*, batch_size: int | None = None) -> dict[str, int]:
    return asyncio.run(_run_and_dispose(run_interaction_dispatch(batch_size=batch_size)))


def run_cashback_expiration_sync() -> dict[str, int]:
    return asyncio.run(_run_and_dispose(run_cashback_expiration()))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Recompra background sweeps.")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("import-sales", help="Poll every integrated organization's sales feed once.")
    dispatch = sub.add_parser("dispatch", help="Deliver due campaign interactions once.")
    dispatch.add_argument("--batch-size", type=int, default=None, help="Max interactions to deliver.")
    sub.add_parser("expire", help="Expire cashback grants past their expiration date.")
    return parser


def cli() -> None:
    args = _build_parser().parse_args()
    if args.command == "import-sales":
        summary = run_sales_import_sync()
    elif args.command == "dispatch":
        summary = run_interaction_dispatch_sync(batch_size=args.batch_size)
    else:
        summary = run_cashback_expiration_sync()
    logger.info("Sweep finished", command=args.command, **summary)


if __name__ == "__main__":  # pragma: no cover
    cli()
