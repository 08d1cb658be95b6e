"""Interval loop shared by the in-process background workers."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]


class PeriodicWorker:
    """Run ``run_once`` every ``interval_seconds`` until stopped.

    A failing iteration is logged and the loop carries on with the next one.
    """

    name = "periodic"

    def __init__(self, session_factory: SessionFactory, *, interval_seconds: int) -> None:
        self._session_factory = session_factory
        self.interval_seconds = interval_seconds
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info("Worker started", worker=self.name, interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Worker stopped", worker=self.name)

    async def run_once(self) -> Dict[str, int]:
        raise NotImplementedError

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:  # pragma: no cover - logged and retried next interval
                logger.exception("Worker iteration failed", worker=self.name, error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session
