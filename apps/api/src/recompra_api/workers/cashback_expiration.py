"""Periodic expiration of cashback grants past their expiration date."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Dict

from loguru import logger
from sqlalchemy import select

from recompra_api.core.settings import settings
from recompra_api.models.cashback import CashbackProgram
from recompra_api.services.cashback.service import CashbackLedgerService
from recompra_api.workers.periodic import PeriodicWorker, SessionFactory


class CashbackExpirationWorker(PeriodicWorker):
    """Expire due grants program by program, each in its own unit of work."""

    name = "cashback-expiration"

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        interval_seconds: int | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(
            session_factory,
            interval_seconds=interval_seconds or settings.cashback_expiration_interval_seconds,
        )
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def run_once(self) -> Dict[str, int]:
        summary: Dict[str, int] = {"programs": 0, "expired": 0, "failed": 0}
        reference_time = self._now()

        session = await self._ensure_session()
        async with session as managed_session:
            program_ids = (
                await managed_session.execute(select(CashbackProgram.id).where(CashbackProgram.is_active.is_(True)))
            ).scalars().all()

        for program_id in program_ids:
            summary["programs"] += 1
            session = await self._ensure_session()
            async with session as managed_session:
                try:
                    program = await managed_session.get(CashbackProgram, program_id)
                    if program is None:
                        continue
                    expired = await CashbackLedgerService(managed_session, program).expire_due(
                        reference_time=reference_time
                    )
                    await managed_session.commit()
                except Exception as exc:
                    await managed_session.rollback()
                    summary["failed"] += 1
                    logger.exception(
                        "Cashback expiration failed for program",
                        program_id=str(program_id),
                        error=str(exc),
                    )
                    continue
            summary["expired"] += len(expired)

        logger.info("Cashback expiration sweep completed", **summary)
        return summary
