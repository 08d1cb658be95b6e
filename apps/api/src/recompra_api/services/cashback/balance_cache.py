"""Unit-of-work scoped cache of client balances."""

from __future__ import annotations

from typing import Dict
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from recompra_api.models.cashback import CashbackProgramBalance
from recompra_api.services.cashback.ledger import BalanceSnapshot


class BalanceCache:
    """Map of client id to its locked balance row for one program.

    Create one per unit of work and pass it down the call chain. Rows are
    loaded ``FOR UPDATE`` the first time a client is seen and every later
    mutation goes through the same ORM instance, so a second sale for the
    same client inside a batch sees the balance left by the first one.
    """

    def __init__(self, session: AsyncSession, *, organization_id: UUID, program_id: UUID) -> None:
        self._db = session
        self.organization_id = organization_id
        self.program_id = program_id
        self._entries: Dict[UUID, CashbackProgramBalance] = {}
        self.loads = 0
        self.creations = 0

    def __contains__(self, client_id: UUID) -> bool:
        return client_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def ensure_entry(self, client_id: UUID) -> CashbackProgramBalance:
        """Return the cached balance, else the persisted one, else a new zero balance."""

        cached = self._entries.get(client_id)
        if cached is not None:
            return cached

        stmt = (
            select(CashbackProgramBalance)
            .where(
                CashbackProgramBalance.client_id == client_id,
                CashbackProgramBalance.program_id == self.program_id,
            )
            .with_for_update()
        )
        balance = (await self._db.execute(stmt)).scalar_one_or_none()
        if balance is None:
            balance = CashbackProgramBalance(
                organization_id=self.organization_id,
                client_id=client_id,
                program_id=self.program_id,
                available=0,
                accumulated_total=0,
                redeemed_total=0,
                expired_total=0,
                entry_count=0,
            )
            self._db.add(balance)
            await self._db.flush()
            self.creations += 1
            logger.debug("Created cashback balance", client_id=str(client_id), program_id=str(self.program_id))
        else:
            self.loads += 1

        self._entries[client_id] = balance
        return balance

    async def snapshot(self, client_id: UUID) -> BalanceSnapshot:
        return BalanceSnapshot.of(await self.ensure_entry(client_id))

    def clear(self) -> None:
        self._entries.clear()
