"""Background workers supporting async processing."""

from .cashback_expiration import CashbackExpirationWorker
from .interaction_dispatch import InteractionDispatchWorker
from .periodic import PeriodicWorker
from .sales_import import SalesImportWorker

__all__ = [
    "CashbackExpirationWorker",
    "InteractionDispatchWorker",
    "PeriodicWorker",
    "SalesImportWorker",
]
