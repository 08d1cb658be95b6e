from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict, Mapping


@dataclass
class CashbackSnapshot:
    ledger: Dict[str, int]
    reversals: Dict[str, int]
    dispatch: Dict[str, int]
    imports: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "ledger": dict(self.ledger),
            "reversals": dict(self.reversals),
            "dispatch": dict(self.dispatch),
            "imports": dict(self.imports),
        }


class CashbackObservabilityStore:
    """Collect cashback ledger and outreach telemetry for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._ledger: Dict[str, int] = defaultdict(int)
        self._reversals: Dict[str, int] = defaultdict(int)
        self._dispatch: Dict[str, int] = defaultdict(int)
        self._imports: Dict[str, int] = defaultdict(int)

    def record_ledger_entry(self, entry_type: str) -> None:
        with self._lock:
            self._ledger[entry_type] += 1

    def record_reversal(self, *, discrepancy: bool) -> None:
        with self._lock:
            self._reversals["total"] += 1
            if discrepancy:
                self._reversals["discrepancies"] += 1

    def record_dispatch(self, outcome: str) -> None:
        with self._lock:
            self._dispatch[outcome] += 1

    def record_import(self, summary: Mapping[str, int]) -> None:
        with self._lock:
            self._imports["runs"] += 1
            for key, value in summary.items():
                self._imports[key] += int(value)

    def snapshot(self) -> CashbackSnapshot:
        with self._lock:
            return CashbackSnapshot(
                ledger=dict(self._ledger),
                reversals=dict(self._reversals),
                dispatch=dict(self._dispatch),
                imports=dict(self._imports),
            )

    def reset(self) -> None:
        with self._lock:
            self._ledger.clear()
            self._reversals.clear()
            self._dispatch.clear()
            self._imports.clear()


_STORE = CashbackObservabilityStore()


def get_cashback_store() -> CashbackObservabilityStore:
    return _STORE


__all__ = ["get_cashback_store", "CashbackObservabilityStore", "CashbackSnapshot"]
