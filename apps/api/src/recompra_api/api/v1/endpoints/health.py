from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Request
from pydantic import BaseModel

from recompra_api.observability.cashback import get_cashback_store

router = APIRouter()


class LivenessPayload(BaseModel):
    status: Literal["ok", "degraded"]
    workers: Dict[str, bool]
    metrics: Dict[str, Dict[str, int]]


@router.get("/health/live", summary="Service liveness", response_model=LivenessPayload)
async def service_liveness(request: Request) -> LivenessPayload:
    workers: Dict[str, bool] = {}
    for name in ("sales_import_worker", "interaction_dispatch_worker", "cashback_expiration_worker"):
        worker = getattr(request.app.state, name, None)
        if worker is not None:
            workers[name] = bool(getattr(worker, "is_running", False))

    status: Literal["ok", "degraded"] = "ok" if all(workers.values()) else "degraded"
    snapshot = get_cashback_store().snapshot()
    return LivenessPayload(
        status=status,
        workers=workers,
        metrics={
            "ledger": snapshot.ledger,
            "reversals": snapshot.reversals,
            "dispatch": snapshot.dispatch,
            "imports": snapshot.imports,
        },
    )
