from __future__ import annotations

from fastapi import APIRouter, Depends

from stockledger.app.api.deps import get_app_settings, get_services
from stockledger.app.config import Settings
from stockledger.app.schemas.stock_level import RebuildRead, VerifyRead
from stockledger.services.concurrency import run_in_transaction
from stockledger.services.registry import Services

# Hors de /stock : les store_id sont opaques, aucun segment n'y est réservé
router = APIRouter(prefix="/reconcile")


@router.get("/verify", response_model=VerifyRead)
def verify_stock(
    store_id: str | None = None,
    product_variant_id: str | None = None,
    svc: Services = Depends(get_services),
):
    # ConsistencyError -> 500 via le handler global
    checked = svc.projector.verify(store_id, product_variant_id)
    return VerifyRead(checked=checked, consistent=True)


@router.post("/rebuild", response_model=RebuildRead)
def rebuild_stock(
    store_id: str | None = None,
    product_variant_id: str | None = None,
    svc: Services = Depends(get_services),
    settings: Settings = Depends(get_app_settings),
):
    report = run_in_transaction(
        svc.session,
        lambda: svc.projector.rebuild(store_id, product_variant_id),
        attempts=settings.write_retry_attempts,
    )
    return RebuildRead(checked=report.checked, repaired=[m.as_dict() for m in report.repaired])
