from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Header, Query, status

from stockledger.app.api.deps import get_actor, get_app_settings, get_services
from stockledger.app.config import Settings
from stockledger.app.db.models.core_types import MovementReason
from stockledger.app.schemas.stock_movement import (
    MovementReverse,
    StockAdjustmentCreate,
    StockMovementPage,
    StockMovementRead,
)
from stockledger.services.concurrency import run_in_transaction
from stockledger.services.registry import Services

router = APIRouter(prefix="/stock-movements")


@router.get("", response_model=StockMovementPage)
def list_movements(
    store_id: str | None = None,
    product_variant_id: str | None = None,
    from_: datetime | None = Query(default=None, alias="from"),
    to: datetime | None = None,
    reason: MovementReason | None = None,
    limit: int | None = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    svc: Services = Depends(get_services),
):
    page = svc.queries.movement_history(
        store_id,
        product_variant_id,
        from_,
        to,
        reason=reason,
        limit=limit,
        offset=offset,
    )
    return StockMovementPage(
        items=[StockMovementRead.model_validate(mv) for mv in page.items],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
    )


@router.post("", response_model=StockMovementRead, status_code=status.HTTP_201_CREATED)
def adjust_stock(
    payload: StockAdjustmentCreate,
    svc: Services = Depends(get_services),
    settings: Settings = Depends(get_app_settings),
    actor: str = Depends(get_actor),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    return run_in_transaction(
        svc.session,
        lambda: svc.adjustments.adjust_stock(
            payload.store_id,
            payload.product_variant_id,
            payload.change_quantity,
            payload.reason,
            note=payload.note,
            created_by=actor,
            idempotency_key=idempotency_key,
        ),
        attempts=settings.write_retry_attempts,
    )


@router.post("/{movement_id}/reverse", response_model=StockMovementRead, status_code=status.HTTP_201_CREATED)
def reverse_movement(
    movement_id: int,
    payload: MovementReverse | None = None,
    svc: Services = Depends(get_services),
    settings: Settings = Depends(get_app_settings),
    actor: str = Depends(get_actor),
):
    note = payload.note if payload is not None else None
    return run_in_transaction(
        svc.session,
        lambda: svc.adjustments.reverse_movement(movement_id, note=note, created_by=actor),
        attempts=settings.write_retry_attempts,
    )
