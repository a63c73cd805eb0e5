from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from stockledger.app.api.deps import get_actor, get_app_settings, get_services
from stockledger.app.config import Settings
from stockledger.app.db.models.core_types import POStatus
from stockledger.app.schemas.purchase_order import (
    POCreate,
    PORead,
    POSummaryRead,
    POUpdate,
    ReceiveRequest,
)
from stockledger.services.concurrency import run_in_transaction
from stockledger.services.registry import Services

router = APIRouter(prefix="/purchase-orders")


@router.get("", response_model=list[POSummaryRead])
def list_pos(
    store_id: str | None = None,
    status: POStatus | None = None,
    limit: int | None = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    svc: Services = Depends(get_services),
):
    return svc.queries.list_purchase_orders(store_id, status, limit=limit, offset=offset)


@router.get("/by-number/{po_number}", response_model=PORead)
def get_po_by_number(po_number: str, svc: Services = Depends(get_services)):
    return svc.queries.get_purchase_order_by_number(po_number)


@router.get("/{po_id}", response_model=PORead)
def get_po(po_id: int, svc: Services = Depends(get_services)):
    return svc.queries.get_purchase_order(po_id)


@router.post("", response_model=PORead, status_code=status.HTTP_201_CREATED)
def create_po(
    payload: POCreate,
    svc: Services = Depends(get_services),
    settings: Settings = Depends(get_app_settings),
    actor: str = Depends(get_actor),
):
    return run_in_transaction(
        svc.session,
        lambda: svc.purchase_orders.create_purchase_order(
            payload.store_id,
            payload.supplier_name,
            [ln.model_dump() for ln in payload.items],
            created_by=actor,
        ),
        attempts=settings.write_retry_attempts,
    )


@router.patch("/{po_id}", response_model=PORead)
def update_po(
    po_id: int,
    payload: POUpdate,
    svc: Services = Depends(get_services),
    settings: Settings = Depends(get_app_settings),
):
    items = [ln.model_dump() for ln in payload.items] if payload.items is not None else None
    return run_in_transaction(
        svc.session,
        lambda: svc.purchase_orders.update_purchase_order(po_id, supplier_name=payload.supplier_name, items=items),
        attempts=settings.write_retry_attempts,
    )


@router.post("/{po_id}/receive", response_model=PORead)
def receive_po(
    po_id: int,
    payload: ReceiveRequest,
    svc: Services = Depends(get_services),
    settings: Settings = Depends(get_app_settings),
    actor: str = Depends(get_actor),
):
    return run_in_transaction(
        svc.session,
        lambda: svc.purchase_orders.receive_items(
            po_id,
            [ln.model_dump() for ln in payload.receipts],
            created_by=actor,
        ),
        attempts=settings.write_retry_attempts,
    )


@router.post("/{po_id}/cancel", response_model=PORead)
def cancel_po(
    po_id: int,
    svc: Services = Depends(get_services),
    settings: Settings = Depends(get_app_settings),
):
    return run_in_transaction(
        svc.session,
        lambda: svc.purchase_orders.cancel_purchase_order(po_id),
        attempts=settings.write_retry_attempts,
    )
