from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from stockledger.app.api.deps import get_services
from stockledger.app.schemas.stock_level import StockLevelRead, StoreStockRead
from stockledger.services.registry import Services

router = APIRouter(prefix="/stock")


@router.get("", response_model=list[StoreStockRead])
def get_stock(
    store_id: list[str] | None = Query(default=None),
    svc: Services = Depends(get_services),
):
    """
    Stock (READ ONLY), groupé par magasin.
    - quantity est projetée depuis le ledger, jamais modifiable ici
    """
    grouped = svc.queries.stock_levels(store_id)
    return [
        StoreStockRead(store_id=sid, levels=[StockLevelRead.model_validate(sl) for sl in levels])
        for sid, levels in grouped.items()
    ]


@router.get("/{store_id}", response_model=list[StockLevelRead])
def get_store_stock(store_id: str, svc: Services = Depends(get_services)):
    return [
        StockLevelRead(store_id=store_id, product_variant_id=pv, quantity=qty)
        for pv, qty in svc.queries.stock_by_store(store_id)
    ]


@router.get("/{store_id}/{product_variant_id}", response_model=StockLevelRead)
def get_level(store_id: str, product_variant_id: str, svc: Services = Depends(get_services)):
    return StockLevelRead(
        store_id=store_id,
        product_variant_id=product_variant_id,
        quantity=svc.queries.get_level(store_id, product_variant_id),
    )
