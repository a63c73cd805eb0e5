"""
Façade lecture seule : PO, niveaux de stock, historique des mouvements.

Aucune règle métier ici, uniquement agrégation et pagination.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.app.db.models.core_types import MovementReason, POStatus
from stockledger.app.db.models.models_v1 import PurchaseOrder, StockLevel, StockMovement
from stockledger.services.errors import NotFoundError, ValidationError
from stockledger.services.ledger import LedgerStore
from stockledger.services.projector import StockLevelProjector

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    items: list[T]
    total: int
    limit: int
    offset: int


class InventoryQueryService:
    def __init__(
        self,
        session: Session,
        ledger: LedgerStore,
        projector: StockLevelProjector | None = None,
        *,
        default_page_size: int = 100,
        max_page_size: int = 1000,
    ):
        self._session = session
        self._ledger = ledger
        self._projector = projector or ledger.projector
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size

    def _page_bounds(self, limit: int | None, offset: int) -> tuple[int, int]:
        limit = self._default_page_size if limit is None else limit
        if not 1 <= limit <= self._max_page_size:
            raise ValidationError(f"limit must be between 1 and {self._max_page_size}", field="limit")
        if offset < 0:
            raise ValidationError("offset must be >= 0", field="offset")
        return limit, offset

    # ---------- PURCHASE ORDERS ----------
    def get_purchase_order(self, po_id: int) -> PurchaseOrder:
        po = self._session.get(PurchaseOrder, po_id)
        if po is None:
            raise NotFoundError("PurchaseOrder", po_id)
        return po

    def get_purchase_order_by_number(self, po_number: str) -> PurchaseOrder:
        po = self._session.execute(
            select(PurchaseOrder).where(PurchaseOrder.po_number == po_number)
        ).scalar_one_or_none()
        if po is None:
            raise NotFoundError("PurchaseOrder", po_number)
        return po

    def list_purchase_orders(
        self,
        store_id: str | None = None,
        status: POStatus | str | None = None,
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[PurchaseOrder]:
        limit, offset = self._page_bounds(limit, offset)
        stmt = select(PurchaseOrder).order_by(PurchaseOrder.id.desc())
        if store_id is not None:
            stmt = stmt.where(PurchaseOrder.store_id == store_id)
        if status is not None:
            try:
                status = POStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown purchase order status {status!r}", field="status") from None
            stmt = stmt.where(PurchaseOrder.status == status)
        return list(self._session.execute(stmt.limit(limit).offset(offset)).scalars())

    # ---------- STOCK ----------
    def get_level(self, store_id: str, product_variant_id: str) -> int:
        return self._projector.get_level(store_id, product_variant_id)

    def stock_by_store(self, store_id: str) -> list[tuple[str, int]]:
        return self._projector.list_by_store(store_id)

    def stock_levels(self, store_ids: list[str] | None = None) -> dict[str, list[StockLevel]]:
        grouped: dict[str, list[StockLevel]] = {}
        for sl in self._projector.list_levels(store_ids):
            grouped.setdefault(sl.store_id, []).append(sl)
        return grouped

    # ---------- MOUVEMENTS ----------
    def movement_history(
        self,
        store_id: str | None = None,
        product_variant_id: str | None = None,
        from_: datetime | None = None,
        to: datetime | None = None,
        *,
        reason: MovementReason | str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> Page[StockMovement]:
        limit, offset = self._page_bounds(limit, offset)
        filters = dict(store_id=store_id, product_variant_id=product_variant_id, from_=from_, to=to)
        items = list(self._ledger.query(**filters, reason=reason, limit=limit, offset=offset))
        total = self._ledger.count(**filters, reason=reason)
        return Page(items=items, total=total, limit=limit, offset=offset)
