from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from stockledger.app.config import Settings
from stockledger.app.db.base import utcnow
from stockledger.services.adjustments import StockAdjustmentService
from stockledger.services.inventory import InventoryQueryService
from stockledger.services.ledger import LedgerStore
from stockledger.services.procurement import PurchaseOrderManager
from stockledger.services.projector import StockLevelProjector


@dataclass
class Services:
    """Les services du ledger, câblés sur une même session (= même transaction)."""

    session: Session
    projector: StockLevelProjector
    ledger: LedgerStore
    purchase_orders: PurchaseOrderManager
    adjustments: StockAdjustmentService
    queries: InventoryQueryService


def build_services(
    session: Session,
    settings: Settings,
    *,
    clock: Callable[[], datetime] = utcnow,
) -> Services:
    projector = StockLevelProjector(session)
    ledger = LedgerStore(session, projector, allow_negative=settings.allow_negative_stock, clock=clock)
    return Services(
        session=session,
        projector=projector,
        ledger=ledger,
        purchase_orders=PurchaseOrderManager(session, ledger, po_number_prefix=settings.po_number_prefix),
        adjustments=StockAdjustmentService(session, ledger),
        queries=InventoryQueryService(
            session,
            ledger,
            projector,
            default_page_size=settings.movement_page_size,
            max_page_size=settings.max_page_size,
        ),
    )
