"""
Procurement service.

Cycle de vie des bons de commande (PO) :

    OPEN --receive--> PARTIALLY_RECEIVED --receive--> CLOSED
      |                      |
      +------cancel----------+--> CANCELLED

La réception est le SEUL pont entre un PO et le stock : chaque ligne reçue
ajoute un mouvement PURCHASE_RECEIPT au ledger. Le statut n'est jamais posé
à la main, il est recalculé par `derive_status` après chaque réception.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.app.db.base import utcnow
from stockledger.app.db.models.core_types import MovementReason, POStatus
from stockledger.app.db.models.models_v1 import PurchaseOrder, PurchaseOrderItem, derive_status
from stockledger.app.logging_config import LogContext, get_logger
from stockledger.services.concurrency import conflicts_as
from stockledger.services.errors import (
    InvalidStateError,
    NotFoundError,
    OverReceiptError,
    ValidationError,
)
from stockledger.services.ledger import LedgerStore, require_int, require_key
from stockledger.services.sequence import PURCHASE_ORDER, SequenceService, format_po_number

logger = get_logger("services.procurement")

__all__ = [
    "ItemSpec",
    "Receipt",
    "PurchaseOrderManager",
    "derive_status",
]


@dataclass(frozen=True)
class ItemSpec:
    product_variant_id: str
    quantity_ordered: int
    unit_cost_cents: int


@dataclass(frozen=True)
class Receipt:
    item_id: int
    quantity: int


def _coerce_items(items: Iterable[ItemSpec | Mapping]) -> list[ItemSpec]:
    specs: list[ItemSpec] = []
    for idx, it in enumerate(items or []):
        if isinstance(it, Mapping):
            it = ItemSpec(
                product_variant_id=it.get("product_variant_id"),
                quantity_ordered=it.get("quantity_ordered"),
                unit_cost_cents=it.get("unit_cost_cents"),
            )
        try:
            pv = require_key(it.product_variant_id, "product_variant_id")
            qty = require_int(it.quantity_ordered, "quantity_ordered")
            cost = require_int(it.unit_cost_cents, "unit_cost_cents")
        except ValidationError as exc:
            raise ValidationError(f"Item {idx}: {exc.message}", field=f"items[{idx}].{exc.field}") from None
        if qty <= 0:
            raise ValidationError(
                f"Item {idx}: quantity_ordered must be > 0", field=f"items[{idx}].quantity_ordered"
            )
        if cost < 0:
            raise ValidationError(
                f"Item {idx}: unit_cost_cents must be >= 0", field=f"items[{idx}].unit_cost_cents"
            )
        specs.append(ItemSpec(pv, qty, cost))

    if not specs:
        raise ValidationError("Purchase order must contain at least one item", field="items")
    return specs


def _coerce_receipts(receipts: Iterable[Receipt | Mapping]) -> dict[int, int]:
    """Lignes de réception -> {item_id: quantité totale}, doublons additionnés."""
    totals: dict[int, int] = {}
    for idx, r in enumerate(receipts or []):
        if isinstance(r, Mapping):
            r = Receipt(item_id=r.get("item_id"), quantity=r.get("quantity"))
        try:
            item_id = require_int(r.item_id, "item_id")
            qty = require_int(r.quantity, "quantity")
        except ValidationError as exc:
            raise ValidationError(f"Receipt {idx}: {exc.message}", field=f"receipts[{idx}].{exc.field}") from None
        if qty <= 0:
            raise ValidationError(f"Receipt {idx}: quantity must be > 0", field=f"receipts[{idx}].quantity")
        totals[item_id] = totals.get(item_id, 0) + qty

    if not totals:
        raise ValidationError("At least one receipt line is required", field="receipts")
    return totals


def _supplier(name: str | None) -> str:
    if name is None or not name.strip():
        raise ValidationError("supplier_name is required", field="supplier_name")
    name = name.strip()
    if len(name) > 255:
        raise ValidationError("supplier_name must be at most 255 characters", field="supplier_name")
    return name


class PurchaseOrderManager:
    def __init__(self, session: Session, ledger: LedgerStore, *, po_number_prefix: str = "PO-"):
        self._session = session
        self._ledger = ledger
        self._sequence = SequenceService(session)
        self._prefix = po_number_prefix

    # ---------- LECTURE ----------
    def get(self, po_id: int, *, lock: bool = False) -> PurchaseOrder:
        stmt = select(PurchaseOrder).where(PurchaseOrder.id == po_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        po = self._session.execute(stmt).scalar_one_or_none()
        if po is None:
            raise NotFoundError("PurchaseOrder", po_id)
        return po

    def _lock_items(self, po: PurchaseOrder) -> None:
        # populate_existing : on relit quantity_received / version sous verrou
        self._session.execute(
            select(PurchaseOrderItem)
            .where(PurchaseOrderItem.purchase_order_id == po.id)
            .order_by(PurchaseOrderItem.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()

    # ---------- CREATION ----------
    def create_purchase_order(
        self,
        store_id: str,
        supplier_name: str,
        items: Iterable[ItemSpec | Mapping],
        *,
        created_by: str = "system",
    ) -> PurchaseOrder:
        store_id = require_key(store_id, "store_id")
        supplier_name = _supplier(supplier_name)
        specs = _coerce_items(items)

        po_number = format_po_number(self._prefix, self._sequence.next_value(PURCHASE_ORDER))
        po = PurchaseOrder(
            po_number=po_number,
            store_id=store_id,
            supplier_name=supplier_name,
            status=POStatus.open,
            created_at=utcnow(),
            created_by=created_by or "system",
            items=[
                PurchaseOrderItem(
                    product_variant_id=s.product_variant_id,
                    quantity_ordered=s.quantity_ordered,
                    quantity_received=0,
                    unit_cost_cents=s.unit_cost_cents,
                )
                for s in specs
            ],
        )
        self._session.add(po)
        with conflicts_as("PurchaseOrder", po_number):
            self._session.flush()

        logger.info(
            "purchase_order_created",
            extra={
                "po_number": po.po_number,
                "store_id": store_id,
                "items": len(specs),
                "total_cost_cents": po.total_cost_cents,
            },
        )
        return po

    def update_purchase_order(
        self,
        po_id: int,
        *,
        supplier_name: str | None = None,
        items: Iterable[ItemSpec | Mapping] | None = None,
    ) -> PurchaseOrder:
        """Edition tant que le PO est OPEN et que rien n'a été reçu."""
        po = self.get(po_id, lock=True)
        if po.status != POStatus.open or any(i.quantity_received for i in po.items):
            raise InvalidStateError(po.po_number, po.status.value, "edit")

        new_supplier = _supplier(supplier_name) if supplier_name is not None else None
        specs = _coerce_items(items) if items is not None else None

        if new_supplier is not None:
            po.supplier_name = new_supplier
        if specs is not None:
            po.items = [
                PurchaseOrderItem(
                    product_variant_id=s.product_variant_id,
                    quantity_ordered=s.quantity_ordered,
                    quantity_received=0,
                    unit_cost_cents=s.unit_cost_cents,
                )
                for s in specs
            ]

        with conflicts_as("PurchaseOrder", po.po_number):
            self._session.flush()

        logger.info(
            "purchase_order_updated",
            extra={"po_number": po.po_number, "items": len(po.items), "total_cost_cents": po.total_cost_cents},
        )
        return po

    # ---------- RECEPTION ----------
    def receive_items(
        self,
        po_id: int,
        receipts: Iterable[Receipt | Mapping],
        *,
        created_by: str = "system",
    ) -> PurchaseOrder:
        """
        Réception atomique de plusieurs lignes.

        Toutes les lignes sont validées AVANT la moindre écriture : soit tout
        passe (quantités reçues + mouvements + niveaux + statut), soit rien.
        """
        totals = _coerce_receipts(receipts)
        po = self.get(po_id, lock=True)

        with LogContext.bind(po_number=po.po_number):
            if po.status.is_terminal:
                raise InvalidStateError(po.po_number, po.status.value, "receive")

            self._lock_items(po)

            # ---------- VALIDATION ----------
            lines: list[tuple[PurchaseOrderItem, int]] = []
            for item_id, qty in sorted(totals.items()):
                item = po.item(item_id)
                if item is None:
                    raise NotFoundError("PurchaseOrderItem", item_id)
                if item.quantity_received + qty > item.quantity_ordered:
                    raise OverReceiptError(item.id, item.quantity_ordered, item.quantity_received, qty)
                lines.append((item, qty))

            # ---------- ECRITURE ----------
            self._ledger.projector.lock_levels((po.store_id, it.product_variant_id) for it, _ in lines)
            previous = po.status
            for item, qty in lines:
                item.quantity_received += qty
            # Statut posé avant le premier flush (garde de cohérence)
            po.status = derive_status(po.items)

            for item, qty in lines:
                self._ledger.append(
                    po.store_id,
                    item.product_variant_id,
                    qty,
                    MovementReason.purchase_receipt,
                    note=f"Receipt for {po.po_number}",
                    purchase_order_item_id=item.id,
                    created_by=created_by,
                )

            with conflicts_as("PurchaseOrder", po.po_number):
                self._session.flush()

            logger.info(
                "items_received",
                extra={
                    "lines": len(lines),
                    "units": sum(q for _, q in lines),
                    "status_from": previous,
                    "status_to": po.status,
                },
            )
        return po

    # ---------- ANNULATION ----------
    def cancel_purchase_order(self, po_id: int) -> PurchaseOrder:
        """Stoppe les réceptions futures. Les mouvements déjà reçus restent."""
        po = self.get(po_id, lock=True)
        if po.status.is_terminal:
            raise InvalidStateError(po.po_number, po.status.value, "cancel")

        previous = po.status
        po.status = POStatus.cancelled
        po.cancelled_at = utcnow()
        with conflicts_as("PurchaseOrder", po.po_number):
            self._session.flush()

        logger.info(
            "purchase_order_cancelled",
            extra={"po_number": po.po_number, "status_from": previous},
        )
        return po
