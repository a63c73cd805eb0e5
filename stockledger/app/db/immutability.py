"""
Garde ORM sur les écritures interdites (couche 1 ; la couche 2 est le trigger
Postgres installé par la migration initiale).

- StockMovement : jamais UPDATE, jamais DELETE.
- PurchaseOrder : jamais DELETE ; statut toujours cohérent avec les lignes.

A appeler une fois au démarrage :

    from stockledger.app.db.immutability import register_guards
    register_guards()
"""

from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.orm import Session

from stockledger.app.db.models.core_types import POStatus
from stockledger.app.db.models.models_v1 import (
    PurchaseOrder,
    PurchaseOrderItem,
    StockMovement,
    derive_status,
)
from stockledger.app.logging_config import get_logger
from stockledger.services.errors import ConsistencyError, ImmutabilityViolationError

logger = get_logger("db.immutability")


def _check_ledger_writes(session: Session, flush_context, instances) -> None:
    for obj in session.deleted:
        if isinstance(obj, StockMovement):
            logger.error("ledger_delete_rejected", extra={"movement_id": obj.id})
            raise ImmutabilityViolationError("StockMovement", obj.id, "delete")
        if isinstance(obj, PurchaseOrder):
            logger.error("purchase_order_delete_rejected", extra={"po_number": obj.po_number})
            raise ImmutabilityViolationError("PurchaseOrder", obj.po_number, "delete")

    for obj in session.dirty:
        if isinstance(obj, StockMovement) and session.is_modified(obj, include_collections=False):
            logger.error("ledger_update_rejected", extra={"movement_id": obj.id})
            raise ImmutabilityViolationError("StockMovement", obj.id, "update")


def _check_purchase_order_status(session: Session, flush_context, instances) -> None:
    touched: set[PurchaseOrder] = set()
    for obj in list(session.new) + list(session.dirty):
        if isinstance(obj, PurchaseOrder):
            touched.add(obj)
        elif isinstance(obj, PurchaseOrderItem) and obj.po is not None:
            touched.add(obj.po)

    for po in touched:
        if po in session.deleted:
            continue
        expected = derive_status(po.items, cancelled=po.status == POStatus.cancelled)
        if po.status != expected:
            logger.error(
                "purchase_order_status_inconsistent",
                extra={"po_number": po.po_number, "status": po.status, "expected": expected},
            )
            raise ConsistencyError(
                f"Purchase order {po.po_number} status {po.status.value} "
                f"does not match its items ({expected.value})"
            )


_LISTENERS = (_check_ledger_writes, _check_purchase_order_status)


def register_guards() -> None:
    for fn in _LISTENERS:
        if not event.contains(Session, "before_flush", fn):
            event.listen(Session, "before_flush", fn)


def unregister_guards() -> None:
    """Tests uniquement."""
    for fn in _LISTENERS:
        if event.contains(Session, "before_flush", fn):
            event.remove(Session, "before_flush", fn)
