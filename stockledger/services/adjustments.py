"""
Ajustements de stock hors PO : stock initial, correction manuelle, casse,
vente, retour.

Règles :
- change_quantity entier non nul
- PURCHASE_RECEIPT réservé aux réceptions de PO
- politique non-négative (par défaut) : refus si le niveau passerait sous 0
- une erreur se corrige par un mouvement de signe opposé, jamais en
  modifiant l'historique (`reverse_movement`)
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from stockledger.app.db.models.core_types import MovementReason
from stockledger.app.db.models.models_v1 import StockMovement
from stockledger.app.logging_config import get_logger
from stockledger.services.errors import NotFoundError, ValidationError
from stockledger.services.ledger import LedgerStore, parse_reason, require_int, require_key

logger = get_logger("services.adjustments")


class StockAdjustmentService:
    def __init__(self, session: Session, ledger: LedgerStore):
        self._session = session
        self._ledger = ledger

    def _replay(
        self,
        existing: StockMovement,
        store_id: str,
        product_variant_id: str,
        change_quantity: int,
        reason: MovementReason,
    ) -> StockMovement:
        same = (
            existing.store_id == store_id
            and existing.product_variant_id == product_variant_id
            and existing.change_quantity == change_quantity
            and existing.reason == reason
        )
        if not same:
            raise ValidationError(
                "Idempotency-Key already used with a different payload",
                field="idempotency_key",
            )
        logger.info("stock_adjustment_replayed", extra={"movement_id": existing.id})
        return existing

    def adjust_stock(
        self,
        store_id: str,
        product_variant_id: str,
        change_quantity: int,
        reason: str | MovementReason = MovementReason.manual_adjustment,
        *,
        note: str | None = None,
        created_by: str = "system",
        idempotency_key: str | None = None,
    ) -> StockMovement:
        store_id = require_key(store_id, "store_id")
        product_variant_id = require_key(product_variant_id, "product_variant_id")
        change_quantity = require_int(change_quantity, "change_quantity")
        if change_quantity == 0:
            raise ValidationError("change_quantity must not be zero", field="change_quantity")
        reason = parse_reason(reason)
        if reason == MovementReason.purchase_receipt:
            raise ValidationError(
                "PURCHASE_RECEIPT movements are recorded by receiving a purchase order",
                field="reason",
            )

        if idempotency_key is not None:
            idempotency_key = idempotency_key.strip() or None
        if idempotency_key:
            existing = self._ledger.find_by_idempotency_key(idempotency_key)
            if existing is not None:
                return self._replay(existing, store_id, product_variant_id, change_quantity, reason)

        mv = self._ledger.append(
            store_id,
            product_variant_id,
            change_quantity,
            reason,
            note=note,
            created_by=created_by,
            idempotency_key=idempotency_key,
        )
        logger.info(
            "stock_adjusted",
            extra={
                "movement_id": mv.id,
                "store_id": store_id,
                "product_variant_id": product_variant_id,
                "change_quantity": change_quantity,
                "reason": reason,
            },
        )
        return mv

    def reverse_movement(
        self,
        movement_id: int,
        *,
        note: str | None = None,
        created_by: str = "system",
    ) -> StockMovement:
        """Annule l'effet d'un mouvement par un mouvement CORRECTION opposé."""
        original = self._ledger.get(movement_id)
        if original is None:
            raise NotFoundError("StockMovement", movement_id)
        if original.reason == MovementReason.purchase_receipt:
            raise ValidationError(
                "Purchase receipts cannot be reversed; issue an adjustment instead",
                field="movement_id",
            )

        return self.adjust_stock(
            original.store_id,
            original.product_variant_id,
            -original.change_quantity,
            MovementReason.correction,
            note=note or f"Reversal of movement {original.id}",
            created_by=created_by,
            idempotency_key=f"reversal:{original.id}",
        )
