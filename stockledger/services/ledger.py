"""
LedgerStore : journal append-only des mouvements de stock.

Pas d'update, pas de delete : une correction = un nouveau mouvement de signe
opposé. Chaque append met à jour la projection (StockLevelProjector) dans la
même transaction, donc niveau et ledger ne divergent jamais après commit.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Iterator

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from stockledger.app.db.base import utcnow
from stockledger.app.db.models.core_types import MovementReason
from stockledger.app.db.models.models_v1 import StockMovement
from stockledger.app.logging_config import get_logger
from stockledger.services.concurrency import conflicts_as
from stockledger.services.errors import ValidationError
from stockledger.services.projector import StockLevelProjector

logger = get_logger("services.ledger")

YIELD_PER = 500


def require_key(value: str | None, field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required", field=field)
    value = str(value).strip()
    if len(value) > 64:
        raise ValidationError(f"{field} must be at most 64 characters", field=field)
    return value


def require_int(value, field: str) -> int:
    # bool est un int en python : refusé explicitement
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer", field=field)
    return value


def parse_reason(reason: str | MovementReason) -> MovementReason:
    try:
        return MovementReason.parse(reason)
    except ValueError as exc:
        raise ValidationError(str(exc), field="reason") from None


class LedgerStore:
    def __init__(
        self,
        session: Session,
        projector: StockLevelProjector | None = None,
        *,
        allow_negative: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session = session
        self._projector = projector or StockLevelProjector(session)
        self._allow_negative = allow_negative
        self._clock = clock

    @property
    def projector(self) -> StockLevelProjector:
        return self._projector

    @property
    def allow_negative(self) -> bool:
        return self._allow_negative

    # ---------- ECRITURE ----------
    def append(
        self,
        store_id: str,
        product_variant_id: str,
        change_quantity: int,
        reason: str | MovementReason,
        *,
        note: str | None = None,
        purchase_order_item_id: int | None = None,
        created_by: str = "system",
        idempotency_key: str | None = None,
        allow_negative: bool | None = None,
    ) -> StockMovement:
        store_id = require_key(store_id, "store_id")
        product_variant_id = require_key(product_variant_id, "product_variant_id")
        change_quantity = require_int(change_quantity, "change_quantity")
        if change_quantity == 0:
            raise ValidationError("change_quantity must not be zero", field="change_quantity")
        reason = parse_reason(reason)
        if note is not None and len(note) > 255:
            raise ValidationError("note must be at most 255 characters", field="note")

        policy = self._allow_negative if allow_negative is None else allow_negative

        # Niveau d'abord : verrou + contrôle de politique avant tout insert
        new_level = self._projector.apply_delta(
            store_id,
            product_variant_id,
            change_quantity,
            allow_negative=policy,
        )

        mv = StockMovement(
            store_id=store_id,
            product_variant_id=product_variant_id,
            change_quantity=change_quantity,
            reason=reason,
            note=note,
            purchase_order_item_id=purchase_order_item_id,
            idempotency_key=idempotency_key,
            created_at=self._clock(),
            created_by=created_by or "system",
        )
        self._session.add(mv)
        with conflicts_as("StockMovement", idempotency_key or f"{store_id}/{product_variant_id}"):
            self._session.flush()

        logger.info(
            "movement_appended",
            extra={
                "movement_id": mv.id,
                "store_id": store_id,
                "product_variant_id": product_variant_id,
                "change_quantity": change_quantity,
                "reason": reason,
                "level": new_level,
            },
        )
        return mv

    # ---------- LECTURE ----------
    def get(self, movement_id: int) -> StockMovement | None:
        return self._session.get(StockMovement, movement_id)

    def find_by_idempotency_key(self, key: str) -> StockMovement | None:
        return self._session.execute(
            select(StockMovement).where(StockMovement.idempotency_key == key)
        ).scalar_one_or_none()

    def _filtered(
        self,
        stmt: Select,
        store_id: str | None,
        product_variant_id: str | None,
        from_: datetime | None,
        to: datetime | None,
        reason: MovementReason | None,
        purchase_order_item_id: int | None,
    ) -> Select:
        if from_ is not None and to is not None and from_ > to:
            raise ValidationError("from must not be after to", field="from")
        if store_id is not None:
            stmt = stmt.where(StockMovement.store_id == store_id)
        if product_variant_id is not None:
            stmt = stmt.where(StockMovement.product_variant_id == product_variant_id)
        if from_ is not None:
            stmt = stmt.where(StockMovement.created_at >= from_)
        if to is not None:
            stmt = stmt.where(StockMovement.created_at < to)
        if reason is not None:
            stmt = stmt.where(StockMovement.reason == parse_reason(reason))
        if purchase_order_item_id is not None:
            stmt = stmt.where(StockMovement.purchase_order_item_id == purchase_order_item_id)
        return stmt

    def query(
        self,
        store_id: str | None = None,
        product_variant_id: str | None = None,
        from_: datetime | None = None,
        to: datetime | None = None,
        *,
        reason: MovementReason | None = None,
        purchase_order_item_id: int | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> Iterator[StockMovement]:
        """
        Mouvements filtrés, ordre chronologique (created_at, id).

        `from_` inclus, `to` exclu. Itération paresseuse par lots (yield_per).
        """
        if limit is not None and limit < 0:
            raise ValidationError("limit must be >= 0", field="limit")
        if offset < 0:
            raise ValidationError("offset must be >= 0", field="offset")

        stmt = self._filtered(
            select(StockMovement), store_id, product_variant_id, from_, to, reason, purchase_order_item_id
        ).order_by(StockMovement.created_at.asc(), StockMovement.id.asc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        # Validation immédiate ci-dessus ; seule la lecture est paresseuse
        return self._iter(stmt)

    def _iter(self, stmt: Select) -> Iterator[StockMovement]:
        result = self._session.execute(stmt.execution_options(yield_per=YIELD_PER))
        for mv in result.scalars():
            yield mv

    def count(
        self,
        store_id: str | None = None,
        product_variant_id: str | None = None,
        from_: datetime | None = None,
        to: datetime | None = None,
        *,
        reason: MovementReason | None = None,
        purchase_order_item_id: int | None = None,
    ) -> int:
        stmt = self._filtered(
            select(func.count(StockMovement.id)),
            store_id,
            product_variant_id,
            from_,
            to,
            reason,
            purchase_order_item_id,
        )
        return int(self._session.execute(stmt).scalar_one())

    def sum_by_key(self, store_id: str | None = None, product_variant_id: str | None = None) -> dict[tuple[str, str], int]:
        stmt = self._filtered(
            select(
                StockMovement.store_id,
                StockMovement.product_variant_id,
                func.sum(StockMovement.change_quantity),
            ),
            store_id,
            product_variant_id,
            None,
            None,
            None,
            None,
        ).group_by(StockMovement.store_id, StockMovement.product_variant_id)
        return {(s, v): int(total) for s, v, total in self._session.execute(stmt).all()}
