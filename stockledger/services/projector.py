"""
Projection des niveaux de stock.

Le ledger (stock_movements) est la seule vérité ; stock_levels n'est qu'un
index reconstructible. Règle :

    stock_levels.quantity(s, v) == SUM(stock_movements.change_quantity) pour (s, v)

Seul le LedgerStore appelle `apply_delta`, dans la même transaction que
l'insert du mouvement. `rebuild` répare, `verify` constate.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockledger.app.db.models.models_v1 import StockLevel, StockMovement
from stockledger.app.logging_config import get_logger
from stockledger.services.concurrency import conflicts_as
from stockledger.services.errors import ConsistencyError, InsufficientStockError

logger = get_logger("services.projector")

Key = tuple[str, str]


@dataclass
class LevelMismatch:
    store_id: str
    product_variant_id: str
    expected: int
    actual: int | None

    def as_dict(self) -> dict:
        return {
            "store_id": self.store_id,
            "product_variant_id": self.product_variant_id,
            "expected": self.expected,
            "actual": self.actual,
        }


@dataclass
class RebuildReport:
    checked: int = 0
    repaired: list[LevelMismatch] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.repaired


class StockLevelProjector:
    def __init__(self, session: Session):
        self._session = session

    # ---------- LECTURE ----------
    def get_level(self, store_id: str, product_variant_id: str) -> int:
        qty = self._session.execute(
            select(StockLevel.quantity)
            .where(StockLevel.store_id == store_id)
            .where(StockLevel.product_variant_id == product_variant_id)
        ).scalar_one_or_none()
        return int(qty or 0)

    def list_by_store(self, store_id: str) -> list[tuple[str, int]]:
        rows = self._session.execute(
            select(StockLevel.product_variant_id, StockLevel.quantity)
            .where(StockLevel.store_id == store_id)
            .order_by(StockLevel.product_variant_id)
        ).all()
        return [(pv, int(qty)) for pv, qty in rows]

    def list_levels(self, store_ids: Iterable[str] | None = None) -> list[StockLevel]:
        stmt = select(StockLevel).order_by(StockLevel.store_id, StockLevel.product_variant_id)
        if store_ids is not None:
            stmt = stmt.where(StockLevel.store_id.in_(sorted(set(store_ids))))
        return list(self._session.execute(stmt).scalars())

    # ---------- ECRITURE ----------
    def _lock_level(self, store_id: str, product_variant_id: str) -> StockLevel | None:
        return self._session.execute(
            select(StockLevel)
            .where(StockLevel.store_id == store_id)
            .where(StockLevel.product_variant_id == product_variant_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def lock_levels(self, keys: Iterable[Key]) -> None:
        """Verrouille plusieurs clés dans un ordre stable (évite les deadlocks)."""
        for store_id, product_variant_id in sorted(set(keys)):
            self._lock_level(store_id, product_variant_id)

    def apply_delta(
        self,
        store_id: str,
        product_variant_id: str,
        delta: int,
        *,
        allow_negative: bool,
    ) -> int:
        key = f"{store_id}/{product_variant_id}"
        sl = self._lock_level(store_id, product_variant_id)
        current = sl.quantity if sl is not None else 0
        new_qty = current + delta

        # Seule une sortie est bornée : une entrée réduit toujours le découvert
        if delta < 0 and new_qty < 0 and not allow_negative:
            raise InsufficientStockError(store_id, product_variant_id, current, delta)

        with conflicts_as("StockLevel", key):
            if sl is None:
                sl = StockLevel(store_id=store_id, product_variant_id=product_variant_id, quantity=new_qty)
                self._session.add(sl)
            else:
                sl.quantity = new_qty
            self._session.flush()

        return new_qty

    # ---------- RECONCILIATION ----------
    def _ledger_sums(self, store_id: str | None, product_variant_id: str | None) -> dict[Key, int]:
        stmt = select(
            StockMovement.store_id,
            StockMovement.product_variant_id,
            func.coalesce(func.sum(StockMovement.change_quantity), 0),
        ).group_by(StockMovement.store_id, StockMovement.product_variant_id)
        if store_id is not None:
            stmt = stmt.where(StockMovement.store_id == store_id)
        if product_variant_id is not None:
            stmt = stmt.where(StockMovement.product_variant_id == product_variant_id)
        return {(s, v): int(total) for s, v, total in self._session.execute(stmt).all()}

    def _projected(self, store_id: str | None, product_variant_id: str | None) -> dict[Key, StockLevel]:
        stmt = (
            select(StockLevel)
            .order_by(StockLevel.store_id, StockLevel.product_variant_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if store_id is not None:
            stmt = stmt.where(StockLevel.store_id == store_id)
        if product_variant_id is not None:
            stmt = stmt.where(StockLevel.product_variant_id == product_variant_id)
        return {(sl.store_id, sl.product_variant_id): sl for sl in self._session.execute(stmt).scalars()}

    def _compare(self, store_id: str | None, product_variant_id: str | None):
        # Niveaux verrouillés AVANT la somme : un writer prend ce même verrou
        # avant d'insérer son mouvement, la somme lue ensuite lui est donc cohérente.
        projected = self._projected(store_id, product_variant_id)
        expected = self._ledger_sums(store_id, product_variant_id)

        # Ligne créée par un writer entre les deux lectures : relue sous verrou
        for key in sorted(set(expected) - set(projected)):
            sl = self._lock_level(*key)
            if sl is not None:
                projected[key] = sl
                expected[key] = self._ledger_sums(*key).get(key, 0)

        mismatches: list[LevelMismatch] = []
        for key in sorted(set(expected) | set(projected)):
            want = expected.get(key, 0)
            sl = projected.get(key)
            have = sl.quantity if sl is not None else None
            if have != want and not (sl is None and want == 0):
                mismatches.append(LevelMismatch(key[0], key[1], want, have))
        return expected, projected, mismatches

    def rebuild(self, store_id: str | None = None, product_variant_id: str | None = None) -> RebuildReport:
        """
        Recalcule les niveaux depuis le ledger et écrase la projection.

        Idempotent. Chaque dérive corrigée est loggée en ERROR : une dérive
        est un bug ou un crash en cours d'écriture, jamais un état normal.
        """
        expected, projected, mismatches = self._compare(store_id, product_variant_id)
        report = RebuildReport(checked=len(set(expected) | set(projected)))

        for m in mismatches:
            key = (m.store_id, m.product_variant_id)
            logger.error("stock_level_drift_repaired", extra=m.as_dict())
            with conflicts_as("StockLevel", f"{m.store_id}/{m.product_variant_id}"):
                sl = projected.get(key)
                if sl is None:
                    self._session.add(
                        StockLevel(store_id=m.store_id, product_variant_id=m.product_variant_id, quantity=m.expected)
                    )
                else:
                    sl.quantity = m.expected
            report.repaired.append(m)

        with conflicts_as("StockLevel", "rebuild"):
            self._session.flush()

        logger.info(
            "stock_levels_rebuilt",
            extra={
                "store_id": store_id,
                "product_variant_id": product_variant_id,
                "checked": report.checked,
                "repaired": len(report.repaired),
            },
        )
        return report

    def verify(self, store_id: str | None = None, product_variant_id: str | None = None) -> int:
        """
        Compare sans écrire (niveaux verrouillés jusqu'à la fin de la transaction).
        Lève ConsistencyError si la projection a dérivé.
        """
        expected, projected, mismatches = self._compare(store_id, product_variant_id)
        if mismatches:
            details = [m.as_dict() for m in mismatches]
            logger.error("stock_level_drift_detected", extra={"mismatches": details})
            raise ConsistencyError(
                f"{len(mismatches)} stock level(s) diverge from the ledger",
                mismatches=details,
            )
        return len(set(expected) | set(projected))
