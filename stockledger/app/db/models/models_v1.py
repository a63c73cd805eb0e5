from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    String,
    Integer,
    BigInteger,
    DateTime,
    ForeignKey,
    Enum,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockledger.app.db.base import Base, BigIntPK, utcnow
from stockledger.app.db.models.core_types import MovementReason, POStatus

# store_id / product_variant_id : clés opaques possédées par les services catalogue / magasins
OPAQUE_KEY = String(64)


def _enum(enum_cls, name: str) -> Enum:
    # Stocke la valeur ("OPEN"), pas le nom python ("open")
    return Enum(enum_cls, name=name, values_callable=lambda e: [m.value for m in e], validate_strings=True)


def derive_status(items, *, cancelled: bool = False) -> POStatus:
    """
    Statut d'un PO = fonction pure de l'état de réception des lignes.

    CANCELLED est le seul statut indépendant de la réception.
    """
    if cancelled:
        return POStatus.cancelled
    if items and all(i.quantity_received >= i.quantity_ordered for i in items):
        return POStatus.closed
    if any(i.quantity_received > 0 for i in items):
        return POStatus.partially_received
    return POStatus.open


# ---------- PROCUREMENT ----------
class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    po_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    store_id: Mapped[str] = mapped_column(OPAQUE_KEY, nullable=False, index=True)
    supplier_name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[POStatus] = mapped_column(_enum(POStatus, "po_status"), default=POStatus.open, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_by: Mapped[str] = mapped_column(String(64), default="system", nullable=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    items: Mapped[list["PurchaseOrderItem"]] = relationship(
        back_populates="po",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderItem.id",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (Index("ix_purchase_orders_store_status", "store_id", "status"),)

    @property
    def total_cost_cents(self) -> int:
        # Toujours recalculé, jamais stocké
        return sum(i.quantity_ordered * i.unit_cost_cents for i in self.items)

    def item(self, item_id: int) -> "PurchaseOrderItem | None":
        for it in self.items:
            if it.id == item_id:
                return it
        return None


class PurchaseOrderItem(Base):
    __tablename__ = "purchase_order_items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    product_variant_id: Mapped[str] = mapped_column(OPAQUE_KEY, nullable=False)
    quantity_ordered: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_received: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unit_cost_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    po: Mapped[PurchaseOrder] = relationship(back_populates="items")

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        CheckConstraint("quantity_ordered > 0", name="qty_ordered_pos"),
        CheckConstraint("quantity_received >= 0", name="qty_received_nonneg"),
        CheckConstraint("quantity_received <= quantity_ordered", name="qty_received_le_ordered"),
        CheckConstraint("unit_cost_cents >= 0", name="unit_cost_nonneg"),
    )

    @property
    def line_total_cents(self) -> int:
        return self.quantity_ordered * self.unit_cost_cents

    @property
    def quantity_outstanding(self) -> int:
        return self.quantity_ordered - self.quantity_received

    @property
    def is_fully_received(self) -> bool:
        return self.quantity_received == self.quantity_ordered


# ---------- INVENTORY ----------
class StockMovement(Base):
    """Entrée du ledger. Insérée une fois, jamais modifiée ni supprimée."""

    __tablename__ = "stock_movements"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    store_id: Mapped[str] = mapped_column(OPAQUE_KEY, nullable=False)
    product_variant_id: Mapped[str] = mapped_column(OPAQUE_KEY, nullable=False)

    change_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[MovementReason] = mapped_column(_enum(MovementReason, "movement_reason"), nullable=False)
    note: Mapped[str | None] = mapped_column(String(255))

    purchase_order_item_id: Mapped[int | None] = mapped_column(
        ForeignKey("purchase_order_items.id", ondelete="RESTRICT"),
        index=True,
    )
    idempotency_key: Mapped[str | None] = mapped_column(String(128), unique=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_by: Mapped[str] = mapped_column(String(64), default="system", nullable=False)

    __table_args__ = (
        CheckConstraint("change_quantity <> 0", name="change_qty_nonzero"),
        Index("ix_stock_movements_key_time", "store_id", "product_variant_id", "created_at"),
        Index("ix_stock_movements_time", "created_at"),
    )


class StockLevel(Base):
    """Projection : quantity == somme des change_quantity du ledger pour la clé."""

    __tablename__ = "stock_levels"
    store_id: Mapped[str] = mapped_column(OPAQUE_KEY, primary_key=True)
    product_variant_id: Mapped[str] = mapped_column(OPAQUE_KEY, primary_key=True)

    quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version}


# ---------- SEQUENCES ----------
class SequenceCounter(Base):
    __tablename__ = "sequence_counters"
    name: Mapped[str] = mapped_column(String(50), primary_key=True)
    current_value: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
