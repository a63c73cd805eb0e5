from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stockledger.app.db.models.core_types import MovementReason


class StockAdjustmentCreate(BaseModel):
    store_id: str = Field(min_length=1, max_length=64)
    product_variant_id: str = Field(min_length=1, max_length=64)
    change_quantity: int
    reason: MovementReason = MovementReason.manual_adjustment
    note: str | None = Field(default=None, max_length=255)

    @field_validator("change_quantity")
    @classmethod
    def _non_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("change_quantity must not be zero")
        return v

    @field_validator("reason", mode="before")
    @classmethod
    def _parse_reason(cls, v):
        # L'écran POS envoie "Manual Adjustment", "Initial Stock"...
        return MovementReason.parse(v)


class MovementReverse(BaseModel):
    note: str | None = Field(default=None, max_length=255)


class StockMovementRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    store_id: str
    product_variant_id: str
    change_quantity: int
    reason: MovementReason
    note: str | None
    purchase_order_item_id: int | None
    created_at: datetime
    created_by: str


class StockMovementPage(BaseModel):
    items: list[StockMovementRead]
    total: int
    limit: int
    offset: int
