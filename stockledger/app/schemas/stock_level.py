from datetime import datetime

from pydantic import BaseModel, ConfigDict


class StockLevelRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    store_id: str
    product_variant_id: str
    quantity: int  # READ ONLY : projection du ledger, jamais écrite par l'API
    updated_at: datetime | None = None


class StoreStockRead(BaseModel):
    store_id: str
    levels: list[StockLevelRead]


class LevelMismatchRead(BaseModel):
    store_id: str
    product_variant_id: str
    expected: int
    actual: int | None


class RebuildRead(BaseModel):
    checked: int
    repaired: list[LevelMismatchRead]


class VerifyRead(BaseModel):
    checked: int
    consistent: bool
