from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from stockledger.app.db.models.core_types import POStatus


class POItemCreate(BaseModel):
    product_variant_id: str = Field(min_length=1, max_length=64)
    quantity_ordered: int = Field(gt=0)
    unit_cost_cents: int = Field(ge=0)


class POCreate(BaseModel):
    store_id: str = Field(min_length=1, max_length=64)
    supplier_name: str = Field(min_length=1, max_length=255)
    items: list[POItemCreate] = Field(min_length=1)


class POUpdate(BaseModel):
    supplier_name: str | None = Field(default=None, min_length=1, max_length=255)
    items: list[POItemCreate] | None = Field(default=None, min_length=1)


class ReceiptLine(BaseModel):
    item_id: int
    quantity: int = Field(gt=0)


class ReceiveRequest(BaseModel):
    receipts: list[ReceiptLine] = Field(min_length=1)


class POItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_variant_id: str
    quantity_ordered: int
    quantity_received: int
    quantity_outstanding: int
    unit_cost_cents: int
    line_total_cents: int


class POSummaryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    po_number: str
    store_id: str
    supplier_name: str
    status: POStatus
    total_cost_cents: int
    created_at: datetime
    cancelled_at: datetime | None = None


class PORead(POSummaryRead):
    created_by: str
    items: list[POItemRead]
