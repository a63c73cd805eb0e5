"""
Erreurs typées du ledger de stock.

Chaque erreur porte un `code` stable (lisible par machine) et des attributs
structurés ; `to_dict()` donne le payload renvoyé par l'API.

    InventoryError
    +-- ValidationError
    +-- NotFoundError
    +-- InvalidStateError
    +-- OverReceiptError
    +-- InsufficientStockError
    +-- ConcurrentModificationError   (retry possible)
    +-- ImmutabilityViolationError
    +-- ConsistencyError              (jamais retry)
"""

from __future__ import annotations

from typing import Any


class InventoryError(Exception):
    code: str = "INVENTORY_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        for key, val in vars(self).items():
            if key != "message" and not key.startswith("_"):
                data[key] = val
        return data


class ValidationError(InventoryError):
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.field = field


class NotFoundError(InventoryError):
    code = "NOT_FOUND"

    def __init__(self, entity: str, key: Any):
        super().__init__(f"{entity} {key} not found")
        self.entity = entity
        self.key = key


class InvalidStateError(InventoryError):
    code = "INVALID_STATE"

    def __init__(self, po_number: str, status: str, action: str):
        super().__init__(f"Cannot {action} purchase order {po_number} in status {status}")
        self.po_number = po_number
        self.status = status
        self.action = action


class OverReceiptError(InventoryError):
    code = "OVER_RECEIPT"

    def __init__(self, item_id: int, quantity_ordered: int, quantity_received: int, requested: int):
        super().__init__(
            f"Receipt for item {item_id} exceeds ordered quantity "
            f"(ordered={quantity_ordered}, received={quantity_received}, requested={requested})"
        )
        self.item_id = item_id
        self.quantity_ordered = quantity_ordered
        self.quantity_received = quantity_received
        self.requested = requested


class InsufficientStockError(InventoryError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, store_id: str, product_variant_id: str, available: int, change_quantity: int):
        super().__init__(
            f"Insufficient stock for {product_variant_id} at store {store_id} "
            f"(available={available}, change={change_quantity})"
        )
        self.store_id = store_id
        self.product_variant_id = product_variant_id
        self.available = available
        self.change_quantity = change_quantity


class ConcurrentModificationError(InventoryError):
    code = "CONCURRENT_MODIFICATION"

    def __init__(self, entity: str, key: Any):
        super().__init__(f"{entity} {key} was modified concurrently, retry the operation")
        self.entity = entity
        self.key = key


class ImmutabilityViolationError(InventoryError):
    code = "LEDGER_IMMUTABLE"

    def __init__(self, entity: str, key: Any, operation: str):
        super().__init__(f"{entity} {key} is immutable ({operation} rejected)")
        self.entity = entity
        self.key = key
        self.operation = operation


class ConsistencyError(InventoryError):
    code = "CONSISTENCY_ERROR"

    def __init__(self, message: str, *, mismatches: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.mismatches = mismatches or []
