from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from stockledger.app.logging_config import get_logger
from stockledger.services.errors import (
    ConcurrentModificationError,
    ConsistencyError,
    ImmutabilityViolationError,
    InsufficientStockError,
    InvalidStateError,
    InventoryError,
    NotFoundError,
    OverReceiptError,
    ValidationError,
)

logger = get_logger("api.errors")

STATUS_BY_ERROR: dict[type[InventoryError], int] = {
    ValidationError: 400,
    NotFoundError: 404,
    InvalidStateError: 409,
    OverReceiptError: 409,
    InsufficientStockError: 409,
    ConcurrentModificationError: 409,
    ImmutabilityViolationError: 500,
    ConsistencyError: 500,
}


def status_for(exc: InventoryError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[cls]
    return 500


async def inventory_error_handler(request: Request, exc: InventoryError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        # Invariant du ledger menacé : bruyant
        logger.error(
            "request_failed",
            exc_info=exc,
            extra={"path": request.url.path, "status_code": status_code},
        )
    else:
        logger.warning(
            "request_rejected",
            extra={"path": request.url.path, "status_code": status_code, "error_code": exc.code},
        )
    return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(InventoryError, inventory_error_handler)
