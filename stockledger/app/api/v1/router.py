from fastapi import APIRouter

from stockledger.app.api.v1.endpoints.health import router as health_router
from stockledger.app.api.v1.endpoints.purchase_orders import router as purchase_orders_router
from stockledger.app.api.v1.endpoints.reconcile import router as reconcile_router
from stockledger.app.api.v1.endpoints.stock import router as stock_router
from stockledger.app.api.v1.endpoints.stock_movements import router as stock_movements_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(purchase_orders_router, tags=["purchase_orders"])
router.include_router(stock_router, tags=["stock"])
router.include_router(stock_movements_router, tags=["stock_movements"])
router.include_router(reconcile_router, tags=["reconcile"])
