"""API routes."""

from fastapi import APIRouter

from orderflow.api.routes import inventory, kitchen, orders, reconciliation

api_router = APIRouter()

api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
api_router.include_router(kitchen.router, prefix="/kitchen", tags=["kitchen"])
api_router.include_router(inventory.router, prefix="/inventory", tags=["inventory"])
api_router.include_router(reconciliation.router, prefix="/reconciliation", tags=["reconciliation"])
