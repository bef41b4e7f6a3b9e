"""Kitchen routes."""

from typing import List

from fastapi import APIRouter

from orderflow.api.deps import OrderServiceDep
from orderflow.schemas.order import OrderDetail

router = APIRouter()


@router.get("/orders", response_model=List[OrderDetail])
def list_kitchen_orders(service: OrderServiceDep):
    """Orders sent to the kitchen, being prepared, or ready; oldest first."""
    return service.list_kitchen_orders()
