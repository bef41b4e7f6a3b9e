"""Order routes - create, inspect and move orders through their lifecycle."""

import logging
from typing import List

from fastapi import APIRouter, status

from orderflow.api.deps import ActingUserId, OrderServiceDep
from orderflow.schemas.order import (
    AddItemsRequest,
    OrderCreate,
    OrderDetail,
    PrepTimeUpdate,
    SideEffectMarkerResponse,
    SideEffectResponse,
    StatusUpdateRequest,
    TransitionResponse,
)
from orderflow.services.order_service import OperationResult

logger = logging.getLogger(__name__)

router = APIRouter()


def _transition_response(result: OperationResult) -> TransitionResponse:
    if not result.success:
        raise result.error
    return TransitionResponse(
        order=result.order,
        previous_status=result.previous_status,
        changed=result.changed,
        inventory_deducted=result.inventory_deducted,
        ticket_queued=result.ticket_queued,
    )


@router.post("", response_model=OrderDetail, status_code=status.HTTP_201_CREATED)
def create_order(data: OrderCreate, service: OrderServiceDep, user_id: ActingUserId):
    """Create an order in status ``created``."""
    return service.create_order(data, user_id)


@router.get("/{order_id}", response_model=OrderDetail)
def get_order(order_id: int, service: OrderServiceDep):
    return service.get_order_detail(order_id)


@router.post("/{order_id}/items", response_model=OrderDetail)
def add_items(order_id: int, data: AddItemsRequest, service: OrderServiceDep, user_id: ActingUserId):
    return service.add_items(order_id, data.items, user_id)


@router.put("/{order_id}/status", response_model=TransitionResponse)
def update_status(
    order_id: int,
    data: StatusUpdateRequest,
    service: OrderServiceDep,
    user_id: ActingUserId,
):
    """Move an order to a new status.

    Entering ``ready`` deducts inventory and queues the kitchen ticket once.
    Send ``force: true`` to proceed despite missing stock.
    """
    result = service.transition_status(
        order_id, data.status, user_id, force=data.force, reason=data.reason
    )
    return _transition_response(result)


@router.post("/{order_id}/paid", response_model=TransitionResponse)
def mark_paid(order_id: int, service: OrderServiceDep, user_id: ActingUserId):
    """Payment confirmation from the payment service."""
    return _transition_response(service.mark_paid(order_id, user_id))


@router.put("/{order_id}/prep-time", response_model=OrderDetail)
def set_prep_time(order_id: int, data: PrepTimeUpdate, service: OrderServiceDep, user_id: ActingUserId):
    return service.set_estimated_prep_time(order_id, data.minutes, user_id)


@router.post("/{order_id}/reprint", response_model=SideEffectResponse)
def reprint_ticket(order_id: int, service: OrderServiceDep, user_id: ActingUserId):
    """Print the kitchen ticket again. Never touches inventory."""
    outcome = service.reprint_ticket(order_id, user_id)
    return SideEffectResponse(
        order_id=order_id,
        marker=SideEffectMarkerResponse.model_validate(outcome.marker),
        rendered_path=(outcome.result or {}).get("rendered_path"),
    )


@router.post("/{order_id}/rededuct", response_model=SideEffectResponse)
def rededuct_inventory(order_id: int, service: OrderServiceDep, user_id: ActingUserId):
    """Deduct the order's ingredients again (manual correction)."""
    outcome = service.rededuct_inventory(order_id, user_id)
    return SideEffectResponse(
        order_id=order_id,
        marker=SideEffectMarkerResponse.model_validate(outcome.marker),
    )


@router.get("/{order_id}/side-effects", response_model=List[SideEffectMarkerResponse])
def list_side_effects(order_id: int, service: OrderServiceDep):
    """Audit trail of deductions and printed tickets for an order."""
    return service.list_side_effects(order_id)
