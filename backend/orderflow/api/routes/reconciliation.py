"""Reconciliation routes."""

from fastapi import APIRouter

from orderflow.api.deps import ActingUserId, OrderServiceDep
from orderflow.schemas.inventory import ReconciliationReportResponse, ReconciliationRequest

router = APIRouter()


@router.post("/backfill-deductions", response_model=ReconciliationReportResponse)
def backfill_deductions(data: ReconciliationRequest, service: OrderServiceDep, user_id: ActingUserId):
    """Deduct inventory for ready orders that never had their deduction recorded."""
    return service.reconcile(as_of=data.as_of, acting_user_id=user_id)
