"""Reconciliation - backfills inventory deductions missing from ready orders.

Orders that reached a ready state while the automatic deduction was broken
have no ``inventory-deduct`` marker. The job walks every order in a ready
state, oldest first, and runs the deduction through the same coordinator as
the live path, one transaction per order:

- processed: deduction and marker committed
- skipped: a non-repeat marker already exists (including one written by a
  concurrent live request)
- errored: the order could not be deducted (missing stock, broken recipe);
  the job moves on to the next order

Only a storage outage aborts the run.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from orderflow.core.config import Settings, get_settings
from orderflow.core.errors import FulfillmentError, StorageUnavailable
from orderflow.db.session import unit_of_work
from orderflow.models.order import Order
from orderflow.models.side_effect import SideEffectKind
from orderflow.services.order_state_machine import READY_STATES, OrderStateMachine

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationReport:
    processed: int = 0
    skipped: int = 0
    errored: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def total(self) -> int:
        return self.processed + self.skipped + self.errored

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "errored": self.errored,
            "errors": self.errors,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class ReconciliationService:
    """Repairs orders whose automatic inventory deduction never happened."""

    def __init__(
        self,
        db: Session,
        settings: Optional[Settings] = None,
        state_machine: Optional[OrderStateMachine] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.state_machine = state_machine or OrderStateMachine(db)

    def backfill_missing_deductions(
        self,
        as_of: Optional[datetime] = None,
        acting_user_id: Optional[int] = None,
    ) -> ReconciliationReport:
        """Deduct inventory for ready orders that have no deduction marker.

        Args:
            as_of: Only consider orders created at or before this moment.
            acting_user_id: Recorded on the movements and markers written.

        Raises:
            StorageUnavailable: storage could not be reached. Orders already
                processed stay committed; rerunning skips them.
        """
        report = ReconciliationReport()
        logger.info(f"Reconciliation started (as_of={as_of})")

        for order_id in self._ready_order_ids(as_of):
            try:
                processed = self._reconcile_order(order_id, acting_user_id)
            except StorageUnavailable:
                logger.error(
                    f"Reconciliation aborted at order {order_id}: storage unavailable "
                    f"(processed={report.processed}, skipped={report.skipped}, errored={report.errored})"
                )
                raise
            except (FulfillmentError, SQLAlchemyError) as e:
                code = getattr(e, "code", "storage_error")
                report.errored += 1
                report.errors.append({"order_id": order_id, "code": code, "message": str(e)})
                logger.warning(f"Reconciliation could not deduct order {order_id}: {e}")
                continue

            if processed:
                report.processed += 1
            else:
                report.skipped += 1

        report.finished_at = datetime.now(timezone.utc)
        logger.info(
            f"Reconciliation finished: processed={report.processed} "
            f"skipped={report.skipped} errored={report.errored}"
        )
        return report

    def _reconcile_order(self, order_id: int, acting_user_id: Optional[int]) -> bool:
        machine = self.state_machine
        with unit_of_work(self.db):
            order = machine.lock_order(order_id)
            if order.status not in READY_STATES:
                # Moved on (paid, cancelled) since the page was read
                return False
            outcome = machine.coordinator.ensure_once(
                order.id,
                SideEffectKind.INVENTORY_DEDUCT,
                lambda: machine.deduct_inventory(
                    order, acting_user_id, reason=f"Backfill for order {order.id}"
                ),
                actor_user_id=acting_user_id,
                details={"backfill": True},
            )
        return outcome.executed

    def _ready_order_ids(self, as_of: Optional[datetime]):
        """Ids of orders in a ready state, oldest first, fetched page by page.

        Ids are assigned in creation order, so paging on the id alone walks
        the orders oldest first even when several share a timestamp.
        """
        batch_size = self.settings.reconciliation_batch_size
        last_id = None
        while True:
            query = self.db.query(Order.id).filter(Order.status.in_(list(READY_STATES)))
            if as_of is not None:
                query = query.filter(Order.created_at <= as_of)
            if last_id is not None:
                query = query.filter(Order.id > last_id)
            page = [order_id for (order_id,) in query.order_by(Order.id).limit(batch_size)]
            # Release the read transaction before per-order units of work
            self.db.commit()
            if not page:
                return
            yield from page
            last_id = page[-1]
            if len(page) < batch_size:
                return
