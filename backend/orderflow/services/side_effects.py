"""Side-Effect Coordinator - exactly-once side effects per order.

A side effect (inventory deduction, kitchen ticket) is keyed by
``(order_id, kind)``. The operation and its marker row are written inside one
savepoint of the caller's transaction, so they commit together or not at all.

- ``ensure_once``: automatic path. Skips when a non-repeat marker exists.
  A partial unique index allows at most one such marker per key; when a
  concurrent transaction wins the insert, this call rolls back its savepoint
  and reports the effect as already done.
- ``ensure_repeatable``: manual path (reprints, re-deductions). Always runs
  and records a marker with ``is_repeat = True``.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from orderflow.core.errors import FulfillmentError, SideEffectFailed
from orderflow.models.side_effect import SideEffectKind, SideEffectMarker

logger = logging.getLogger(__name__)

MARKER_INDEX_NAME = "uq_side_effect_markers_automatic"


@dataclass
class SideEffectOutcome:
    """What a coordinator call did."""

    kind: SideEffectKind
    executed: bool
    marker: Optional[SideEffectMarker] = None
    result: Any = None

    @property
    def skipped(self) -> bool:
        return not self.executed


def _is_marker_conflict(error: IntegrityError) -> bool:
    message = str(error.orig)
    return MARKER_INDEX_NAME in message or "side_effect_markers.order_id" in message


class SideEffectCoordinator:
    """Runs operations at most once (or audibly more than once) per order and kind."""

    def __init__(self, db: Session):
        self.db = db

    def find_automatic_marker(self, order_id: int, kind: SideEffectKind) -> Optional[SideEffectMarker]:
        return (
            self.db.query(SideEffectMarker)
            .filter(
                SideEffectMarker.order_id == order_id,
                SideEffectMarker.kind == kind,
                SideEffectMarker.is_repeat.is_(False),
            )
            .first()
        )

    def ensure_once(
        self,
        order_id: int,
        kind: SideEffectKind,
        operation: Callable[[], Any],
        actor_user_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> SideEffectOutcome:
        """Run ``operation`` unless a non-repeat marker already exists.

        A dict returned by ``operation`` is merged into the marker details.
        When the operation raises, the savepoint is rolled back and no marker
        is written, so a later call retries from scratch.
        """
        existing = self.find_automatic_marker(order_id, kind)
        if existing is not None:
            logger.info(
                f"Skipping {kind.value} for order {order_id}: already done "
                f"(marker {existing.id})"
            )
            return SideEffectOutcome(kind=kind, executed=False, marker=existing)

        try:
            marker, result = self._run(order_id, kind, operation, False, actor_user_id, details)
        except IntegrityError as e:
            if not _is_marker_conflict(e):
                raise
            # A concurrent transaction committed the marker first
            existing = self.find_automatic_marker(order_id, kind)
            logger.info(f"Skipping {kind.value} for order {order_id}: lost race to a concurrent request")
            return SideEffectOutcome(kind=kind, executed=False, marker=existing)

        return SideEffectOutcome(kind=kind, executed=True, marker=marker, result=result)

    def ensure_repeatable(
        self,
        order_id: int,
        kind: SideEffectKind,
        operation: Callable[[], Any],
        actor_user_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> SideEffectOutcome:
        """Always run ``operation`` and record a repeat marker.

        Existing markers are neither consulted nor touched.
        """
        marker, result = self._run(order_id, kind, operation, True, actor_user_id, details)
        logger.info(f"Repeated {kind.value} for order {order_id} (marker {marker.id}, actor {actor_user_id})")
        return SideEffectOutcome(kind=kind, executed=True, marker=marker, result=result)

    def list_markers(self, order_id: int) -> List[SideEffectMarker]:
        """Audit trail of an order's side effects, oldest first."""
        return (
            self.db.query(SideEffectMarker)
            .filter(SideEffectMarker.order_id == order_id)
            .order_by(SideEffectMarker.id)
            .all()
        )

    def _run(
        self,
        order_id: int,
        kind: SideEffectKind,
        operation: Callable[[], Any],
        is_repeat: bool,
        actor_user_id: Optional[int],
        details: Optional[Dict[str, Any]],
    ):
        marker_details = dict(details or {})
        try:
            with self.db.begin_nested():
                result = operation()
                if isinstance(result, dict):
                    marker_details.update(result)

                marker = SideEffectMarker(
                    order_id=order_id,
                    kind=kind,
                    is_repeat=is_repeat,
                    actor_user_id=actor_user_id,
                    details=marker_details or None,
                )
                self.db.add(marker)
                self.db.flush()
        except (FulfillmentError, SQLAlchemyError):
            raise
        except Exception as e:
            logger.error(f"Side effect {kind.value} failed for order {order_id}: {e}", exc_info=True)
            raise SideEffectFailed(kind.value, order_id, str(e)) from e

        return marker, result
