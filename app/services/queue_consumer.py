"""
Queue consumer: the operator-side controller that works through a plan's
demand queue one item at a time.

    consumer = QueueConsumer(plan_id)
    item = consumer.load_next("challenge")        # claims atomically
    ... create the entity from item.prefilled_spec ...
    consumer.complete_and_load_next(entity.id, quality_score=82)

Held state lives in an immutable ConsumerSession owned by the consumer
instance. Every operation builds the next session only after the store
call succeeded, so a failing call leaves the local state untouched. The
database row status stays authoritative.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from app.core.exceptions import ValidationError
from app.models.demand_queue import DemandQueueItem
from app.services import demand_queue_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsumerSession:
    """Snapshot of what one operator is working on."""

    strategic_plan_id: int
    entity_type: str | None = None
    current_item_id: int | None = None
    auto_mode: bool = False

    @property
    def state(self) -> str:
        return "loaded" if self.current_item_id is not None else "idle"

    def to_dict(self) -> dict:
        return {
            "strategic_plan_id": self.strategic_plan_id,
            "entity_type": self.entity_type,
            "current_item_id": self.current_item_id,
            "auto_mode": self.auto_mode,
            "state": self.state,
        }


def _stamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class QueueConsumer:
    """Claim / complete / skip / reject loop over one plan's demand queue."""

    def __init__(self, strategic_plan_id: int, *, session: ConsumerSession | None = None):
        self.session = session or ConsumerSession(strategic_plan_id=strategic_plan_id)

    @property
    def state(self) -> str:
        return self.session.state

    @property
    def current_item(self) -> DemandQueueItem | None:
        if self.session.current_item_id is None:
            return None
        return demand_queue_service.get_item(self.session.current_item_id)

    def _require_loaded(self, operation: str) -> int:
        if self.session.current_item_id is None:
            raise ValidationError(
                f"Cannot {operation}: no queue item is loaded",
                details={"state": self.session.state},
            )
        return self.session.current_item_id

    # ── Loading

    def load_next(self, entity_type: str, *, auto_mode: bool = False) -> DemandQueueItem | None:
        """Claim the next pending item of ``entity_type``.

        Returns None (state idle, auto mode off) when nothing is pending;
        no row is touched in that case.
        """
        if self.session.current_item_id is not None:
            raise ValidationError(
                "A queue item is already loaded; complete, skip, reject or exit first",
                details={"current_item_id": self.session.current_item_id},
            )

        item = demand_queue_service.claim_next(self.session.strategic_plan_id, entity_type)
        if item is None:
            self.session = replace(
                self.session, entity_type=entity_type, current_item_id=None, auto_mode=False,
            )
            logger.info("No pending %s items for plan %d", entity_type, self.session.strategic_plan_id,
                        extra={"strategic_plan_id": self.session.strategic_plan_id})
            return None

        self.session = replace(
            self.session, entity_type=entity_type, current_item_id=item.id, auto_mode=auto_mode,
        )
        return item

    # ── Outcomes

    def complete(
        self,
        entity_id: int,
        quality_score: int,
        entity_type: str | None = None,
    ) -> DemandQueueItem:
        """Record the created entity for the loaded item and go idle."""
        item_id = self._require_loaded("complete")
        item = demand_queue_service.complete_item(
            item_id,
            generated_entity_id=entity_id,
            generated_entity_type=entity_type or self.session.entity_type,
            quality_score=quality_score,
        )
        self.session = replace(self.session, current_item_id=None)
        return item

    def complete_and_load_next(
        self,
        entity_id: int,
        quality_score: int,
        entity_type: str | None = None,
    ) -> tuple[DemandQueueItem, DemandQueueItem | None]:
        """Complete the loaded item, then claim the next one of the same type.

        The two steps are separate store calls. If the claim fails, the
        completion stands and the consumer is left idle.
        """
        completed = self.complete(entity_id, quality_score, entity_type)
        next_item = self.load_next(self.session.entity_type, auto_mode=True)
        return completed, next_item

    def skip(self, reason: str = "") -> DemandQueueItem:
        """Mark the loaded item skipped. The row is kept."""
        item_id = self._require_loaded("skip")
        item = demand_queue_service.update_status(
            item_id, "skipped",
            quality_feedback=self._merged_feedback(item_id, skip_reason=reason),
        )
        self.session = replace(self.session, current_item_id=None)
        return item

    def reject(self, reason: str = "") -> DemandQueueItem:
        """Mark the loaded item rejected. The row is kept."""
        item_id = self._require_loaded("reject")
        item = demand_queue_service.update_status(
            item_id, "rejected",
            quality_feedback=self._merged_feedback(item_id, rejection_reason=reason),
        )
        self.session = replace(self.session, current_item_id=None)
        return item

    def exit_auto_mode(self, *, release: bool = False) -> None:
        """Drop local state.

        By default the loaded row stays ``in_progress``; ``release=True``
        puts it back to ``pending`` first.
        """
        item_id = self.session.current_item_id
        if release and item_id is not None:
            demand_queue_service.release_item(item_id)
        self.session = replace(self.session, current_item_id=None, auto_mode=False)

    @staticmethod
    def _merged_feedback(item_id: int, **fields) -> dict:
        feedback = dict(demand_queue_service.get_item(item_id).quality_feedback or {})
        feedback.update(fields)
        feedback["timestamp"] = _stamp()
        return feedback
