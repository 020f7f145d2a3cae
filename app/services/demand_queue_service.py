"""
Demand queue service layer.

Persistence and API for the per-plan backlog of generation tasks:
listing, gap materialisation, claiming, status updates, completion,
review decisions and bulk cleanup.

Rules:
  - db.session.commit() happens only in service modules.
  - Claims are a single conditional UPDATE (status='pending' guard) and the
    affected row count decides who won; nothing reads-then-writes.
  - Store failures (SQLAlchemyError) propagate unchanged; blueprints roll
    back and report them. There is no automatic retry.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import delete, func, select, update

from app.core.exceptions import NotFoundError, StateConflictError, ValidationError
from app.models import db
from app.models.demand_queue import (
    ACTION_PLAN_PRIORITY_SCORES,
    GENERATOR_COMPONENTS,
    KIND_TO_ENTITY_TYPE,
    QUALITY_ACCEPT_THRESHOLD,
    QUEUE_ENTITY_TYPES,
    QUEUE_STATUSES,
    DemandQueueItem,
)
from app.models.strategy import StrategicPlan

logger = logging.getLogger(__name__)

# Bilingual labels used to draft placeholder titles
ENTITY_LABELS = {
    "challenge": ("Challenge", "تحدي"),
    "pilot": ("Pilot", "تجربة"),
    "campaign": ("Campaign", "حملة"),
    "event": ("Event", "فعالية"),
    "program": ("Program", "برنامج"),
    "solution": ("Solution", "حل"),
}

# How many contested candidates claim_next tries before giving up
MAX_CLAIM_CANDIDATES = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _get_plan(plan_id: int) -> StrategicPlan:
    plan = db.session.get(StrategicPlan, plan_id)
    if plan is None:
        raise NotFoundError(resource="StrategicPlan", resource_id=plan_id)
    return plan


def _get_item(item_id: int) -> DemandQueueItem:
    item = db.session.get(DemandQueueItem, item_id)
    if item is None:
        raise NotFoundError(resource="DemandQueueItem", resource_id=item_id)
    return item


def _validate_entity_type(entity_type: str) -> str:
    if entity_type not in QUEUE_ENTITY_TYPES:
        raise ValidationError(
            f"entity_type must be one of: {', '.join(sorted(QUEUE_ENTITY_TYPES))}",
            details={"entity_type": entity_type},
        )
    return entity_type


def _validate_status(status: str) -> str:
    if status not in QUEUE_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(sorted(QUEUE_STATUSES))}",
            details={"status": status},
        )
    return status


def _ordered(query):
    return query.order_by(DemandQueueItem.priority_score.desc(), DemandQueueItem.id.asc())


# ── Queries ───────────────────────────────────────────────────────────────────


def list_items(
    plan_id: int,
    *,
    status: str | None = None,
    entity_type: str | None = None,
) -> list[DemandQueueItem]:
    """Return a plan's queue items, highest priority first.

    Raises:
        NotFoundError: If the plan does not exist. An existing plan with no
            items returns an empty list.
    """
    _get_plan(plan_id)
    stmt = select(DemandQueueItem).where(DemandQueueItem.strategic_plan_id == plan_id)
    if status:
        stmt = stmt.where(DemandQueueItem.status == _validate_status(status))
    if entity_type:
        stmt = stmt.where(DemandQueueItem.entity_type == entity_type)
    return list(db.session.execute(_ordered(stmt)).scalars())


def get_item(item_id: int) -> DemandQueueItem:
    return _get_item(item_id)


def get_next_pending(plan_id: int, entity_type: str) -> DemandQueueItem | None:
    """First pending item for (plan, entity_type) in priority order, or None."""
    stmt = select(DemandQueueItem).where(
        DemandQueueItem.strategic_plan_id == plan_id,
        DemandQueueItem.entity_type == entity_type,
        DemandQueueItem.status == "pending",
    )
    return db.session.execute(_ordered(stmt).limit(1)).scalar_one_or_none()


def queue_stats(plan_id: int) -> dict:
    """Status counts for a plan's queue, overall and per entity type."""
    _get_plan(plan_id)
    rows = db.session.execute(
        select(
            DemandQueueItem.entity_type,
            DemandQueueItem.status,
            func.count(DemandQueueItem.id),
        )
        .where(DemandQueueItem.strategic_plan_id == plan_id)
        .group_by(DemandQueueItem.entity_type, DemandQueueItem.status)
    ).all()

    totals = {status: 0 for status in QUEUE_STATUSES}
    by_type: dict[str, dict] = {}
    for entity_type, status, count in rows:
        totals[status] = totals.get(status, 0) + count
        bucket = by_type.setdefault(entity_type, {"total": 0, **{s: 0 for s in QUEUE_STATUSES}})
        bucket[status] += count
        bucket["total"] += count

    return {
        "total": sum(totals.values()),
        "pending": totals["pending"],
        "in_progress": totals["in_progress"],
        "completed": totals["accepted"],
        "review": totals["review"],
        "rejected": totals["rejected"],
        "skipped": totals["skipped"],
        "by_type": by_type,
    }


def open_counts_by_type(plan_id: int, statuses) -> dict[str, int]:
    """Count items per entity type whose status is in ``statuses``."""
    rows = db.session.execute(
        select(DemandQueueItem.entity_type, func.count(DemandQueueItem.id))
        .where(
            DemandQueueItem.strategic_plan_id == plan_id,
            DemandQueueItem.status.in_(list(statuses)),
        )
        .group_by(DemandQueueItem.entity_type)
    ).all()
    return {entity_type: count for entity_type, count in rows}


# ── Creation ──────────────────────────────────────────────────────────────────


def _draft_spec(plan: StrategicPlan, entity_type: str, objective: dict | None, index: int) -> dict:
    label_en, label_ar = ENTITY_LABELS.get(entity_type, (entity_type.title(), entity_type))
    objective = objective or {}
    objective_en = objective.get("title_en") or plan.name_en
    objective_ar = objective.get("title_ar") or plan.name_ar or objective_en
    return {
        "title_en": f"{label_en} for {objective_en}",
        "title_ar": f"{label_ar} لـ {objective_ar}",
        "ai_context": {
            "plan_name": plan.name_en,
            "objective_id": objective.get("id"),
            "objective_text": objective_en,
        },
        "source": "gap_analysis",
        "source_index": index,
    }


def materialize_gaps(
    plan_id: int,
    gaps: dict,
    *,
    limit: int | None = None,
    created_by: str = "system",
) -> list[DemandQueueItem]:
    """Create one pending queue item per unit of gap per entity kind.

    ``gaps`` maps a gap-analysis kind (``"challenges"``) or an entity type
    (``"challenge"``) to a non-negative count.

    Priority: ``gap_size * 100 + weight_bonus``. Larger gaps always sort
    first; inside a kind, units assigned to heavier objectives come first
    (``weight_bonus = round(99 * weight / max_weight)``). Units are spread
    round-robin over the plan's objectives, heaviest first.

    Args:
        plan_id: Owning plan.
        gaps: kind → unit count.
        limit: Optional cap on the number of items created.
        created_by: Audit label.

    Returns:
        The created items in creation order.
    """
    plan = _get_plan(plan_id)

    normalised: dict[str, int] = {}
    for kind, count in (gaps or {}).items():
        entity_type = _validate_entity_type(KIND_TO_ENTITY_TYPE.get(kind, kind))
        count = int(count or 0)
        if count < 0:
            raise ValidationError("gap counts must be non-negative", details={kind: count})
        normalised[entity_type] = normalised.get(entity_type, 0) + count

    objectives = sorted(
        plan.objectives or [],
        key=lambda obj: obj.get("weight", 0) or 0,
        reverse=True,
    )
    max_weight = max((obj.get("weight", 0) or 0 for obj in objectives), default=0)

    created: list[DemandQueueItem] = []
    for entity_type, gap in sorted(normalised.items(), key=lambda kv: kv[1], reverse=True):
        for unit in range(gap):
            if limit is not None and len(created) >= limit:
                break
            objective = objectives[unit % len(objectives)] if objectives else None
            weight = (objective or {}).get("weight", 0) or 0
            bonus = round(99 * weight / max_weight) if max_weight > 0 else 0
            item = DemandQueueItem(
                strategic_plan_id=plan.id,
                objective_id=(objective or {}).get("id"),
                entity_type=entity_type,
                generator_component=GENERATOR_COMPONENTS.get(entity_type, ""),
                status="pending",
                priority_score=gap * 100 + bonus,
                prefilled_spec=_draft_spec(plan, entity_type, objective, unit),
                attempts=0,
                created_by=created_by,
            )
            created.append(item)

    db.session.add_all(created)
    db.session.commit()
    logger.info(
        "Materialized %d queue items for plan %d",
        len(created), plan.id,
        extra={"strategic_plan_id": plan.id},
    )
    return created


def create_items(plan_id: int, items: list[dict], *, created_by: str = "system") -> list[DemandQueueItem]:
    """Batch insert explicit queue items (``POST /demand-queue``)."""
    plan = _get_plan(plan_id)
    created = []
    for index, data in enumerate(items):
        entity_type = _validate_entity_type(data.get("entity_type", ""))
        status = _validate_status(data.get("status", "pending"))
        try:
            priority = int(data.get("priority_score", 60))
        except (TypeError, ValueError):
            raise ValidationError("priority_score must be an integer", details={"index": index})
        created.append(DemandQueueItem(
            strategic_plan_id=plan.id,
            objective_id=data.get("objective_id"),
            entity_type=entity_type,
            generator_component=data.get("generator_component") or GENERATOR_COMPONENTS.get(entity_type, ""),
            status=status,
            priority_score=priority,
            prefilled_spec=data.get("prefilled_spec") or {},
            attempts=0,
            created_by=data.get("created_by") or created_by,
        ))
    db.session.add_all(created)
    db.session.commit()
    logger.info("Inserted %d queue items for plan %d", len(created), plan.id,
                extra={"strategic_plan_id": plan.id})
    return created


def enqueue_action_plans(plan: StrategicPlan, *, created_by: str = "system", commit: bool = True) -> list[DemandQueueItem]:
    """Queue the plan's action plans flagged ``should_create_entity``.

    Priority comes from the action plan's priority label
    (high=100, medium=60, low=30; anything else 60).
    """
    objectives = plan.objectives or []
    created = []
    for index, action in enumerate(plan.action_plans or []):
        entity_type = action.get("type")
        if not action.get("should_create_entity") or not entity_type:
            continue
        if entity_type not in QUEUE_ENTITY_TYPES:
            logger.warning("Skipping action plan %d with unsupported type %r", index, entity_type)
            continue
        objective_index = action.get("objective_index")
        objective = None
        if isinstance(objective_index, int) and 0 <= objective_index < len(objectives):
            objective = objectives[objective_index]
        created.append(DemandQueueItem(
            strategic_plan_id=plan.id,
            objective_id=(objective or {}).get("id"),
            entity_type=entity_type,
            generator_component=GENERATOR_COMPONENTS.get(entity_type, GENERATOR_COMPONENTS["challenge"]),
            status="pending",
            priority_score=ACTION_PLAN_PRIORITY_SCORES.get(action.get("priority"), 60),
            prefilled_spec={
                "title_en": action.get("name_en"),
                "title_ar": action.get("name_ar"),
                "description_en": action.get("description_en"),
                "description_ar": action.get("description_ar"),
                "budget_estimate": action.get("budget_estimate"),
                "start_date": action.get("start_date"),
                "end_date": action.get("end_date"),
                "owner": action.get("owner"),
                "deliverables": action.get("deliverables"),
                "source": "action_plan",
                "source_index": index,
            },
            attempts=0,
            created_by=created_by,
        ))
    db.session.add_all(created)
    if commit:
        db.session.commit()
    if created:
        logger.info("Queued %d action plans for plan %d", len(created), plan.id,
                    extra={"strategic_plan_id": plan.id})
    return created


# ── Claiming ──────────────────────────────────────────────────────────────────


def _conditional_transition(item_id: int, from_status: str, to_status: str, **values) -> bool:
    """UPDATE ... SET status=to WHERE id=:id AND status=from. True if this call won."""
    now = _utcnow()
    result = db.session.execute(
        update(DemandQueueItem)
        .where(DemandQueueItem.id == item_id, DemandQueueItem.status == from_status)
        .values(status=to_status, updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return result.rowcount == 1


def claim_item(item_id: int) -> DemandQueueItem:
    """Atomically move one pending item to in_progress.

    Raises:
        NotFoundError: Unknown item.
        StateConflictError: Item was not pending (someone else holds it).
    """
    item = _get_item(item_id)
    if not _conditional_transition(item_id, "pending", "in_progress", last_attempt_at=_utcnow()):
        db.session.refresh(item)
        raise StateConflictError("DemandQueueItem", item_id, item.status, "pending")
    db.session.refresh(item)
    logger.info("Claimed queue item %d (%s)", item.id, item.entity_type,
                extra={"strategic_plan_id": item.strategic_plan_id})
    return item


def claim_next(
    plan_id: int,
    entity_type: str | None,
    *,
    exclude_ids=(),
) -> DemandQueueItem | None:
    """Claim the highest-priority pending item for (plan, entity_type).

    ``entity_type=None`` claims across all types; ids in ``exclude_ids`` are
    never claimed. Returns None, without writing anything, when nothing is
    pending. If a concurrent consumer wins a candidate, the next one is tried.
    """
    _get_plan(plan_id)
    stmt = select(DemandQueueItem.id).where(
        DemandQueueItem.strategic_plan_id == plan_id,
        DemandQueueItem.status == "pending",
    )
    if entity_type is not None:
        stmt = stmt.where(DemandQueueItem.entity_type == _validate_entity_type(entity_type))
    if exclude_ids:
        stmt = stmt.where(DemandQueueItem.id.notin_(list(exclude_ids)))
    candidate_ids = db.session.execute(
        _ordered(stmt).limit(MAX_CLAIM_CANDIDATES)
    ).scalars().all()

    for candidate_id in candidate_ids:
        if _conditional_transition(candidate_id, "pending", "in_progress", last_attempt_at=_utcnow()):
            item = _get_item(candidate_id)
            db.session.refresh(item)
            logger.info("Claimed queue item %d (%s)", item.id, item.entity_type,
                        extra={"strategic_plan_id": plan_id})
            return item
        logger.info("Queue item %d claimed concurrently, trying next", candidate_id,
                    extra={"strategic_plan_id": plan_id})
    return None


def release_item(item_id: int) -> DemandQueueItem:
    """Return an in_progress item to pending (abandoned claim)."""
    item = _get_item(item_id)
    if not _conditional_transition(item_id, "in_progress", "pending"):
        db.session.refresh(item)
        raise StateConflictError("DemandQueueItem", item_id, item.status, "in_progress")
    db.session.refresh(item)
    logger.info("Released queue item %d", item.id,
                extra={"strategic_plan_id": item.strategic_plan_id})
    return item


# ── Mutations ─────────────────────────────────────────────────────────────────


def update_status(item_id: int, new_status: str, quality_feedback: dict | None = None) -> DemandQueueItem:
    """Set an item's status; stamps last_attempt_at when moving to in_progress."""
    _validate_status(new_status)
    item = _get_item(item_id)
    old_status = item.status
    item.status = new_status
    if new_status == "in_progress":
        item.last_attempt_at = _utcnow()
    if quality_feedback is not None:
        item.quality_feedback = quality_feedback
    db.session.commit()
    logger.info("Queue item %d %s → %s", item.id, old_status, new_status,
                extra={"strategic_plan_id": item.strategic_plan_id})
    return item


def _accept_threshold() -> int:
    return int(current_app.config.get("QUALITY_ACCEPT_THRESHOLD", QUALITY_ACCEPT_THRESHOLD))


def complete_item(
    item_id: int,
    generated_entity_id: int,
    generated_entity_type: str,
    quality_score: int,
    *,
    accept_threshold: int | None = None,
    auto_accept: bool = True,
    quality_feedback: dict | None = None,
) -> DemandQueueItem:
    """Record the entity produced for an item and route it by quality.

    Status becomes ``accepted`` when ``quality_score >= accept_threshold``
    (70 unless configured otherwise) and ``review`` below it, or always
    ``review`` when ``auto_accept`` is False. ``attempts`` is incremented.
    """
    try:
        quality_score = int(quality_score)
    except (TypeError, ValueError):
        raise ValidationError("quality_score must be an integer", details={"quality_score": quality_score})
    if not 0 <= quality_score <= 100:
        raise ValidationError("quality_score must be between 0 and 100", details={"quality_score": quality_score})
    _validate_entity_type(generated_entity_type)

    threshold = _accept_threshold() if accept_threshold is None else accept_threshold
    item = _get_item(item_id)
    item.generated_entity_id = generated_entity_id
    item.generated_entity_type = generated_entity_type
    item.quality_score = quality_score
    item.status = "accepted" if auto_accept and quality_score >= threshold else "review"
    item.attempts = (item.attempts or 0) + 1
    if quality_feedback is not None:
        item.quality_feedback = quality_feedback
    db.session.commit()
    logger.info(
        "Queue item %d completed → %s (%s #%s, score=%d)",
        item.id, item.status, generated_entity_type, generated_entity_id, quality_score,
        extra={"strategic_plan_id": item.strategic_plan_id},
    )
    return item


def record_failure(item_id: int, error: str) -> DemandQueueItem:
    """Put an item back to pending after a failed generation attempt."""
    item = _get_item(item_id)
    item.status = "pending"
    item.attempts = (item.attempts or 0) + 1
    item.quality_feedback = {"error": error, "failed_at": _utcnow().isoformat()}
    db.session.commit()
    logger.warning("Queue item %d generation failed: %s", item.id, error,
                   extra={"strategic_plan_id": item.strategic_plan_id})
    return item


def delete_item(item_id: int) -> None:
    item = _get_item(item_id)
    plan_id = item.strategic_plan_id
    db.session.delete(item)
    db.session.commit()
    logger.info("Deleted queue item %d", item_id, extra={"strategic_plan_id": plan_id})


def clear_pending(plan_id: int) -> int:
    """Bulk-delete every pending item of a plan. Returns the number removed."""
    _get_plan(plan_id)
    result = db.session.execute(
        delete(DemandQueueItem)
        .where(
            DemandQueueItem.strategic_plan_id == plan_id,
            DemandQueueItem.status == "pending",
        )
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    logger.info("Cleared %d pending queue items for plan %d", result.rowcount, plan_id,
                extra={"strategic_plan_id": plan_id})
    return result.rowcount


# ── Review ────────────────────────────────────────────────────────────────────


def list_review_items(plan_id: int) -> list[DemandQueueItem]:
    return list_items(plan_id, status="review")


def review_count(plan_id: int) -> int:
    _get_plan(plan_id)
    return db.session.execute(
        select(func.count(DemandQueueItem.id)).where(
            DemandQueueItem.strategic_plan_id == plan_id,
            DemandQueueItem.status == "review",
        )
    ).scalar_one()


def decide_review(item_id: int, decision: str, *, reason: str = "", reviewer: str = "system") -> DemandQueueItem:
    """Resolve an item waiting in review as accepted or rejected."""
    if decision not in ("accepted", "rejected"):
        raise ValidationError("decision must be 'accepted' or 'rejected'", details={"decision": decision})
    item = _get_item(item_id)
    if item.status != "review":
        raise StateConflictError("DemandQueueItem", item_id, item.status, "review")

    feedback = dict(item.quality_feedback or {})
    feedback.update({
        "review_decision": decision,
        "reviewed_by": reviewer,
        "timestamp": _utcnow().isoformat(),
    })
    if decision == "rejected":
        feedback["rejection_reason"] = reason
    item.quality_feedback = feedback
    item.status = decision
    db.session.commit()
    logger.info("Queue item %d review → %s by %s", item.id, decision, reviewer,
                extra={"strategic_plan_id": item.strategic_plan_id})
    return item


def rejection_summary(plan_id: int, *, recent: int = 20) -> dict:
    """Rejected / skipped items grouped by entity type, with recent reasons."""
    all_items = list_items(plan_id)
    items = [i for i in all_items if i.status in ("rejected", "skipped")]
    decided = sum(1 for i in all_items if i.status in ("accepted", "review", "rejected"))

    by_type: dict[str, dict] = {}
    for item in items:
        bucket = by_type.setdefault(item.entity_type, {"rejected": 0, "skipped": 0})
        bucket[item.status] += 1

    def _reason(item):
        feedback = item.quality_feedback or {}
        return feedback.get("rejection_reason") or feedback.get("skip_reason") or ""

    def _stamp(item):
        return (item.quality_feedback or {}).get("timestamp") or ""

    latest = sorted(items, key=_stamp, reverse=True)[:recent]
    total_rejected = sum(b["rejected"] for b in by_type.values())
    return {
        "total_rejected": total_rejected,
        "total_skipped": sum(b["skipped"] for b in by_type.values()),
        "rejection_rate_pct": round(100 * total_rejected / decided) if decided else 0,
        "by_type": by_type,
        "recent": [
            {
                "item_id": i.id,
                "entity_type": i.entity_type,
                "status": i.status,
                "reason": _reason(i),
                "timestamp": _stamp(i),
            }
            for i in latest
        ],
    }
