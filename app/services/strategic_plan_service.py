"""Strategic plan service layer.

CRUD, submission and duplication for strategic plans. This is where plan
shape is validated: objective weights and cascade ratios must be
non-negative integers/numbers, objective ids unique. The cascade
calculator itself trusts its input.

Submitting a draft moves it to ``pending`` and queues every action plan
flagged ``should_create_entity`` in the same commit.
"""
import logging
from datetime import datetime, timezone

from app.core.exceptions import NotFoundError, StateConflictError, ValidationError
from app.models import db
from app.models.strategy import (
    ACTION_PLAN_PRIORITIES,
    DEFAULT_CASCADE_CONFIG,
    PLAN_STATUSES,
    StrategicPlan,
)
from app.services import demand_queue_service

logger = logging.getLogger(__name__)

_TEXT_FIELDS = ("name_en", "name_ar", "description_en", "description_ar")


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def normalize_objectives(objectives):
    """Validate objectives and fill missing ids (``obj-1``, ``obj-2`` ...)."""
    if objectives is None:
        return []
    if not isinstance(objectives, list):
        raise ValidationError("objectives must be a list")

    result = []
    seen = set()
    for index, obj in enumerate(objectives):
        if not isinstance(obj, dict):
            raise ValidationError("each objective must be an object", details={"index": index})
        weight = obj.get("weight", 0)
        if weight is None:
            weight = 0
        if not _is_number(weight) or weight < 0:
            raise ValidationError(
                "objective weight must be a non-negative number",
                details={"index": index, "weight": weight},
            )
        obj_id = str(obj.get("id") or f"obj-{index + 1}")
        if obj_id in seen:
            raise ValidationError("objective ids must be unique", details={"id": obj_id})
        seen.add(obj_id)
        result.append({
            **obj,
            "id": obj_id,
            "title_en": obj.get("title_en", ""),
            "title_ar": obj.get("title_ar", ""),
            "weight": weight,
        })
    return result


def normalize_cascade_config(config):
    """Keep known ratio keys; every ratio must be a non-negative integer."""
    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ValidationError("cascade_config must be an object")
    unknown = sorted(set(config) - set(DEFAULT_CASCADE_CONFIG))
    if unknown:
        raise ValidationError("unknown cascade_config keys", details={"keys": unknown})
    for key, value in config.items():
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise ValidationError(
                f"{key} must be a non-negative integer",
                details={key: value},
            )
    return dict(config)


def normalize_action_plans(action_plans):
    if action_plans is None:
        return []
    if not isinstance(action_plans, list) or not all(isinstance(a, dict) for a in action_plans):
        raise ValidationError("action_plans must be a list of objects")
    for index, action in enumerate(action_plans):
        priority = action.get("priority")
        if priority is not None and priority not in ACTION_PLAN_PRIORITIES:
            raise ValidationError(
                f"action plan priority must be one of: {', '.join(sorted(ACTION_PLAN_PRIORITIES))}",
                details={"index": index, "priority": priority},
            )
    return [dict(a) for a in action_plans]


def _apply(plan, data):
    for field in _TEXT_FIELDS:
        if field in data:
            setattr(plan, field, data[field] or "")
    for field in ("start_year", "end_year"):
        if field in data:
            value = data[field]
            if value is not None and (not isinstance(value, int) or isinstance(value, bool)):
                raise ValidationError(f"{field} must be an integer", details={field: value})
            setattr(plan, field, value)
    if "objectives" in data:
        plan.objectives = normalize_objectives(data["objectives"])
    if "cascade_config" in data:
        plan.cascade_config = normalize_cascade_config(data["cascade_config"])
    if "action_plans" in data:
        plan.action_plans = normalize_action_plans(data["action_plans"])
    if "status" in data:
        if data["status"] not in PLAN_STATUSES:
            raise ValidationError(
                f"status must be one of: {', '.join(sorted(PLAN_STATUSES))}",
                details={"status": data["status"]},
            )
        plan.status = data["status"]

    if not (plan.name_en or "").strip():
        raise ValidationError("name_en is required")
    if plan.start_year and plan.end_year and plan.start_year > plan.end_year:
        raise ValidationError(
            "start_year must not be after end_year",
            details={"start_year": plan.start_year, "end_year": plan.end_year},
        )


def list_plans(status=None):
    query = StrategicPlan.query
    if status:
        query = query.filter(StrategicPlan.status == status)
    return query.order_by(StrategicPlan.id.desc())


def get_plan(plan_id):
    plan = db.session.get(StrategicPlan, plan_id)
    if plan is None:
        raise NotFoundError(resource="StrategicPlan", resource_id=plan_id)
    return plan


def create_plan(data, *, created_by="system"):
    plan = StrategicPlan(
        status="draft",
        objectives=[],
        cascade_config={},
        action_plans=[],
        version_number=1,
        created_by=created_by,
    )
    _apply(plan, data)
    db.session.add(plan)
    db.session.commit()
    logger.info("Created strategic plan %d '%s'", plan.id, plan.name_en,
                extra={"strategic_plan_id": plan.id})
    return plan


def update_plan(plan_id, data):
    """Update a plan; changing objectives or ratios bumps ``version_number``."""
    plan = get_plan(plan_id)
    before = (list(plan.objectives or []), dict(plan.cascade_config or {}))
    _apply(plan, data)
    if before != (list(plan.objectives or []), dict(plan.cascade_config or {})):
        plan.version_number = (plan.version_number or 1) + 1
    db.session.commit()
    logger.info("Updated strategic plan %d (version %d)", plan.id, plan.version_number,
                extra={"strategic_plan_id": plan.id})
    return plan


def delete_plan(plan_id):
    """Hard delete. Queue items go with the plan; entities keep their rows, unlinked."""
    plan = get_plan(plan_id)
    db.session.delete(plan)
    db.session.commit()
    logger.info("Deleted strategic plan %d", plan_id, extra={"strategic_plan_id": plan_id})


def submit_plan(plan_id, *, submitted_by="system"):
    """Submit a draft for approval and queue its cascadable action plans.

    Returns:
        (plan, queued_items)

    Raises:
        StateConflictError: The plan is not a draft.
    """
    plan = get_plan(plan_id)
    if plan.status != "draft":
        raise StateConflictError("StrategicPlan", plan.id, plan.status, "draft")

    plan.status = "pending"
    plan.submitted_by = submitted_by
    plan.submitted_at = datetime.now(timezone.utc)
    queued = demand_queue_service.enqueue_action_plans(plan, created_by=submitted_by, commit=False)
    db.session.commit()
    logger.info("Submitted strategic plan %d; %d action plans queued", plan.id, len(queued),
                extra={"strategic_plan_id": plan.id})
    return plan, queued


def duplicate_plan(plan_id, *, created_by="system"):
    """Copy a plan's content into a new draft. Queue items are not copied."""
    source = get_plan(plan_id)
    copy = StrategicPlan(
        name_en=f"{source.name_en} (Copy)",
        name_ar=f"{source.name_ar} (نسخة)" if source.name_ar else "",
        description_en=source.description_en,
        description_ar=source.description_ar,
        start_year=source.start_year,
        end_year=source.end_year,
        status="draft",
        objectives=[dict(o) for o in source.objectives or []],
        cascade_config=dict(source.cascade_config or {}),
        action_plans=[dict(a) for a in source.action_plans or []],
        version_number=1,
        created_by=created_by,
    )
    db.session.add(copy)
    db.session.commit()
    logger.info("Duplicated strategic plan %d → %d", source.id, copy.id,
                extra={"strategic_plan_id": copy.id})
    return copy
