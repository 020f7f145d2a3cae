"""Innovation entity service: CRUD for the plan-linked derived entities.

Challenges, pilots, campaigns, events, programs and solutions share one
code path keyed by ``entity_type``. Deletes are soft (``deleted_at``), so a
deleted entity stops counting towards its plan's coverage but stays
restorable.
"""
import logging

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.innovation import (
    ENTITY_EXTRA_FIELDS,
    ENTITY_MODELS,
    ENTITY_STATUSES,
    Pilot,
)
from app.models.strategy import StrategicPlan
from app.utils.helpers import parse_date

logger = logging.getLogger(__name__)

_COMMON_FIELDS = (
    "objective_id", "title_en", "title_ar", "description_en", "description_ar", "status",
)


def get_model(entity_type):
    model = ENTITY_MODELS.get(entity_type)
    if model is None:
        raise NotFoundError(resource=f"Entity type '{entity_type}'")
    return model


def _apply_fields(entity, entity_type, data):
    for field in _COMMON_FIELDS:
        if field in data:
            setattr(entity, field, data[field])
    for field in ENTITY_EXTRA_FIELDS[entity_type]:
        if field not in data:
            continue
        value = data[field]
        if field == "start_date":
            value = parse_date(value)
        setattr(entity, field, value)

    if entity.status not in ENTITY_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(sorted(ENTITY_STATUSES))}",
            details={"status": entity.status},
        )
    if not (entity.title_en or "").strip():
        raise ValidationError("title_en is required", details={"title_en": entity.title_en})


def _check_plan(plan_id):
    if plan_id is not None and db.session.get(StrategicPlan, plan_id) is None:
        raise NotFoundError(resource="StrategicPlan", resource_id=plan_id)


def list_entities(entity_type, *, plan_id=None, include_deleted=False):
    model = get_model(entity_type)
    query = model.query if include_deleted else model.query_active()
    if plan_id is not None:
        query = query.filter(model.strategic_plan_id == plan_id)
    return query.order_by(model.id.asc())


def get_entity(entity_type, entity_id, *, include_deleted=False):
    model = get_model(entity_type)
    entity = db.session.get(model, entity_id)
    if entity is None or (entity.is_deleted and not include_deleted):
        raise NotFoundError(resource=model.__name__, resource_id=entity_id)
    return entity


def create_entity(entity_type, data, *, commit=True):
    """Create a derived entity.

    Args:
        entity_type: Key of ENTITY_MODELS.
        data: Column values; ``strategic_plan_id`` is optional.
        commit: False lets a caller batch the insert with other writes.

    Returns:
        The new entity (flushed, so its id is set).
    """
    model = get_model(entity_type)
    plan_id = data.get("strategic_plan_id")
    _check_plan(plan_id)

    entity = model(
        strategic_plan_id=plan_id,
        is_ai_generated=bool(data.get("is_ai_generated", False)),
        queue_item_id=data.get("queue_item_id"),
        status="draft",
    )
    _apply_fields(entity, entity_type, data)
    if isinstance(entity, Pilot) and entity.challenge_id is not None:
        get_entity("challenge", entity.challenge_id)

    db.session.add(entity)
    db.session.flush()
    if commit:
        db.session.commit()
    logger.info("Created %s %d", entity_type, entity.id,
                extra={"strategic_plan_id": plan_id, "entity_type": entity_type})
    return entity


def update_entity(entity_type, entity_id, data):
    entity = get_entity(entity_type, entity_id)
    if "strategic_plan_id" in data:
        _check_plan(data["strategic_plan_id"])
        entity.strategic_plan_id = data["strategic_plan_id"]
    _apply_fields(entity, entity_type, data)
    db.session.commit()
    logger.info("Updated %s %d", entity_type, entity.id,
                extra={"strategic_plan_id": entity.strategic_plan_id, "entity_type": entity_type})
    return entity


def delete_entity(entity_type, entity_id):
    """Soft delete; the row no longer counts towards coverage."""
    entity = get_entity(entity_type, entity_id)
    entity.soft_delete()
    db.session.commit()
    logger.info("Soft-deleted %s %d", entity_type, entity.id,
                extra={"strategic_plan_id": entity.strategic_plan_id, "entity_type": entity_type})
    return entity


def restore_entity(entity_type, entity_id):
    entity = get_entity(entity_type, entity_id, include_deleted=True)
    entity.restore()
    db.session.commit()
    logger.info("Restored %s %d", entity_type, entity.id,
                extra={"strategic_plan_id": entity.strategic_plan_id, "entity_type": entity_type})
    return entity
