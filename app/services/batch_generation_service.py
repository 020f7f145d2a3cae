"""
Batch generation: works a slice of a plan's demand queue through the AI
entity generator and quality assessor without an operator in the loop.

Per claimed item:
    1. EntityGenerator drafts the entity from prefilled_spec
    2. The entity is persisted, linked to the plan and the queue item
    3. QualityAssessor scores the draft
    4. The item is completed: accepted when auto_approve and the score
       reaches min_quality_score, otherwise review

A drafting failure puts the item back to pending with attempts + 1 and
``{error, failed_at}`` feedback; the rest of the batch continues.
"""

import logging

from flask import current_app

from app.ai import get_gateway, get_prompt_registry
from app.ai.assistants import EntityGenerator, QualityAssessor
from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.strategy import StrategicPlan
from app.services import demand_queue_service, entity_service

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5


def _validate(batch_size, min_quality_score):
    max_size = int(current_app.config.get("BATCH_MAX_SIZE", 20))
    if not 1 <= batch_size <= max_size:
        raise ValidationError(
            f"batch_size must be between 1 and {max_size}",
            details={"batch_size": batch_size},
        )
    if not 0 <= min_quality_score <= 100:
        raise ValidationError(
            "min_quality_score must be between 0 and 100",
            details={"min_quality_score": min_quality_score},
        )


def run_batch(
    plan_id: int,
    entity_type: str | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    auto_approve: bool = False,
    min_quality_score: int = 70,
    *,
    user: str = "system",
    generator: EntityGenerator | None = None,
    assessor: QualityAssessor | None = None,
) -> dict:
    """Generate entities for up to ``batch_size`` pending items.

    Returns:
        {"total", "completed", "failed", "items": [per-item outcome]}
    """
    _validate(batch_size, min_quality_score)
    plan = db.session.get(StrategicPlan, plan_id)
    if plan is None:
        raise NotFoundError(resource="StrategicPlan", resource_id=plan_id)

    if generator is None or assessor is None:
        gateway, registry = get_gateway(), get_prompt_registry()
        generator = generator or EntityGenerator(gateway=gateway, prompt_registry=registry)
        assessor = assessor or QualityAssessor(gateway=gateway, prompt_registry=registry)

    outcomes = []
    seen_ids = []
    for _ in range(batch_size):
        # failed items return to pending; do not retry them in the same batch
        item = demand_queue_service.claim_next(plan.id, entity_type, exclude_ids=seen_ids)
        if item is None:
            break
        seen_ids.append(item.id)
        outcomes.append(_process_item(plan, item, generator, assessor,
                                      auto_approve=auto_approve,
                                      min_quality_score=min_quality_score,
                                      user=user))

    completed = sum(1 for o in outcomes if o["error"] is None)
    logger.info(
        "Batch for plan %d: %d claimed, %d completed, %d failed",
        plan.id, len(outcomes), completed, len(outcomes) - completed,
        extra={"strategic_plan_id": plan.id, "entity_type": entity_type},
    )
    return {
        "total": len(outcomes),
        "completed": completed,
        "failed": len(outcomes) - completed,
        "items": outcomes,
    }


def _process_item(plan, item, generator, assessor, *, auto_approve, min_quality_score, user):
    outcome = {
        "item_id": item.id,
        "entity_type": item.entity_type,
        "status": None,
        "entity_id": None,
        "quality_score": None,
        "error": None,
    }

    generated = generator.generate(item, plan, user=user)
    if generated["error"]:
        return _fail(item, outcome, generated["error"])

    spec = item.prefilled_spec or {}
    try:
        entity = entity_service.create_entity(item.entity_type, {
            **generated["draft"],
            "strategic_plan_id": plan.id,
            "objective_id": item.objective_id,
            "is_ai_generated": True,
            "queue_item_id": item.id,
        }, commit=False)
    except (ValidationError, NotFoundError) as exc:
        db.session.rollback()
        return _fail(item, outcome, str(exc))

    assessment = assessor.assess(
        item.entity_type,
        generated["draft"],
        objective_text=(spec.get("ai_context") or {}).get("objective_text", ""),
        strategic_plan_id=plan.id,
        user=user,
    )
    feedback = {
        "strengths": assessment["strengths"],
        "issues": assessment["issues"],
        "recommendation": assessment["recommendation"],
    }
    score = assessment["quality_score"]
    if score is None:
        # unscored drafts always go to a human
        score = 0
        feedback["assessment_error"] = assessment["error"]

    completed = demand_queue_service.complete_item(
        item.id,
        generated_entity_id=entity.id,
        generated_entity_type=item.entity_type,
        quality_score=score,
        accept_threshold=min_quality_score,
        auto_accept=auto_approve and "assessment_error" not in feedback,
        quality_feedback=feedback,
    )
    outcome.update({
        "status": completed.status,
        "entity_id": entity.id,
        "quality_score": score,
    })
    return outcome


def _fail(item, outcome, error):
    failed = demand_queue_service.record_failure(item.id, error)
    outcome.update({"status": failed.status, "error": error})
    return outcome
