"""
Gap-analysis service.

Counts a plan's live derived entities, runs the cascade target and gap
calculators over them, and optionally turns the gaps into demand queue
items. Counts are recomputed on every call.

Depths:
    quick          global coverage only (no per-objective breakdown)
    standard       global + per-objective coverage
    comprehensive  standard + AI recommendations from the gap advisor
"""

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import func, select

from app.ai import get_gateway, get_prompt_registry
from app.ai.assistants import GapAdvisor
from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.demand_queue import KIND_TO_ENTITY_TYPE, OPEN_QUEUE_STATUSES
from app.models.innovation import Campaign, Challenge, Event, Pilot
from app.models.strategy import StrategicPlan
from app.services import demand_queue_service
from app.services.cascade import (
    ENTITY_KINDS,
    REMAINDER_POLICIES,
    blended_coverage_pct,
    compute_gaps,
    compute_targets,
    coverage_pct,
    overall_coverage_pct,
)

logger = logging.getLogger(__name__)

ANALYSIS_DEPTHS = ("quick", "standard", "comprehensive")

_KIND_MODELS = {
    "challenges": Challenge,
    "pilots": Pilot,
    "campaigns": Campaign,
    "events": Event,
}


def _get_plan(plan_id: int) -> StrategicPlan:
    plan = db.session.get(StrategicPlan, plan_id)
    if plan is None:
        raise NotFoundError(resource="StrategicPlan", resource_id=plan_id)
    return plan


def count_entities(plan_id: int) -> dict:
    """Live (not soft-deleted) entity counts per cascade kind."""
    counts = {}
    for kind, model in _KIND_MODELS.items():
        counts[kind] = db.session.execute(
            select(func.count(model.id)).where(
                model.strategic_plan_id == plan_id,
                model.deleted_at.is_(None),
            )
        ).scalar_one()
    return counts


def _remainder_policy() -> str:
    policy = current_app.config.get("CASCADE_REMAINDER_POLICY", "floor")
    if policy not in REMAINDER_POLICIES:
        logger.warning("Unknown CASCADE_REMAINDER_POLICY %r, using 'floor'", policy)
        return "floor"
    return policy


def run_gap_analysis(plan_id: int, analysis_depth: str = "standard", *, user: str = "system") -> dict:
    """Build the coverage report for a plan.

    Raises:
        NotFoundError: Unknown plan.
        ValidationError: Unknown analysis depth.
    """
    if analysis_depth not in ANALYSIS_DEPTHS:
        raise ValidationError(
            f"analysis_depth must be one of: {', '.join(ANALYSIS_DEPTHS)}",
            details={"analysis_depth": analysis_depth},
        )
    plan = _get_plan(plan_id)
    current = count_entities(plan.id)
    targets = compute_targets(
        plan.objectives, plan.cascade_config, current,
        remainder_policy=_remainder_policy(),
    )
    gaps = compute_gaps(current, targets["global"])

    report = {
        "strategic_plan_id": plan.id,
        "analysis_depth": analysis_depth,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "objective_count": targets["objective_count"],
        "cascade_config": targets["cascade_config"],
        "overall_coverage_pct": overall_coverage_pct(current, targets["global"]),
        "entity_coverage": {
            kind: {
                "current": current[kind],
                "target": targets["global"][kind],
                "coverage_pct": gaps["coverage_pct"][kind],
            }
            for kind in ENTITY_KINDS
        },
        "gaps": {
            "quantity_gaps": gaps["quantity_gaps"],
            "priority_order": gaps["priority_order"],
        },
        "total_generation_needed": {
            "total": sum(gaps["quantity_gaps"].values()),
            "by_kind": dict(gaps["quantity_gaps"]),
        },
    }

    if analysis_depth != "quick":
        report["objectives"] = [
            {
                **obj,
                "coverage_pct": blended_coverage_pct(obj["current"], obj["target"]),
                "kind_coverage_pct": {
                    kind: coverage_pct(obj["current"][kind], obj["target"][kind])
                    for kind in ENTITY_KINDS
                },
            }
            for obj in targets["per_objective"]
        ]

    if analysis_depth == "comprehensive":
        advisor = GapAdvisor(gateway=get_gateway(), prompt_registry=get_prompt_registry())
        advice = advisor.recommend(plan, report, user=user)
        report["recommendations"] = advice["recommendations"]
        report["summary"] = advice["summary"]
        if advice["error"]:
            report["recommendations_error"] = advice["error"]
        # persist the gateway's usage rows
        db.session.commit()

    logger.info(
        "Gap analysis for plan %d (%s): coverage=%d%% gaps=%s",
        plan.id, analysis_depth, report["overall_coverage_pct"], gaps["quantity_gaps"],
        extra={"strategic_plan_id": plan.id},
    )
    return report


def generate_queue(plan_id: int, limit: int | None = None, *, user: str = "system") -> dict:
    """Analyse a plan and queue the still-uncovered units.

    Units already represented by open queue items (pending or in_progress)
    are not queued again, so calling this twice in a row is a no-op the
    second time. Items in review already have their entity counted.

    Returns:
        {"analysis": report, "created": [items...], "skipped_existing": {kind: n}}
    """
    if limit is None:
        limit = int(current_app.config.get("QUEUE_GENERATE_LIMIT", 20))
    if limit < 1:
        raise ValidationError("limit must be a positive integer", details={"limit": limit})

    report = run_gap_analysis(plan_id, "standard", user=user)
    open_counts = demand_queue_service.open_counts_by_type(plan_id, OPEN_QUEUE_STATUSES)

    outstanding = {}
    already_queued = {}
    for kind, gap in report["gaps"]["quantity_gaps"].items():
        queued = open_counts.get(KIND_TO_ENTITY_TYPE[kind], 0)
        already_queued[kind] = min(queued, gap)
        if gap - queued > 0:
            outstanding[kind] = gap - queued

    created = demand_queue_service.materialize_gaps(
        plan_id, outstanding, limit=limit, created_by=user,
    )
    return {
        "analysis": report,
        "created": created,
        "skipped_existing": already_queued,
    }
