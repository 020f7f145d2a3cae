"""
Strategic plan and gap-analysis blueprint.

Endpoint groups:
  Plans          GET/POST        /api/v1/strategic-plans
                 GET/PUT/DELETE  /api/v1/strategic-plans/<plan_id>
  Lifecycle      POST /api/v1/strategic-plans/<plan_id>/submit
                 POST /api/v1/strategic-plans/<plan_id>/duplicate
  Gap analysis   POST /api/v1/gap-analysis
                 POST /api/v1/gap-analysis/<plan_id>/generate-queue

Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from app import limiter
from app.blueprints import (
    ai_rate_limit,
    current_actor,
    json_body,
    paginate_query,
    register_error_handlers,
)
from app.models.strategy import PLAN_STATUSES
from app.services import gap_analysis_service, strategic_plan_service
from app.services.gap_analysis_service import ANALYSIS_DEPTHS
from app.utils.errors import E, api_error
from app.utils.helpers import parse_int

logger = logging.getLogger(__name__)

strategy_bp = Blueprint("strategy", __name__, url_prefix="/api/v1")
register_error_handlers(strategy_bp)


def _not_comprehensive():
    payload = request.get_json(silent=True) or {}
    return not isinstance(payload, dict) or payload.get("analysis_depth") != "comprehensive"


_ai_analysis_limit = limiter.shared_limit(
    ai_rate_limit, scope="ai_generate", exempt_when=_not_comprehensive,
)


# ═════════════════════════════════════════════════════════════════════════
# Strategic plans
# ═════════════════════════════════════════════════════════════════════════


@strategy_bp.route("/strategic-plans", methods=["GET"])
def list_plans():
    """List plans, newest first. Query params: status, limit, offset."""
    status = request.args.get("status")
    if status and status not in PLAN_STATUSES:
        return api_error(E.VALIDATION_INVALID, f"status must be one of: {', '.join(sorted(PLAN_STATUSES))}")
    plans, total = paginate_query(strategic_plan_service.list_plans(status))
    return jsonify({"items": [p.to_dict() for p in plans], "total": total}), 200


@strategy_bp.route("/strategic-plans", methods=["POST"])
def create_plan():
    """Create a draft plan.

    Body: {name_en, name_ar?, description_en?, description_ar?, start_year?,
           end_year?, objectives?, cascade_config?, action_plans?}
    """
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    if not (data.get("name_en") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "name_en is required")
    plan = strategic_plan_service.create_plan(data, created_by=current_actor())
    return jsonify(plan.to_dict()), 201


@strategy_bp.route("/strategic-plans/<int:plan_id>", methods=["GET"])
def get_plan(plan_id):
    return jsonify(strategic_plan_service.get_plan(plan_id).to_dict()), 200


@strategy_bp.route("/strategic-plans/<int:plan_id>", methods=["PUT"])
def update_plan(plan_id):
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    plan = strategic_plan_service.update_plan(plan_id, data)
    return jsonify(plan.to_dict()), 200


@strategy_bp.route("/strategic-plans/<int:plan_id>", methods=["DELETE"])
def delete_plan(plan_id):
    strategic_plan_service.delete_plan(plan_id)
    return jsonify({"message": "Strategic plan deleted"}), 200


@strategy_bp.route("/strategic-plans/<int:plan_id>/submit", methods=["POST"])
def submit_plan(plan_id):
    """Submit a draft; action plans flagged should_create_entity are queued."""
    plan, queued = strategic_plan_service.submit_plan(plan_id, submitted_by=current_actor())
    return jsonify({
        "plan": plan.to_dict(),
        "queued_items": [item.to_dict() for item in queued],
    }), 200


@strategy_bp.route("/strategic-plans/<int:plan_id>/duplicate", methods=["POST"])
def duplicate_plan(plan_id):
    plan = strategic_plan_service.duplicate_plan(plan_id, created_by=current_actor())
    return jsonify(plan.to_dict()), 201


# ═════════════════════════════════════════════════════════════════════════
# Gap analysis
# ═════════════════════════════════════════════════════════════════════════


@strategy_bp.route("/gap-analysis", methods=["POST"])
@_ai_analysis_limit
def run_gap_analysis():
    """Coverage report for a plan.

    Body: {strategic_plan_id, analysis_depth?: quick|standard|comprehensive}
    """
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    try:
        plan_id = parse_int(data.get("strategic_plan_id"), "strategic_plan_id", minimum=1)
    except ValueError as exc:
        return api_error(E.VALIDATION_REQUIRED, str(exc))
    depth = data.get("analysis_depth") or "standard"
    if depth not in ANALYSIS_DEPTHS:
        return api_error(
            E.VALIDATION_INVALID,
            f"analysis_depth must be one of: {', '.join(ANALYSIS_DEPTHS)}",
        )
    report = gap_analysis_service.run_gap_analysis(plan_id, depth, user=current_actor())
    return jsonify(report), 200


@strategy_bp.route("/gap-analysis/<int:plan_id>/generate-queue", methods=["POST"])
def generate_queue(plan_id):
    """Materialise the plan's uncovered gaps as pending queue items.

    Body: {limit?} (default QUEUE_GENERATE_LIMIT)
    """
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    limit = None
    if data.get("limit") is not None:
        try:
            limit = parse_int(data.get("limit"), "limit", minimum=1)
        except ValueError as exc:
            return api_error(E.VALIDATION_INVALID, str(exc))
    result = gap_analysis_service.generate_queue(plan_id, limit, user=current_actor())
    return jsonify({
        "analysis": result["analysis"],
        "created_count": len(result["created"]),
        "items": [item.to_dict() for item in result["created"]],
        "skipped_existing": result["skipped_existing"],
    }), 201
