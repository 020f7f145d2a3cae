"""
Demand queue blueprint.

Endpoint groups:
  Items       GET/POST  /api/v1/demand-queue?plan_id=
              PATCH/DELETE /api/v1/demand-queue/<item_id>
              DELETE    /api/v1/demand-queue?plan_id=&status=pending
  Stats       GET  /api/v1/demand-queue/stats?plan_id=
  Claiming    POST /api/v1/demand-queue/next
              POST /api/v1/demand-queue/<item_id>/claim
              POST /api/v1/demand-queue/<item_id>/release
  Review      GET  /api/v1/demand-queue/review?plan_id=
              POST /api/v1/demand-queue/<item_id>/review
              GET  /api/v1/demand-queue/rejections?plan_id=
  Batch       POST /api/v1/demand-queue/batch

A PATCH carrying ``generated_entity_id`` completes the item (accept/review
by quality score); one carrying only ``status`` is a plain status update.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from app import limiter
from app.blueprints import ai_rate_limit, current_actor, json_body, register_error_handlers
from app.models.demand_queue import QUEUE_ENTITY_TYPES, QUEUE_STATUSES
from app.services import batch_generation_service, demand_queue_service
from app.utils.errors import E, api_error
from app.utils.helpers import parse_int

logger = logging.getLogger(__name__)

demand_queue_bp = Blueprint("demand_queue", __name__, url_prefix="/api/v1/demand-queue")
register_error_handlers(demand_queue_bp)

_ai_batch_limit = limiter.shared_limit(ai_rate_limit, scope="ai_generate")


def _plan_id_arg():
    """plan_id from the query string → (plan_id, None) or (None, error response)."""
    raw = request.args.get("plan_id") or request.args.get("strategic_plan_id")
    try:
        return parse_int(raw, "plan_id", minimum=1), None
    except ValueError as exc:
        return None, api_error(E.VALIDATION_REQUIRED, str(exc))


def _body_or_error():
    data = json_body()
    if data is None:
        return None, api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    return data, None


# ── Items ─────────────────────────────────────────────────────────────────────


@demand_queue_bp.route("", methods=["GET"])
def list_items():
    """Queue items of a plan, highest priority first.

    Query params: plan_id (required), status?, entity_type?
    """
    plan_id, err = _plan_id_arg()
    if err:
        return err
    status = request.args.get("status") or None
    if status and status not in QUEUE_STATUSES:
        return api_error(E.VALIDATION_INVALID, f"status must be one of: {', '.join(sorted(QUEUE_STATUSES))}")
    items = demand_queue_service.list_items(
        plan_id, status=status, entity_type=request.args.get("entity_type") or None,
    )
    return jsonify({"items": [i.to_dict() for i in items], "total": len(items)}), 200


@demand_queue_bp.route("", methods=["POST"])
def create_items():
    """Batch insert.

    Body: {strategic_plan_id, items: [{entity_type, priority_score?,
           prefilled_spec?, objective_id?, generator_component?}]}
    """
    data, err = _body_or_error()
    if err:
        return err
    try:
        plan_id = parse_int(data.get("strategic_plan_id"), "strategic_plan_id", minimum=1)
    except ValueError as exc:
        return api_error(E.VALIDATION_REQUIRED, str(exc))
    items = data.get("items")
    if not isinstance(items, list) or not items:
        return api_error(E.VALIDATION_REQUIRED, "items must be a non-empty list")
    if not all(isinstance(i, dict) for i in items):
        return api_error(E.VALIDATION_INVALID, "each item must be an object")
    created = demand_queue_service.create_items(plan_id, items, created_by=current_actor())
    return jsonify({"items": [i.to_dict() for i in created], "created_count": len(created)}), 201


@demand_queue_bp.route("/<int:item_id>", methods=["GET"])
def get_item(item_id):
    return jsonify(demand_queue_service.get_item(item_id).to_dict()), 200


@demand_queue_bp.route("/<int:item_id>", methods=["PATCH"])
def update_item(item_id):
    """Status update or completion.

    Completion body: {generated_entity_id, generated_entity_type, quality_score,
                      quality_feedback?}
    Status body:     {status, quality_feedback?}
    """
    data, err = _body_or_error()
    if err:
        return err
    feedback = data.get("quality_feedback")
    if feedback is not None and not isinstance(feedback, dict):
        return api_error(E.VALIDATION_INVALID, "quality_feedback must be an object")

    if data.get("generated_entity_id") is not None:
        try:
            entity_id = parse_int(data.get("generated_entity_id"), "generated_entity_id", minimum=1)
            score = parse_int(data.get("quality_score"), "quality_score")
        except ValueError as exc:
            return api_error(E.VALIDATION_INVALID, str(exc))
        entity_type = data.get("generated_entity_type")
        if not entity_type:
            entity_type = demand_queue_service.get_item(item_id).entity_type
        item = demand_queue_service.complete_item(
            item_id, entity_id, entity_type, score, quality_feedback=feedback,
        )
        return jsonify(item.to_dict()), 200

    status = data.get("status")
    if not status:
        return api_error(E.VALIDATION_REQUIRED, "status or generated_entity_id is required")
    item = demand_queue_service.update_status(item_id, status, feedback)
    return jsonify(item.to_dict()), 200


@demand_queue_bp.route("/<int:item_id>", methods=["DELETE"])
def delete_item(item_id):
    demand_queue_service.delete_item(item_id)
    return jsonify({"message": "Queue item deleted"}), 200


@demand_queue_bp.route("", methods=["DELETE"])
def clear_pending():
    """Remove every pending item of a plan. Query params: plan_id, status=pending."""
    plan_id, err = _plan_id_arg()
    if err:
        return err
    if request.args.get("status", "pending") != "pending":
        return api_error(E.VALIDATION_INVALID, "only pending items can be cleared in bulk")
    deleted = demand_queue_service.clear_pending(plan_id)
    return jsonify({"deleted": deleted}), 200


@demand_queue_bp.route("/stats", methods=["GET"])
def stats():
    plan_id, err = _plan_id_arg()
    if err:
        return err
    return jsonify(demand_queue_service.queue_stats(plan_id)), 200


# ── Claiming ──────────────────────────────────────────────────────────────────


@demand_queue_bp.route("/next", methods=["POST"])
def claim_next():
    """Claim the highest-priority pending item.

    Body: {strategic_plan_id, entity_type?}
    Returns {"item": {...}} or {"item": null} when nothing is pending.
    """
    data, err = _body_or_error()
    if err:
        return err
    try:
        plan_id = parse_int(data.get("strategic_plan_id"), "strategic_plan_id", minimum=1)
    except ValueError as exc:
        return api_error(E.VALIDATION_REQUIRED, str(exc))
    entity_type = data.get("entity_type") or None
    if entity_type and entity_type not in QUEUE_ENTITY_TYPES:
        return api_error(
            E.VALIDATION_INVALID,
            f"entity_type must be one of: {', '.join(sorted(QUEUE_ENTITY_TYPES))}",
        )
    item = demand_queue_service.claim_next(plan_id, entity_type)
    return jsonify({"item": item.to_dict() if item else None}), 200


@demand_queue_bp.route("/<int:item_id>/claim", methods=["POST"])
def claim_item(item_id):
    return jsonify(demand_queue_service.claim_item(item_id).to_dict()), 200


@demand_queue_bp.route("/<int:item_id>/release", methods=["POST"])
def release_item(item_id):
    return jsonify(demand_queue_service.release_item(item_id).to_dict()), 200


# ── Review ────────────────────────────────────────────────────────────────────


@demand_queue_bp.route("/review", methods=["GET"])
def review_items():
    plan_id, err = _plan_id_arg()
    if err:
        return err
    items = demand_queue_service.list_review_items(plan_id)
    return jsonify({"items": [i.to_dict() for i in items], "count": len(items)}), 200


@demand_queue_bp.route("/<int:item_id>/review", methods=["POST"])
def decide_review(item_id):
    """Body: {decision: accepted|rejected, reason?}"""
    data, err = _body_or_error()
    if err:
        return err
    decision = data.get("decision")
    if decision not in ("accepted", "rejected"):
        return api_error(E.VALIDATION_INVALID, "decision must be 'accepted' or 'rejected'")
    reason = (data.get("reason") or "").strip()
    if decision == "rejected" and not reason:
        return api_error(E.VALIDATION_REQUIRED, "reason is required when rejecting")
    item = demand_queue_service.decide_review(
        item_id, decision, reason=reason, reviewer=current_actor(),
    )
    return jsonify(item.to_dict()), 200


@demand_queue_bp.route("/rejections", methods=["GET"])
def rejections():
    plan_id, err = _plan_id_arg()
    if err:
        return err
    try:
        recent = parse_int(request.args.get("recent"), "recent", default=20, minimum=1, maximum=100)
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))
    return jsonify(demand_queue_service.rejection_summary(plan_id, recent=recent)), 200


# ── Batch generation ──────────────────────────────────────────────────────────


@demand_queue_bp.route("/batch", methods=["POST"])
@_ai_batch_limit
def run_batch():
    """Generate entities for a slice of the queue without an operator.

    Body: {strategic_plan_id, entity_type?, batch_size? (1-20, default 5),
           auto_approve? (default false), min_quality_score? (default 70)}
    """
    data, err = _body_or_error()
    if err:
        return err
    try:
        plan_id = parse_int(data.get("strategic_plan_id"), "strategic_plan_id", minimum=1)
        batch_size = parse_int(data.get("batch_size"), "batch_size",
                               default=batch_generation_service.DEFAULT_BATCH_SIZE)
        min_score = parse_int(data.get("min_quality_score"), "min_quality_score", default=70)
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))
    entity_type = data.get("entity_type") or None
    if entity_type and entity_type not in QUEUE_ENTITY_TYPES:
        return api_error(
            E.VALIDATION_INVALID,
            f"entity_type must be one of: {', '.join(sorted(QUEUE_ENTITY_TYPES))}",
        )
    result = batch_generation_service.run_batch(
        plan_id,
        entity_type=entity_type,
        batch_size=batch_size,
        auto_approve=bool(data.get("auto_approve", False)),
        min_quality_score=min_score,
        user=current_actor(),
    )
    return jsonify(result), 200
