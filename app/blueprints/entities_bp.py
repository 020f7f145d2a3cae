"""
Innovation entity blueprint.

One set of routes serves every derived entity type
(challenge, pilot, campaign, event, program, solution):

    GET/POST            /api/v1/entities/<entity_type>
    GET/PUT/DELETE      /api/v1/entities/<entity_type>/<entity_id>
    POST                /api/v1/entities/<entity_type>/<entity_id>/restore

DELETE is a soft delete; the entity stops counting towards plan coverage.
"""

import logging

from flask import Blueprint, jsonify, request

from app.blueprints import json_body, paginate_query, register_error_handlers
from app.services import entity_service
from app.utils.errors import E, api_error
from app.utils.helpers import parse_int

logger = logging.getLogger(__name__)

entities_bp = Blueprint("entities", __name__, url_prefix="/api/v1/entities")
register_error_handlers(entities_bp)


@entities_bp.route("/<entity_type>", methods=["GET"])
def list_entities(entity_type):
    """Query params: plan_id?, include_deleted?, limit?, offset?"""
    plan_id = None
    if request.args.get("plan_id"):
        try:
            plan_id = parse_int(request.args.get("plan_id"), "plan_id", minimum=1)
        except ValueError as exc:
            return api_error(E.VALIDATION_INVALID, str(exc))
    include_deleted = request.args.get("include_deleted", "").lower() in ("1", "true", "yes")
    query = entity_service.list_entities(entity_type, plan_id=plan_id, include_deleted=include_deleted)
    entities, total = paginate_query(query)
    return jsonify({"items": [e.to_dict() for e in entities], "total": total}), 200


@entities_bp.route("/<entity_type>", methods=["POST"])
def create_entity(entity_type):
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    if not (data.get("title_en") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "title_en is required")
    entity = entity_service.create_entity(entity_type, data)
    return jsonify(entity.to_dict()), 201


@entities_bp.route("/<entity_type>/<int:entity_id>", methods=["GET"])
def get_entity(entity_type, entity_id):
    return jsonify(entity_service.get_entity(entity_type, entity_id).to_dict()), 200


@entities_bp.route("/<entity_type>/<int:entity_id>", methods=["PUT"])
def update_entity(entity_type, entity_id):
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    entity = entity_service.update_entity(entity_type, entity_id, data)
    return jsonify(entity.to_dict()), 200


@entities_bp.route("/<entity_type>/<int:entity_id>", methods=["DELETE"])
def delete_entity(entity_type, entity_id):
    entity_service.delete_entity(entity_type, entity_id)
    return jsonify({"message": f"{entity_type} deleted"}), 200


@entities_bp.route("/<entity_type>/<int:entity_id>/restore", methods=["POST"])
def restore_entity(entity_type, entity_id):
    entity = entity_service.restore_entity(entity_type, entity_id)
    return jsonify(entity.to_dict()), 200
