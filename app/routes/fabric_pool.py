from flask import Blueprint, jsonify, request, g
import logging
from services.auth import auth
from services.database import DatabaseError
from services.exceptions import FabricPoolError, ProjectNotFoundError
from services.fabric_pool import (
    calculate_fabric_needs,
    create_project,
    get_project_pool,
    remove_surface_from_pool,
    summarise_pool,
    update_pool,
)
from services.helper import generate_unique_id


fabric_pool_bp = Blueprint('fabric_pool', __name__, url_prefix='/projects')

logger = logging.getLogger(__name__)


def _pool_error(e: FabricPoolError):
    status = 404 if isinstance(e, ProjectNotFoundError) else 400
    return jsonify({"error": e.message}), status


def _pool_payload(pools):
    return {
        "fabric_pool": {fid: entry.to_dict() for fid, entry in pools.items()},
        "summary": summarise_pool(pools),
    }


@fabric_pool_bp.route('', methods=['POST'])
@auth.login_required
def create_project_route():
    data = request.get_json(silent=True) or {}
    project_id = str(data.get("id") or generate_unique_id())
    try:
        create_project(g.db, project_id, data.get("name", ""))
    except DatabaseError as e:
        logger.error(f"Could not create project {project_id}: {e}")
        return jsonify({"error": str(e)}), 500
    return jsonify({"id": project_id}), 201


@fabric_pool_bp.route('/<project_id>/fabric-pool', methods=['GET'])
@auth.login_required
def get_fabric_pool(project_id):
    try:
        pools = get_project_pool(g.db, project_id)
    except FabricPoolError as e:
        return _pool_error(e)
    except DatabaseError as e:
        logger.error(f"Reading fabric pool of project {project_id} failed: {e}")
        return jsonify({"error": str(e)}), 500
    return jsonify(_pool_payload(pools))


@fabric_pool_bp.route('/<project_id>/fabric-pool/needs', methods=['POST'])
@auth.login_required
def fabric_needs(project_id):
    data = request.get_json(silent=True) or {}
    if not data.get("fabric_id"):
        return jsonify({"error": "fabric_id is required"}), 400

    try:
        pools = get_project_pool(g.db, project_id)
        needs = calculate_fabric_needs(
            data["fabric_id"],
            data.get("required_amount", 0),
            pools,
            cost_per_unit=data.get("cost_per_unit", 0),
        )
    except FabricPoolError as e:
        return _pool_error(e)
    except DatabaseError as e:
        logger.error(f"Fabric needs for project {project_id} failed: {e}")
        return jsonify({"error": str(e)}), 500
    return jsonify(needs.to_dict())


@fabric_pool_bp.route('/<project_id>/fabric-pool/surfaces/<surface_id>', methods=['PUT'])
@auth.login_required
def save_surface_usage(project_id, surface_id):
    data = request.get_json(silent=True) or {}
    if not data.get("fabric_id"):
        return jsonify({"error": "fabric_id is required"}), 400

    try:
        entry = update_pool(
            g.db,
            project_id,
            data["fabric_id"],
            surface_id,
            surface_name=data.get("surface_name", ""),
            amount_ordered=data.get("amount_ordered", 0),
            amount_used=data.get("amount_used", 0),
            leftover_generated=data.get("leftover_generated", 0),
            used_from_pool=data.get("used_from_pool", 0),
            orientation=data.get("orientation", "vertical"),
            widths_ordered=data.get("widths_ordered", 0),
            fabric_name=data.get("fabric_name"),
            fabric_width=data.get("fabric_width"),
            unit=data.get("unit"),
            cost_per_unit=data.get("cost_per_unit"),
        )
    except FabricPoolError as e:
        return _pool_error(e)
    except DatabaseError as e:
        logger.error(f"Saving surface {surface_id} on project {project_id} failed: {e}")
        return jsonify({"error": str(e)}), 500
    return jsonify(entry.to_dict())


@fabric_pool_bp.route('/<project_id>/fabric-pool/surfaces/<surface_id>', methods=['DELETE'])
@auth.login_required
def delete_surface_usage(project_id, surface_id):
    try:
        pools = remove_surface_from_pool(g.db, project_id, surface_id)
    except FabricPoolError as e:
        return _pool_error(e)
    except DatabaseError as e:
        logger.error(f"Removing surface {surface_id} from project {project_id} failed: {e}")
        return jsonify({"error": str(e)}), 500
    return jsonify(_pool_payload(pools))
