from flask import Blueprint, jsonify, request, g
import logging
from services.auth import auth
from services.database import DatabaseError
from services.exceptions import PricingGridError
from services.grid_resolver import create_grid, create_rule, diagnose_grid_resolution, resolve_grid_for_product
from services.pricing_grids import get_price_from_grid, parse_grid_csv, parse_grid_workbook


pricing_grids_bp = Blueprint('pricing_grids', __name__, url_prefix='/pricing-grids')

logger = logging.getLogger(__name__)


def _query():
    data = request.get_json(silent=True) or {}
    if not data.get("product_type"):
        raise PricingGridError("product_type is required")
    return data


@pricing_grids_bp.route('/resolve', methods=['POST'])
@auth.login_required
def resolve():
    try:
        data = _query()
        resolution = resolve_grid_for_product(
            g.db, data["product_type"], data.get("system_type"), data.get("price_group"), auth.current_user()
        )
    except PricingGridError as e:
        return jsonify({"error": e.message}), 400
    except DatabaseError as e:
        logger.error(f"Grid resolution failed: {e}")
        return jsonify({"error": str(e)}), 500

    if resolution is None:
        return jsonify({"matched": False})
    return jsonify({"matched": True, **resolution.to_dict()})


@pricing_grids_bp.route('/price', methods=['POST'])
@auth.login_required
def price():
    try:
        data = _query()
        if data.get("width") is None or data.get("drop") is None:
            raise PricingGridError("width and drop are required")
        resolution = resolve_grid_for_product(
            g.db, data["product_type"], data.get("system_type"), data.get("price_group"), auth.current_user()
        )
    except PricingGridError as e:
        return jsonify({"error": e.message}), 400
    except DatabaseError as e:
        logger.error(f"Grid pricing failed: {e}")
        return jsonify({"error": str(e)}), 500

    if resolution is None:
        return jsonify({"matched": False, "price": None})

    amount = get_price_from_grid(resolution.grid_data, data["width"], data["drop"], data.get("unit", "cm"))
    return jsonify({
        "matched": True,
        "grid_id": resolution.grid_id,
        "grid_code": resolution.grid_code,
        "price": amount,
    })


@pricing_grids_bp.route('/diagnose', methods=['POST'])
@auth.login_required
def diagnose():
    try:
        data = _query()
        report = diagnose_grid_resolution(
            g.db, data["product_type"], data.get("price_group"), data.get("system_type"), auth.current_user()
        )
    except PricingGridError as e:
        return jsonify({"error": e.message}), 400
    except DatabaseError as e:
        logger.error(f"Grid diagnosis failed: {e}")
        return jsonify({"error": str(e)}), 500
    return jsonify(report)


@pricing_grids_bp.route('/upload', methods=['POST'])
@auth.login_required
def upload_grid():
    """Grid from a CSV/XLSX file, optionally with a rule routing products to it."""
    upload = request.files.get("file")
    form = request.form
    if upload is None or not upload.filename:
        return jsonify({"error": "No grid file uploaded"}), 400
    if not form.get("name"):
        return jsonify({"error": "name is required"}), 400

    try:
        if upload.filename.lower().endswith(".xlsx"):
            grid = parse_grid_workbook(upload)
        else:
            grid = parse_grid_csv(upload.read().decode("utf-8-sig", errors="replace"))

        grid_id = create_grid(
            g.db,
            auth.current_user(),
            form["name"],
            grid.to_dict(),
            grid_code=form.get("grid_code"),
            product_type=form.get("product_type"),
            price_group=form.get("price_group"),
        )
        rule_id = None
        if form.get("product_type"):
            rule_id = create_rule(
                g.db,
                auth.current_user(),
                grid_id,
                product_type=form.get("product_type"),
                system_type=form.get("system_type"),
                price_group=form.get("price_group"),
                priority=int(form.get("priority") or 0),
            )
    except PricingGridError as e:
        return jsonify({"error": e.message}), 400
    except ValueError:
        return jsonify({"error": "priority must be a whole number"}), 400
    except DatabaseError as e:
        logger.error(f"Saving uploaded grid failed: {e}")
        return jsonify({"error": str(e)}), 500

    logger.info(f"Stored grid {grid_id} ({len(grid.width_columns)}x{len(grid.drop_rows)})")
    return jsonify({
        "grid_id": grid_id,
        "rule_id": rule_id,
        "widths": len(grid.width_columns),
        "drops": len(grid.drop_rows),
        "unit": grid.unit,
    }), 201
