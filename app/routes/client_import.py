from flask import Blueprint, jsonify, request, current_app
import logging
import os
from services.auth import auth
from services.client_library_import import import_client_library
from services.exceptions import DataProcessingError, ImportValidationError
from services.functions_client import FunctionsClient


client_import_bp = Blueprint('client_import', __name__, url_prefix='/clients')

logger = logging.getLogger(__name__)


def build_functions_client():
    cfg = current_app.config.get("functions", {})
    return FunctionsClient(
        base_url=cfg.get("base_url", ""),
        api_key=os.getenv("FUNCTIONS_API_KEY", ""),
        timeout=cfg.get("timeout", 60),
    )


@client_import_bp.route('/import', methods=['POST'])
@auth.login_required
def import_clients():
    upload = request.files.get("file")
    fmt = request.form.get("format", "")
    if upload is None:
        return jsonify({"error": "No CSV file uploaded"}), 400

    csv_text = upload.read().decode("utf-8-sig", errors="replace")
    try:
        summary = import_client_library(
            build_functions_client(),
            csv_text,
            fmt,
            user_id=auth.current_user(),
            chunk_rows=current_app.config.get("CLIENT_IMPORT_CHUNK_ROWS", 200),
            single_call_max_rows=current_app.config.get("CLIENT_IMPORT_SINGLE_CALL_MAX_ROWS", 100),
        )
    except ImportValidationError as e:
        return jsonify({"error": e.message}), 400
    except DataProcessingError as e:
        logger.error(f"Client library import failed: {e.message}")
        return jsonify({"error": e.message}), 502

    return jsonify(summary)
