from flask import Blueprint, jsonify, request, current_app, g, send_file
import io
import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Optional
from services.auth import auth
from services.batch_import import ACTIVE_STATES, BatchImportProcessor, ImportStatus, PauseToken
from services.database import DatabaseManager, create_db_manager
from services.exceptions import ImportStateError, ImportValidationError
from services.inventory_import import (
    export_results_workbook,
    items_from_csv,
    make_sku_generator,
    make_upsert_processor,
    row_to_item,
)
from services.job_service import create_job, get_job, update_job


inventory_import_bp = Blueprint('inventory_import', __name__, url_prefix='/inventory/import')

logger = logging.getLogger(__name__)


@dataclass
class ImportJob:
    processor: BatchImportProcessor
    db: DatabaseManager
    thread: Optional[threading.Thread] = field(default=None)


# Live imports of this process, by job id
_imports = {}
_imports_lock = threading.Lock()


def get_import(job_id) -> Optional[ImportJob]:
    with _imports_lock:
        return _imports.get(job_id)


def _report_progress(job_id, db):
    """Mirror processor progress onto the job row."""
    def on_progress(progress, status):
        job = get_import(job_id)
        processor = job.processor if job is not None else None
        error = processor.error if processor is not None and status == ImportStatus.ERROR else None
        update_job(
            job_id,
            pct=progress.percentage,
            message=f"{status.value}: {progress.summary()}",
            error=error,
            result={**progress.to_dict(), "import_status": status.value, "summary": progress.summary()},
            done=status == ImportStatus.COMPLETED,
            paused=status == ImportStatus.PAUSED,
            db=db,
        )
    return on_progress


def _run_in_background(job_id, target, *args):
    def runner():
        try:
            target(*args)
        except ImportStateError as e:
            logger.warning(f"Import {job_id}: {e.message}")

    thread = threading.Thread(name=f"inventory-import-{job_id[:8]}", target=runner, daemon=True)
    get_import(job_id).thread = thread
    thread.start()
    return thread


def _cell(value):
    if value is None:
        return ""
    return json.dumps(value) if isinstance(value, list) else str(value)


def _read_items():
    """Items from a multipart CSV upload or a JSON body with an "items" list."""
    upload = request.files.get("file")
    if upload is not None:
        text = upload.read().decode("utf-8-sig", errors="replace")
        mapping = request.form.get("mapping")
        return items_from_csv(text, json.loads(mapping) if mapping else None)

    data = request.get_json(silent=True) or {}
    items = data.get("items")
    if not isinstance(items, list) or not items:
        raise ImportValidationError("Upload a CSV file or send a non-empty items list.")
    keys = sorted({k for item in items for k in item})
    identity = {k: k for k in keys}
    return [row_to_item(keys, [_cell(item.get(k)) for k in keys], identity) for item in items]


def _state_payload(job_id, job_record=None):
    job = get_import(job_id)
    data = {"job_id": job_id}
    if job_record is not None:
        data.update({
            "pct": job_record["pct"],
            "log": job_record["log"],
            "done": job_record["done"],
            "error": job_record["error"],
            "job_status": job_record["status"],
        })
    if job is not None:
        progress = job.processor.progress
        data.update({
            "status": job.processor.status.value,
            "can_resume": job.processor.can_resume,
            "progress": progress.to_dict(),
            "summary": progress.summary(),
        })
    elif job_record is not None and isinstance(job_record.get("result"), dict):
        result = job_record["result"]
        data.update({
            "status": result.get("import_status"),
            "can_resume": False,
            "summary": result.get("summary"),
        })
    return data


@inventory_import_bp.route('/start', methods=['POST'])
@auth.login_required
def start_import():
    try:
        items = _read_items()
    except ImportValidationError as e:
        return jsonify({"error": e.message}), 400
    except json.JSONDecodeError:
        return jsonify({"error": "mapping must be a JSON object"}), 400

    job_id = str(uuid.uuid4())
    create_job(job_id)

    # The job keeps its own connection; it outlives this request and may be resumed later
    db = create_db_manager(current_app.config["database"])
    prefix = current_app.config.get("inventory_import", {}).get("sku_prefix", "INV")
    processor = BatchImportProcessor(
        process_chunk=make_upsert_processor(db, auth.current_user()),
        generate_sku=make_sku_generator(prefix),
        batch_size=current_app.config.get("IMPORT_BATCH_SIZE", 100),
        on_progress=_report_progress(job_id, db),
        sku_workers=current_app.config.get("SKU_WORKERS", 8),
        pause_token=PauseToken(),
    )
    with _imports_lock:
        _imports[job_id] = ImportJob(processor=processor, db=db)

    logger.info(f"Starting inventory import {job_id} with {len(items)} rows")
    _run_in_background(job_id, processor.start_import, items)
    return jsonify({"job_id": job_id, "total": len(items)}), 202


@inventory_import_bp.route('/<job_id>/pause', methods=['POST'])
@auth.login_required
def pause_import(job_id):
    job = get_import(job_id)
    if job is None:
        return jsonify({"error": f"Unknown import {job_id}"}), 404
    if job.processor.status not in ACTIVE_STATES:
        return jsonify({"error": f"Import is {job.processor.status.value}, nothing to pause"}), 400
    job.processor.pause()
    return jsonify(_state_payload(job_id)), 202


@inventory_import_bp.route('/<job_id>/resume', methods=['POST'])
@auth.login_required
def resume_import(job_id):
    job = get_import(job_id)
    if job is None:
        return jsonify({"error": f"Unknown import {job_id}"}), 404
    if not job.processor.can_resume:
        return jsonify({"error": f"Import is {job.processor.status.value} and cannot be resumed"}), 400
    _run_in_background(job_id, job.processor.resume)
    return jsonify(_state_payload(job_id)), 202


@inventory_import_bp.route('/<job_id>/reset', methods=['POST'])
@auth.login_required
def reset_import(job_id):
    job = get_import(job_id)
    if job is None:
        return jsonify({"error": f"Unknown import {job_id}"}), 404
    try:
        job.processor.reset()
    except ImportStateError as e:
        return jsonify({"error": e.message}), 400

    with _imports_lock:
        _imports.pop(job_id, None)
    job.db.close()
    return jsonify({"job_id": job_id, "status": ImportStatus.IDLE.value})


@inventory_import_bp.route('/<job_id>/status', methods=['GET'])
@auth.login_required
def import_status(job_id):
    job_record = get_job(job_id, db=g.db)
    if job_record is None and get_import(job_id) is None:
        return jsonify({"error": f"Unknown import {job_id}"}), 404

    resp = jsonify(_state_payload(job_id, job_record))
    resp.headers["Cache-Control"] = "no-store"
    return resp


@inventory_import_bp.route('/<job_id>/results.xlsx', methods=['GET'])
@auth.login_required
def download_results(job_id):
    job = get_import(job_id)
    if job is None:
        return jsonify({"error": f"No results held for import {job_id}"}), 404

    wb = export_results_workbook(job.processor.results)
    buffer = io.BytesIO()
    wb.save(buffer)
    buffer.seek(0)
    return send_file(
        buffer,
        as_attachment=True,
        download_name=f"import_results_{job_id[:8]}.xlsx",
        mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )
