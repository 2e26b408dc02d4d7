import json
from flask import g


def create_job(job_id, db=None):
    if db is None:
        db = g.db
    db.execute_query(
        "INSERT INTO jobs (id, status, pct, log) VALUES (?, ?, ?, ?)",
        (job_id, "running", 0, json.dumps([])),
    )
    db.commit()


def update_job(job_id, pct=None, message=None, error=None, result=None, done=False, paused=False, db=None):
    """
    Update job progress and status.

    Args:
        job_id: Job identifier
        pct: Progress percentage (0-100); keeps the stored value when None
        message: Log message to append
        error: Error message if job failed
        result: Result data (will be JSON serialized)
        done: Whether job is completed successfully
        paused: Whether the job stopped at a resumable point
    """

    if db is None:
        db = g.db
    row = db.execute_query("SELECT log, pct, result FROM jobs WHERE id=?", (job_id,)).fetchone()
    logs = json.loads(row["log"]) if row else []

    if message:
        logs.append(message)

    if error:
        status = "failed"
    elif done:
        status = "completed"
    elif paused:
        status = "paused"
    else:
        status = "running"

    if pct is None:
        pct = row["pct"] if row else 0

    # Keep the last stored result unless a new one is given
    if result is not None:
        result_json = json.dumps(result)
    else:
        result_json = row["result"] if row else None

    db.execute_query(
        "UPDATE jobs SET pct=?, log=?, error=?, result=?, status=?, updated_at=CURRENT_TIMESTAMP WHERE id=?",
        (pct or 0, json.dumps(logs), error, result_json, status, job_id),
    )
    db.commit()


def get_job(job_id, db=None):
    """
    Retrieve job status and data.

    Returns dict with keys: pct, log, done, error, result, status
    """
    if db is None:
        db = g.db
    row = db.execute_query("SELECT * FROM jobs WHERE id=?", (job_id,)).fetchone()
    if not row:
        return None

    result = None
    if row["result"]:
        try:
            result = json.loads(row["result"])
        except (json.JSONDecodeError, TypeError):
            result = row["result"]  # fallback to raw value

    return {
        "pct": row["pct"] or 0,
        "log": json.loads(row["log"] or "[]"),
        "done": row["status"] in ("completed", "failed", "aborted"),
        "error": row["error"],
        "result": result,
        "status": row["status"],
    }


def abort_stale_jobs(db):
    """Mark jobs a previous process left running or paused as aborted."""
    db.execute_query(
        "UPDATE jobs SET status='aborted' WHERE status IN ('running', 'paused')"
    )
    db.commit()

