from services.job_service import abort_stale_jobs, create_job, get_job, update_job


def test_job_lifecycle(get_db_manager):
    db = get_db_manager
    create_job("job-1", db=db)

    update_job("job-1", pct=40, message="processing: 100 created", result={"current": 100}, db=db)
    job = get_job("job-1", db=db)
    assert job["status"] == "running"
    assert job["pct"] == 40
    assert job["result"] == {"current": 100}
    assert not job["done"]

    # a log-only update keeps pct and result
    update_job("job-1", message="still going", db=db)
    job = get_job("job-1", db=db)
    assert job["pct"] == 40
    assert job["result"] == {"current": 100}
    assert job["log"] == ["processing: 100 created", "still going"]

    update_job("job-1", pct=100, message="done", done=True, db=db)
    job = get_job("job-1", db=db)
    assert job["status"] == "completed"
    assert job["done"]


def test_paused_and_failed_status(get_db_manager):
    db = get_db_manager
    create_job("job-2", db=db)

    update_job("job-2", pct=50, paused=True, db=db)
    assert get_job("job-2", db=db)["status"] == "paused"

    update_job("job-2", error="rpc down", db=db)
    job = get_job("job-2", db=db)
    assert job["status"] == "failed"
    assert job["error"] == "rpc down"
    assert job["done"]


def test_unknown_job(get_db_manager):
    assert get_job("nope", db=get_db_manager) is None


def test_stale_jobs_are_aborted(get_db_manager):
    db = get_db_manager
    for job_id in ("running", "paused", "finished"):
        create_job(job_id, db=db)
    update_job("paused", paused=True, db=db)
    update_job("finished", done=True, db=db)

    abort_stale_jobs(db)

    assert get_job("running", db=db)["status"] == "aborted"
    assert get_job("paused", db=db)["status"] == "aborted"
    assert get_job("finished", db=db)["status"] == "completed"
