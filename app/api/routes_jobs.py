from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from app.api.auth import require_orchestrator_token, require_worker_token
from app.core.errors import JobNotFoundError
from app.db.session import get_db
from app.db import repository as repo
from app.schemas.jobs import (
    FailRequest,
    FailResponse,
    JobCreateRequest,
    JobResponse,
    PendingJob,
    PendingJobsResponse,
    ProcessRequest,
    ProcessResponse,
)
from app.tasks.jobs import execute_generation_job

router = APIRouter(prefix="/jobs")


@router.post("", response_model=JobResponse)
def create_job(req: JobCreateRequest, db: Session = Depends(get_db)):
    job = repo.create_job(db, user_id=req.user_id, prompt=req.prompt, project_id=req.project_id, context=req.context)
    return JobResponse.model_validate(job)


@router.post("/process", response_model=ProcessResponse, dependencies=[Depends(require_worker_token)])
def process_job(req: ProcessRequest | None = None, db: Session = Depends(get_db)):
    outcome = repo.claim_job(db, req.job_id if req else None)
    if outcome.status == "not-found":
        raise HTTPException(status_code=404, detail="Job not found")
    if outcome.status == "empty":
        return ProcessResponse(success=True, message="No pending jobs")
    if outcome.status == "already-claimed":
        return ProcessResponse(success=False, job_id=outcome.job_id, status=outcome.job_status,
                               message=f"Job is already {outcome.job_status}")

    execute_generation_job.delay(outcome.job_id)
    return ProcessResponse(success=True, job_id=outcome.job_id, status=outcome.job_status,
                           message="Job processing started")


@router.get("/process", response_model=PendingJobsResponse, dependencies=[Depends(require_worker_token)])
def pending_jobs(db: Session = Depends(get_db)):
    jobs = repo.list_pending_jobs(db, limit=10)
    return PendingJobsResponse(
        pending_count=len(jobs),
        jobs=[PendingJob.model_validate(j) for j in jobs],
    )


@router.get("/{job_id}", response_model=JobResponse)
def get_job(job_id: str, db: Session = Depends(get_db)):
    job = repo.get_job(db, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobResponse.model_validate(job)


@router.post("/{job_id}/fail", response_model=FailResponse, dependencies=[Depends(require_orchestrator_token)])
def fail_job(job_id: str, req: FailRequest, db: Session = Depends(get_db)):
    try:
        repo.mark_job_failed(db, job_id, error=req.error, logs=req.logs, deployment_error=req.deployment_error)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    return FailResponse(success=True, message="Job marked as failed", job_id=job_id)
