"""Persistence functions for jobs, project files and deployments.

Job status changes that can race (claiming) go through a single
``UPDATE ... WHERE status = 'pending'`` so the database decides the winner.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Sequence
from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session
from app.core.errors import JobNotFoundError
from app.core.workflow import JobStatus
from app.db.models import Deployment, GenerationJob, ProjectFileRow
from app.pipeline.contracts import ProjectFile

log = logging.getLogger(__name__)

# Failed deployment logs are stored on the job for display, not for replay.
MAX_STORED_LOG_CHARS = 1000


@dataclass(frozen=True)
class ClaimOutcome:
    status: str  # processed | not-found | already-claimed | empty
    job_id: Optional[str] = None
    job_status: Optional[str] = None

    @property
    def claimed(self) -> bool:
        return self.status == "processed"


def create_job(
    db: Session,
    user_id: str,
    prompt: str,
    project_id: Optional[str] = None,
    context: Optional[dict] = None,
) -> GenerationJob:
    job = GenerationJob(user_id=user_id, prompt=prompt, project_id=project_id, context=context or {})
    db.add(job)
    db.commit()
    db.refresh(job)
    log.info("Created generation job for user %s", user_id, extra={"job_id": job.id, "stage": "-"})
    return job


def get_job(db: Session, job_id: str) -> Optional[GenerationJob]:
    return db.get(GenerationJob, job_id, populate_existing=True)


def _try_claim(db: Session, job_id: str, now: datetime) -> bool:
    stmt = (
        update(GenerationJob)
        .where(GenerationJob.id == job_id, GenerationJob.status == JobStatus.PENDING.value)
        .values(status=JobStatus.PROCESSING.value, started_at=now)
        .execution_options(synchronize_session=False)
    )
    claimed = db.execute(stmt).rowcount == 1
    db.commit()
    return claimed


def claim_job(db: Session, job_id: Optional[str] = None, now: Optional[datetime] = None) -> ClaimOutcome:
    """Move one job from pending to processing.

    With an id, that job is claimed; without one, the oldest pending job is.
    Losing a race is reported as ``already-claimed`` for an explicit id and
    retried against the next pending job otherwise.
    """
    now = now or datetime.utcnow()
    if job_id is not None:
        job = get_job(db, job_id)
        if job is None:
            return ClaimOutcome("not-found", job_id)
        if _try_claim(db, job_id, now):
            log.info("Claimed job", extra={"job_id": job_id, "stage": "-"})
            return ClaimOutcome("processed", job_id, JobStatus.PROCESSING.value)
        current = get_job(db, job_id)
        return ClaimOutcome("already-claimed", job_id, current.status if current else None)

    while True:
        candidate = db.execute(
            select(GenerationJob.id)
            .where(GenerationJob.status == JobStatus.PENDING.value)
            .order_by(GenerationJob.created_at.asc(), GenerationJob.id.asc())
            .limit(1)
        ).scalar_one_or_none()
        if candidate is None:
            return ClaimOutcome("empty")
        if _try_claim(db, candidate, now):
            log.info("Claimed oldest pending job", extra={"job_id": candidate, "stage": "-"})
            return ClaimOutcome("processed", candidate, JobStatus.PROCESSING.value)
        log.info("Lost claim race, trying next pending job", extra={"job_id": candidate, "stage": "-"})


def finish_job(
    db: Session,
    job_id: str,
    status: JobStatus,
    result: Optional[dict] = None,
    error: Optional[str] = None,
    now: Optional[datetime] = None,
) -> bool:
    """Move a processing job to a terminal status.

    Compare-and-set on ``status='processing'``: a job that was already failed
    (or finished) elsewhere is left untouched and False is returned.
    """
    values = {"status": status.value, "completed_at": now or datetime.utcnow()}
    if result is not None:
        values["result"] = result
    if error is not None:
        values["error"] = error
    stmt = (
        update(GenerationJob)
        .where(GenerationJob.id == job_id, GenerationJob.status == JobStatus.PROCESSING.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    finished = db.execute(stmt).rowcount == 1
    db.commit()
    return finished


def merge_job_result(db: Session, job: GenerationJob, updates: dict) -> None:
    job.result = {**(job.result or {}), **updates}
    db.commit()


def list_pending_jobs(db: Session, limit: int = 10) -> list[GenerationJob]:
    return list(db.execute(
        select(GenerationJob)
        .where(GenerationJob.status == JobStatus.PENDING.value)
        .order_by(GenerationJob.created_at.asc())
        .limit(limit)
    ).scalars())


def mark_job_failed(
    db: Session,
    job_id: str,
    error: Optional[str] = None,
    logs: Optional[str] = None,
    deployment_error: Optional[str] = None,
    now: Optional[datetime] = None,
) -> GenerationJob:
    """Record a failure reported after the fact, whatever the job's current status."""
    job = get_job(db, job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    now = now or datetime.utcnow()
    previous = job.status
    job.result = {
        **(job.result or {}),
        "status": "background_deployment_failed",
        "deploymentError": deployment_error or error,
        "deploymentLogs": (logs or "")[:MAX_STORED_LOG_CHARS],
        "failedAt": now.isoformat(),
    }
    job.error = error or deployment_error or "Deployment failed"
    job.status = JobStatus.FAILED.value
    job.completed_at = now
    db.commit()
    log.warning("Job marked failed (was %s): %s", previous, job.error, extra={"job_id": job_id, "stage": "deploy"})
    return job


def reap_expired_jobs(db: Session, now: Optional[datetime] = None) -> int:
    now = now or datetime.utcnow()
    deleted = db.execute(
        delete(GenerationJob).where(GenerationJob.expires_at < now).execution_options(synchronize_session=False)
    ).rowcount
    db.commit()
    if deleted:
        log.info("Deleted %d expired jobs", deleted, extra={"job_id": "-", "stage": "-"})
    return deleted


def get_project_files(db: Session, project_id: str) -> list[ProjectFile]:
    rows = db.execute(
        select(ProjectFileRow).where(ProjectFileRow.project_id == project_id).order_by(ProjectFileRow.filename)
    ).scalars()
    return [ProjectFile(filename=r.filename, content=r.content) for r in rows]


def save_project_files(
    db: Session,
    project_id: str,
    files: Sequence[ProjectFile],
    deleted: Iterable[str] = (),
) -> None:
    """Upsert files by filename; rows for ``deleted`` filenames are removed."""
    existing = {
        r.filename: r
        for r in db.execute(select(ProjectFileRow).where(ProjectFileRow.project_id == project_id)).scalars()
    }
    now = datetime.utcnow()
    for f in files:
        row = existing.get(f.filename)
        if row is None:
            db.add(ProjectFileRow(project_id=project_id, filename=f.filename, content=f.content, updated_at=now))
        elif row.content != f.content:
            row.content = f.content
            row.updated_at = now
    for filename in deleted:
        row = existing.get(filename)
        if row is not None:
            db.delete(row)
    db.commit()


def record_deployment(db: Session, record, job_id: Optional[str] = None) -> Deployment:
    row = Deployment(
        project_id=record.project_id,
        job_id=job_id,
        platform=record.platform,
        deployment_url=record.deployment_url,
        status=str(record.status.value),
        deployment_error=record.deployment_error,
        logs=record.logs,
        contract_addresses=record.contract_addresses,
    )
    db.add(row)
    db.commit()
    return row


def latest_deployment(db: Session, project_id: str) -> Optional[Deployment]:
    stmt = (
        select(Deployment)
        .where(Deployment.project_id == project_id)
        .order_by(Deployment.created_at.desc(), Deployment.id.desc())
        .limit(1)
    )
    return db.execute(stmt).scalars().first()


def update_deployment_url(db: Session, project_id: str, url: str) -> bool:
    """Point the project's latest deployment row at a new preview URL."""
    row = latest_deployment(db, project_id)
    if row is None:
        return False
    row.deployment_url = url
    db.commit()
    return True
