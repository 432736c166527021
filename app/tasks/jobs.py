from __future__ import annotations
import logging
from typing import Optional
from sqlalchemy.orm import Session
from app.tasks.celery_app import celery_app
from app.db.session import SessionLocal
from app.db import repository as repo
from app.core.anthropic import AnthropicClient
from app.core.build_host import BuildHostClient
from app.core.commands import RemoteCommandExecutor
from app.core.engine import WorkflowEngine
from app.core.errors import StageContractError
from app.core.workflow import JobStatus
from app.deploy.orchestrator import DeploymentOrchestrator

log = logging.getLogger(__name__)

_orchestrator: Optional[DeploymentOrchestrator] = None


def get_orchestrator() -> DeploymentOrchestrator:
    """One orchestrator (and preview store) per worker process."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = DeploymentOrchestrator(BuildHostClient.from_settings())
    return _orchestrator


def build_engine(db: Session, job_id: str, project_id: str) -> WorkflowEngine:
    orchestrator = get_orchestrator()
    return WorkflowEngine(
        db=db,
        job_id=job_id,
        llm=AnthropicClient.from_settings(),
        orchestrator=orchestrator,
        command_runner=RemoteCommandExecutor(orchestrator.client, project_id),
    )


def run_generation_job(db: Session, job_id: str, engine_factory=build_engine) -> None:
    job = repo.get_job(db, job_id)
    if not job:
        log.error("Job not found", extra={"job_id": job_id, "stage": "-"})
        return
    if job.status != JobStatus.PROCESSING.value:
        log.warning("Job is %s, not processing; skipping", job.status, extra={"job_id": job_id, "stage": "-"})
        return

    engine = None
    try:
        log.info("Starting generation", extra={"job_id": job_id, "stage": "-"})
        engine = engine_factory(db, job_id, job.project_id or job.id)
        engine.run(job)
    except Exception as e:
        stage = str(engine.stage) if engine else "-"
        log.exception("Generation failed", extra={"job_id": job_id, "stage": stage})
        db.rollback()
        message = str(e) if isinstance(e, StageContractError) else f"[{stage}] {e}"
        if not repo.finish_job(db, job_id, JobStatus.FAILED, error=message):
            log.warning("Job was no longer processing, failure not recorded", extra={"job_id": job_id, "stage": stage})


@celery_app.task(name="execute_generation_job")
def execute_generation_job(job_id: str) -> None:
    db: Session = SessionLocal()
    try:
        run_generation_job(db, job_id)
    finally:
        db.close()


@celery_app.task(name="reap_expired_jobs")
def reap_expired_jobs() -> int:
    db: Session = SessionLocal()
    try:
        return repo.reap_expired_jobs(db)
    finally:
        db.close()
