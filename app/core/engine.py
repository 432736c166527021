from __future__ import annotations
import logging
from typing import Optional
from sqlalchemy.orm import Session
from app.core.config import settings
from app.core.logging import stage_extra
from app.core.workflow import DeploymentStatus, JobStatus, PipelineStage
from app.db import repository as repo
from app.db.models import GenerationJob
from app.deploy.errors import parse_build_errors
from app.deploy.orchestrator import DeploymentOrchestrator, DeploymentRecord, DeployOptions
from app.pipeline.context import CommandRunner
from app.pipeline.contracts import ProjectFile
from app.pipeline.executor import CONTRACTS_DIR, PipelineExecutor, PipelineResult, StageCaller, merge_by_filename
from app.pipeline.router import ModelRouter

log = logging.getLogger(__name__)


class WorkflowEngine:
    """Runs one claimed job end to end: pipeline, file store, deployment, job record."""

    def __init__(
        self,
        db: Session,
        job_id: str,
        llm: StageCaller,
        orchestrator: DeploymentOrchestrator,
        router: Optional[ModelRouter] = None,
        command_runner: Optional[CommandRunner] = None,
        max_deploy_attempts: int = settings.deploy_max_attempts,
    ):
        self.db = db
        self.job_id = job_id
        self.llm = llm
        self.orchestrator = orchestrator
        self.router = router
        self.command_runner = command_runner
        self.max_deploy_attempts = max_deploy_attempts
        self.stage: PipelineStage = PipelineStage.CONTEXT_GATHER

    def _set_stage(self, job: GenerationJob, stage: PipelineStage) -> None:
        self.stage = stage
        self._merge_result(job, {"stage": str(stage)})

    def _merge_result(self, job: GenerationJob, updates: dict) -> None:
        repo.merge_job_result(self.db, job, updates)

    def load_files(self, job: GenerationJob, project_id: str) -> list[ProjectFile]:
        files = repo.get_project_files(self.db, project_id)
        if files:
            return files
        seeded = [ProjectFile.model_validate(f) for f in (job.context or {}).get("files", [])]
        if seeded:
            repo.save_project_files(self.db, project_id, seeded)
        return seeded

    def run(self, job: GenerationJob) -> DeploymentRecord:
        project_id = job.project_id or job.id
        context = job.context or {}
        app_type = context.get("appType", settings.default_app_type)
        extra = stage_extra(self.job_id, None)

        current = self.load_files(job, project_id)
        log.info("Loaded %d project files for %s", len(current), project_id, extra=extra)

        executor = PipelineExecutor(
            llm=self.llm,
            router=self.router,
            command_runner=self.command_runner,
            app_type=app_type,
            job_id=self.job_id,
            on_stage=lambda stage: self._set_stage(job, stage),
        )
        result = executor.run(job.prompt, current)

        files = current
        if result.changed:
            files = [f for f in merge_by_filename(current, result.files) if f.filename not in result.deleted]
            repo.save_project_files(self.db, project_id, result.files, deleted=result.deleted)
            self.orchestrator.store_diffs(project_id, result.diffs)

        self._set_stage(job, PipelineStage.DEPLOY)
        record = self.deploy(job, executor, project_id, files, result, context)
        repo.record_deployment(self.db, record, self.job_id)

        summary = self.summarize(project_id, result, record)
        extra = stage_extra(self.job_id, PipelineStage.DEPLOY)
        if record.status == DeploymentStatus.COMPLETED:
            finished = repo.finish_job(self.db, self.job_id, JobStatus.COMPLETED, result={**(job.result or {}), **summary})
            if finished:
                log.info("Job completed: %s", record.deployment_url, extra=extra)
        else:
            finished = repo.finish_job(
                self.db, self.job_id, JobStatus.FAILED,
                result={**(job.result or {}), **summary},
                error=f"[{PipelineStage.DEPLOY}] {record.deployment_error or 'Deployment failed'}",
            )
            if finished:
                log.error("Job failed at deployment", extra=extra)
        if not finished:
            log.warning("Job was no longer processing, keeping its recorded %s status",
                        repo.get_job(self.db, self.job_id).status, extra=extra)
        return record

    def deploy(
        self,
        job: GenerationJob,
        executor: PipelineExecutor,
        project_id: str,
        files: list[ProjectFile],
        result: PipelineResult,
        context: dict,
    ) -> DeploymentRecord:
        extra = stage_extra(self.job_id, PipelineStage.DEPLOY)
        is_web3 = bool(result.intent and result.intent.is_web3) or bool(context.get("isWeb3"))
        options = DeployOptions(
            needs_contracts=is_web3 and any(f.filename.startswith(CONTRACTS_DIR) for f in files),
            skip_contracts=bool(context.get("skipContracts")),
            app_type=context.get("appType", settings.default_app_type),
            job_id=self.job_id,
        )

        attempt = 1
        addresses = None
        while True:
            record = self.orchestrator.deploy(project_id, files, options)
            if record.contract_addresses:
                addresses = record.contract_addresses
            elif addresses:
                record.contract_addresses = addresses
            if record.uploaded_files != files:
                # addresses were substituted; the store keeps what was shipped
                repo.save_project_files(self.db, project_id, record.uploaded_files)
                files = record.uploaded_files
                options = DeployOptions(
                    needs_contracts=options.needs_contracts, skip_contracts=True,
                    app_type=options.app_type, job_id=options.job_id,
                )
            if record.status == DeploymentStatus.COMPLETED or attempt >= self.max_deploy_attempts:
                return record

            parsed = parse_build_errors(record.deployment_error, record.logs)
            to_fix = parsed.files_to_fix(files)
            if not to_fix:
                log.warning("Build failed but no fixable files were identified: %s", parsed.summary, extra=extra)
                return record

            log.warning("Deployment attempt %d failed, repairing %d files", attempt, len(to_fix), extra=extra)
            self._merge_result(job, {
                "deploymentAttempt": attempt,
                "deploymentError": (record.deployment_error or "")[:500],
                "fixingFiles": [f.filename for f in to_fix],
            })
            outcome = executor.repair(to_fix, parsed.for_repair())
            if outcome.files:
                files = merge_by_filename(files, outcome.files)
                repo.save_project_files(self.db, project_id, outcome.files)
            self._set_stage(job, PipelineStage.DEPLOY)
            attempt += 1

    @staticmethod
    def summarize(project_id: str, result: PipelineResult, record: DeploymentRecord) -> dict:
        summary = {
            "projectId": project_id,
            "deploymentUrl": record.deployment_url,
            "deploymentStatus": str(record.status.value),
            "changed": result.changed,
            "files": [f.filename for f in result.files] if result.changed else [],
            "deletedFiles": result.deleted,
            "diffCount": len(result.diffs),
            "findingsRemaining": [f.render() for f in result.findings_remaining],
        }
        if result.intent is not None:
            summary["feature"] = result.intent.feature
            summary["reason"] = result.intent.reason
        if record.contract_addresses:
            summary["contractAddresses"] = record.contract_addresses
        if record.status == DeploymentStatus.FAILED:
            summary["deploymentError"] = record.deployment_error
            summary["deploymentLogs"] = (record.logs or "")[:repo.MAX_STORED_LOG_CHARS]
        return summary
