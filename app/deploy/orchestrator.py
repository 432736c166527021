from __future__ import annotations
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence
import httpx
from pydantic import Field
from app.core.build_host import BuildHostClient
from app.core.config import settings
from app.core.errors import ContractDeploymentError
from app.core.logging import stage_extra
from app.core.workflow import DeploymentStatus, PipelineStage
from app.deploy.addresses import substitute_addresses
from app.pipeline.contracts import ContractModel, ProjectFile
from app.workspace.manager import WorkspaceManager

log = logging.getLogger(__name__)

CONTRACTS_DIR = "contracts/"
# Order in which host error bodies are searched for build output.
LOG_FIELDS = ("stderr", "stdout", "output", "logs", "details")


@dataclass(frozen=True)
class DeployOptions:
    needs_contracts: bool = False
    skip_contracts: bool = False
    app_type: str = settings.default_app_type
    job_id: Optional[str] = None
    wait: bool = False


class DeploymentRecord(ContractModel):
    project_id: str
    platform: str = "vercel"
    deployment_url: Optional[str] = None
    status: DeploymentStatus = DeploymentStatus.PENDING
    logs: Optional[str] = None
    deployment_error: Optional[str] = None
    contract_addresses: Optional[Dict[str, str]] = None
    uploaded_files: List[ProjectFile] = Field(default_factory=list, exclude=True)


@dataclass(frozen=True)
class PollResult:
    status: DeploymentStatus
    deployment_url: Optional[str] = None
    error: Optional[str] = None
    logs: Optional[str] = None


def _json(r: httpx.Response) -> dict:
    try:
        data = r.json()
    except ValueError:
        return {"error": f"Failed to parse response ({r.status_code}): {r.text[:200]}"}
    return data if isinstance(data, dict) else {"data": data}


def extract_logs(body: dict) -> str:
    for name in LOG_FIELDS:
        value = body.get(name)
        if value:
            return str(value)
    return ""


def extract_error(body: dict, logs: str) -> str:
    message = str(body.get("deploymentError") or body.get("error") or "Unknown deployment error")
    # generic process exit messages carry no information; the build output does
    if "npx exited" in message or message == "null" or len(message) < 20:
        return logs or message
    return message


def diff_timestamp(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H-%M-%S-%fZ")


class DeploymentOrchestrator:
    """Ships finalized files to the build host and tracks each project's preview.

    ``previews`` is the keyed store of the latest ``DeploymentRecord`` per
    project. It belongs to this instance; callers share it by sharing the
    orchestrator.
    """

    def __init__(
        self,
        client: BuildHostClient,
        previews: Optional[Dict[str, DeploymentRecord]] = None,
        workspace_factory: Callable[[str], WorkspaceManager] = WorkspaceManager,
        poll_interval: float = settings.deploy_poll_interval,
        max_poll_attempts: int = settings.deploy_poll_max_attempts,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.previews = previews if previews is not None else {}
        self.workspace_factory = workspace_factory
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.sleep = sleep

    def get(self, project_id: str) -> Optional[DeploymentRecord]:
        return self.previews.get(project_id)

    def get_preview_url(self, project_id: str) -> Optional[str]:
        record = self.previews.get(project_id)
        return record.deployment_url if record else None

    def default_url(self, project_id: str) -> str:
        return f"https://{project_id}.{settings.custom_domain_base}"

    def deploy(self, project_id: str, files: Sequence[ProjectFile], options: DeployOptions = DeployOptions()) -> DeploymentRecord:
        extra = stage_extra(options.job_id, PipelineStage.DEPLOY)
        record = DeploymentRecord(project_id=project_id, uploaded_files=list(files))
        self.previews[project_id] = record

        contracts_deployed = False
        if options.needs_contracts and not options.skip_contracts:
            record.status = DeploymentStatus.CONTRACTS_DEPLOYING
            try:
                addresses = self.deploy_contracts(project_id, files, options.job_id)
            except ContractDeploymentError as e:
                record.status = DeploymentStatus.FAILED
                record.deployment_error = str(e)
                raise
            record.contract_addresses = addresses
            record.uploaded_files = substitute_addresses(files, addresses)
            contracts_deployed = True

        record.status = DeploymentStatus.BUILDING
        payload = {
            "hash": project_id,
            "files": {f.filename: f.content for f in record.uploaded_files},
            "deployToExternal": record.platform,
            "appType": options.app_type,
            "isWeb3": options.needs_contracts,
            "skipContracts": contracts_deployed or options.skip_contracts or not options.needs_contracts,
            "wait": options.wait,
            "jobId": options.job_id,
        }
        log.info("Uploading %d files to build host", len(payload["files"]), extra=extra)
        try:
            r = self.client.deploy(payload)
        except httpx.HTTPError as e:
            record.status = DeploymentStatus.FAILED
            record.deployment_error = f"Deploy request failed: {e}"
            log.error("Deploy request failed: %s", e, extra=extra)
            raise

        body = _json(r)
        if not r.is_success or body.get("success") is False or body.get("status") == "failed":
            logs = extract_logs(body)
            record.status = DeploymentStatus.FAILED
            record.deployment_error = extract_error(body, logs)
            record.logs = logs or None
            record.deployment_url = self.default_url(project_id)
            log.error("Build host reported failure (%s): %s", r.status_code,
                      record.deployment_error[:500], extra=extra)
            return record

        if body.get("contractAddresses") and not record.contract_addresses:
            record.contract_addresses = dict(body["contractAddresses"])

        if body.get("status") == "in_progress":
            log.info("Deployment in progress, polling for status", extra=extra)
            result = self.poll(project_id, options.job_id)
            if result.status == DeploymentStatus.FAILED:
                record.status = DeploymentStatus.FAILED
                record.deployment_error = result.error or "Deployment failed during polling"
                record.logs = result.logs
                record.deployment_url = self.default_url(project_id)
                return record
            record.deployment_url = result.deployment_url or self.default_url(project_id)
        else:
            record.deployment_url = (
                body.get("previewUrl") or body.get("vercelUrl") or body.get("deploymentUrl")
                or self.default_url(project_id)
            )

        record.status = DeploymentStatus.COMPLETED
        log.info("Deployment completed: %s", record.deployment_url, extra=extra)
        return record

    def deploy_contracts(self, project_id: str, files: Sequence[ProjectFile], job_id: Optional[str] = None) -> Dict[str, str]:
        extra = stage_extra(job_id, PipelineStage.DEPLOY)
        contract_files = [
            {"path": f.filename, "content": f.content} for f in files if f.filename.startswith(CONTRACTS_DIR)
        ]
        log.info("Deploying %d contract files", len(contract_files), extra=extra)
        try:
            r = self.client.deploy_contracts(project_id, contract_files)
        except httpx.HTTPError as e:
            raise ContractDeploymentError(f"Contract deployment request failed: {e}") from e

        body = _json(r)
        if not r.is_success or not body.get("success"):
            message = body.get("error") or body.get("details") or f"HTTP {r.status_code}"
            raise ContractDeploymentError(f"Contract deployment failed: {message}")

        addresses = body.get("contractAddresses") or {}
        log.info("Contracts deployed on %s: %s", body.get("network", "-"),
                 ", ".join(f"{k}={v}" for k, v in addresses.items()) or "none", extra=extra)
        return {str(k): str(v) for k, v in addresses.items()}

    def poll(self, project_id: str, job_id: Optional[str] = None) -> PollResult:
        """Poll the host until the build settles or the attempt cap is reached."""
        extra = stage_extra(job_id, PipelineStage.DEPLOY)
        for attempt in range(1, self.max_poll_attempts + 1):
            try:
                r = self.client.deploy_status(project_id)
                if r.status_code == 404:
                    return PollResult(DeploymentStatus.FAILED, error="Deployment job not found")
                r.raise_for_status()
                body = _json(r)
            except httpx.HTTPError as e:
                log.warning("Status poll %d/%d failed: %s", attempt, self.max_poll_attempts, e, extra=extra)
                if attempt == self.max_poll_attempts:
                    return PollResult(DeploymentStatus.FAILED, error=f"Failed to poll status: {e}")
                self.sleep(self.poll_interval)
                continue

            status = body.get("status")
            if status == "completed":
                return PollResult(DeploymentStatus.COMPLETED, deployment_url=body.get("deploymentUrl"))
            if status == "failed":
                return PollResult(DeploymentStatus.FAILED, error=body.get("error"), logs=body.get("logs"))

            log.info("Deployment still %s (poll %d/%d)", status or "unknown", attempt,
                     self.max_poll_attempts, extra=extra)
            if attempt < self.max_poll_attempts:
                self.sleep(self.poll_interval)

        waited = int(self.max_poll_attempts * self.poll_interval)
        log.error("Polling timeout after %d attempts", self.max_poll_attempts, extra=extra)
        return PollResult(DeploymentStatus.FAILED,
                          error=f"Deployment status polling timeout after {waited} seconds")

    def update_files(
        self,
        project_id: str,
        changed_files: Sequence[ProjectFile],
        validation_result: Optional[dict] = None,
        job_id: Optional[str] = None,
        on_new_url: Optional[Callable[[str], None]] = None,
    ) -> bool:
        """Push changed files to an existing preview. Never raises.

        ``on_new_url`` receives the URL the host reports, for callers whose
        authoritative record lives outside this process.
        """
        extra = stage_extra(job_id, PipelineStage.DEPLOY)
        payload = {
            "id": project_id,
            "files": [{"path": f.filename, "content": f.content} for f in changed_files],
            "wait": False,
        }
        if validation_result is not None:
            payload["validationResult"] = validation_result
        try:
            r = self.client.update_preview(payload)
        except httpx.HTTPError as e:
            log.error("Preview update for %s failed: %s", project_id, e, extra=extra)
            return False
        if not r.is_success:
            log.error("Preview update for %s rejected (%s): %s", project_id, r.status_code,
                      r.text[:500], extra=extra)
            return False

        url = _json(r).get("vercelUrl")
        record = self.previews.get(project_id)
        if url and record is not None:
            record.deployment_url = url
        if url and on_new_url is not None:
            on_new_url(url)
        log.info("Pushed %d changed files to preview", len(changed_files), extra=extra)
        return True

    def store_diffs(self, project_id: str, diffs: Sequence, now: Optional[datetime] = None) -> Optional[str]:
        if not diffs:
            return None
        ws = self.workspace_factory(project_id).ensure()
        entries = [d.to_dict() if hasattr(d, "to_dict") else dict(d) for d in diffs]
        stamp = diff_timestamp(now)
        path = ws.write_json(ws.patches_dir / f"diff-{stamp}.json", {
            "timestamp": stamp,
            "projectId": project_id,
            "diffs": entries,
        })
        log.info("Stored %d diffs at %s", len(entries), path, extra=stage_extra(None, PipelineStage.DEPLOY))
        return str(path)

    def get_stored_diffs(self, project_id: str) -> list:
        ws = self.workspace_factory(project_id)
        if not ws.patches_dir.exists():
            return []
        stored = sorted(ws.patches_dir.glob("diff-*.json"))
        if not stored:
            return []
        return ws.read_json(stored[-1]).get("diffs", [])
