from __future__ import annotations
import httpx
from dataclasses import dataclass
from app.core.config import settings

@dataclass
class BuildHostClient:
    """Thin HTTP client for the preview build host.

    Responses are returned as-is; interpreting host-reported failures is the
    caller's job. Transport errors and timeouts propagate as httpx exceptions.
    """
    token: str | None
    api_base: str = settings.preview_api_base
    deploy_timeout: float = settings.deploy_request_timeout
    timeout: float = 60.0

    @classmethod
    def from_settings(cls) -> "BuildHostClient":
        return cls(token=settings.preview_auth_token)

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _post(self, path: str, payload: dict, timeout: float) -> httpx.Response:
        with httpx.Client(timeout=timeout) as client:
            return client.post(f"{self.api_base}{path}", headers=self._headers(), json=payload)

    def deploy(self, payload: dict) -> httpx.Response:
        return self._post("/deploy", payload, self.deploy_timeout)

    def deploy_status(self, deployment_id: str) -> httpx.Response:
        with httpx.Client(timeout=self.timeout) as client:
            return client.get(f"{self.api_base}/deploy/status/{deployment_id}", headers=self._headers())

    def update_preview(self, payload: dict) -> httpx.Response:
        return self._post("/previews", payload, self.timeout)

    def deploy_contracts(self, project_id: str, files: list[dict]) -> httpx.Response:
        return self._post("/deploy-contracts", {"projectId": project_id, "files": files}, self.deploy_timeout)

    def execute(self, project_id: str, command: str, args: list[str], working_directory: str | None) -> httpx.Response:
        payload = {"command": command, "args": args, "workingDirectory": working_directory}
        return self._post(f"/previews/{project_id}/execute", payload, settings.command_timeout)
