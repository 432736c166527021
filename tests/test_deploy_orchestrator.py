"""Tests for DeploymentOrchestrator against a mocked build host."""
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
import httpx
import pytest
import respx
from app.core.build_host import BuildHostClient
from app.core.errors import ContractDeploymentError
from app.core.workflow import DeploymentStatus
from app.deploy.addresses import substitute_addresses
from app.deploy.orchestrator import DeploymentOrchestrator, DeploymentRecord, DeployOptions
from app.pipeline.contracts import ProjectFile
from app.pipeline.executor import FileDiff
from app.workspace.manager import WorkspaceManager

HOST = "https://build.test"

CONFIG_WITH_PLACEHOLDER = (
    "export const CONTRACT_ADDRESS = '{{CONTRACT_ADDRESS:MyToken}}';\n"
    "export const BACKUP = \"{{CONTRACT_ADDRESS:MyToken}}\";\n"
    "export const OTHER = '{{CONTRACT_ADDRESS:Vault}}';\n"
)


def make_orchestrator(tmp_path, sleeps=None, max_poll_attempts=30):
    client = BuildHostClient(token="secret", api_base=HOST)
    return DeploymentOrchestrator(
        client,
        workspace_factory=lambda pid: WorkspaceManager(pid, base_dir=tmp_path),
        poll_interval=10,
        max_poll_attempts=max_poll_attempts,
        sleep=(sleeps.append if sleeps is not None else lambda s: None),
    )


def files():
    return [
        ProjectFile(filename="src/app/page.tsx", content="'use client';\nexport default function Page() { return null; }\n"),
        ProjectFile(filename="src/lib/contractConfig.ts", content=CONFIG_WITH_PLACEHOLDER),
        ProjectFile(filename="contracts/contracts/MyToken.sol", content="contract MyToken {}\n"),
    ]


@respx.mock
def test_synchronous_completion(tmp_path):
    """A host that answers completed right away yields a completed record with its URL."""
    route = respx.post(f"{HOST}/deploy").mock(return_value=httpx.Response(200, json={
        "success": True, "previewUrl": "https://p1.preview.test", "status": "completed",
    }))
    orch = make_orchestrator(tmp_path)
    record = orch.deploy("p1", files()[:1], DeployOptions(app_type="farcaster", job_id="job-1"))

    assert record.status == DeploymentStatus.COMPLETED
    assert record.deployment_url == "https://p1.preview.test"
    assert orch.get_preview_url("p1") == "https://p1.preview.test"
    body = json.loads(route.calls[0].request.content)
    assert body["hash"] == "p1"
    assert body["files"] == {"src/app/page.tsx": files()[0].content}
    assert body["deployToExternal"] == "vercel"
    assert body["skipContracts"] is True
    assert body["isWeb3"] is False
    assert body["jobId"] == "job-1"
    assert route.calls[0].request.headers["authorization"] == "Bearer secret"


@respx.mock
def test_in_progress_is_polled_until_completed(tmp_path):
    """An in_progress answer is followed by status polls until the build completes."""
    sleeps = []
    respx.post(f"{HOST}/deploy").mock(return_value=httpx.Response(202, json={"success": True, "status": "in_progress"}))
    status = respx.get(f"{HOST}/deploy/status/p1").mock(side_effect=[
        httpx.Response(200, json={"status": "in_progress"}),
        httpx.Response(200, json={"status": "completed", "deploymentUrl": "https://p1.vercel.test"}),
    ])
    record = make_orchestrator(tmp_path, sleeps).deploy("p1", files()[:1])

    assert record.status == DeploymentStatus.COMPLETED
    assert record.deployment_url == "https://p1.vercel.test"
    assert status.call_count == 2
    assert sleeps == [10]


@respx.mock
def test_polling_is_bounded(tmp_path):
    """A build that never settles fails with a timeout after exactly the attempt cap."""
    sleeps = []
    respx.post(f"{HOST}/deploy").mock(return_value=httpx.Response(200, json={"success": True, "status": "in_progress"}))
    status = respx.get(f"{HOST}/deploy/status/p1").mock(
        return_value=httpx.Response(200, json={"status": "queued", "deploymentUrl": "https://never.test"}))
    record = make_orchestrator(tmp_path, sleeps, max_poll_attempts=4).deploy("p1", files()[:1])

    assert status.call_count == 4
    assert len(sleeps) == 3
    assert record.status == DeploymentStatus.FAILED
    assert "timeout" in record.deployment_error
    assert "40 seconds" in record.deployment_error


@respx.mock
def test_poll_not_found_fails_immediately(tmp_path):
    """A 404 from the status endpoint ends polling with a failed record."""
    respx.post(f"{HOST}/deploy").mock(return_value=httpx.Response(200, json={"success": True, "status": "in_progress"}))
    status = respx.get(f"{HOST}/deploy/status/p1").mock(return_value=httpx.Response(404))
    record = make_orchestrator(tmp_path).deploy("p1", files()[:1])

    assert status.call_count == 1
    assert record.status == DeploymentStatus.FAILED
    assert record.deployment_error == "Deployment job not found"


@respx.mock
def test_poll_reports_build_failure_with_logs(tmp_path):
    """A failed status carries the host error and logs into the record."""
    respx.post(f"{HOST}/deploy").mock(return_value=httpx.Response(200, json={"success": True, "status": "in_progress"}))
    respx.get(f"{HOST}/deploy/status/p1").mock(return_value=httpx.Response(200, json={
        "status": "failed", "error": "Build failed", "logs": "Type error: nope",
    }))
    record = make_orchestrator(tmp_path).deploy("p1", files()[:1])

    assert record.status == DeploymentStatus.FAILED
    assert record.deployment_error == "Build failed"
    assert record.logs == "Type error: nope"


@respx.mock
def test_host_error_is_captured_not_raised(tmp_path):
    """A non-2xx answer becomes a failed record; build output is taken from stderr first."""
    respx.post(f"{HOST}/deploy").mock(return_value=httpx.Response(500, json={
        "error": "npx exited 1",
        "stdout": "compiling...",
        "stderr": "./src/app/page.tsx:3:5\nType error: Cannot find name 'Foo'.",
        "logs": "full log",
    }))
    record = make_orchestrator(tmp_path).deploy("p1", files()[:1])

    assert record.status == DeploymentStatus.FAILED
    assert record.logs.startswith("./src/app/page.tsx:3:5")
    # the generic exit message is replaced by the build output
    assert "Cannot find name 'Foo'" in record.deployment_error


@respx.mock
def test_transport_error_propagates(tmp_path):
    """An unreachable host raises from deploy and leaves a failed record behind."""
    respx.post(f"{HOST}/deploy").mock(side_effect=httpx.ConnectTimeout("timed out"))
    orch = make_orchestrator(tmp_path)
    with pytest.raises(httpx.ConnectTimeout):
        orch.deploy("p1", files()[:1])
    assert orch.get("p1").status == DeploymentStatus.FAILED


@respx.mock
def test_contracts_deployed_first_and_addresses_substituted(tmp_path):
    """Deployed addresses replace every matching placeholder; nothing else changes."""
    contracts = respx.post(f"{HOST}/deploy-contracts").mock(return_value=httpx.Response(200, json={
        "success": True, "contractAddresses": {"MyToken": "0xABC123"}, "network": "base-sepolia",
    }))
    deploy = respx.post(f"{HOST}/deploy").mock(return_value=httpx.Response(200, json={
        "success": True, "vercelUrl": "https://p1.vercel.test",
    }))
    record = make_orchestrator(tmp_path).deploy("p1", files(), DeployOptions(needs_contracts=True, app_type="web3"))

    sent_contracts = json.loads(contracts.calls[0].request.content)
    assert sent_contracts["projectId"] == "p1"
    assert [f["path"] for f in sent_contracts["files"]] == ["contracts/contracts/MyToken.sol"]

    uploaded = json.loads(deploy.calls[0].request.content)
    expected = CONFIG_WITH_PLACEHOLDER.replace("{{CONTRACT_ADDRESS:MyToken}}", "0xABC123")
    assert uploaded["files"]["src/lib/contractConfig.ts"] == expected
    assert "{{CONTRACT_ADDRESS:Vault}}" in uploaded["files"]["src/lib/contractConfig.ts"]
    assert uploaded["files"]["src/app/page.tsx"] == files()[0].content
    assert uploaded["skipContracts"] is True
    assert uploaded["isWeb3"] is True
    assert record.contract_addresses == {"MyToken": "0xABC123"}
    assert record.status == DeploymentStatus.COMPLETED


def test_contract_failure_aborts_before_upload(tmp_path):
    """A failed contract deployment raises and no files are uploaded."""
    with respx.mock(assert_all_called=False) as router:
        router.post(f"{HOST}/deploy-contracts").mock(return_value=httpx.Response(500, json={
            "success": False, "error": "insufficient funds",
        }))
        deploy = router.post(f"{HOST}/deploy")
        orch = make_orchestrator(tmp_path)
        with pytest.raises(ContractDeploymentError, match="insufficient funds"):
            orch.deploy("p1", files(), DeployOptions(needs_contracts=True))
    assert deploy.call_count == 0
    assert orch.get("p1").status == DeploymentStatus.FAILED


def test_skip_contracts_uploads_without_contract_call(tmp_path):
    """Explicitly skipped contracts are not deployed even when the app needs them."""
    with respx.mock(assert_all_called=False) as router:
        contracts = router.post(f"{HOST}/deploy-contracts")
        upload = router.post(f"{HOST}/deploy").mock(return_value=httpx.Response(200, json={"success": True}))
        record = make_orchestrator(tmp_path).deploy(
            "p1", files(), DeployOptions(needs_contracts=True, skip_contracts=True))
    assert contracts.call_count == 0
    assert upload.call_count == 1
    assert json.loads(upload.calls[0].request.content)["skipContracts"] is True
    assert record.deployment_url == "https://p1.minidev.fun"


@respx.mock
def test_update_files_soft_fails_and_updates_url(tmp_path):
    """Incremental updates never raise; a returned URL refreshes the stored record."""
    respx.post(f"{HOST}/deploy").mock(return_value=httpx.Response(200, json={"success": True, "previewUrl": "https://old.test"}))
    update = respx.post(f"{HOST}/previews").mock(side_effect=[
        httpx.Response(200, json={"vercelUrl": "https://new.test"}),
        httpx.Response(502, text="bad gateway"),
        httpx.ConnectError("down"),
    ])
    orch = make_orchestrator(tmp_path)
    orch.deploy("p1", files()[:1])
    changed = [ProjectFile(filename="src/app/page.tsx", content="// new\n")]

    assert orch.update_files("p1", changed, validation_result={"ok": True}) is True
    assert orch.get_preview_url("p1") == "https://new.test"
    body = json.loads(update.calls[0].request.content)
    assert body == {"id": "p1", "files": [{"path": "src/app/page.tsx", "content": "// new\n"}],
                    "wait": False, "validationResult": {"ok": True}}

    assert orch.update_files("p1", changed) is False
    assert orch.update_files("p1", changed) is False
    assert orch.get_preview_url("p1") == "https://new.test"


@respx.mock
def test_update_files_reports_new_url_without_a_stored_preview(tmp_path):
    """A process that never deployed still learns the new URL through the callback."""
    respx.post(f"{HOST}/previews").mock(return_value=httpx.Response(200, json={"vercelUrl": "https://new.test"}))
    seen = []
    orch = make_orchestrator(tmp_path)

    assert orch.update_files("p1", files()[:1], on_new_url=seen.append) is True
    assert seen == ["https://new.test"]
    assert orch.get_preview_url("p1") is None


def test_previews_are_owned_per_instance(tmp_path):
    """Two orchestrators do not share preview state."""
    a = make_orchestrator(tmp_path)
    b = make_orchestrator(tmp_path)
    a.previews["p1"] = DeploymentRecord(project_id="p1", status=DeploymentStatus.COMPLETED)
    assert a.get("p1").status == DeploymentStatus.COMPLETED
    assert b.get("p1") is None


def test_diffs_are_stored_and_latest_is_returned(tmp_path):
    """Each stored change set is a timestamped file; retrieval returns the newest."""
    orch = make_orchestrator(tmp_path)
    assert orch.get_stored_diffs("p1") == []

    t0 = datetime(2026, 1, 1, tzinfo=timezone.utc)
    orch.store_diffs("p1", [FileDiff("src/a.ts", "create", "+a\n")], now=t0)
    path = orch.store_diffs("p1", [FileDiff("src/b.ts", "modify", "-b\n+c\n")], now=t0 + timedelta(seconds=1))

    assert Path(path).name == "diff-2026-01-01T00-00-01-000000Z.json"
    assert orch.get_stored_diffs("p1") == [{"filename": "src/b.ts", "operation": "modify", "unifiedDiff": "-b\n+c\n"}]
    assert orch.store_diffs("p1", []) is None


def test_substitution_leaves_untouched_files_identical():
    """Files without placeholders come back as the same objects."""
    original = files()
    out = substitute_addresses(original, {"MyToken": "0x1"})
    assert out[0] is original[0]
    assert out[1] is not original[1]
    assert substitute_addresses(original, {}) == original
