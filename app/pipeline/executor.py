from __future__ import annotations
import difflib
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol, Sequence
from app.core.errors import StageContractError
from app.core.logging import stage_extra
from app.core.workflow import PipelineStage
from app.pipeline import prompts
from app.pipeline.context import CommandRunner, run_tool_calls
from app.pipeline.contracts import (
    GeneratedFile,
    IntentSpec,
    PatchPlan,
    ProjectFile,
    parse_context_gather,
    parse_generated_files,
    parse_intent,
    parse_patch_plan,
)
from app.pipeline.router import ModelRouter, StageModelConfig
from app.validators import ValidationFinding, run_all
from app.validators.contracts import abi_regression, new_contract_files

log = logging.getLogger(__name__)

# Build and dependency configuration ships with the boilerplate and is never
# taken from model output.
PROTECTED_CONFIG_FILES = frozenset({
    "postcss.config.mjs",
    "postcss.config.js",
    "tailwind.config.js",
    "tailwind.config.ts",
    "next.config.ts",
    "next.config.js",
    "next.config.mjs",
    "tsconfig.json",
    "package.json",
    "package-lock.json",
    "pnpm-lock.yaml",
    "yarn.lock",
    "hardhat.config.js",
    "hardhat.config.ts",
    "contracts/hardhat.config.js",
    "contracts/hardhat.config.ts",
    "contracts/package.json",
    "contracts/package-lock.json",
})

CONTRACTS_DIR = "contracts/"


class StageCaller(Protocol):
    def call(self, system_prompt: str, user_prompt: str, stage_name: str, config: StageModelConfig) -> str: ...


@dataclass(frozen=True)
class FileDiff:
    filename: str
    operation: str
    unified_diff: str

    def to_dict(self) -> dict:
        return {"filename": self.filename, "operation": self.operation, "unifiedDiff": self.unified_diff}


@dataclass
class RepairOutcome:
    files: list[GeneratedFile]
    unreturned: list[str] = field(default_factory=list)
    # returned, but reverted to the pre-repair content
    restored: list[str] = field(default_factory=list)


@dataclass
class PipelineResult:
    files: list
    intent: Optional[IntentSpec] = None
    plan: Optional[PatchPlan] = None
    context_data: str = ""
    diffs: list[FileDiff] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    findings_remaining: list[ValidationFinding] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.intent is not None and self.intent.needs_changes


def filter_protected(files: Sequence[GeneratedFile], job_id: str | None = None) -> list[GeneratedFile]:
    kept = []
    for f in files:
        if f.filename in PROTECTED_CONFIG_FILES:
            log.info("Dropping protected config file %s from model output", f.filename,
                     extra=stage_extra(job_id, PipelineStage.CODE_GENERATE))
            continue
        kept.append(f)
    return kept


def merge_by_filename(*groups: Sequence[ProjectFile]) -> list:
    """Concatenate file groups keeping first-seen order; later groups win on content."""
    merged: dict[str, ProjectFile] = {}
    for group in groups:
        for f in group:
            merged[f.filename] = f
    return list(merged.values())


def compute_diffs(before: Sequence[ProjectFile], after: Sequence[ProjectFile]) -> list[FileDiff]:
    previous = {f.filename: f.content for f in before}
    diffs = []
    for f in after:
        old = previous.get(f.filename)
        if old == f.content:
            continue
        lines = difflib.unified_diff(
            (old or "").splitlines(keepends=True),
            f.content.splitlines(keepends=True),
            fromfile=f"a/{f.filename}" if old is not None else "/dev/null",
            tofile=f"b/{f.filename}",
        )
        diffs.append(FileDiff(f.filename, "modify" if old is not None else "create", "".join(lines)))
    return diffs


class PipelineExecutor:
    """Runs the five generation stages against a project's current files.

    Stage output that does not satisfy its contract aborts the run with a
    ``StageContractError``. Validator findings go through a single repair
    call; a file the repair returned that still has findings aborts the run.
    """

    def __init__(
        self,
        llm: StageCaller,
        router: Optional[ModelRouter] = None,
        command_runner: Optional[CommandRunner] = None,
        app_type: str = "farcaster",
        job_id: Optional[str] = None,
        on_stage: Optional[Callable[[PipelineStage], None]] = None,
    ):
        self.llm = llm
        self.router = router or ModelRouter.default()
        self.command_runner = command_runner
        self.app_type = app_type
        self.job_id = job_id
        self.on_stage = on_stage

    def _call(self, stage: PipelineStage, system_prompt: str, user_prompt: str) -> str:
        if self.on_stage:
            self.on_stage(stage)
        log.info("Running stage", extra=stage_extra(self.job_id, stage))
        return self.llm.call(system_prompt, user_prompt, str(stage), self.router.get(stage))

    def run(self, prompt: str, current_files: list) -> PipelineResult:
        context_data = self.gather_context(prompt, current_files)

        intent = parse_intent(self._call(
            PipelineStage.INTENT_PARSE,
            prompts.intent_parse_prompt(self.app_type),
            prompts.intent_user_prompt(prompt, context_data),
        ))
        if not intent.needs_changes:
            log.info("No changes needed: %s", intent.reason or "-",
                     extra=stage_extra(self.job_id, PipelineStage.INTENT_PARSE))
            return PipelineResult(files=current_files, intent=intent, context_data=context_data)

        planning_files = self.select_files(intent, current_files)
        plan = parse_patch_plan(self._call(
            PipelineStage.PATCH_PLAN,
            prompts.patch_plan_prompt(intent, planning_files, self.app_type),
            prompt,
        ))
        log.info("Planned %d patches: %s", len(plan.patches), ", ".join(plan.filenames),
                 extra=stage_extra(self.job_id, PipelineStage.PATCH_PLAN))

        generated = parse_generated_files(self._call(
            PipelineStage.CODE_GENERATE,
            prompts.code_generate_prompt(plan, intent, planning_files, self.app_type),
            prompt,
        ), PipelineStage.CODE_GENERATE)
        generated = filter_protected(generated, self.job_id)
        if intent.is_web3:
            generated = self.enforce_template_contracts(generated, current_files, prompt, plan, intent, planning_files)
        else:
            generated = [f for f in generated if not f.filename.startswith(CONTRACTS_DIR)]

        final, remaining = self.validate_and_repair(generated, current_files)
        deleted = [p.filename for p in plan.patches if p.operation == "delete"]
        return PipelineResult(
            files=final,
            intent=intent,
            plan=plan,
            context_data=context_data,
            diffs=compute_diffs(current_files, final),
            deleted=[d for d in deleted if d not in {f.filename for f in final}],
            findings_remaining=remaining,
        )

    def gather_context(self, prompt: str, current_files: list) -> str:
        result = parse_context_gather(self._call(
            PipelineStage.CONTEXT_GATHER,
            prompts.context_gather_prompt(prompt, current_files),
            prompt,
        ))
        return run_tool_calls(result, self.command_runner, self.job_id)

    def select_files(self, intent: IntentSpec, current_files: list) -> list:
        files = current_files
        if not intent.is_web3:
            files = [f for f in files if not f.filename.startswith(CONTRACTS_DIR)]
        targets = set(intent.target_files)
        targeted = [f for f in files if f.filename in targets]
        return targeted or files

    def enforce_template_contracts(
        self,
        generated: list[GeneratedFile],
        current_files: Sequence[ProjectFile],
        prompt: str,
        plan: PatchPlan,
        intent: IntentSpec,
        planning_files: list,
    ) -> list[GeneratedFile]:
        """Web3 projects may only edit the bundled Solidity templates.

        New contract files get one strict regeneration; whatever is still
        invalid after it is dropped.
        """
        extra = stage_extra(self.job_id, PipelineStage.CODE_GENERATE)
        invalid = new_contract_files(generated, current_files)
        if not invalid:
            return generated
        log.warning("New contract files generated, retrying with template-only rules: %s",
                    ", ".join(invalid), extra=extra)
        retried = parse_generated_files(self._call(
            PipelineStage.CODE_GENERATE,
            prompts.code_generate_prompt(plan, intent, planning_files, self.app_type)
            + prompts.TEMPLATE_ONLY_SUFFIX,
            prompts.template_only_retry_prompt(prompt, invalid),
        ), PipelineStage.CODE_GENERATE)
        retried = filter_protected(retried, self.job_id)
        still_invalid = set(new_contract_files(retried, current_files))
        if still_invalid:
            log.error("Dropping contract files that are not templates: %s",
                      ", ".join(sorted(still_invalid)), extra=extra)
        return [f for f in retried if f.filename not in still_invalid]

    def validate_and_repair(
        self,
        generated: list[GeneratedFile],
        existing_files: Sequence[ProjectFile] = (),
    ) -> tuple[list[GeneratedFile], list[ValidationFinding]]:
        extra = stage_extra(self.job_id, PipelineStage.VALIDATE_REPAIR)
        findings = run_all(generated, existing_files)
        if not findings:
            log.info("All %d generated files passed validation", len(generated), extra=extra)
            return generated, []
        if not generated:
            raise StageContractError(str(PipelineStage.VALIDATE_REPAIR), "code generation produced no files")

        invalid_names = {f.file for f in findings}
        invalid = [f for f in generated if f.filename in invalid_names]
        log.warning("%d findings in %d files, requesting repair", len(findings), len(invalid), extra=extra)
        outcome = self.repair(invalid, "\n".join(finding.render() for finding in findings))

        final = merge_by_filename(generated, outcome.files)
        remaining = run_all(final, existing_files)
        repaired = {f.filename for f in outcome.files} - set(outcome.restored)
        unresolved = [f for f in remaining if f.file in repaired]
        if unresolved:
            raise StageContractError(
                str(PipelineStage.VALIDATE_REPAIR),
                "repaired files still fail validation: " + "; ".join(f.render() for f in unresolved),
            )
        if remaining:
            log.warning("%d findings remain in files the repair did not return: %s", len(remaining),
                        ", ".join(sorted({f.file for f in remaining})), extra=extra)
        return final, remaining

    def repair(self, files_to_fix: Sequence[ProjectFile], error_messages: str) -> RepairOutcome:
        """One repair call for the given files. Only the same filenames are accepted back."""
        extra = stage_extra(self.job_id, PipelineStage.VALIDATE_REPAIR)
        repaired = parse_generated_files(self._call(
            PipelineStage.VALIDATE_REPAIR,
            prompts.repair_prompt(list(files_to_fix), error_messages),
            "Fix the errors listed in the system prompt.",
        ), PipelineStage.VALIDATE_REPAIR)

        originals = {f.filename: f for f in files_to_fix}
        expected = list(originals)
        accepted = []
        restored = []
        for f in repaired:
            if f.filename not in originals:
                log.warning("Repair returned unexpected file %s, ignoring it", f.filename, extra=extra)
                continue
            original = originals[f.filename]
            regression = abi_regression(original.content, f.content)
            if regression:
                log.warning("Repair of %s broke the contract ABI (%s), restoring original",
                            f.filename, regression, extra=extra)
                accepted.append(GeneratedFile(filename=f.filename, content=original.content))
                restored.append(f.filename)
            else:
                accepted.append(f)
        returned = {f.filename for f in accepted}
        unreturned = [name for name in expected if name not in returned]
        for name in unreturned:
            log.warning("Repair did not return %s, keeping pre-repair content", name, extra=extra)
        return RepairOutcome(files=accepted, unreturned=unreturned, restored=restored)
