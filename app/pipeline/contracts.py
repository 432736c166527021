"""Typed output contracts for the generation pipeline stages.

Every stage answers with JSON. The parsers here strip markdown fences, decode
the payload and validate it against the stage model; anything that does not
fit raises ``StageContractError`` tagged with the stage name.
"""
from __future__ import annotations
import json
import logging
import re
from typing import Any, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel
from app.core.errors import StageContractError
from app.core.workflow import PipelineStage

log = logging.getLogger(__name__)

MAX_TOOL_CALLS = 3

JSON_START_MARKER = "__START_JSON__"
JSON_END_MARKER = "__END_JSON__"

_FENCE_BLOCK = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)
_MARKED_BLOCK = re.compile(rf"{JSON_START_MARKER}(.*?)(?:{JSON_END_MARKER}|$)", re.DOTALL)


class ContractModel(BaseModel):
    """Stage payloads use camelCase on the wire and snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class ProjectFile(ContractModel):
    filename: str
    content: str


class GeneratedFile(ProjectFile):
    """A complete file body emitted by Code Generate or the repair call."""


class ToolCall(ContractModel):
    tool: str
    args: List[str] = Field(default_factory=list)
    working_directory: Optional[str] = None
    reason: str = ""


class ContextGatherResult(ContractModel):
    needs_context: bool = False
    tool_calls: List[ToolCall] = Field(default_factory=list)
    context_summary: Optional[str] = None


class ContractInteractions(ContractModel):
    reads: List[str] = Field(default_factory=list)
    writes: List[str] = Field(default_factory=list)


class IntentSpec(ContractModel):
    feature: str = Field(min_length=1)
    requirements: List[str]
    target_files: List[str]
    dependencies: List[str]
    needs_changes: bool
    reason: str = ""
    contract_interactions: Optional[ContractInteractions] = None
    is_web3: bool = False

    @model_validator(mode="after")
    def _no_work_when_unchanged(self) -> "IntentSpec":
        if not self.needs_changes:
            self.requirements = []
            self.target_files = []
            self.dependencies = []
            if self.contract_interactions is not None:
                self.contract_interactions = ContractInteractions()
        return self


class PatchChange(ContractModel):
    type: Literal["add", "replace", "remove"]
    target: str
    description: str
    location: Optional[str] = None
    dependencies: Optional[List[str]] = None
    contract_interaction: Optional[str] = None


class Patch(ContractModel):
    filename: str = Field(min_length=1)
    operation: Literal["create", "modify", "delete"]
    purpose: str = ""
    changes: List[PatchChange] = Field(min_length=1)


class PatchPlan(ContractModel):
    patches: List[Patch] = Field(default_factory=list)
    implementation_notes: Optional[List[str]] = None

    @property
    def filenames(self) -> list[str]:
        return [p.filename for p in self.patches]


def strip_code_fences(raw: str) -> str:
    """Remove markdown code fences (or JSON markers) around a JSON payload."""
    text = (raw or "").strip()
    marked = _MARKED_BLOCK.search(text)
    if marked:
        text = marked.group(1).strip()
    match = _FENCE_BLOCK.search(text)
    if match and (text.startswith("```") or not text.startswith(("{", "["))):
        return match.group(1).strip()
    if text.startswith("```"):
        # opening fence without a closing one
        return re.sub(r"^```[a-zA-Z]*\s*", "", text).strip()
    return text


def load_stage_json(raw: str, stage: PipelineStage) -> Any:
    text = strip_code_fences(raw)
    if not text:
        raise StageContractError(str(stage), "empty response")
    try:
        payload, end = json.JSONDecoder().raw_decode(text)
    except json.JSONDecodeError as e:
        log.error("Stage response is not valid JSON: %s", text[:500], extra={"job_id": "-", "stage": str(stage)})
        raise StageContractError(str(stage), f"JSON parsing failed: {e}") from e
    if text[end:].strip():
        log.warning("Ignoring %d chars after the JSON payload", len(text[end:].strip()),
                    extra={"job_id": "-", "stage": str(stage)})
    return payload


def _validate(model: type[BaseModel], payload: Any, stage: PipelineStage):
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise StageContractError(str(stage), f"response does not match contract: {e.errors()[0]['msg']}") from e


def parse_context_gather(raw: str) -> ContextGatherResult:
    stage = PipelineStage.CONTEXT_GATHER
    payload = load_stage_json(raw, stage)
    if not isinstance(payload, dict):
        raise StageContractError(str(stage), "response is not an object")
    result = _validate(ContextGatherResult, payload, stage)
    if len(result.tool_calls) > MAX_TOOL_CALLS:
        log.warning("Context gatherer requested %d tool calls, keeping %d",
                    len(result.tool_calls), MAX_TOOL_CALLS, extra={"job_id": "-", "stage": str(stage)})
        result.tool_calls = result.tool_calls[:MAX_TOOL_CALLS]
    return result


def parse_intent(raw: str) -> IntentSpec:
    stage = PipelineStage.INTENT_PARSE
    payload = load_stage_json(raw, stage)
    if not isinstance(payload, dict):
        raise StageContractError(str(stage), "response is not an object")
    return _validate(IntentSpec, payload, stage)


def parse_patch_plan(raw: str) -> PatchPlan:
    """Parse a plan, dropping malformed patches instead of failing the plan."""
    stage = PipelineStage.PATCH_PLAN
    payload = load_stage_json(raw, stage)
    if not isinstance(payload, dict) or not isinstance(payload.get("patches"), list):
        raise StageContractError(str(stage), "patches array is missing or not an array")

    kept: dict[str, Patch] = {}
    for index, item in enumerate(payload["patches"], start=1):
        try:
            patch = Patch.model_validate(item)
        except ValidationError as e:
            log.warning("Dropping invalid patch %d: %s", index, e.errors()[0]["msg"],
                        extra={"job_id": "-", "stage": str(stage)})
            continue
        if patch.filename in kept:
            log.warning("Duplicate patch for %s, last one wins", patch.filename,
                        extra={"job_id": "-", "stage": str(stage)})
        kept[patch.filename] = patch

    notes = payload.get("implementationNotes")
    return PatchPlan(
        patches=list(kept.values()),
        implementation_notes=[str(n) for n in notes] if isinstance(notes, list) else None,
    )


def parse_generated_files(raw: str, stage: PipelineStage) -> list[GeneratedFile]:
    """Parse a list of complete files. Any incomplete element is fatal."""
    payload = load_stage_json(raw, stage)
    if isinstance(payload, dict):
        payload = payload.get("files", payload.get("fixes"))
    if not isinstance(payload, list):
        raise StageContractError(str(stage), "response is not an array of files")

    files = []
    for index, item in enumerate(payload, start=1):
        if not isinstance(item, dict):
            raise StageContractError(str(stage), f"file {index} is not an object")
        filename = item.get("filename")
        content = item.get("content")
        if not isinstance(filename, str) or not filename.strip():
            raise StageContractError(str(stage), f"file {index} has no filename")
        if not isinstance(content, str) or not content.strip():
            raise StageContractError(str(stage), f"file {filename} has no content")
        files.append(GeneratedFile(filename=filename.strip(), content=content))
    return files
