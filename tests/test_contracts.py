"""Tests for stage output parsing and contract enforcement."""
import json
import pytest
from app.core.errors import StageContractError
from app.core.workflow import PipelineStage
from app.pipeline.contracts import (
    parse_context_gather,
    parse_generated_files,
    parse_intent,
    parse_patch_plan,
    strip_code_fences,
)


def test_strip_code_fences_variants():
    """Fenced, marker-wrapped and fenced-inside-prose payloads all reduce to bare JSON."""
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('```\n[1, 2]\n```') == "[1, 2]"
    assert strip_code_fences('Here you go:\n```json\n{"a": 1}\n```\nDone.') == '{"a": 1}'
    assert strip_code_fences('__START_JSON__\n[{"x": 1}]\n__END_JSON__') == '[{"x": 1}]'
    assert strip_code_fences('  {"plain": true}  ') == '{"plain": true}'
    assert strip_code_fences('```json\n[1]\n```\nLet me know if you need more.') == "[1]"
    assert strip_code_fences('```json\n{"open": 1}') == '{"open": 1}'


def test_prose_after_fenced_files_is_ignored():
    """A closing remark after the fenced file list does not break parsing."""
    raw = '```json\n[{"filename": "a.ts", "content": "x"}]\n```\nLet me know if you need more.'
    files = parse_generated_files(raw, PipelineStage.CODE_GENERATE)
    assert [(f.filename, f.content) for f in files] == [("a.ts", "x")]
    unfenced = '{"feature": "Counter", "requirements": [], "targetFiles": [], "dependencies": [], "needsChanges": false}\nHope that helps!'
    assert parse_intent(unfenced).feature == "Counter"


def test_unparseable_output_is_tagged_with_stage():
    """A parse failure after fence stripping is fatal and names the stage."""
    with pytest.raises(StageContractError) as exc:
        parse_intent("```json\n{not json\n```")
    assert exc.value.stage == "intent_parse"
    assert str(exc.value).startswith("[intent_parse]")


def test_empty_output_is_a_contract_violation():
    """An empty answer is never treated as an empty result."""
    with pytest.raises(StageContractError):
        parse_patch_plan("   ")


def test_intent_without_changes_clears_arrays():
    """needsChanges=false normalizes every array field to empty."""
    raw = json.dumps({
        "feature": "Miniapp",
        "requirements": ["something"],
        "targetFiles": ["src/app/page.tsx"],
        "dependencies": ["lodash"],
        "needsChanges": False,
        "reason": "boilerplate suffices",
        "contractInteractions": {"reads": ["balanceOf"], "writes": []},
    })
    intent = parse_intent(raw)
    assert intent.needs_changes is False
    assert intent.requirements == []
    assert intent.target_files == []
    assert intent.dependencies == []
    assert intent.contract_interactions.reads == []


def test_intent_missing_required_field_fails():
    """An intent without needsChanges does not satisfy the contract."""
    raw = json.dumps({"feature": "x", "requirements": [], "targetFiles": [], "dependencies": []})
    with pytest.raises(StageContractError):
        parse_intent(raw)


def test_patch_plan_drops_malformed_patches():
    """Patches without filename, with a bad operation or with no changes are dropped, not fatal."""
    change = {"type": "add", "target": "imports", "description": "add import"}
    raw = json.dumps({
        "patches": [
            {"filename": "src/app/page.tsx", "operation": "modify", "purpose": "ok", "changes": [change]},
            {"operation": "modify", "purpose": "no filename", "changes": [change]},
            {"filename": "src/a.tsx", "operation": "rename", "purpose": "bad op", "changes": [change]},
            {"filename": "src/b.tsx", "operation": "create", "purpose": "no changes", "changes": []},
        ],
        "implementationNotes": ["keep it small"],
    })
    plan = parse_patch_plan(raw)
    assert plan.filenames == ["src/app/page.tsx"]
    assert plan.implementation_notes == ["keep it small"]


def test_patch_plan_duplicate_filenames_last_wins():
    """Two patches for one file collapse into the later one."""
    first = {"filename": "src/x.tsx", "operation": "create", "purpose": "first",
             "changes": [{"type": "add", "target": "a", "description": "a"}]}
    second = dict(first, purpose="second")
    plan = parse_patch_plan(json.dumps({"patches": [first, second]}))
    assert len(plan.patches) == 1
    assert plan.patches[0].purpose == "second"


def test_patch_plan_requires_patch_array():
    """A plan without a patches array is fatal for the stage."""
    with pytest.raises(StageContractError) as exc:
        parse_patch_plan(json.dumps({"patches": "none"}))
    assert exc.value.stage == "patch_plan"


def test_context_gather_keeps_at_most_three_tool_calls():
    """Tool calls beyond the third are discarded."""
    calls = [{"tool": "cat", "args": [f"file{i}.ts"], "reason": "look"} for i in range(5)]
    result = parse_context_gather(json.dumps({"needsContext": True, "toolCalls": calls}))
    assert len(result.tool_calls) == 3
    assert result.tool_calls[2].args == ["file2.ts"]


def test_generated_files_require_filename_and_content():
    """Any file without filename or content makes the whole answer invalid."""
    good = {"filename": "src/a.ts", "content": "export const a = 1;\n"}
    assert len(parse_generated_files(json.dumps([good]), PipelineStage.CODE_GENERATE)) == 1

    with pytest.raises(StageContractError):
        parse_generated_files(json.dumps([good, {"filename": "src/b.ts", "content": "  "}]),
                              PipelineStage.CODE_GENERATE)
    with pytest.raises(StageContractError):
        parse_generated_files(json.dumps([{"filename": "", "content": "x"}]), PipelineStage.CODE_GENERATE)


def test_generated_files_accept_wrapped_object():
    """Repair answers wrapped as {"fixes": [...]} are accepted."""
    raw = json.dumps({"fixes": [{"filename": "src/a.ts", "content": "export {};\n"}]})
    files = parse_generated_files(raw, PipelineStage.VALIDATE_REPAIR)
    assert [f.filename for f in files] == ["src/a.ts"]
