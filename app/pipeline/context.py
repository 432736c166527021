from __future__ import annotations
import logging
from typing import Callable, Optional
from app.core.commands import CommandResult
from app.core.errors import CommandNotAllowedError
from app.core.logging import stage_extra
from app.core.workflow import PipelineStage
from app.pipeline.contracts import ContextGatherResult, ToolCall

log = logging.getLogger(__name__)

# Per-call ceiling on tool output folded into the intent prompt.
MAX_TOOL_OUTPUT_CHARS = 4000

CommandRunner = Callable[[str, list, Optional[str]], CommandResult]


def _truncate(output: str, limit: int = MAX_TOOL_OUTPUT_CHARS) -> str:
    if len(output) <= limit:
        return output
    return output[:limit] + f"\n... [truncated {len(output) - limit} chars]"


def run_tool_calls(
    result: ContextGatherResult,
    runner: Optional[CommandRunner],
    job_id: str | None = None,
) -> str:
    """Execute the requested tool calls and render their output as context.

    Failed or refused calls are logged and skipped. Returns an empty string
    when nothing useful came back.
    """
    extra = stage_extra(job_id, PipelineStage.CONTEXT_GATHER)
    if not result.needs_context or not result.tool_calls:
        return ""
    if runner is None:
        log.info("No command executor configured, skipping %d tool calls", len(result.tool_calls), extra=extra)
        return ""

    sections = []
    for call in result.tool_calls:
        label = _describe(call)
        try:
            outcome = runner(call.tool, list(call.args), call.working_directory)
        except CommandNotAllowedError as e:
            log.warning("Skipping tool call %s: %s", label, e, extra=extra)
            continue
        if not outcome.success:
            log.warning("Tool call %s failed: %s", label, outcome.output[:200], extra=extra)
            continue
        log.info("Tool call %s returned %d chars", label, len(outcome.output), extra=extra)
        sections.append(f"## {label}\nReason: {call.reason or '-'}\n```\n{_truncate(outcome.output)}\n```")

    if not sections:
        return ""
    header = f"Summary: {result.context_summary}\n\n" if result.context_summary else ""
    return header + "\n\n".join(sections)


def _describe(call: ToolCall) -> str:
    where = f" (in {call.working_directory})" if call.working_directory else ""
    return f"{call.tool} {' '.join(call.args)}".strip() + where
