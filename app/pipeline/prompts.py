"""Prompt builders for the generation pipeline stages.

Each builder returns the system prompt for one stage. User prompts are kept
short (the request plus gathered context); everything the model must know
about the project and the output contract lives in the system prompt.
"""
from __future__ import annotations
import json
from typing import Iterable
from app.core.commands import ALLOWED_COMMANDS
from app.pipeline.contracts import (
    JSON_END_MARKER,
    JSON_START_MARKER,
    MAX_TOOL_CALLS,
    IntentSpec,
    PatchPlan,
    ProjectFile,
)

APP_TYPE_NAMES = {
    "farcaster": "Farcaster Miniapp",
    "web3": "Web3 Web App",
}

BOILERPLATE_STRUCTURE = """\
src/
  app/page.tsx            main screen, tab based layout
  app/layout.tsx          root layout and providers
  components/ui/          Button, Input, Tabs, Card (PascalCase filenames)
  components/wallet/      ConnectWallet
  hooks/useUser.ts        current user (username, fid, isMiniApp, isLoading)
  lib/utils.ts            helpers
  lib/wagmi.ts            wagmi config
  lib/contractConfig.ts   CONTRACT_ADDRESS, CONTRACT_ABI, CHAIN (web3 only)
contracts/                hardhat project with template contracts (web3 only)
"""

JSON_ONLY = (
    "CRITICAL: Return ONLY valid JSON. No explanations, no markdown, no code fences."
)


def format_file_list(files: Iterable[ProjectFile]) -> str:
    return "\n".join(f"- {f.filename}" for f in files)


def format_files(files: Iterable[ProjectFile]) -> str:
    return "\n\n".join(f"---{f.filename}---\n{f.content}" for f in files)


def app_type_name(app_type: str) -> str:
    return APP_TYPE_NAMES.get(app_type, APP_TYPE_NAMES["farcaster"])


def context_gather_prompt(user_prompt: str, files: list[ProjectFile]) -> str:
    tools = ", ".join(sorted(ALLOWED_COMMANDS))
    return f"""ROLE: Context Gatherer

TASK: Decide whether the request can be acted on directly or whether the
existing code must be inspected first. If inspection is needed, request
read-only tool calls.

USER REQUEST: {user_prompt}

CURRENT FILES AVAILABLE:
{format_file_list(files)}

AVAILABLE TOOLS (read-only): {tools}
  {{"tool": "grep", "args": ["useState", "app/page.tsx"], "workingDirectory": "src", "reason": "..."}}
  {{"tool": "cat", "args": ["components/TodoList.tsx"], "workingDirectory": "src", "reason": "..."}}

RULES:
- Specific, clear requests (e.g. "Change the button color in Tab1") need no context.
- Vague requests ("Fix the bug", "Improve the UI") or changes to existing behaviour need context.
- At most {MAX_TOOL_CALLS} tool calls, each with a reason.
- No pipes, OR patterns or shell characters (; & | ` $ < >) in arguments.

{JSON_ONLY}

OUTPUT FORMAT:
{{"needsContext": boolean, "toolCalls": [{{"tool": "grep", "args": ["pattern", "path"], "workingDirectory": "src", "reason": "why"}}], "contextSummary": "short summary"}}
"""


def intent_parse_prompt(app_type: str = "farcaster") -> str:
    return f"""ROLE: Intent Parser for a {app_type_name(app_type)}

TASK: Convert the user request into a structured specification of what has to
change in the existing project.

PROJECT STRUCTURE:
{BOILERPLATE_STRUCTURE}
RULES:
- If the boilerplate already satisfies the request (for example a generic
  "create a miniapp" with no concrete feature), set needsChanges to false and
  leave every array empty.
- targetFiles lists existing or new files that must change.
- dependencies lists npm packages that are not already in the boilerplate.
- isWeb3 is true only when the feature needs on-chain state (tokens, NFTs,
  escrow). Use contractInteractions to name contract reads and writes.

{JSON_ONLY}

OUTPUT FORMAT:
{{
  "feature": "short feature name",
  "requirements": ["..."],
  "targetFiles": ["src/app/page.tsx"],
  "dependencies": [],
  "needsChanges": true,
  "reason": "why changes are or are not needed",
  "isWeb3": false,
  "contractInteractions": {{"reads": [], "writes": []}}
}}
"""


def intent_user_prompt(user_prompt: str, context_data: str = "") -> str:
    if not context_data:
        return f"USER REQUEST: {user_prompt}"
    return f"USER REQUEST: {user_prompt}\n\nADDITIONAL CONTEXT FROM CODEBASE:\n{context_data}"


def patch_plan_prompt(intent: IntentSpec, files: list[ProjectFile], app_type: str = "farcaster") -> str:
    return f"""ROLE: Patch Planner for a {app_type_name(app_type)}

INTENT:
{json.dumps(intent.to_wire(), indent=2)}

CURRENT FILES:
{format_files(files)}

TASK: Describe, per file, WHAT must change to implement the intent. Do not
write code; the next stage writes complete files from this plan.

RULES:
- Every patch needs filename, operation (create | modify | delete), purpose
  and a non-empty changes list.
- Each change has type (add | replace | remove), target, description and,
  where useful, location and dependencies.
- One patch per file.
- Never plan edits to package.json, tsconfig.json, next.config.* or lockfiles.
- Only create new components under src/components/; keep the boilerplate layout.

{JSON_ONLY}

OUTPUT FORMAT:
{{
  "patches": [
    {{
      "filename": "src/app/page.tsx",
      "operation": "modify",
      "purpose": "what this file change accomplishes",
      "changes": [
        {{"type": "add", "target": "imports", "description": "...", "location": "top of file"}}
      ]
    }}
  ],
  "implementationNotes": ["..."]
}}
"""


def code_generate_prompt(
    plan: PatchPlan,
    intent: IntentSpec,
    files: list[ProjectFile],
    app_type: str = "farcaster",
) -> str:
    return f"""ROLE: Code Generator for a {app_type_name(app_type)} (Next.js + TypeScript + React)

INTENT:
{json.dumps(intent.to_wire(), indent=2)}

PATCH PLAN:
{json.dumps(plan.to_wire(), indent=2)}

CURRENT FILES:
{format_files(files)}

TASK: Emit the COMPLETE new content of every file in the patch plan plus any
new file the implementation needs. Full files only, never partial diffs.

RULES:
- Every file using React hooks, event handlers or interactive JSX MUST start
  with 'use client'; as its first line.
- Every relative or '@/' import must point at a file that exists or that you emit.
- Use exact PascalCase for boilerplate components: '@/components/ui/Button'.
- Contract addresses use the placeholder {{{{CONTRACT_ADDRESS:<ContractName>}}}};
  it is replaced with the deployed address before upload.
- Do not emit package.json, tsconfig.json, next.config.* or lockfiles.

Return the JSON array between the markers and nothing else:
{JSON_START_MARKER}
[{{"filename": "src/app/page.tsx", "content": "complete file content"}}]
{JSON_END_MARKER}
"""


def repair_prompt(files_to_fix: list[ProjectFile], error_messages: str) -> str:
    return f"""ROLE: Error Fixer for Next.js + TypeScript + React

ERRORS FOUND:
{error_messages}

FILES TO FIX:
{format_files(files_to_fix)}

TASK: Fix every error above and return complete corrected files.

RULES:
- Return exactly the files listed above, with the exact same filenames.
  Do not add files and do not drop files.
- Preserve existing functionality; only change what the errors require.
- Never modify ABI arrays in contractConfig files.
- Import paths are case sensitive: '@/components/ui/Button' not '@/components/ui/button'.

Return the JSON array between the markers and nothing else:
{JSON_START_MARKER}
[{{"filename": "EXACT_SAME_FILENAME", "content": "complete corrected content"}}]
{JSON_END_MARKER}
"""


TEMPLATE_ONLY_SUFFIX = """
CONTRACT RULES (STRICT):
- Web3 projects may only use the bundled templates under contracts/src/:
  ERC20Template.sol, ERC721Template.sol and EscrowTemplate.sol.
- Edit a template in place (renaming the contract inside is allowed).
  Never create any other .sol file.
"""


def template_only_retry_prompt(user_prompt: str, invalid_files: list[str]) -> str:
    listing = "\n".join(f"- {name}" for name in invalid_files)
    return f"""{user_prompt}

Your previous answer created contract files that are not allowed:
{listing}

Regenerate every file, implementing the contract logic by editing one of the
templates instead of adding new Solidity files."""
