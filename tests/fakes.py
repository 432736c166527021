"""Test doubles shared by the pipeline, engine and task tests."""
import json
from app.pipeline.contracts import JSON_END_MARKER, JSON_START_MARKER, ProjectFile


class ScriptedLLM:
    """Answers stage calls from per-stage queues and records every call."""

    def __init__(self, responses):
        self.responses = {stage: list(answers) for stage, answers in responses.items()}
        self.calls = []

    def call(self, system_prompt, user_prompt, stage_name, config):
        self.calls.append({"stage": stage_name, "system": system_prompt, "user": user_prompt, "config": config})
        queue = self.responses.get(stage_name)
        if not queue:
            raise AssertionError(f"unexpected call for stage {stage_name}")
        answer = queue.pop(0)
        return answer if isinstance(answer, str) else json.dumps(answer)

    def stages(self):
        return [c["stage"] for c in self.calls]


def no_context():
    return {"needsContext": False, "toolCalls": [], "contextSummary": "request is specific"}


def intent(needs_changes=True, target_files=None, feature="Counter", is_web3=False):
    return {
        "feature": feature,
        "requirements": ["show a counter"] if needs_changes else [],
        "targetFiles": target_files if target_files is not None else (["src/app/page.tsx"] if needs_changes else []),
        "dependencies": [],
        "needsChanges": needs_changes,
        "reason": "adds a feature" if needs_changes else "boilerplate already covers the request",
        "isWeb3": is_web3,
    }


def plan(*filenames, operation="modify"):
    return {
        "patches": [
            {
                "filename": name,
                "operation": operation,
                "purpose": "implement the feature",
                "changes": [{"type": "add", "target": "component", "description": "add counter"}],
            }
            for name in filenames
        ]
    }


def marked(files):
    payload = [{"filename": name, "content": content} for name, content in files.items()]
    return f"{JSON_START_MARKER}\n{json.dumps(payload)}\n{JSON_END_MARKER}"


def boilerplate():
    return [
        ProjectFile(filename="src/app/page.tsx", content=(
            "'use client';\n\nimport { Tabs } from '@/components/ui/Tabs';\n\n"
            "export default function Page() {\n  return <Tabs tabs={[]} />;\n}\n"
        )),
        ProjectFile(filename="src/components/ui/Tabs.tsx", content=(
            "'use client';\n\nexport function Tabs({ tabs }: { tabs: unknown[] }) {\n  return <div>{tabs.length}</div>;\n}\n"
        )),
        ProjectFile(filename="package.json", content='{"name": "miniapp"}\n'),
    ]


VALID_COUNTER = (
    "'use client';\n\nimport { useState } from 'react';\n\n"
    "export default function Page() {\n"
    "  const [count, setCount] = useState(0);\n"
    "  return <button onClick={() => setCount(count + 1)}>{count}</button>;\n"
    "}\n"
)

COUNTER_WITHOUT_DIRECTIVE = VALID_COUNTER.replace("'use client';\n\n", "")
