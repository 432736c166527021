"""Turn build host logs into repair instructions.

The host returns raw ``next build`` output. The patterns below pull out the
errors a repair call can act on: TypeScript diagnostics with a file
location, ESLint problems, and generic build failures.
"""
from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import Optional, Sequence
from app.pipeline.contracts import ProjectFile

_TS_ERROR = re.compile(r"\./([^:\s]+):(\d+):(\d+)\s*\n\s*Type error:\s*([^\n]+)")
_ESLINT_CONFIG = re.compile(r"ESLint:\s*Invalid Options:\s*([^\n]+)")
_ESLINT_ERROR = re.compile(r"ESLint:\s*(\d+):(\d+)\s*-\s*(Error|Warning):\s*(.+?)\s*\(([^)]+)\)")
_BUILD_ERROR = re.compile(r'Error:\s*Command\s*"([^"]+)"\s*exited\s*with\s*(\d+)')
_FAILED_COMPILE = re.compile(r"Failed to compile\.\s*\n\s*\n\s*([^\n]+)")
_MODULE_NOT_FOUND = re.compile(r"\./([^:\s]+)\s*\nModule not found:\s*([^\n]+)")

ESLINT_CONFIG_FILES = ("eslint.config.mjs", ".eslintrc.json", ".eslintrc.js")


@dataclass(frozen=True)
class BuildError:
    message: str
    category: str
    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    severity: str = "error"
    code: Optional[str] = None
    context: Optional[str] = None

    @property
    def location(self) -> str:
        if not self.file:
            return "Unknown location"
        loc = self.file
        if self.line:
            loc += f":{self.line}"
        if self.column:
            loc += f":{self.column}"
        return loc


@dataclass
class ParsedBuildErrors:
    errors: list[BuildError] = field(default_factory=list)

    def has(self, category: str) -> bool:
        return any(e.category == category for e in self.errors)

    @property
    def summary(self) -> str:
        if not self.errors:
            return "No errors found"
        parts = []
        for category, label in (("typescript", "TypeScript"), ("eslint", "ESLint"), ("build", "build")):
            count = sum(1 for e in self.errors if e.category == category)
            if count:
                parts.append(f"{count} {label} error(s)")
        return "Deployment failed with " + ", ".join(parts)

    def files_to_fix(self, files: Sequence[ProjectFile]) -> list[ProjectFile]:
        wanted = {e.file for e in self.errors if e.file}
        if self.has("eslint"):
            wanted.update(ESLINT_CONFIG_FILES)
        return [f for f in files if f.filename in wanted]

    def for_repair(self) -> str:
        if not self.errors:
            return "No errors to fix"
        lines = ["DEPLOYMENT BUILD ERRORS:", "", self.summary, "", "ERRORS TO FIX:", ""]
        for e in self.errors:
            lines.append(f"[{e.category.upper()}] {e.location}")
            lines.append(f"  {e.message}")
            if e.context:
                lines.append(f"  Context: {e.context}")
            lines.append("")
        return "\n".join(lines)


def parse_build_errors(error_output: str | None, logs: str | None) -> ParsedBuildErrors:
    text = f"{error_output or ''}\n{logs or ''}"
    errors: list[BuildError] = []

    for m in _TS_ERROR.finditer(text):
        errors.append(BuildError(
            message=f"TypeScript: {m.group(4).strip()}", category="typescript",
            file=m.group(1).strip(), line=int(m.group(2)), column=int(m.group(3)), code="TS_ERROR",
        ))
    for m in _MODULE_NOT_FOUND.finditer(text):
        errors.append(BuildError(
            message=f"Module not found: {m.group(2).strip()}", category="build",
            file=m.group(1).strip(), code="MODULE_NOT_FOUND",
        ))
    for m in _ESLINT_CONFIG.finditer(text):
        errors.append(BuildError(message=f"ESLint Config: {m.group(1).strip()}", category="eslint",
                                 code="ESLINT_CONFIG"))
    for m in _ESLINT_ERROR.finditer(text):
        errors.append(BuildError(
            message=f"{m.group(4).strip()} ({m.group(5)})", category="eslint",
            line=int(m.group(1)), column=int(m.group(2)),
            severity="error" if m.group(3).lower() == "error" else "warning", code=m.group(5),
        ))
    for m in _BUILD_ERROR.finditer(text):
        errors.append(BuildError(message=f"Build failed: {m.group(1)} exited with code {m.group(2)}",
                                 category="build", code="BUILD_ERROR"))

    failed = _FAILED_COMPILE.search(text)
    if failed:
        context = failed.group(1).strip()
        if not any(e.context == context for e in errors):
            errors.append(BuildError(message="Compilation failed", category="build",
                                     code="COMPILE_ERROR", context=context))
    return ParsedBuildErrors(errors)
