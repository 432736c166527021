from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Protocol


class FindingKind(str, Enum):
    MISSING_FILE = "missing-file"
    MISSING_IMPORT = "missing-import"
    MISSING_DIRECTIVE = "missing-directive"
    SYNTAX_RISK = "syntax-risk"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ValidationFinding:
    file: str
    message: str
    kind: FindingKind

    def render(self) -> str:
        return f"{self.file}: [{self.kind}] {self.message}"


class SourceFile(Protocol):
    filename: str
    content: str


SCRIPT_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx")


def is_script(filename: str) -> bool:
    return filename.endswith(SCRIPT_EXTENSIONS)


def filenames(files: Iterable[SourceFile]) -> set[str]:
    return {f.filename for f in files}
