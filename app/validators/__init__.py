from __future__ import annotations
from typing import Iterable, Sequence
from app.validators.base import FindingKind, SourceFile, ValidationFinding
from app.validators.completeness import validate_completeness
from app.validators.directives import validate_directives
from app.validators.imports import validate_imports
from app.validators.syntax import validate_syntax

VALIDATORS = (
    validate_completeness,
    validate_imports,
    validate_directives,
    validate_syntax,
)


def run_all(
    files: Sequence[SourceFile],
    existing_files: Iterable[SourceFile] = (),
) -> list[ValidationFinding]:
    existing = list(existing_files)
    findings: list[ValidationFinding] = []
    for validator in VALIDATORS:
        findings.extend(validator(files, existing))
    return findings


__all__ = ["FindingKind", "ValidationFinding", "run_all", "VALIDATORS"]
