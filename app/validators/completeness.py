from __future__ import annotations
from typing import Iterable, Sequence
from app.validators.base import FindingKind, SourceFile, ValidationFinding


def validate_completeness(
    files: Sequence[SourceFile],
    existing_files: Iterable[SourceFile] = (),
) -> list[ValidationFinding]:
    """Flag an empty result set and files whose content is blank."""
    if not files:
        return [ValidationFinding("*", "no files were generated", FindingKind.MISSING_FILE)]
    return [
        ValidationFinding(f.filename, "file content is empty", FindingKind.MISSING_FILE)
        for f in files
        if not f.content.strip()
    ]
