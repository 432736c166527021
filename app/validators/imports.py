"""Import resolution check for generated sources.

Only project-local references are checked: relative paths and the ``@/``
alias, which maps to ``src/``. Package imports are left to the build.
"""
from __future__ import annotations
import posixpath
import re
from typing import Iterable, Optional, Sequence
from app.validators.base import FindingKind, SourceFile, ValidationFinding, filenames, is_script

RESOLVE_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".sol", ".json", ".css")

# Shipped with every boilerplate project, so they resolve even when the
# caller did not pass them in.
KNOWN_BOILERPLATE_IMPORTS = (
    "@/components/ui/Button",
    "@/components/ui/Input",
    "@/components/ui/Tabs",
    "@/components/ui/Card",
    "@/components/wallet/ConnectWallet",
    "@/hooks",
    "@/hooks/useUser",
    "@/lib/utils",
    "@/lib/wagmi",
    "@/types",
)

_IMPORT_PATTERNS = (
    re.compile(r"""\bimport\s[^'"`;]*?\bfrom\s+['"`]([^'"`]+)['"`]"""),
    re.compile(r"""^\s*import\s+['"`]([^'"`]+)['"`]""", re.MULTILINE),
    re.compile(r"""\bimport\(\s*['"`]([^'"`]+)['"`]\s*\)"""),
    re.compile(r"""\brequire\(\s*['"`]([^'"`]+)['"`]\s*\)"""),
    re.compile(r"""\bexport\s[^'"`;]*?\bfrom\s+['"`]([^'"`]+)['"`]"""),
)


def is_local_reference(ref: str) -> bool:
    return ref.startswith(("./", "../", "@/"))


def extract_references(content: str) -> list[str]:
    refs: list[str] = []
    for pattern in _IMPORT_PATTERNS:
        for match in pattern.finditer(content):
            ref = match.group(1)
            if ref not in refs:
                refs.append(ref)
    return refs


def resolve_reference(importer: str, ref: str) -> Optional[str]:
    """Map an import reference to a repository path, or None for packages."""
    if ref.startswith("@/"):
        return posixpath.normpath("src/" + ref[2:])
    if ref.startswith(("./", "../")):
        base = posixpath.dirname(importer)
        return posixpath.normpath(posixpath.join(base, ref))
    return None


def candidate_paths(path: str) -> list[str]:
    candidates = [path]
    candidates += [path + ext for ext in RESOLVE_EXTENSIONS]
    candidates += [f"{path}/index{ext}" for ext in RESOLVE_EXTENSIONS]
    return candidates


def _is_known_boilerplate(ref: str) -> bool:
    return any(ref == known or ref.startswith(known + "/") for known in KNOWN_BOILERPLATE_IMPORTS)


def validate_imports(
    files: Sequence[SourceFile],
    existing_files: Iterable[SourceFile] = (),
) -> list[ValidationFinding]:
    available = filenames(files) | filenames(existing_files)
    findings = []
    for f in files:
        if not is_script(f.filename):
            continue
        for ref in extract_references(f.content):
            if not is_local_reference(ref) or _is_known_boilerplate(ref):
                continue
            path = resolve_reference(f.filename, ref)
            if path is None or path.startswith(".."):
                findings.append(ValidationFinding(
                    f.filename, f"import '{ref}' points outside the project", FindingKind.MISSING_IMPORT))
                continue
            if not any(c in available for c in candidate_paths(path)):
                findings.append(ValidationFinding(
                    f.filename, f"import '{ref}' does not resolve to any file", FindingKind.MISSING_IMPORT))
    return findings
