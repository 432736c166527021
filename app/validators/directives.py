from __future__ import annotations
import re
from typing import Iterable, Sequence
from app.validators.base import FindingKind, SourceFile, ValidationFinding, is_script

CLIENT_HOOKS = (
    "useState", "useEffect", "useReducer", "useRef", "useContext",
    "useCallback", "useMemo", "useLayoutEffect", "useTransition",
    "useAccount", "useReadContract", "useWriteContract",
    "useWaitForTransactionReceipt", "useConnect", "useDisconnect",
    "useBalance", "useUser",
)

_HOOK_CALL = re.compile(r"\b(" + "|".join(CLIENT_HOOKS) + r")\s*[(<]")
_EVENT_HANDLER = re.compile(r"\bon(?:Click|Change|Submit|Input|KeyDown|KeyUp|KeyPress|Focus|Blur|MouseEnter|MouseLeave)\s*=")
_DIRECTIVE = re.compile(r"""^(['"])use client\1\s*;?\s*$""")


def needs_client_directive(filename: str, content: str) -> bool:
    if not is_script(filename) or not filename.startswith("src/"):
        return False
    return bool(_HOOK_CALL.search(content) or _EVENT_HANDLER.search(content))


def has_client_directive(content: str) -> bool:
    """True when the first statement, after comments and blank lines, is the directive."""
    in_block = False
    for raw in content.splitlines():
        line = raw.strip()
        if in_block:
            if "*/" in line:
                in_block = False
                line = line.split("*/", 1)[1].strip()
                if not line:
                    continue
            else:
                continue
        if not line or line.startswith("//"):
            continue
        if line.startswith("/*"):
            if "*/" not in line:
                in_block = True
                continue
            line = line.split("*/", 1)[1].strip()
            if not line:
                continue
        return bool(_DIRECTIVE.match(line))
    return False


def validate_directives(
    files: Sequence[SourceFile],
    existing_files: Iterable[SourceFile] = (),
) -> list[ValidationFinding]:
    return [
        ValidationFinding(
            f.filename,
            "uses client-side hooks or event handlers but does not start with 'use client'",
            FindingKind.MISSING_DIRECTIVE,
        )
        for f in files
        if needs_client_directive(f.filename, f.content) and not has_client_directive(f.content)
    ]
