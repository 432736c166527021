from __future__ import annotations
import re
from typing import Mapping, Sequence
from app.pipeline.contracts import ProjectFile

PLACEHOLDER_PATTERN = re.compile(r"\{\{CONTRACT_ADDRESS:([A-Za-z_][A-Za-z0-9_]*)\}\}")


def substitute_addresses(files: Sequence[ProjectFile], addresses: Mapping[str, str]) -> list[ProjectFile]:
    """Replace address placeholders for deployed contracts.

    Placeholders naming a contract that was not deployed are left as they are.
    Files without a replacement are returned as the same objects.
    """
    if not addresses:
        return list(files)

    def replace(match: re.Match) -> str:
        return addresses.get(match.group(1), match.group(0))

    out = []
    for f in files:
        content = PLACEHOLDER_PATTERN.sub(replace, f.content)
        out.append(f if content == f.content else f.model_copy(update={"content": content}))
    return out
