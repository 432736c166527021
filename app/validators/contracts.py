"""Guards for web3 projects: template-only contracts and stable ABIs.

Projects ship three audited Solidity templates. Generated code may edit them
(including renaming the contract inside) but may not add other ``.sol``
files, and repairs must never drop or rename functions from an exported ABI.
"""
from __future__ import annotations
import posixpath
import re
from typing import Iterable, Optional, Sequence
from app.validators.base import SourceFile, filenames

TEMPLATE_CONTRACTS = ("ERC20Template.sol", "ERC721Template.sol", "EscrowTemplate.sol")

_ABI_BLOCK = re.compile(r"export\s+const\s+\w+_ABI\s*=\s*\[(.*?)\]\s*as\s+const\s*;", re.DOTALL)
_ABI_ENTRY_SPLIT = re.compile(r"\}\s*,\s*\{")
_ABI_NAME = re.compile(r"""["']?name["']?\s*:\s*["']([^"']+)["']""")
_ABI_FUNCTION_TYPE = re.compile(r"""["']?type["']?\s*:\s*["']function["']""")


def is_template_contract(filename: str) -> bool:
    return posixpath.basename(filename) in TEMPLATE_CONTRACTS


def new_contract_files(
    files: Sequence[SourceFile],
    existing_files: Iterable[SourceFile] = (),
) -> list[str]:
    """Filenames of Solidity sources that are neither templates nor already in the project."""
    existing = filenames(existing_files)
    return [
        f.filename for f in files
        if f.filename.endswith(".sol")
        and not is_template_contract(f.filename)
        and f.filename not in existing
    ]


def extract_abi(content: str) -> Optional[str]:
    match = _ABI_BLOCK.search(content)
    return match.group(1) if match else None


def abi_names(content: str) -> list[str]:
    abi = extract_abi(content)
    return _ABI_NAME.findall(abi) if abi is not None else []


def abi_function_names(content: str) -> list[str]:
    abi = extract_abi(content)
    if abi is None:
        return []
    names = []
    for entry in _ABI_ENTRY_SPLIT.split(abi):
        if _ABI_FUNCTION_TYPE.search(entry):
            name = _ABI_NAME.search(entry)
            if name:
                names.append(name.group(1))
    return names


def abi_regression(original: str, changed: str) -> Optional[str]:
    """Describe how ``changed`` lost ABI entries present in ``original``, or None."""
    if extract_abi(original) is None or extract_abi(changed) is None:
        return None
    before, after = abi_names(original), abi_names(changed)
    if len(after) < len(before):
        return f"{len(before) - len(after)} ABI entries removed ({len(before)} -> {len(after)})"
    missing = [n for n in abi_function_names(original) if n not in set(abi_function_names(changed))]
    if missing:
        return "ABI functions renamed or removed: " + ", ".join(missing)
    return None
