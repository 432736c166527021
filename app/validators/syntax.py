"""Cheap structural checks for generated JS/TS sources.

This is not a parser. It catches the truncation and copy-paste damage that
model output typically shows (cut-off files, dangling arrows, mangled import
lines) and stays quiet on anything it is not sure about.
"""
from __future__ import annotations
import re
from typing import Iterable, Sequence
from app.validators.base import FindingKind, SourceFile, ValidationFinding, is_script

_PAIRS = {")": "(", "]": "[", "}": "{"}

_DANGLING_ARROW = re.compile(r"=>\s*(?:$|[;,)\]}])")
_FUNCTION_KEYWORD = re.compile(r"\bfunction\b")
_FUNCTION_HEAD = re.compile(r"\s*\*?\s*(?:[A-Za-z_$][\w$]*)?\s*(?:<[^()]*>)?\s*\(")
_IMPORT_START = re.compile(r"^[ \t]*import\b(?!\s*\()", re.MULTILINE)
_IMPORT_FROM = re.compile(r"""import\s+(?:type\s+)?[\w$*{}\s,]+?\s+from\s*['"][^'"\n]+['"]""")
_IMPORT_SIDE_EFFECT = re.compile(r"""import\s*['"][^'"\n]+['"]""")


def strip_code(content: str, keep_strings: bool = False) -> str:
    """Blank out comments (and, unless kept, string literals) preserving newlines.

    A quote directly after a letter is treated as an apostrophe in JSX text,
    not as the start of a string.
    """
    out: list[str] = []
    i, n = 0, len(content)
    while i < n:
        ch = content[i]
        nxt = content[i + 1] if i + 1 < n else ""
        if ch == "/" and nxt == "/":
            end = content.find("\n", i)
            i = n if end == -1 else end
            continue
        if ch == "/" and nxt == "*":
            end = content.find("*/", i + 2)
            end = n if end == -1 else end + 2
            out.append("".join(c for c in content[i:end] if c == "\n"))
            i = end
            continue
        if ch in "'\"`" and not (ch != "`" and i > 0 and content[i - 1].isalnum()):
            j = i + 1
            while j < n and content[j] != ch:
                if content[j] == "\\":
                    j += 1
                elif content[j] == "\n" and ch != "`":
                    break
                j += 1
            # an unterminated quote ends at the line break, which is kept
            end = j if j >= n or content[j] == "\n" else j + 1
            literal = content[i:end]
            if keep_strings:
                out.append(literal)
            else:
                out.append(ch + "".join(c for c in literal[1:] if c == "\n") + ch)
            i = end
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def _bracket_problems(code: str) -> list[str]:
    stack: list[tuple[str, int]] = []
    line = 1
    for ch in code:
        if ch == "\n":
            line += 1
        elif ch in "([{":
            stack.append((ch, line))
        elif ch in _PAIRS:
            if not stack:
                return [f"unexpected '{ch}' on line {line}"]
            opener, _ = stack.pop()
            if opener != _PAIRS[ch]:
                return [f"mismatched '{opener}' closed by '{ch}' on line {line}"]
    if stack:
        opener, opened_at = stack[-1]
        return [f"unclosed '{opener}' opened on line {opened_at} ({len(stack)} left open)"]
    return []


def check_source(content: str) -> list[str]:
    code = strip_code(content)
    problems = _bracket_problems(code)
    if _DANGLING_ARROW.search(code):
        problems.append("arrow function without a body")
    for match in _FUNCTION_KEYWORD.finditer(code):
        if not _FUNCTION_HEAD.match(code, match.end()):
            problems.append("'function' keyword without a parameter list")
            break
    with_strings = strip_code(content, keep_strings=True)
    for match in _IMPORT_START.finditer(with_strings):
        pos = match.start() + len(match.group(0)) - len("import")
        if not (_IMPORT_FROM.match(with_strings, pos) or _IMPORT_SIDE_EFFECT.match(with_strings, pos)):
            line = with_strings.count("\n", 0, pos) + 1
            problems.append(f"malformed import statement on line {line}")
    return problems


def validate_syntax(
    files: Sequence[SourceFile],
    existing_files: Iterable[SourceFile] = (),
) -> list[ValidationFinding]:
    findings = []
    for f in files:
        if not is_script(f.filename):
            continue
        for problem in check_source(f.content):
            findings.append(ValidationFinding(f.filename, problem, FindingKind.SYNTAX_RISK))
    return findings
