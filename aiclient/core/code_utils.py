# aiclient/core/code_utils.py
from __future__ import annotations
import re
from typing import List

FENCE = "```"
_HINT_RE = re.compile(r"^\s*\[HINT(\d+)\]\s*(.+?)\s*$")


def extract_code(response: str | None) -> str:
    """Body of the first fenced block (language tag skipped); plain text if there is no fence."""
    if not response:
        return ""
    start = response.find(FENCE)
    if start == -1:
        return response.strip()
    body_start = response.find("\n", start)
    if body_start == -1:
        return response.strip()
    body_start += 1
    end = response.find(FENCE, body_start)
    if end == -1:
        return response[body_start:].strip()
    return response[body_start:end].strip()


def leading_whitespace(line: str) -> str:
    return line[: len(line) - len(line.lstrip())]


def reindent_code(code: str, original_selection: str) -> str:
    """Indent every non-blank line of `code` like the first line of the original selection."""
    if not code or not original_selection:
        return code
    first_line = original_selection.splitlines()[0] if original_selection.splitlines() else ""
    indent = leading_whitespace(first_line)
    return "\n".join(line if not line.strip() else indent + line for line in code.splitlines())


def extract_and_indent_code(response: str, original_selection: str) -> str:
    return reindent_code(extract_code(response), original_selection)


def parse_hints(text: str) -> List[str]:
    """`[HINT1] ...` style lines, ordered by hint number."""
    found = []
    for line in (text or "").splitlines():
        m = _HINT_RE.match(line)
        if m:
            found.append((int(m.group(1)), m.group(2)))
    return [hint for _, hint in sorted(found)]
