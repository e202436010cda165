# aiclient/core/code_actions.py
"""
One-off code actions built on AiClient.ask_about_code. None of them touch the
conversation history.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional

from aiclient.infra.llm.base import GenerationResult
from .code_utils import extract_and_indent_code, parse_hints

if TYPE_CHECKING:
    from .client import AiClient

log = logging.getLogger("actions")


@dataclass(frozen=True)
class CodeAction:
    name: str
    title: str
    prompt: str

    def instruction_for(self, code: str) -> str:
        # Prompts with a {code} slot embed the snippet themselves
        return self.prompt.format(code=code) if "{code}" in self.prompt else self.prompt


EXPLAIN = CodeAction(
    "explain", "Explain Code",
    "Please explain this code in detail. Describe what it does, how it works, "
    "and any important concepts or patterns used.",
)
IMPROVE = CodeAction(
    "improve", "Improve Code",
    "Please analyze this code and suggest improvements. Consider performance, "
    "readability, best practices, and potential bugs. Provide the improved code "
    "with explanations.",
)
GENERATE_DOCS = CodeAction(
    "docs", "Generate Documentation",
    "Please generate comprehensive documentation for this code. Include "
    "descriptions of purpose, parameters, return values, and usage examples "
    "where appropriate.",
)
WHAT_AM_I_DOING = CodeAction(
    "context", "What Am I Doing",
    "Analyze the following code snippet, which represents the context immediately preceding "
    "the developer's cursor.\n"
    "Based on this code, explain clearly and concisely what the developer is likely trying to "
    "achieve or implement right now.\n\n"
    "Use a helpful, observant tone. Start with \"It looks like you are...\" or similar.\n"
    "Keep it brief (2-3 sentences max).\n\n"
    "Code Context:\n```\n{code}\n```\n",
)

ACTIONS: Dict[str, CodeAction] = {a.name: a for a in (EXPLAIN, IMPROVE, GENERATE_DOCS, WHAT_AM_I_DOING)}

ERROR_CHECK_PROMPT = """Analyze this code for ACTUAL ERRORS ONLY.

Errors are: syntax errors, compilation errors, undefined variables, type mismatches, obvious bugs.
NOT errors: style issues, naming conventions, comments, unused variables, performance.

If the code has NO actual errors that would prevent compilation or cause runtime failures, respond with exactly:
NO_ERRORS

If the code HAS actual errors, respond with exactly:
HAS_ERRORS

Code to check:
"""

SOLUTION_PROMPT = """Fix the errors in this code.

CRITICAL: Make MINIMAL changes. Only fix actual bugs/errors.
- Do NOT change variable names
- Do NOT change method names
- Do NOT reorder code
- Do NOT add comments
- Do NOT change formatting/style
- ONLY fix the actual error

Return ONLY the fixed code in a code block. No explanations.

Code:
"""

HINTS_PROMPT = """This code has an error. Provide 3 hints to help find the bug.
Do NOT reveal the exact solution.

Format:
[HINT1] First hint (vague)
[HINT2] Second hint (more specific)
[HINT3] Third hint (almost reveals it)

Code:
"""

NO_ERRORS_MARKER = "NO_ERRORS"


def get_action(name: str) -> CodeAction:
    try:
        return ACTIONS[name]
    except KeyError:
        raise KeyError(f"Unknown action {name!r}; choose from {', '.join(sorted(ACTIONS))}") from None


def run_code_action(client: "AiClient", action: CodeAction, code: str, *, cancel=None) -> GenerationResult:
    if not code or not code.strip():
        raise ValueError("No code selected")
    log.info("Running action %s on %d chars", action.name, len(code))
    return client.ask_about_code(code, action.instruction_for(code), cancel=cancel)


@dataclass
class ErrorReport:
    has_errors: bool
    fixed_code: Optional[str] = None
    hints: List[str] = field(default_factory=list)
    raw: str = ""
    failure: Optional[GenerationResult] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


def detect_errors(client: "AiClient", code: str, *, learning: bool = False, cancel=None) -> ErrorReport:
    """
    Two-step check: first ask whether the snippet has real errors, then ask
    for either a minimal fix (solution mode) or three hints (learning mode).
    """
    if not code or not code.strip():
        raise ValueError("No code selected")

    check = client.ask_about_code(code, ERROR_CHECK_PROMPT + code, cancel=cancel)
    if not check.ok:
        return ErrorReport(has_errors=False, failure=check)
    if NO_ERRORS_MARKER in check.text.strip().upper():
        return ErrorReport(has_errors=False, raw=check.text)

    if learning:
        reply = client.ask_about_code(code, HINTS_PROMPT + code, cancel=cancel)
        if not reply.ok:
            return ErrorReport(has_errors=True, failure=reply)
        return ErrorReport(has_errors=True, hints=parse_hints(reply.text), raw=reply.text)

    reply = client.ask_about_code(code, SOLUTION_PROMPT, cancel=cancel)
    if not reply.ok:
        return ErrorReport(has_errors=True, failure=reply)
    fixed = extract_and_indent_code(reply.text, code)
    return ErrorReport(has_errors=True, fixed_code=fixed, raw=reply.text)
