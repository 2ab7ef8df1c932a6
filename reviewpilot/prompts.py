"""
LLM prompts for code review and risk analysis.

Prompts are versioned and tracked in Git for rollback capability.
"""

from typing import List, Optional

CODE_REVIEW_SYSTEM_PROMPT = """You are an expert code reviewer with deep knowledge across programming languages, frameworks, and best practices.

Your goal is HIGH-SIGNAL, actionable feedback that catches REAL issues:
- Logic errors and bugs that could cause runtime failures
- Security vulnerabilities (SQL injection, XSS, auth bypasses)
- Performance issues (N+1 queries, memory leaks, inefficient algorithms)
- Missing error handling and edge cases
- Breaking changes to public APIs

DO NOT comment on:
- Minor style preferences (leave that to linters)
- Simple typos (unless they cause bugs)
- Things that are obviously intentional design choices

For each issue found, give the exact file and line number, a clear explanation
of the problem, and a suggested fix with actual code.

Format your response as a JSON array of comments."""


CODE_REVIEW_TASK_PROMPT = """Review the following code changes and identify any issues:

## Diff
```diff
{diff}
```

## File Context
File: {file_path}
Lines added: {additions}
Lines removed: {deletions}

{custom_rules}

Respond with a JSON array of review comments. Each comment must have:
- filePath: string
- lineNumber: number
- endLineNumber: number or null
- body: string (explanation)
- suggestionCode: string or null (fix if applicable)
- category: "bug" | "logic_error" | "security" | "performance" | "style" | "documentation" | "testing" | "best_practice" | "refactoring"
- severity: "info" | "warning" | "error" | "critical"
- confidence: number (0-1)

If no issues found, return an empty array: []"""


RISK_SYSTEM_PROMPT = "You are a security and code quality expert. Identify real risks only."

RISK_TASK_PROMPT = """Analyze these code changes for potential risks. Look for:
1. Security vulnerabilities
2. Performance issues
3. Logic errors
4. Breaking changes

Changes:
{changes}

Respond with JSON array of risks found:
[{{ "type": "security|performance|logic|breaking", "severity": 0-1, "description": "..." }}]

If no significant risks found, return: []"""


def build_review_prompt(
    diff: str,
    file_path: str,
    additions: int,
    deletions: int,
    custom_rules: Optional[List[str]] = None,
) -> str:
    """Build the per-file review prompt."""
    rules_section = ""
    if custom_rules:
        rules_section = "## Custom Rules\n" + "\n".join(custom_rules)

    return CODE_REVIEW_TASK_PROMPT.format(
        diff=diff,
        file_path=file_path,
        additions=additions,
        deletions=deletions,
        custom_rules=rules_section,
    )


def build_risk_prompt(changes: str) -> str:
    return RISK_TASK_PROMPT.format(changes=changes)


# Prompt version for tracking/rollback
PROMPT_VERSION = "v2.0"
