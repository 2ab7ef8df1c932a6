"""
Deterministic risk heuristic.

Fast, free and reproducible: scores a PR from file count, churn, the title,
touched paths and user-defined rules, without calling any model. Broken
user patterns are skipped, never fatal.
"""

import fnmatch
import logging
import re
from typing import Callable, List, Optional, Pattern, Sequence

from reviewpilot.models import CustomRule, HeuristicFactor, HeuristicRiskResult, RiskLevel

logger = logging.getLogger(__name__)

BASE_SCORE = 10

SUSPICIOUS_TITLE_WORDS = ["auth", "payment", "billing", "security", "token", "encrypt", "permission"]

PATH_SIGNALS = [
    ("migrations", re.compile(r'migrations?/', re.IGNORECASE), 12, "Touches migrations"),
    ("infra", re.compile(r'(docker|k8s|terraform|pulumi|helm)\b', re.IGNORECASE), 10, "Touches infra/deploy"),
    ("auth", re.compile(r'(auth|oauth|jwt|session)\b', re.IGNORECASE), 10, "Touches auth"),
    ("payments", re.compile(r'(billing|payment|stripe)\b', re.IGNORECASE), 12, "Touches billing/payments"),
]

RULE_SEVERITY_WEIGHTS = {
    "critical": 28,
    "high": 18,
    "warning": 10,
    "info": 5,
}

# Canonical level thresholds, shared with the multi-factor scorer
LEVEL_THRESHOLDS = [("critical", 85), ("high", 65), ("medium", 35)]


class InvalidUserPattern(ValueError):
    """A user-supplied regex or glob could not be compiled."""
    pass


def score_to_level(score: float) -> RiskLevel:
    """Map a 0-100 score to a risk level."""
    for level, threshold in LEVEL_THRESHOLDS:
        if score >= threshold:
            return level
    return "low"


# ── Checks ──────────────────────────────────────────────────────────────────
# Each check receives the normalized inputs and returns the factors it fired.

def check_file_count(files: int, churn: int, title: str, paths: Sequence[str]) -> List[HeuristicFactor]:
    """Flag PRs touching many files."""
    if files >= 20:
        return [HeuristicFactor(key="many_files", weight=35, detail=f"{files} files changed")]
    if files >= 10:
        return [HeuristicFactor(key="files", weight=22, detail=f"{files} files changed")]
    if files >= 5:
        return [HeuristicFactor(key="files", weight=12, detail=f"{files} files changed")]
    return []


def check_churn(files: int, churn: int, title: str, paths: Sequence[str]) -> List[HeuristicFactor]:
    """Flag large diffs."""
    if churn >= 2000:
        return [HeuristicFactor(key="huge_diff", weight=40, detail=f"{churn} lines changed")]
    if churn >= 800:
        return [HeuristicFactor(key="large_diff", weight=28, detail=f"{churn} lines changed")]
    if churn >= 250:
        return [HeuristicFactor(key="diff", weight=16, detail=f"{churn} lines changed")]
    return []


def check_title(files: int, churn: int, title: str, paths: Sequence[str]) -> List[HeuristicFactor]:
    """Flag titles mentioning a sensitive area (first match only)."""
    lower_title = title.lower()
    for word in SUSPICIOUS_TITLE_WORDS:
        if word in lower_title:
            return [HeuristicFactor(key="sensitive_area", weight=10, detail=f"Title mentions {word}")]
    return []


def check_paths(files: int, churn: int, title: str, paths: Sequence[str]) -> List[HeuristicFactor]:
    """Flag sensitive directories and file types."""
    factors = []
    for key, pattern, weight, detail in PATH_SIGNALS:
        if any(pattern.search(p) for p in paths):
            factors.append(HeuristicFactor(key=key, weight=weight, detail=detail))
    return factors


# Registry of built-in checks
CHECK_REGISTRY: List[Callable[..., List[HeuristicFactor]]] = [
    check_file_count,
    check_churn,
    check_title,
    check_paths,
]


# ── Custom rules ────────────────────────────────────────────────────────────

def compile_regex(pattern: str) -> Pattern:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        raise InvalidUserPattern(f"Invalid regex {pattern!r}: {e}") from e


def compile_glob(pattern: str) -> Pattern:
    if not pattern or not pattern.strip():
        raise InvalidUserPattern("Empty glob pattern")
    try:
        return re.compile(fnmatch.translate(pattern))
    except re.error as e:
        raise InvalidUserPattern(f"Invalid glob {pattern!r}: {e}") from e


def rule_matches(rule: CustomRule, title: str, paths: Sequence[str]) -> bool:
    """
    A rule matches when every pattern kind it declares matches.

    The regex is searched in the title and each path; globs are matched
    against paths. Invalid patterns are dropped, and a rule left with no
    usable pattern never matches.
    """
    regex: Optional[Pattern] = None
    if rule.regex_pattern:
        try:
            regex = compile_regex(rule.regex_pattern)
        except InvalidUserPattern as e:
            logger.warning(f"Rule '{rule.name}': {e} - ignoring")

    globs: List[Pattern] = []
    for pattern in rule.file_patterns:
        try:
            globs.append(compile_glob(pattern))
        except InvalidUserPattern as e:
            logger.warning(f"Rule '{rule.name}': {e} - ignoring")

    if regex is None and not globs:
        return False

    if regex is not None:
        if not (regex.search(title) or any(regex.search(p) for p in paths)):
            return False

    if globs:
        if not any(g.match(p) for g in globs for p in paths):
            return False

    return True


def compute_risk(
    files_changed: int,
    lines_added: int,
    lines_removed: int,
    title: Optional[str] = None,
    repo_full_name: Optional[str] = None,
    file_paths: Optional[Sequence[str]] = None,
    custom_rules: Optional[Sequence[CustomRule]] = None,
) -> HeuristicRiskResult:
    """Run all registered checks and custom rules; no model calls."""
    files = max(0, files_changed or 0)
    added = max(0, lines_added or 0)
    removed = max(0, lines_removed or 0)
    churn = added + removed
    title = title or ""
    paths = list(file_paths or [])

    factors: List[HeuristicFactor] = []
    for check in CHECK_REGISTRY:
        factors.extend(check(files, churn, title, paths))

    matched_rules = []
    for rule in custom_rules or []:
        if not rule.enabled:
            continue
        if rule_matches(rule, title, paths):
            weight = RULE_SEVERITY_WEIGHTS.get(rule.severity, RULE_SEVERITY_WEIGHTS["warning"])
            factors.append(HeuristicFactor(key=f"rule:{rule.name}", weight=weight, detail=f"Matches rule {rule.name}"))
            matched_rules.append(rule.name)

    score = max(0, min(100, BASE_SCORE + sum(f.weight for f in factors)))
    level = score_to_level(score)

    summary = ". ".join([
        f"{level.upper()} risk change",
        f"{files} files",
        f"{added} additions",
        f"{removed} deletions",
    ]) + "."
    if matched_rules:
        summary += f" Matched rules: {', '.join(matched_rules)}."

    if repo_full_name:
        logger.debug(f"Heuristic risk for {repo_full_name}: {score} ({level})")

    return HeuristicRiskResult(
        risk_score=score,
        risk_level=level,
        summary=summary,
        risk_factors=factors,
        matched_rules=matched_rules,
        estimated_review_minutes=max(5, round(churn / 80)),
    )
