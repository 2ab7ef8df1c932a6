"""
Multi-factor risk scoring.

Deterministic structural signals always run. AI-derived signals are added
when a provider is routed for risk assessment; any failure there degrades
to the deterministic score rather than failing the assessment.
"""

import logging
import re
from typing import List, Optional, Sequence

from reviewpilot.models import DiffContext, PRMetrics, RiskAssessment, RiskFactor
from reviewpilot.parsing import MalformedModelOutput, parse_risk_entries
from reviewpilot.prompts import RISK_SYSTEM_PROMPT, build_risk_prompt
from reviewpilot.providers import ChatMessage, CompletionOptions, ProviderError, ProviderGateway
from reviewpilot.rules import score_to_level

logger = logging.getLogger(__name__)

SENSITIVE_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r'auth',
        r'login',
        r'password',
        r'secret',
        r'token',
        r'payment',
        r'billing',
        r'checkout',
        r'security',
        r'permission',
        r'admin',
        r'migration',
    )
] + [
    re.compile(r'\.env'),
    re.compile(r'(^|/)config\.(ts|js|json|py|ya?ml|toml)$'),
]

INFRA_PATTERNS = [
    re.compile(r'dockerfile', re.IGNORECASE),
    re.compile(r'docker-compose', re.IGNORECASE),
    re.compile(r'kubernetes', re.IGNORECASE),
    re.compile(r'k8s', re.IGNORECASE),
    re.compile(r'\.ya?ml$'),
    re.compile(r'terraform', re.IGNORECASE),
    re.compile(r'\.tf$'),
    re.compile(r'ci/', re.IGNORECASE),
    re.compile(r'\.github/workflows', re.IGNORECASE),
    re.compile(r'jenkinsfile', re.IGNORECASE),
]

# AI analysis limits (characters)
MAX_AI_INPUT_CHARS = 50_000
AI_PROMPT_CHARS = 30_000
MAX_AI_FACTORS = 3
AI_FACTOR_WEIGHT = 2.0

SIZE_FACTOR = "PR Size"
SENSITIVE_FACTOR = "Sensitive Files"
INFRA_FACTOR = "Infrastructure Changes"
TEST_FACTOR = "Test Coverage"
AUTHOR_FACTOR = "Author Experience"
TIMING_FACTOR = "Timing Risk"

SIGNIFICANT_VALUE = 0.3


def analyze_pr_size(metrics: PRMetrics) -> RiskFactor:
    total_lines = metrics.lines_added + metrics.lines_removed

    if total_lines < 100:
        value, description = 0.1, "Small PR, easy to review"
    elif total_lines < 300:
        value, description = 0.3, "Medium-sized PR"
    elif total_lines < 500:
        value, description = 0.6, "Large PR, harder to review carefully"
    else:
        value, description = 0.9, "Very large PR, high risk of missed issues"

    return RiskFactor(name=SIZE_FACTOR, description=description, weight=2, value=value)


def _matching(diffs: Sequence[DiffContext], patterns) -> List[str]:
    return [d.file_path for d in diffs if any(p.search(d.file_path) for p in patterns)]


def analyze_sensitive_files(diffs: Sequence[DiffContext]) -> RiskFactor:
    sensitive = _matching(diffs, SENSITIVE_PATTERNS)
    if sensitive:
        description = f"Modifies {len(sensitive)} sensitive file(s): {', '.join(sensitive)}"
    else:
        description = "No sensitive files modified"
    return RiskFactor(
        name=SENSITIVE_FACTOR,
        description=description,
        weight=3,
        value=min(1.0, len(sensitive) * 0.3),
    )


def analyze_infrastructure(diffs: Sequence[DiffContext]) -> RiskFactor:
    infra = _matching(diffs, INFRA_PATTERNS)
    if infra:
        description = f"Modifies {len(infra)} infrastructure file(s)"
    else:
        description = "No infrastructure changes"
    return RiskFactor(
        name=INFRA_FACTOR,
        description=description,
        weight=2.5,
        value=min(1.0, len(infra) * 0.4),
    )


def analyze_test_coverage(metrics: PRMetrics) -> RiskFactor:
    ratio = metrics.test_files_changed / metrics.files_changed if metrics.files_changed > 0 else 0

    if ratio == 0 and metrics.lines_added > 50:
        value, description = 0.8, "No test changes for significant code changes"
    elif ratio < 0.2:
        value, description = 0.5, "Low test coverage for changes"
    elif ratio < 0.5:
        value, description = 0.2, "Moderate test coverage"
    else:
        value, description = 0.05, "Good test coverage"

    return RiskFactor(name=TEST_FACTOR, description=description, weight=2, value=value)


def analyze_author_experience(metrics: PRMetrics) -> RiskFactor:
    success_rate = metrics.author_success_rate if metrics.author_success_rate is not None else 0.5
    familiarity = metrics.author_familiarity if metrics.author_familiarity is not None else 0.5
    value = 1 - (success_rate * 0.6 + familiarity * 0.4)

    if value > 0.5:
        description = "Author is less familiar with these files"
    else:
        description = "Author has good history with these files"
    return RiskFactor(
        name=AUTHOR_FACTOR,
        description=description,
        weight=1.5,
        value=min(1.0, max(0.0, value)),
    )


def analyze_timing(metrics: PRMetrics) -> RiskFactor:
    hour = metrics.time_of_day
    day = metrics.day_of_week

    if day == 5 and hour >= 15:
        value, description = 0.7, "Friday afternoon - higher deploy risk"
    elif hour >= 22 or hour <= 5:
        value, description = 0.5, "Late night change - may lack thorough review"
    elif day in (0, 6):
        value, description = 0.3, "Weekend change - fewer reviewers available"
    else:
        value, description = 0.0, "Normal working hours"

    return RiskFactor(name=TIMING_FACTOR, description=description, weight=1, value=value)


def generate_suggestions(factors: Sequence[RiskFactor]) -> List[str]:
    suggestions = []
    for factor in factors:
        if factor.name == SIZE_FACTOR and factor.value > 0.5:
            suggestions.append("Consider splitting this PR into smaller, focused changes")
        if factor.name == TEST_FACTOR and factor.value > 0.5:
            suggestions.append("Add tests to cover the new functionality")
        if factor.name == SENSITIVE_FACTOR and factor.value > 0.3:
            suggestions.append("Request review from security team")
        if factor.name == TIMING_FACTOR and factor.value > 0.5:
            suggestions.append("Consider deploying at a safer time")
    return suggestions


class RiskScorer:
    """Calculates multi-factor risk scores for pull requests."""

    def __init__(self, gateway: Optional[ProviderGateway] = None):
        self.gateway = gateway

    async def assess(
        self,
        diffs: Sequence[DiffContext],
        metrics: PRMetrics,
        use_ai: bool = True,
    ) -> RiskAssessment:
        """
        Calculate a comprehensive risk score for a PR.

        Never fails on AI problems - degrades to deterministic factors.
        """
        factors = self.deterministic_factors(diffs, metrics)

        ai_factors: List[RiskFactor] = []
        if use_ai:
            ai_factors = await self.analyze_with_ai(diffs)
        factors.extend(ai_factors)

        total_weight = sum(f.weight for f in factors)
        weighted = sum(f.value * f.weight for f in factors)
        score = max(0, min(100, round(weighted / total_weight * 100)))

        return RiskAssessment(
            score=score,
            level=score_to_level(score),
            factors=[f for f in factors if f.value > SIGNIFICANT_VALUE],
            suggestions=generate_suggestions(factors),
            ai_used=bool(ai_factors),
        )

    def deterministic_factors(self, diffs: Sequence[DiffContext], metrics: PRMetrics) -> List[RiskFactor]:
        factors = [
            analyze_pr_size(metrics),
            analyze_sensitive_files(diffs),
            analyze_infrastructure(diffs),
            analyze_test_coverage(metrics),
        ]
        if metrics.author_success_rate is not None:
            factors.append(analyze_author_experience(metrics))
        if metrics.time_of_day is not None and metrics.day_of_week is not None:
            factors.append(analyze_timing(metrics))
        return factors

    async def analyze_with_ai(self, diffs: Sequence[DiffContext]) -> List[RiskFactor]:
        """Ask a model for up to three content risks; best effort."""
        if self.gateway is None:
            return []

        provider = self.gateway.provider_for_task("risk_assessment")
        if provider is None:
            logger.info("No provider routed for risk assessment - skipping AI factors")
            return []

        all_changes = "\n\n---\n\n".join(f"File: {d.file_path}\n{d.diff}" for d in diffs)
        if len(all_changes) > MAX_AI_INPUT_CHARS:
            logger.info(f"Diff too large for AI risk analysis ({len(all_changes)} chars) - skipping")
            return []

        try:
            response = await self.gateway.complete(
                [ChatMessage(role="user", content=build_risk_prompt(all_changes[:AI_PROMPT_CHARS]))],
                CompletionOptions(
                    provider=provider,
                    system_prompt=RISK_SYSTEM_PROMPT,
                    max_tokens=2048,
                    temperature=0.1,
                ),
            )
        except ProviderError as e:
            logger.warning(f"AI risk analysis failed - continuing without it: {e}")
            return []

        try:
            risks = parse_risk_entries(response, limit=MAX_AI_FACTORS)
        except (MalformedModelOutput, RecursionError, ValueError) as e:
            logger.warning(f"AI risk output unusable - continuing without it: {e}")
            return []

        factors = []
        for risk in risks:
            factors.append(RiskFactor(
                name=f"AI: {risk['type']}",
                description=risk["description"] or f"Potential {risk['type']} risk",
                weight=AI_FACTOR_WEIGHT,
                value=risk["severity"],
            ))
        return factors
