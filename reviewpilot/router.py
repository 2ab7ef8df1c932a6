"""
Model router.

Picks the model best suited to a review request by scoring every known
profile on language fit, task alignment, context window, historical
acceptance, cost, latency and risk. High-stakes requests also get a
secondary model for ensemble verification.
"""

import logging
from typing import Dict, List, Optional, Tuple

from reviewpilot.models import ModelProfile, PerformanceRecord, RoutingContext, RoutingDecision
from reviewpilot.performance import PerformanceKey, PerformanceStore

logger = logging.getLogger(__name__)


MODEL_PROFILES: Dict[str, ModelProfile] = {
    "claude-sonnet-4-20250514": ModelProfile(
        provider="anthropic",
        strengths=["security", "logic_errors", "complex_refactoring", "api_design"],
        languages=["typescript", "python", "rust", "go"],
        max_context_tokens=200_000,
        cost_per_1k_tokens=0.003,
        avg_latency_ms=2500,
        accuracy_score=0.94,
    ),
    "gpt-4o": ModelProfile(
        provider="openai",
        strengths=["documentation", "testing", "code_style", "naming"],
        languages=["javascript", "java", "c#", "php"],
        max_context_tokens=128_000,
        cost_per_1k_tokens=0.005,
        avg_latency_ms=3000,
        accuracy_score=0.91,
    ),
    "gemini-2.0-flash": ModelProfile(
        provider="google",
        strengths=["large_codebase", "multi_file", "performance", "infrastructure"],
        languages=["python", "kotlin", "swift", "yaml"],
        max_context_tokens=1_000_000,
        cost_per_1k_tokens=0.001,
        avg_latency_ms=1500,
        accuracy_score=0.88,
    ),
}

# Strengths that matter for each kind of PR
TASK_STRENGTHS: Dict[str, List[str]] = {
    "feature": ["api_design", "logic_errors", "testing"],
    "bugfix": ["logic_errors", "security", "performance"],
    "refactor": ["complex_refactoring", "code_style", "documentation"],
    "docs": ["documentation", "naming"],
    "security": ["security", "logic_errors"],
    "infra": ["infrastructure", "large_codebase"],
}

LANGUAGE_BONUS = 25
TASK_ALIGNMENT_WEIGHT = 30
CONTEXT_FIT_BONUS = 15
CONTEXT_OVERFLOW_PENALTY = 50
HISTORY_WEIGHT = 0.2
COST_BONUS = 10
COST_OVERRUN_PENALTY = 20
LATENCY_PENALTY = 15
RISK_ACCURACY_WEIGHT = 20


def task_alignment(strengths: List[str], pr_type: str) -> float:
    """Fraction of the PR type's relevant strengths the model declares."""
    relevant = TASK_STRENGTHS.get(pr_type, [])
    overlap = len([s for s in strengths if s in relevant])
    return overlap / max(len(relevant), 1)


def estimated_cost_cents(total_tokens: int, profile: ModelProfile) -> float:
    return (total_tokens / 1000) * profile.cost_per_1k_tokens * 100


class ModelRouter:
    """Routes review requests to the optimal model(s)."""

    def __init__(self, store: PerformanceStore, profiles: Optional[Dict[str, ModelProfile]] = None):
        self.store = store
        self.profiles = dict(MODEL_PROFILES if profiles is None else profiles)
        if not self.profiles:
            raise ValueError("At least one model profile is required")

    def route(self, context: RoutingContext) -> RoutingDecision:
        """Score every profile and pick the primary (and maybe secondary) model."""
        reasoning: List[str] = []
        scores: List[Tuple[str, float, bool]] = []

        for model_id, profile in self.profiles.items():
            score, fits = self._score(model_id, profile, context, reasoning)
            scores.append((model_id, score, fits))

        # Stable: ties keep declaration order. Models that cannot hold the
        # request rank after every model that can.
        ranked = sorted(scores, key=lambda item: (item[2], item[1]), reverse=True)
        primary_model, primary_score, primary_fits = ranked[0]
        primary = self.profiles[primary_model]

        if not primary_fits:
            reasoning.append(f"No model fits {context.total_tokens} tokens; {primary_model} chosen anyway")

        secondary_model = None
        if len(ranked) > 1 and (
            context.requires_multi_model
            or context.risk_level == "critical"
            or context.pr_type == "security"
        ):
            secondary_model = ranked[1][0]
            reasoning.append(f"Adding {secondary_model} for ensemble verification")

        logger.info(f"Routed {context.pr_type} review to {primary_model} (score {primary_score:.1f})")

        return RoutingDecision(
            primary_model=primary_model,
            secondary_model=secondary_model,
            reasoning=reasoning,
            confidence=min(1.0, max(0.0, primary_score / 100)),
            raw_score=round(primary_score, 2),
            estimated_cost=(context.total_tokens / 1000) * primary.cost_per_1k_tokens,
            estimated_latency_ms=primary.avg_latency_ms,
        )

    def _score(
        self,
        model_id: str,
        profile: ModelProfile,
        context: RoutingContext,
        reasoning: List[str],
    ) -> Tuple[float, bool]:
        score = 0.0

        if context.primary_language.lower() in profile.languages:
            score += LANGUAGE_BONUS
            reasoning.append(f"{model_id}: +{LANGUAGE_BONUS} for {context.primary_language} expertise")

        score += task_alignment(profile.strengths, context.pr_type) * TASK_ALIGNMENT_WEIGHT

        fits = context.total_tokens <= profile.max_context_tokens
        if context.total_tokens <= profile.max_context_tokens * 0.8:
            score += CONTEXT_FIT_BONUS
        elif not fits:
            score -= CONTEXT_OVERFLOW_PENALTY
            reasoning.append(f"{model_id}: -{CONTEXT_OVERFLOW_PENALTY}, context window too small")

        score += self.historical_performance(model_id, context.repo_id, context.primary_language) * HISTORY_WEIGHT

        if context.max_cost_cents is not None:
            cost = estimated_cost_cents(context.total_tokens, profile)
            if cost > context.max_cost_cents:
                score -= COST_OVERRUN_PENALTY
            elif context.max_cost_cents == 0:
                score += COST_BONUS  # free model under a zero budget
            else:
                score += COST_BONUS * (1 - cost / context.max_cost_cents)

        if context.max_latency_ms is not None and profile.avg_latency_ms > context.max_latency_ms:
            score -= LATENCY_PENALTY

        if context.risk_level in ("high", "critical"):
            bonus = profile.accuracy_score * RISK_ACCURACY_WEIGHT
            score += bonus
            reasoning.append(f"{model_id}: +{bonus:.0f} for high-risk accuracy")

        return score, fits

    def historical_performance(self, model_id: str, repo_id: Optional[str], language: Optional[str]) -> float:
        """0-100 score from recorded feedback, or the model's base accuracy."""
        history = self.store.query(model_id, repo_id or "global", (language or "all").lower())
        total = sum(h.sample_size for h in history)

        if total == 0:
            return self.profiles[model_id].accuracy_score * 100

        acceptance = sum(h.acceptance_rate * h.sample_size for h in history) / total
        helpfulness = sum(h.avg_helpfulness * h.sample_size for h in history) / total
        return (acceptance * 0.6 + helpfulness * 0.4) * 100

    def record_feedback(
        self,
        model_id: str,
        repo_id: str,
        language: str,
        task_type: str,
        accepted: bool,
        helpfulness_score: float,
    ) -> PerformanceRecord:
        """Fold one feedback event into the running averages."""
        if model_id not in self.profiles:
            raise ValueError(f"Unknown model: {model_id}")
        if not 1 <= helpfulness_score <= 5:
            raise ValueError(f"helpfulness_score must be 1-5, got {helpfulness_score}")

        key = PerformanceKey(model_id, repo_id or "global", (language or "all").lower(), task_type)
        accepted_value = 1.0 if accepted else 0.0
        helpfulness = helpfulness_score / 5

        def apply(current: Optional[PerformanceRecord]) -> PerformanceRecord:
            if current is None:
                return PerformanceRecord(
                    model_id=key.model_id,
                    repo_id=key.repo_id,
                    language=key.language,
                    task_type=key.task_type,
                    acceptance_rate=accepted_value,
                    avg_helpfulness=helpfulness,
                    sample_size=1,
                )
            n = current.sample_size
            return current.model_copy(update={
                "acceptance_rate": (current.acceptance_rate * n + accepted_value) / (n + 1),
                "avg_helpfulness": (current.avg_helpfulness * n + helpfulness) / (n + 1),
                "sample_size": n + 1,
            })

        return self.store.update(key, apply)
