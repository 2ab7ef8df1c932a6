"""
Reviewer flow state detection.

Detects when reviewers are fatigued or rubber-stamping, and ranks
candidate reviewers for assignment. When several fatigue signals fire,
the most severe state and action win.
"""

from datetime import datetime
from typing import List, Optional, Sequence

from reviewpilot.models import (
    CompletedReview,
    FlowMetrics,
    FlowStateResult,
    ReviewerCandidate,
    ReviewerFactors,
    ReviewerScore,
    ReviewSession,
)

# Thresholds for fatigue detection
MAX_REVIEWS_BEFORE_BREAK = 5
MAX_SESSION_DURATION_MINUTES = 120
MIN_COMMENT_LENGTH_WORDS = 5
RUBBER_STAMP_THRESHOLD_MINUTES = 2
APPROVAL_RATE_CONCERN = 0.9  # 90%+ approval rate is suspicious
RECENT_REVIEW_WINDOW = 5

STATE_RANK = {"optimal": 0, "declining": 1, "fatigued": 2}
ACTION_RANK = {"continue": 0, "take_break": 1, "reassign": 2, "stop_reviewing": 3}

FATIGUE_FACTOR = {"optimal": 1.0, "declining": 0.5, "fatigued": 0.2}

RISK_WEIGHTS = {
    "critical": {"expertise": 0.35, "quality": 0.30, "fatigue": 0.20, "rest": 0.15},
    "high": {"expertise": 0.30, "quality": 0.25, "fatigue": 0.25, "rest": 0.20},
}
DEFAULT_WEIGHTS = {"expertise": 0.25, "quality": 0.20, "fatigue": 0.20, "rest": 0.35}


def review_minutes(review: CompletedReview) -> float:
    return (review.completed_at - review.started_at).total_seconds() / 60


def avg_duration(reviews: Sequence[CompletedReview]) -> float:
    if not reviews:
        return 0.0
    return sum(review_minutes(r) for r in reviews) / len(reviews)


def avg_comment_length(reviews: Sequence[CompletedReview]) -> float:
    if not reviews:
        return 0.0
    return sum(r.avg_comment_length for r in reviews) / len(reviews)


def _escalate(current: str, candidate: str, rank: dict) -> str:
    return candidate if rank[candidate] > rank[current] else current


class FlowStateAnalyzer:
    """Classifies reviewer flow state and ranks reviewers."""

    def analyze_flow_state(self, session: ReviewSession, now: Optional[datetime] = None) -> FlowStateResult:
        """Analyze a reviewer's current flow state."""
        now = now or datetime.now(session.session_start.tzinfo)
        reviews = session.reviews
        recent = reviews[-RECENT_REVIEW_WINDOW:]

        reviews_this_session = len(reviews)
        session_minutes = max(0.0, (now - session.session_start).total_seconds() / 60)
        avg_review = avg_duration(recent)
        avg_length = avg_comment_length(recent)
        approval_rate = (
            len([r for r in recent if r.verdict == "approved"]) / len(recent) if recent else 0.0
        )

        velocity_trend = "stable"
        quality_trend = "stable"
        if len(recent) >= 3:
            first, last = avg_duration(recent[:2]), avg_duration(recent[-2:])
            if last < first * 0.7:
                velocity_trend = "increasing"  # getting faster
            elif last > first * 1.3:
                velocity_trend = "decreasing"  # getting slower

            first_len, last_len = avg_comment_length(recent[:2]), avg_comment_length(recent[-2:])
            if last_len < first_len * 0.6:
                quality_trend = "declining"
            elif last_len > first_len * 1.2:
                quality_trend = "improving"

        risks: List[str] = []
        state = "optimal"
        action = "continue"

        if avg_review < RUBBER_STAMP_THRESHOLD_MINUTES and reviews_this_session >= 3:
            risks.append("Possible rubber stamping detected - reviews are very quick")
            state = _escalate(state, "fatigued", STATE_RANK)
            action = _escalate(action, "reassign", ACTION_RANK)

        if reviews_this_session >= MAX_REVIEWS_BEFORE_BREAK:
            risks.append(f"{reviews_this_session} reviews without a break exceeds recommended limit")
            state = _escalate(state, "declining", STATE_RANK)
            action = _escalate(action, "take_break", ACTION_RANK)

        if session_minutes > MAX_SESSION_DURATION_MINUTES:
            risks.append(f"Session duration ({round(session_minutes)}min) is very long")
            state = _escalate(state, "fatigued", STATE_RANK)
            action = _escalate(action, "stop_reviewing", ACTION_RANK)

        if avg_length < MIN_COMMENT_LENGTH_WORDS and any(r.comments_left > 0 for r in recent):
            risks.append("Comment quality is declining - shorter than usual")
            state = _escalate(state, "declining", STATE_RANK)

        if recent and approval_rate >= APPROVAL_RATE_CONCERN:
            risks.append(f"High approval rate ({round(approval_rate * 100)}%) - may be missing issues")
            state = _escalate(state, "declining", STATE_RANK)

        if velocity_trend == "increasing" and reviews_this_session >= 3:
            risks.append("Reviews are getting faster - possible fatigue")
        if quality_trend == "declining":
            risks.append("Comment quality is declining over time")

        recommendations = self._recommendations(session, state, action, reviews_this_session, now)

        return FlowStateResult(
            current_state=state,
            confidence=0.9 if not risks else 0.7,
            metrics=FlowMetrics(
                reviews_this_session=reviews_this_session,
                avg_review_duration=round(avg_review, 1),
                review_velocity_trend=velocity_trend,
                comment_quality_trend=quality_trend,
                approval_rate=round(approval_rate, 2),
                minutes_since_break=round(session_minutes),
            ),
            risks=risks,
            recommendations=recommendations,
            suggested_action=action,
        )

    def _recommendations(
        self,
        session: ReviewSession,
        state: str,
        action: str,
        reviews_this_session: int,
        now: datetime,
    ) -> List[str]:
        recommendations = []
        if state == "optimal":
            recommendations.append("Reviewer is in good flow state")
        if action == "take_break":
            recommendations.append("Recommend a 10-15 minute break")
            recommendations.append(f"{session.username} has reviewed {reviews_this_session} PRs this session")
        if action == "stop_reviewing":
            recommendations.append("Recommend ending review session for today")
            recommendations.append("Queue remaining PRs for next session")
        if action == "reassign":
            recommendations.append("Consider reassigning PR to another reviewer")
            recommendations.append(f"{session.username}'s review quality may be compromised")

        # Time-of-day advisories apply regardless of state
        if now.hour >= 17:
            recommendations.append("End of day - consider deferring complex reviews")
        if now.weekday() == 4 and now.hour >= 15:
            recommendations.append("Friday afternoon - avoid merging critical changes")
        return recommendations

    def score_reviewers(
        self,
        files: Sequence[str],
        risk_level: str,
        candidates: Sequence[ReviewerCandidate],
        now: Optional[datetime] = None,
    ) -> List[ReviewerScore]:
        """Score potential reviewers for assignment, best first."""
        weights = RISK_WEIGHTS.get(risk_level, DEFAULT_WEIGHTS)
        return sorted(
            (self._score_candidate(files, weights, c, now) for c in candidates),
            key=lambda s: s.overall_score,
            reverse=True,
        )

    def _score_candidate(
        self,
        files: Sequence[str],
        weights: dict,
        candidate: ReviewerCandidate,
        now: Optional[datetime],
    ) -> ReviewerScore:
        factors = ReviewerFactors()
        reasoning = []

        areas = [a.lower() for a in candidate.expertise_areas if a]
        if files:
            matching = [f for f in files if any(a in f.lower() for a in areas)]
            factors.expertise = min(1.0, len(matching) / len(files))
        if factors.expertise > 0.7:
            reasoning.append(f"High expertise match ({round(factors.expertise * 100)}%)")

        factors.availability = max(0.0, 1 - candidate.current_workload * 0.15)
        if candidate.current_workload > 5:
            reasoning.append(f"High workload ({candidate.current_workload} PRs in queue)")
        factors.workload_balance = factors.availability

        if candidate.recent_session:
            flow = self.analyze_flow_state(candidate.recent_session, now)
            factors.recent_fatigue = FATIGUE_FACTOR[flow.current_state]
            if flow.current_state != "optimal":
                reasoning.append(f"Flow state: {flow.current_state}")
        else:
            factors.recent_fatigue = 1.0

        factors.response_time = max(0.0, 1 - candidate.avg_response_time / 24)
        factors.quality_history = candidate.quality_score

        rest = (factors.availability + factors.response_time + factors.workload_balance) / 3
        overall = (
            factors.expertise * weights["expertise"]
            + factors.quality_history * weights["quality"]
            + factors.recent_fatigue * weights["fatigue"]
            + rest * weights["rest"]
        )

        return ReviewerScore(
            user_id=candidate.user_id,
            username=candidate.username,
            overall_score=min(1.0, max(0.0, round(overall, 2))),
            factors=factors,
            reasoning=reasoning,
        )
