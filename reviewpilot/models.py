"""
Data models for the review decision engine.
Using Pydantic for validation and type safety.

Every value returned by the engine is one of these models, so callers can
serialize results directly with ``model_dump()``.
"""

from datetime import datetime
from typing import Optional, List, Literal
from pydantic import BaseModel, ConfigDict, Field


RiskLevel = Literal["low", "medium", "high", "critical"]
ReviewType = Literal["full", "quick", "security_focused", "performance_focused"]
TaskName = Literal["code_review", "summarization", "suggestions", "risk_assessment"]

ReviewCategory = Literal[
    "bug",
    "logic_error",
    "security",
    "performance",
    "style",
    "documentation",
    "testing",
    "best_practice",
    "refactoring",
]
ReviewSeverity = Literal["info", "warning", "error", "critical"]

FlowState = Literal["optimal", "declining", "fatigued"]
FlowAction = Literal["continue", "take_break", "reassign", "stop_reviewing"]
Trend = Literal["increasing", "stable", "decreasing"]
QualityTrend = Literal["improving", "stable", "declining"]


# ── Diffs and routing ───────────────────────────────────────────────────────

class DiffContext(BaseModel):
    """One file's change, the unit of review work."""

    model_config = ConfigDict(frozen=True)

    file_path: str
    diff: str = Field(..., description="Unified diff text for this file")
    additions: int = Field(0, ge=0)
    deletions: int = Field(0, ge=0)
    language: Optional[str] = None


class ModelProfile(BaseModel):
    """Static description of one provider model."""

    model_config = ConfigDict(frozen=True)

    provider: str
    strengths: List[str]
    languages: List[str]
    max_context_tokens: int = Field(..., gt=0)
    cost_per_1k_tokens: float = Field(..., ge=0.0)
    avg_latency_ms: int = Field(..., ge=0)
    accuracy_score: float = Field(..., ge=0.0, le=1.0)


class RoutingContext(BaseModel):
    """Per-request input to the model router."""

    files: List[DiffContext] = Field(default_factory=list)
    primary_language: str
    total_tokens: int = Field(..., ge=0)
    risk_level: RiskLevel = "low"
    pr_type: str = Field("feature", description="feature, bugfix, refactor, docs, security, infra")
    review_type: ReviewType = "full"
    author_id: Optional[str] = None
    repo_id: Optional[str] = None
    max_latency_ms: Optional[int] = None
    max_cost_cents: Optional[float] = None
    requires_multi_model: bool = False


class RoutingDecision(BaseModel):
    """Which model(s) should handle a review task, and why."""

    primary_model: str
    secondary_model: Optional[str] = None
    reasoning: List[str] = Field(default_factory=list)
    confidence: float = Field(..., ge=0.0, le=1.0)
    raw_score: float = Field(..., description="Unclamped primary score")
    estimated_cost: float = Field(..., description="Estimated cost in USD")
    estimated_latency_ms: int


class PerformanceRecord(BaseModel):
    """Historical feedback for one (model, repo, language, task type)."""

    model_id: str
    repo_id: str
    language: str
    task_type: str
    acceptance_rate: float = Field(0.0, ge=0.0, le=1.0)
    false_positive_rate: float = Field(0.0, ge=0.0, le=1.0, description="Reserved; kept as-is by feedback updates")
    avg_helpfulness: float = Field(0.0, ge=0.0, le=1.0, description="Helpfulness 1-5 scaled to 0-1")
    sample_size: int = Field(0, ge=0)


# ── Risk ────────────────────────────────────────────────────────────────────

class PRMetrics(BaseModel):
    """Aggregate pull request metrics used by the risk scorer."""

    lines_added: int = Field(0, ge=0)
    lines_removed: int = Field(0, ge=0)
    files_changed: int = Field(0, ge=0)
    test_files_changed: int = Field(0, ge=0)
    author_success_rate: Optional[float] = Field(None, ge=0.0, le=1.0)
    author_familiarity: Optional[float] = Field(None, ge=0.0, le=1.0)
    time_of_day: Optional[int] = Field(None, ge=0, le=23)
    day_of_week: Optional[int] = Field(None, ge=0, le=6, description="0 = Sunday")


class RiskFactor(BaseModel):
    """One weighted, normalized signal contributing to a risk score."""

    name: str
    description: str
    weight: float = Field(..., gt=0.0)
    value: float = Field(..., ge=0.0, le=1.0)


class RiskAssessment(BaseModel):
    """Multi-factor risk assessment for a pull request."""

    score: int = Field(..., ge=0, le=100)
    level: RiskLevel
    factors: List[RiskFactor] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    ai_used: bool = False


class CustomRule(BaseModel):
    """User-defined review rule."""

    name: str
    prompt: str = ""
    regex_pattern: Optional[str] = None
    file_patterns: List[str] = Field(default_factory=list)
    severity: Literal["info", "warning", "high", "critical"] = "warning"
    enabled: bool = True


class HeuristicFactor(BaseModel):
    """Signal that fired in the deterministic heuristic."""

    key: str
    weight: int
    detail: str


class HeuristicRiskResult(BaseModel):
    """Output of the deterministic risk heuristic."""

    risk_score: int = Field(..., ge=0, le=100)
    risk_level: RiskLevel
    summary: str
    risk_factors: List[HeuristicFactor] = Field(default_factory=list)
    matched_rules: List[str] = Field(default_factory=list)
    estimated_review_minutes: int


# ── Review comments ─────────────────────────────────────────────────────────

class ReviewComment(BaseModel):
    """Single structured review comment."""

    file_path: str
    line_number: int = Field(1, ge=1)
    end_line_number: Optional[int] = None
    side: Literal["LEFT", "RIGHT"] = "RIGHT"
    body: str
    suggestion_code: Optional[str] = None
    category: ReviewCategory = "best_practice"
    severity: ReviewSeverity = "warning"
    confidence: float = Field(0.5, ge=0.0, le=1.0)


class ReviewBatch(BaseModel):
    """Outcome of reviewing a batch of files."""

    comments: List[ReviewComment] = Field(default_factory=list)
    reviewed_files: List[str] = Field(default_factory=list)
    failed_files: List[str] = Field(default_factory=list)
    cancelled_files: List[str] = Field(default_factory=list)


# ── Reviewer flow state ─────────────────────────────────────────────────────

class CompletedReview(BaseModel):
    started_at: datetime
    completed_at: datetime
    verdict: Literal["approved", "changes_requested", "commented"]
    comments_left: int = Field(0, ge=0)
    avg_comment_length: float = Field(0.0, ge=0.0, description="Average words per comment")


class ReviewSession(BaseModel):
    user_id: str
    username: str
    session_start: datetime
    reviews: List[CompletedReview] = Field(default_factory=list)


class FlowMetrics(BaseModel):
    reviews_this_session: int
    avg_review_duration: float = Field(..., description="Minutes")
    review_velocity_trend: Trend
    comment_quality_trend: QualityTrend
    approval_rate: float = Field(..., ge=0.0, le=1.0)
    minutes_since_break: int


class FlowStateResult(BaseModel):
    """Classified reviewer flow state."""

    current_state: FlowState
    confidence: float = Field(..., ge=0.0, le=1.0)
    metrics: FlowMetrics
    risks: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    suggested_action: FlowAction


class ReviewerCandidate(BaseModel):
    user_id: str
    username: str
    expertise_areas: List[str] = Field(default_factory=list)
    current_workload: int = Field(0, ge=0)
    avg_response_time: float = Field(0.0, ge=0.0, description="Hours")
    quality_score: float = Field(0.5, ge=0.0, le=1.0)
    recent_session: Optional[ReviewSession] = None


class ReviewerFactors(BaseModel):
    expertise: float = 0.0
    availability: float = 0.0
    workload_balance: float = 0.0
    recent_fatigue: float = 0.0
    response_time: float = 0.0
    quality_history: float = 0.0


class ReviewerScore(BaseModel):
    """Ranked reviewer suggestion."""

    user_id: str
    username: str
    overall_score: float = Field(..., ge=0.0, le=1.0)
    factors: ReviewerFactors
    reasoning: List[str] = Field(default_factory=list)


# ── CLI input ───────────────────────────────────────────────────────────────

class PullRequest(BaseModel):
    """Pull request description loaded by the command-line driver."""

    pr_number: int
    title: str
    repo_full_name: Optional[str] = None
    pr_type: str = "feature"
    primary_language: Optional[str] = None
    files: List[DiffContext] = Field(default_factory=list)
    metrics: Optional[PRMetrics] = None
    custom_rules: List[CustomRule] = Field(default_factory=list)
