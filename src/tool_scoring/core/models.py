"""Pydantic data models: the shared business objects.

The aggregation and ranking functions consume and return these models; the
datastore services convert ORM rows into them and back.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field


class ReviewerType(str, Enum):
    """Who wrote a structured review."""

    USER = "user"
    VERIFIED = "verified"
    EDITORIAL = "editorial"
    EDITOR = "editor"


class ReviewStatus(str, Enum):
    """Moderation status of a structured review."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SPAM = "spam"


class ToolStatus(str, Enum):
    """Submission status of a tool listing."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


EDITORIAL_TYPES = frozenset({ReviewerType.EDITORIAL.value, ReviewerType.EDITOR.value})


class ReviewInput(BaseModel):
    """A structured review as seen by the aggregator.

    ``metric_scores`` is kept raw (mapping or JSON text) so malformed payloads
    can be skipped per key instead of failing the whole review.
    """

    review_id: Optional[int] = None
    metric_scores: Union[dict[str, Any], str, None] = None
    overall_rating: Any = None
    reviewer_type: str = ReviewerType.USER.value
    is_verified: bool = False


class MetricStats(BaseModel):
    """Aggregated statistics for one metric key."""

    avg: float = Field(description="Weighted average, 2 decimals")
    count: int = Field(ge=0)
    std_dev: float = Field(ge=0.0, description="Unweighted population standard deviation")
    min: int
    max: int

    def to_json_dict(self) -> dict:
        return {
            "avg": self.avg,
            "count": self.count,
            "stdDev": self.std_dev,
            "min": self.min,
            "max": self.max,
        }


class AggregationResult(BaseModel):
    """Outcome of aggregating a tool's approved reviews."""

    metric_scores: dict[str, MetricStats] = Field(default_factory=dict)
    overall_average: float = 0.0
    total_reviews: int = 0
    verified_reviews: int = 0
    editorial_reviews: int = 0
    confidence_score: float = Field(0.0, ge=0.0, le=100.0)

    @property
    def is_empty(self) -> bool:
        return self.total_reviews == 0


class EngagementSignals(BaseModel):
    """Engagement inputs for the featured ranking of one tool."""

    views: int = Field(0, ge=0)
    saves: int = Field(0, ge=0)
    review_count: int = Field(0, ge=0)
    avg_rating: float = Field(0.0, ge=0.0)


class ToolProfile(BaseModel):
    """The intrinsic tool attributes the featured ranking reads."""

    tool_id: int
    content_quality: Optional[float] = None
    speed_efficiency: Optional[float] = None
    creative_features: Optional[float] = None
    integration_options: Optional[float] = None
    learning_curve: Optional[float] = None
    value_for_money: Optional[float] = None
    is_premium: bool = False
    is_tool_of_the_week: bool = False
    created_at: datetime

    @property
    def quality_metrics(self) -> list[Optional[float]]:
        return [
            self.content_quality,
            self.speed_efficiency,
            self.creative_features,
            self.integration_options,
            self.learning_curve,
            self.value_for_money,
        ]


class ScoreBreakdown(BaseModel):
    """Rounded per-component contributions to a featured score."""

    quality_score: int
    engagement_score: int
    recency_boost: int
    rating_score: int
    is_premium: bool = False
    is_tool_of_week: bool = False

    def to_json_dict(self) -> dict:
        return {
            "qualityScore": self.quality_score,
            "engagementScore": self.engagement_score,
            "recencyBoost": self.recency_boost,
            "ratingScore": self.rating_score,
            "isPremium": self.is_premium,
            "isToolOfWeek": self.is_tool_of_week,
        }


class FeaturedScore(BaseModel):
    """A tool's composite featured score."""

    tool_id: int
    score: int
    breakdown: ScoreBreakdown


class BatchFailure(BaseModel):
    """One tool that failed during a batch recalculation."""

    tool_id: int
    error: str


class BatchResult(BaseModel):
    """Outcome of recalculating every tool; failures never abort the batch."""

    total_tools: int = 0
    successful: int = 0
    failed: int = 0
    failures: list[BatchFailure] = Field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        return self.failed > 0
