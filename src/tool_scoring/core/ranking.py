"""Featured tools composite ranking.

Each approved tool gets a score out of 100 built from four components:

    Quality     (0-30)  average of the six editorial sub-metrics
    Engagement  (0-40)  log-scaled views, saves and review count
    Recency     (0-15)  linear decay over the first 30 days
    Rating      (0-15)  average 1-5 star user rating

Premium tools have their score doubled and the Tool of the Week is pinned to
the top with a fixed score. Tools scoring 50 or more are featured, and the top
20 are always featured regardless of score.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional

from .errors import ValidationError
from .models import EngagementSignals, FeaturedScore, ScoreBreakdown, ToolProfile

QUALITY_MAX = 30
DEFAULT_SUB_METRIC = 5.0

VIEW_FACTOR, VIEW_CAP = 8, 20
SAVE_FACTOR, SAVE_CAP = 6, 12
REVIEW_FACTOR, REVIEW_CAP = 4, 8

RECENCY_MAX = 15
RECENCY_WINDOW_DAYS = 30

RATING_MAX = 15
RATING_SCALE = 5

PREMIUM_MULTIPLIER = 2
TOOL_OF_THE_WEEK_SCORE = 1000

FEATURED_THRESHOLD = 50
TOP_N_ALWAYS_FEATURED = 20
DEFAULT_LIMIT = 100
MAX_LIMIT = 100

ALGORITHM_DESCRIPTION = "Quality (30%) + Engagement (40%) + Recency (15%) + Ratings (15%)"
THRESHOLD_DESCRIPTION = f"Score >= {FEATURED_THRESHOLD} or Top {TOP_N_ALWAYS_FEATURED} tools"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def quality_score(sub_metrics: Iterable[Optional[float]]) -> float:
    """Mean of the sub-metrics on a 0-10 scale, mapped to 0-30. Missing values count as 5."""
    values = [
        DEFAULT_SUB_METRIC if v is None else max(0.0, min(10.0, float(v)))
        for v in sub_metrics
    ]
    if not values:
        return 0.0
    return (sum(values) / len(values) / 10) * QUALITY_MAX


def engagement_score(views: int = 0, saves: int = 0, review_count: int = 0) -> float:
    """Log-scaled engagement: differences matter most at low volume and saturate at high volume."""
    view_part = min(math.log10(max(views, 0) + 1) * VIEW_FACTOR, VIEW_CAP)
    save_part = min(math.log10(max(saves, 0) + 1) * SAVE_FACTOR, SAVE_CAP)
    review_part = min(math.log10(max(review_count, 0) + 1) * REVIEW_FACTOR, REVIEW_CAP)
    return view_part + save_part + review_part


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def days_since(created_at: datetime, now: datetime) -> int:
    """Whole days elapsed; a creation date in the future counts as today."""
    if (created_at.tzinfo is None) != (now.tzinfo is None):
        # SQLite hands back naive UTC timestamps.
        created_at = _as_naive_utc(created_at)
        now = _as_naive_utc(now)
    return max(0, math.floor((now - created_at).total_seconds() / 86400))


def recency_boost(days_since_creation: int) -> float:
    return max(0.0, RECENCY_MAX - (days_since_creation / RECENCY_WINDOW_DAYS) * RECENCY_MAX)


def rating_score(avg_rating: float) -> float:
    avg_rating = max(0.0, min(float(RATING_SCALE), avg_rating))
    return (avg_rating / RATING_SCALE) * RATING_MAX


def compute_featured_score(
    profile: ToolProfile,
    signals: Optional[EngagementSignals],
    now: datetime,
) -> FeaturedScore:
    """Score a single tool."""
    signals = signals or EngagementSignals()

    quality = quality_score(profile.quality_metrics)
    engagement = engagement_score(signals.views, signals.saves, signals.review_count)
    recency = recency_boost(days_since(profile.created_at, now))
    rating = rating_score(signals.avg_rating)

    total = quality + engagement + recency + rating

    if profile.is_premium:
        total *= PREMIUM_MULTIPLIER

    # Tool of the Week always ranks first.
    if profile.is_tool_of_the_week:
        total = TOOL_OF_THE_WEEK_SCORE

    return FeaturedScore(
        tool_id=profile.tool_id,
        score=_round_half_up(total),
        breakdown=ScoreBreakdown(
            quality_score=_round_half_up(quality),
            engagement_score=_round_half_up(engagement),
            recency_boost=_round_half_up(recency),
            rating_score=_round_half_up(rating),
            is_premium=profile.is_premium,
            is_tool_of_week=profile.is_tool_of_the_week,
        ),
    )


def rank_tools(
    profiles: Iterable[ToolProfile],
    signals: Mapping[int, EngagementSignals],
    now: datetime,
) -> list[FeaturedScore]:
    """Score every tool and sort by score descending, ties by tool id ascending."""
    scores = [compute_featured_score(p, signals.get(p.tool_id), now) for p in profiles]
    return sorted(scores, key=lambda s: (-s.score, s.tool_id))


def validate_limit(limit: Any) -> int:
    """Normalize a caller-supplied limit to [1, MAX_LIMIT].

    Numeric strings and integral floats are accepted; anything else raises
    ``INVALID_LIMIT``.
    """
    if limit is None:
        return DEFAULT_LIMIT
    if isinstance(limit, str):
        try:
            limit = int(limit.strip())
        except ValueError:
            raise ValidationError("Invalid limit parameter", code="INVALID_LIMIT") from None
    elif isinstance(limit, float) and limit.is_integer():
        limit = int(limit)
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ValidationError("Invalid limit parameter", code="INVALID_LIMIT")
    return min(limit, MAX_LIMIT)


def select_featured(ranked: list[FeaturedScore], limit: Optional[int] = DEFAULT_LIMIT) -> list[FeaturedScore]:
    """Pick the featured set from an already ranked list.

    Keeps every tool at or above the threshold plus the top 20 by rank, then
    truncates to ``limit``.
    """
    limit = validate_limit(limit)
    selected = [
        s for rank, s in enumerate(ranked)
        if s.score >= FEATURED_THRESHOLD or rank < TOP_N_ALWAYS_FEATURED
    ]
    return selected[:limit]
