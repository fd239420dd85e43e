"""Structured review aggregation.

Turns a tool's approved structured reviews into per-metric weighted
statistics, an overall average and a confidence score. Reviews from verified
users and editors count for more than anonymous ones; disagreement between
reviewers lowers confidence.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any, Iterable, Optional

from .models import EDITORIAL_TYPES, AggregationResult, MetricStats, ReviewInput

logger = logging.getLogger(__name__)

MIN_SCORE = 1
MAX_SCORE = 10

BASE_WEIGHT = 1.0
VERIFIED_WEIGHT = 1.5
EDITORIAL_WEIGHT = 2.0

# Ten reviews with perfect agreement reach full confidence.
FULL_CONFIDENCE_REVIEWS = 10
STD_DEV_PENALTY = 10

PRECISION = 2


def _coerce_score(value: Any) -> Optional[int]:
    """Return value as an in-range integer score, or None if it is unusable."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    if not isinstance(value, int):
        return None
    if value < MIN_SCORE or value > MAX_SCORE:
        return None
    return value


def parse_metric_scores(raw: Any, review_id: Optional[int] = None) -> dict[str, int]:
    """Decode a review's metric map, dropping anything that is not a valid score.

    Accepts a mapping or its JSON encoding. A payload that fails to decode, or
    decodes to something other than an object, contributes no metrics.
    """
    if raw is None:
        return {}

    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Skipping undecodable metric scores on review %s", review_id)
            return {}

    if not isinstance(raw, dict):
        logger.warning("Skipping non-object metric scores on review %s", review_id)
        return {}

    scores = {}
    for key, value in raw.items():
        score = _coerce_score(value)
        if score is None:
            logger.warning("Skipping invalid score %r for metric %r on review %s", value, key, review_id)
            continue
        scores[str(key)] = score
    return scores


def is_editorial(review: ReviewInput) -> bool:
    return review.reviewer_type in EDITORIAL_TYPES


def review_weight(review: ReviewInput) -> float:
    """Trust weight of a review: editorial 2.0, verified 1.5, everyone else 1.0."""
    if is_editorial(review):
        return EDITORIAL_WEIGHT
    if review.is_verified:
        return VERIFIED_WEIGHT
    return BASE_WEIGHT


def weighted_average(values: list[float], weights: list[float]) -> float:
    total_weight = sum(weights)
    if total_weight <= 0:
        return 0.0
    return sum(v * w for v, w in zip(values, weights)) / total_weight


def population_std_dev(values: list[float]) -> float:
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))


def metric_statistics(scores: list[int], weights: list[float]) -> MetricStats:
    """Weighted average plus unweighted spread for one metric."""
    return MetricStats(
        avg=round(weighted_average(scores, weights), PRECISION),
        count=len(scores),
        std_dev=round(population_std_dev(scores), PRECISION),
        min=min(scores),
        max=max(scores),
    )


def confidence_score(total_reviews: int, std_devs: Iterable[float]) -> float:
    """Confidence in [0, 100]: rises with review volume, falls with disagreement.

    ``std_devs`` are the per-metric standard deviations; their mean is the
    disagreement penalty.
    """
    std_devs = list(std_devs)
    avg_std_dev = sum(std_devs) / len(std_devs) if std_devs else 0.0
    raw = (total_reviews / FULL_CONFIDENCE_REVIEWS) * 100 - avg_std_dev * STD_DEV_PENALTY
    return round(max(0.0, min(100.0, raw)), PRECISION)


def aggregate_reviews(reviews: Iterable[ReviewInput]) -> AggregationResult:
    """Aggregate a tool's approved structured reviews.

    Every review counts toward the totals even if none of its scores survive
    validation. Metric keys are emitted sorted so repeated runs serialize
    identically regardless of review order.
    """
    total = verified = editorial = 0
    metric_values: dict[str, list[int]] = {}
    metric_weights: dict[str, list[float]] = {}
    overall_values: list[int] = []
    overall_weights: list[float] = []

    for review in reviews:
        total += 1
        if review.is_verified:
            verified += 1
        if is_editorial(review):
            editorial += 1

        weight = review_weight(review)

        for key, score in parse_metric_scores(review.metric_scores, review.review_id).items():
            metric_values.setdefault(key, []).append(score)
            metric_weights.setdefault(key, []).append(weight)

        overall = _coerce_score(review.overall_rating)
        if overall is not None:
            overall_values.append(overall)
            overall_weights.append(weight)

    if total == 0:
        return AggregationResult()

    metrics = {
        key: metric_statistics(metric_values[key], metric_weights[key])
        for key in sorted(metric_values)
    }

    if overall_values:
        overall_average = weighted_average(overall_values, overall_weights)
    elif metric_values:
        # No usable overall ratings: fall back to the mean of metric averages.
        overall_average = sum(
            weighted_average(metric_values[k], metric_weights[k]) for k in metric_values
        ) / len(metric_values)
    else:
        overall_average = 0.0

    std_devs = [population_std_dev(metric_values[k]) for k in sorted(metric_values)]

    return AggregationResult(
        metric_scores=metrics,
        overall_average=round(overall_average, PRECISION),
        total_reviews=total,
        verified_reviews=verified,
        editorial_reviews=editorial,
        confidence_score=confidence_score(total, std_devs),
    )
