"""Aggregated review score computation and persistence.

Recalculation is a full recompute from the tool's approved structured reviews,
never an incremental update. Two concurrent recalculations of the same tool
both compute the same result from the same reviews, so the last write wins
harmlessly and no locking is needed.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from . import store
from .core.aggregation import aggregate_reviews
from .core.errors import InternalError, ReviewNotFound, ScoringError, ToolNotFound, ValidationError
from .core.models import BatchFailure, BatchResult, ReviewStatus
from .db import get_session_factory
from .sqlmodels import AggregatedScore, EditorialScore, StructuredReview, Tool

logger = logging.getLogger(__name__)

# Aggregated scores below this confidence defer to editorial scores.
RELIABLE_CONFIDENCE = 30

DEFAULT_SUB_METRIC = 5


async def _recalculate_in_session(
    session: AsyncSession,
    tool_id: int,
    now: Optional[datetime] = None,
) -> Optional[AggregatedScore]:
    tool = await store.get_tool(session, tool_id)
    if tool is None:
        raise ToolNotFound(tool_id)

    reviews = await store.list_approved_reviews(session, tool_id)
    result = aggregate_reviews(store.review_to_input(r) for r in reviews)

    if result.is_empty:
        removed = await store.delete_aggregated_score(session, tool_id)
        if removed:
            logger.info("Tool %d has no approved reviews, aggregated scores cleared", tool_id)
        return None

    fields = store.aggregation_fields(result, tool.category, now or datetime.utcnow())
    row = await store.upsert_aggregated_score(session, tool_id, fields)
    logger.info(
        "Recalculated tool %d: %d reviews, overall %.2f, confidence %.2f",
        tool_id, result.total_reviews, result.overall_average, result.confidence_score,
    )
    return row


async def recalculate(tool_id: int) -> Optional[AggregatedScore]:
    """Recompute and store the aggregated scores for one tool.

    Returns the stored row, or None when the tool has no approved reviews (any
    previous row is deleted). Raises ToolNotFound for an unknown tool and
    InternalError if the datastore fails.
    """
    session_factory = get_session_factory()
    try:
        async with session_factory() as session:
            row = await _recalculate_in_session(session, tool_id)
            await session.commit()
    except SQLAlchemyError as exc:
        logger.error("Recalculation failed for tool %d: %s", tool_id, exc, exc_info=True)
        raise InternalError(f"Internal server error: {exc}") from exc
    return row


async def recalculate_all() -> BatchResult:
    """Recalculate every tool, one transaction per tool.

    A failure on one tool is logged and recorded; the batch always runs to the
    end, so ``successful + failed == total_tools``.
    """
    session_factory = get_session_factory()
    try:
        async with session_factory() as session:
            tool_ids = [t.id for t in await store.list_all_tools(session)]
    except SQLAlchemyError as exc:
        raise InternalError(f"Internal server error: {exc}") from exc

    batch = BatchResult(total_tools=len(tool_ids))
    now = datetime.utcnow()

    for tool_id in tool_ids:
        try:
            async with session_factory() as session:
                await _recalculate_in_session(session, tool_id, now)
                await session.commit()
            batch.successful += 1
        except Exception as exc:
            logger.error("Error recalculating scores for tool %d: %s", tool_id, exc, exc_info=True)
            batch.failed += 1
            batch.failures.append(BatchFailure(tool_id=tool_id, error=str(exc) or type(exc).__name__))

    logger.info(
        "Batch recalculation complete: %d tools, %d successful, %d failed",
        batch.total_tools, batch.successful, batch.failed,
    )
    return batch


async def approve_review(review_id: int) -> tuple[StructuredReview, Optional[AggregatedScore]]:
    """Approve a pending structured review, then refresh its tool's scores.

    The approval is committed first; if the recalculation fails afterwards the
    error is logged and the review stays approved.
    """
    session_factory = get_session_factory()
    async with session_factory() as session:
        review = await store.get_structured_review(session, review_id)
        if review is None:
            raise ReviewNotFound(review_id)
        if review.status != ReviewStatus.PENDING.value:
            raise ValidationError(
                f"Review is already {review.status}. Only pending reviews can be approved.",
                code="INVALID_REVIEW_STATUS",
            )
        review.status = ReviewStatus.APPROVED.value
        review.updated_at = datetime.utcnow()
        await session.commit()

    aggregated = None
    try:
        aggregated = await recalculate(review.tool_id)
    except ScoringError as exc:
        logger.error("Review %d approved but recalculation for tool %d failed: %s", review_id, review.tool_id, exc)

    return review, aggregated


# ─── Read side ──────────────────────────────────────────────────────────────


def _load_json_object(raw: Optional[str]) -> dict:
    try:
        value = json.loads(raw) if raw else {}
    except (TypeError, ValueError):
        return {}
    return value if isinstance(value, dict) else {}


def aggregated_to_dict(row: AggregatedScore) -> dict:
    return {
        "id": row.id,
        "toolId": row.tool_id,
        "category": row.category,
        "metricScores": _load_json_object(row.metric_scores),
        "overallAverage": row.overall_average,
        "totalReviews": row.total_reviews,
        "verifiedReviews": row.verified_reviews,
        "editorialReviews": row.editorial_reviews,
        "confidenceScore": row.confidence_score,
        "lastCalculatedAt": row.last_calculated_at.isoformat() if row.last_calculated_at else None,
        "updatedAt": row.updated_at.isoformat() if row.updated_at else None,
    }


def editorial_to_dict(row: EditorialScore) -> dict:
    return {
        "id": row.id,
        "toolId": row.tool_id,
        "category": row.category,
        "metricScores": _load_json_object(row.metric_scores),
        "editorId": row.editor_id,
        "notes": row.notes,
        "isActive": row.is_active,
        "updatedAt": row.updated_at.isoformat() if row.updated_at else None,
    }


def tool_defaults(tool: Tool) -> dict:
    """The tool's own sub-metrics, with missing values shown as 5."""
    values = {
        "contentQuality": tool.content_quality,
        "speedEfficiency": tool.speed_efficiency,
        "creativeFeatures": tool.creative_features,
        "integrationOptions": tool.integration_options,
        "learningCurve": tool.learning_curve,
        "valueForMoney": tool.value_for_money,
    }
    return {k: (DEFAULT_SUB_METRIC if v is None else v) for k, v in values.items()}


async def get_tool_scores(tool_id: int) -> dict:
    """Best available scores for a tool: aggregated, then editorial, then tool defaults.

    Aggregated scores are recommended only once their confidence reaches 30.
    """
    session_factory = get_session_factory()
    try:
        async with session_factory() as session:
            tool = await store.get_tool(session, tool_id)
            if tool is None:
                raise ToolNotFound(tool_id)
            aggregated = await store.get_aggregated_score(session, tool_id)
            editorial = None
            if aggregated is None or aggregated.confidence_score < RELIABLE_CONFIDENCE:
                editorial = await store.get_active_editorial_score(session, tool_id)
    except SQLAlchemyError as exc:
        raise InternalError(f"Internal server error: {exc}") from exc

    aggregated_data = aggregated_to_dict(aggregated) if aggregated else None

    if aggregated is not None and aggregated.confidence_score >= RELIABLE_CONFIDENCE:
        return {"aggregated": aggregated_data, "editorial": None, "recommended": "aggregated"}

    if editorial is not None:
        return {
            "aggregated": aggregated_data,
            "editorial": editorial_to_dict(editorial),
            "recommended": "editorial",
            "fallbackReason": "Low confidence score" if aggregated else "No aggregated scores",
        }

    return {
        "aggregated": aggregated_data,
        "editorial": None,
        "recommended": "default",
        "fallbackReason": "No aggregated or editorial scores",
        "toolDefaults": tool_defaults(tool),
    }
