"""Datastore operations used by the aggregator and the featured ranker.

Every function takes an open ``AsyncSession`` and never commits: the calling
service decides the transaction boundary.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .core.models import (
    AggregationResult,
    EngagementSignals,
    ReviewInput,
    ReviewStatus,
    ToolProfile,
    ToolStatus,
)
from .sqlmodels import AggregatedScore, EditorialScore, Review, SavedTool, StructuredReview, Tool

logger = logging.getLogger(__name__)


# ─── Tools ──────────────────────────────────────────────────────────────────


async def get_tool(session: AsyncSession, tool_id: int) -> Optional[Tool]:
    return await session.get(Tool, tool_id)


async def list_all_tools(session: AsyncSession) -> list[Tool]:
    result = await session.execute(select(Tool).order_by(Tool.id))
    return list(result.scalars().all())


async def list_approved_tools(session: AsyncSession) -> list[Tool]:
    result = await session.execute(
        select(Tool).where(Tool.status == ToolStatus.APPROVED.value).order_by(Tool.id)
    )
    return list(result.scalars().all())


async def get_tools_by_ids(session: AsyncSession, tool_ids: Iterable[int]) -> list[Tool]:
    ids = list(tool_ids)
    if not ids:
        return []
    result = await session.execute(select(Tool).where(Tool.id.in_(ids)))
    return list(result.scalars().all())


def tool_to_profile(tool: Tool) -> ToolProfile:
    return ToolProfile(
        tool_id=tool.id,
        content_quality=tool.content_quality,
        speed_efficiency=tool.speed_efficiency,
        creative_features=tool.creative_features,
        integration_options=tool.integration_options,
        learning_curve=tool.learning_curve,
        value_for_money=tool.value_for_money,
        is_premium=bool(tool.is_premium),
        is_tool_of_the_week=bool(tool.is_tool_of_the_week),
        created_at=tool.created_at,
    )


async def set_featured_flags(session: AsyncSession, tool_ids: Iterable[int]) -> None:
    """Make ``is_featured`` true exactly for ``tool_ids`` among approved tools.

    Both updates run in the caller's transaction, so readers see either the
    old featured set or the new one and never an empty one in between.
    """
    ids = sorted(set(tool_ids))
    await session.execute(
        update(Tool)
        .where(Tool.status == ToolStatus.APPROVED.value, Tool.id.not_in(ids), Tool.is_featured.is_(True))
        .values(is_featured=False)
        .execution_options(synchronize_session=False)
    )
    if ids:
        await session.execute(
            update(Tool)
            .where(Tool.id.in_(ids))
            .values(is_featured=True)
            .execution_options(synchronize_session=False)
        )


# ─── Structured reviews ─────────────────────────────────────────────────────


async def get_structured_review(session: AsyncSession, review_id: int) -> Optional[StructuredReview]:
    return await session.get(StructuredReview, review_id)


async def list_approved_reviews(session: AsyncSession, tool_id: int) -> list[StructuredReview]:
    result = await session.execute(
        select(StructuredReview)
        .where(
            StructuredReview.tool_id == tool_id,
            StructuredReview.status == ReviewStatus.APPROVED.value,
        )
        .order_by(StructuredReview.id)
    )
    return list(result.scalars().all())


def review_to_input(review: StructuredReview) -> ReviewInput:
    return ReviewInput(
        review_id=review.id,
        metric_scores=review.metric_scores,
        overall_rating=review.overall_rating,
        reviewer_type=review.reviewer_type or "user",
        is_verified=bool(review.is_verified),
    )


# ─── Aggregated scores ──────────────────────────────────────────────────────


async def get_aggregated_score(session: AsyncSession, tool_id: int) -> Optional[AggregatedScore]:
    result = await session.execute(
        select(AggregatedScore).where(AggregatedScore.tool_id == tool_id)
    )
    return result.scalar_one_or_none()


def aggregation_fields(result: AggregationResult, category: Optional[str], now: datetime) -> dict:
    """Column values for an AggregatedScore row built from an aggregation result."""
    metrics = {key: stats.to_json_dict() for key, stats in result.metric_scores.items()}
    return {
        "category": category,
        "metric_scores": json.dumps(metrics, sort_keys=True),
        "overall_average": result.overall_average,
        "total_reviews": result.total_reviews,
        "verified_reviews": result.verified_reviews,
        "editorial_reviews": result.editorial_reviews,
        "confidence_score": result.confidence_score,
        "last_calculated_at": now,
        "updated_at": now,
    }


async def upsert_aggregated_score(session: AsyncSession, tool_id: int, fields: dict) -> AggregatedScore:
    """Insert or update the single aggregated row for a tool."""
    row = await get_aggregated_score(session, tool_id)
    if row is None:
        row = AggregatedScore(tool_id=tool_id, **fields)
        session.add(row)
    else:
        for key, value in fields.items():
            setattr(row, key, value)
    await session.flush()
    return row


async def delete_aggregated_score(session: AsyncSession, tool_id: int) -> bool:
    """Delete a tool's aggregated row. Returns True if one existed."""
    result = await session.execute(
        delete(AggregatedScore).where(AggregatedScore.tool_id == tool_id)
    )
    return (result.rowcount or 0) > 0


# ─── Engagement ─────────────────────────────────────────────────────────────


def _engagement(views, saves, review_count, avg_rating) -> EngagementSignals:
    # Stored values are not constrained; bad rows count as zero.
    return EngagementSignals(
        views=max(0, int(views or 0)),
        saves=max(0, int(saves or 0)),
        review_count=max(0, int(review_count or 0)),
        avg_rating=max(0.0, float(avg_rating or 0.0)),
    )


async def get_engagement_signals(session: AsyncSession, tool_id: int) -> EngagementSignals:
    """Views, saves and simple-review stats for one tool. Missing tools read as zero."""
    tool = await get_tool(session, tool_id)
    saves = await session.scalar(
        select(func.count()).select_from(SavedTool).where(SavedTool.tool_id == tool_id)
    )
    review_row = (await session.execute(
        select(func.count(Review.id), func.avg(Review.rating)).where(Review.tool_id == tool_id)
    )).one()

    return _engagement(
        tool.popularity if tool else 0,
        saves,
        review_row[0],
        review_row[1],
    )


async def get_all_engagement_signals(session: AsyncSession) -> dict[int, EngagementSignals]:
    """Engagement signals for every tool, keyed by tool id, in three grouped queries."""
    views = dict((await session.execute(select(Tool.id, Tool.popularity))).all())

    save_counts = dict((await session.execute(
        select(SavedTool.tool_id, func.count()).group_by(SavedTool.tool_id)
    )).all())

    review_stats = {
        row[0]: (row[1], row[2])
        for row in (await session.execute(
            select(Review.tool_id, func.count(Review.id), func.avg(Review.rating)).group_by(Review.tool_id)
        )).all()
    }

    signals = {}
    for tool_id, popularity in views.items():
        review_count, avg_rating = review_stats.get(tool_id, (0, 0.0))
        signals[tool_id] = _engagement(popularity, save_counts.get(tool_id, 0), review_count, avg_rating)
    return signals


# ─── Editorial scores ───────────────────────────────────────────────────────


async def get_active_editorial_score(session: AsyncSession, tool_id: int) -> Optional[EditorialScore]:
    result = await session.execute(
        select(EditorialScore)
        .where(EditorialScore.tool_id == tool_id, EditorialScore.is_active.is_(True))
        .order_by(EditorialScore.updated_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()
