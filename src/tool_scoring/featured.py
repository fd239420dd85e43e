"""Featured tools selection and write-back.

Ranks every approved tool, flags the featured set in the ``tools`` table and
builds the featured listing payload.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError as ModelValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from . import store
from .core.errors import InternalError
from .core.models import FeaturedScore
from .core.ranking import (
    ALGORITHM_DESCRIPTION,
    DEFAULT_LIMIT,
    THRESHOLD_DESCRIPTION,
    rank_tools,
    select_featured,
    validate_limit,
)
from .db import get_session_factory
from .sqlmodels import Tool

logger = logging.getLogger(__name__)


async def compute_featured_scores(
    session: AsyncSession,
    now: Optional[datetime] = None,
) -> list[FeaturedScore]:
    """Score every approved tool, best first."""
    tools = await store.list_approved_tools(session)
    signals = await store.get_all_engagement_signals(session)
    profiles = [store.tool_to_profile(t) for t in tools]
    return rank_tools(profiles, signals, now or datetime.utcnow())


async def refresh_featured(
    limit: Any = DEFAULT_LIMIT,
    now: Optional[datetime] = None,
) -> tuple[list[FeaturedScore], list[FeaturedScore]]:
    """Rank tools and re-flag the featured set in a single transaction.

    Returns ``(ranked, selected)``.
    """
    limit = validate_limit(limit)
    session_factory = get_session_factory()
    try:
        async with session_factory() as session:
            ranked = await compute_featured_scores(session, now)
            selected = select_featured(ranked, limit)
            await store.set_featured_flags(session, [s.tool_id for s in selected])
            await session.commit()
    except (SQLAlchemyError, ModelValidationError) as exc:
        logger.error("Featured refresh failed: %s", exc, exc_info=True)
        raise InternalError(f"Internal server error: {exc}") from exc

    logger.info("Featured refresh: %d approved tools ranked, %d featured", len(ranked), len(selected))
    return ranked, selected


def _tool_to_dict(tool: Tool) -> dict:
    return {
        "id": tool.id,
        "title": tool.title,
        "description": tool.description,
        "url": tool.url,
        "category": tool.category,
        "popularity": tool.popularity,
        "views": tool.popularity,
        "isFeatured": tool.is_featured,
        "isPremium": tool.is_premium,
        "isToolOfTheWeek": tool.is_tool_of_the_week,
        "createdAt": tool.created_at.isoformat() if tool.created_at else None,
        "updatedAt": tool.updated_at.isoformat() if tool.updated_at else None,
    }


async def get_featured_tools(
    limit: Any = DEFAULT_LIMIT,
    debug: bool = False,
    now: Optional[datetime] = None,
) -> dict:
    """Refresh the featured flags and return the featured tools, highest score first.

    With ``debug`` each tool also carries its ``scoreBreakdown``.
    """
    _, selected = await refresh_featured(limit, now)
    by_id = {s.tool_id: s for s in selected}

    session_factory = get_session_factory()
    try:
        async with session_factory() as session:
            tools = await store.get_tools_by_ids(session, by_id)
    except SQLAlchemyError as exc:
        raise InternalError(f"Internal server error: {exc}") from exc

    items = []
    for tool in tools:
        score = by_id[tool.id]
        item = _tool_to_dict(tool)
        item["featuredScore"] = score.score
        if debug:
            item["scoreBreakdown"] = score.breakdown.to_json_dict()
        items.append(item)

    items.sort(key=lambda t: (-t["featuredScore"], t["id"]))

    return {
        "tools": items,
        "meta": {
            "total": len(items),
            "algorithm": ALGORITHM_DESCRIPTION,
            "threshold": THRESHOLD_DESCRIPTION,
        },
    }
