"""Tool Scoring MCP Server.

FastMCP server exposing the admin scoring operations: aggregated score
recalculation, featured ranking refresh, score lookup and review approval.
Callers are expected to be authorized admins.
Run: tool-scoring-mcp
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations

from .aggregator import aggregated_to_dict, approve_review, get_tool_scores, recalculate, recalculate_all
from .core.errors import ScoringError, ValidationError
from .core.ranking import DEFAULT_LIMIT
from .db import close_db, init_db
from .featured import get_featured_tools

logger = logging.getLogger(__name__)

READ_ONLY = ToolAnnotations(readOnlyHint=True, destructiveHint=False, idempotentHint=True, openWorldHint=False)
RECOMPUTE = ToolAnnotations(readOnlyHint=False, destructiveHint=False, idempotentHint=True, openWorldHint=False)
MODERATE = ToolAnnotations(readOnlyHint=False, destructiveHint=False, idempotentHint=False, openWorldHint=False)


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Configure logging and create the schema before serving."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    await init_db()
    try:
        yield
    finally:
        await close_db()


mcp = FastMCP(
    "Tool Scoring",
    instructions="Admin tools for the tool directory: recalculate aggregated review scores, refresh the featured tools ranking, and inspect a tool's recommended scores.",
    lifespan=lifespan,
)


def _parse_id(value, label: str, missing_code: str, invalid_code: str) -> int:
    """Validate a record id supplied by the caller."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{label} is required", code=missing_code)
    if isinstance(value, bool):
        raise ValidationError(f"Valid {label} is required", code=invalid_code)
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"Valid {label} is required", code=invalid_code)
        value = int(value)
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            raise ValidationError(f"Valid {label} is required", code=invalid_code) from None
    if not isinstance(value, int) or value < 1:
        raise ValidationError(f"Valid {label} is required", code=invalid_code)
    return value


def parse_tool_id(value) -> int:
    return _parse_id(value, "toolId", "MISSING_TOOL_ID", "INVALID_TOOL_ID")


def parse_review_id(value) -> int:
    return _parse_id(value, "review ID", "MISSING_REVIEW_ID", "INVALID_ID")


# ─── Tool 1: Recalculate one tool ───────────────────────────────────────────


@mcp.tool(annotations=RECOMPUTE)
async def recalculate_scores(tool_id: Any = None) -> dict:
    """Recalculate the aggregated review scores for one tool from its approved structured reviews.

    Args:
        tool_id: Id of the tool to recalculate.
    """
    try:
        parsed = parse_tool_id(tool_id)
        row = await recalculate(parsed)
    except ScoringError as exc:
        return exc.to_dict()

    if row is None:
        return {
            "message": "No approved reviews found. Aggregated scores cleared.",
            "toolId": parsed,
            "aggregatedScores": None,
            "reviewsProcessed": 0,
        }

    return {
        "message": "Aggregated scores recalculated successfully",
        "toolId": parsed,
        "aggregatedScores": aggregated_to_dict(row),
        "reviewsProcessed": row.total_reviews,
    }


# ─── Tool 2: Recalculate every tool ─────────────────────────────────────────


@mcp.tool(annotations=RECOMPUTE)
async def recalculate_all_scores() -> dict:
    """Recalculate aggregated review scores for every tool, reporting per-tool failures."""
    try:
        batch = await recalculate_all()
    except ScoringError as exc:
        return exc.to_dict()

    return {
        "message": "Recalculation completed" if batch.total_tools else "No tools found to recalculate",
        "totalTools": batch.total_tools,
        "successful": batch.successful,
        "failed": batch.failed,
        "failures": [{"toolId": f.tool_id, "error": f.error} for f in batch.failures],
    }


# ─── Tool 3: Featured tools ─────────────────────────────────────────────────


@mcp.tool(annotations=RECOMPUTE)
async def featured_tools(limit: Any = None, debug: bool = False) -> dict:
    """Rank approved tools, refresh their featured flags, and list the featured set.

    Args:
        limit: Maximum number of featured tools (1-100). Default 100.
        debug: Include each tool's score breakdown.
    """
    try:
        return await get_featured_tools(DEFAULT_LIMIT if limit is None else limit, debug)
    except ScoringError as exc:
        return exc.to_dict()


# ─── Tool 4: Recommended scores ─────────────────────────────────────────────


@mcp.tool(annotations=READ_ONLY)
async def tool_scores(tool_id: Any = None) -> dict:
    """A tool's recommended scores, falling back from aggregated to editorial to the tool's defaults.

    Args:
        tool_id: Id of the tool.
    """
    try:
        return await get_tool_scores(parse_tool_id(tool_id))
    except ScoringError as exc:
        return exc.to_dict()


# ─── Tool 5: Approve a structured review ────────────────────────────────────


@mcp.tool(annotations=MODERATE)
async def approve_structured_review(review_id: Any = None) -> dict:
    """Approve a pending structured review and refresh its tool's aggregated scores.

    Args:
        review_id: Id of the pending structured review.
    """
    try:
        review, aggregated = await approve_review(parse_review_id(review_id))
    except ScoringError as exc:
        return exc.to_dict()

    return {
        "message": "Review approved successfully",
        "review": {
            "id": review.id,
            "toolId": review.tool_id,
            "status": review.status,
            "overallRating": review.overall_rating,
            "reviewerType": review.reviewer_type,
            "isVerified": review.is_verified,
        },
        "aggregatedScores": aggregated_to_dict(aggregated) if aggregated else None,
    }


def main():
    """Entry point for the CLI command."""
    mcp.run()


if __name__ == "__main__":
    main()
