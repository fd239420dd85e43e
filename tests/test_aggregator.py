from __future__ import annotations

import json

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from tool_scoring import aggregator, store
from tool_scoring.core.errors import InternalError, ReviewNotFound, ToolNotFound, ValidationError
from tool_scoring.sqlmodels import AggregatedScore, StructuredReview

STABLE_FIELDS = (
    "tool_id", "category", "metric_scores", "overall_average", "total_reviews",
    "verified_reviews", "editorial_reviews", "confidence_score",
)


async def fetch_aggregate(db, tool_id):
    async with db() as session:
        result = await session.execute(select(AggregatedScore).where(AggregatedScore.tool_id == tool_id))
        return result.scalar_one_or_none()


async def test_recalculate_stores_weighted_scores(db, make_tool, make_structured_review):
    tool_id = await make_tool(category="writing")
    await make_structured_review(tool_id, {"quality": 8}, overall_rating=8, is_verified=True)
    await make_structured_review(tool_id, {"quality": 6}, overall_rating=6)

    row = await aggregator.recalculate(tool_id)

    assert row.total_reviews == 2
    assert row.verified_reviews == 1
    assert row.editorial_reviews == 0
    assert row.overall_average == 7.2
    assert row.category == "writing"
    assert json.loads(row.metric_scores)["quality"] == {
        "avg": 7.2, "count": 2, "stdDev": 1.0, "min": 6, "max": 8,
    }

    stored = await fetch_aggregate(db, tool_id)
    assert stored.confidence_score == 10.0


async def test_recalculate_unknown_tool(db):
    with pytest.raises(ToolNotFound) as excinfo:
        await aggregator.recalculate(404)

    assert excinfo.value.code == "TOOL_NOT_FOUND"


async def test_only_approved_reviews_count(db, make_tool, make_structured_review):
    tool_id = await make_tool()
    await make_structured_review(tool_id, {"quality": 9})
    await make_structured_review(tool_id, {"quality": 1}, status="pending")
    await make_structured_review(tool_id, {"quality": 1}, status="spam")
    await make_structured_review(tool_id, {"quality": 1}, status="rejected")

    row = await aggregator.recalculate(tool_id)

    assert row.total_reviews == 1
    assert json.loads(row.metric_scores)["quality"]["avg"] == 9.0


async def test_no_approved_reviews_deletes_aggregate(db, make_tool, make_structured_review):
    tool_id = await make_tool()
    review_id = await make_structured_review(tool_id, {"quality": 9})
    assert await aggregator.recalculate(tool_id) is not None

    async with db() as session:
        await session.execute(
            update(StructuredReview).where(StructuredReview.id == review_id).values(status="rejected")
        )
        await session.commit()

    assert await aggregator.recalculate(tool_id) is None
    assert await fetch_aggregate(db, tool_id) is None


async def test_recalculate_is_idempotent(db, make_tool, make_structured_review):
    tool_id = await make_tool()
    await make_structured_review(tool_id, {"speed": 4, "ease": 9}, overall_rating=6, reviewer_type="editorial")
    await make_structured_review(tool_id, {"ease": 7, "speed": 8}, overall_rating=8, is_verified=True)
    await make_structured_review(tool_id, {"speed": 10}, overall_rating=10)

    await aggregator.recalculate(tool_id)
    first = await fetch_aggregate(db, tool_id)
    await aggregator.recalculate(tool_id)
    second = await fetch_aggregate(db, tool_id)

    assert first.id == second.id
    for field in STABLE_FIELDS:
        assert getattr(first, field) == getattr(second, field)


async def test_malformed_metric_json_is_skipped(db, make_tool, make_structured_review):
    tool_id = await make_tool()
    await make_structured_review(tool_id, "{definitely not json", overall_rating=4)
    await make_structured_review(tool_id, {"quality": 8, "speed": "fast"}, overall_rating=8)

    row = await aggregator.recalculate(tool_id)

    assert row.total_reviews == 2
    assert list(json.loads(row.metric_scores)) == ["quality"]
    assert row.overall_average == 6.0


async def test_datastore_failure_surfaces_as_internal_error(db, make_tool, monkeypatch):
    tool_id = await make_tool()

    async def broken(session, tool_id):
        raise SQLAlchemyError("disk I/O error")

    monkeypatch.setattr(store, "list_approved_reviews", broken)

    with pytest.raises(InternalError) as excinfo:
        await aggregator.recalculate(tool_id)

    assert excinfo.value.code == "INTERNAL_ERROR"


async def test_recalculate_all_continues_past_failures(db, make_tool, make_structured_review, monkeypatch):
    reviewed = await make_tool(title="Reviewed")
    unreviewed = await make_tool(title="Unreviewed")
    failing = await make_tool(title="Failing")
    await make_structured_review(reviewed, {"quality": 7})
    await make_structured_review(failing, {"quality": 7})

    original = aggregator._recalculate_in_session

    async def flaky(session, tool_id, now=None):
        if tool_id == failing:
            raise RuntimeError("corrupt review data")
        return await original(session, tool_id, now)

    monkeypatch.setattr(aggregator, "_recalculate_in_session", flaky)

    batch = await aggregator.recalculate_all()

    assert batch.total_tools == 3
    assert batch.successful == 2
    assert batch.failed == 1
    assert batch.successful + batch.failed == batch.total_tools
    assert batch.has_failures
    assert batch.failures[0].tool_id == failing
    assert batch.failures[0].error == "corrupt review data"
    assert (await fetch_aggregate(db, reviewed)).total_reviews == 1
    assert await fetch_aggregate(db, unreviewed) is None


async def test_recalculate_all_with_no_tools(db):
    batch = await aggregator.recalculate_all()

    assert batch.total_tools == 0
    assert batch.failures == []


async def test_approve_review_triggers_recalculation(db, make_tool, make_structured_review):
    tool_id = await make_tool()
    review_id = await make_structured_review(tool_id, {"quality": 9}, overall_rating=9, status="pending")

    review, aggregated = await aggregator.approve_review(review_id)

    assert review.status == "approved"
    assert aggregated.total_reviews == 1
    assert (await fetch_aggregate(db, tool_id)).overall_average == 9.0


async def test_approve_review_rejects_non_pending(db, make_tool, make_structured_review):
    tool_id = await make_tool()
    review_id = await make_structured_review(tool_id, {"quality": 9})

    with pytest.raises(ValidationError) as excinfo:
        await aggregator.approve_review(review_id)

    assert excinfo.value.code == "INVALID_REVIEW_STATUS"


async def test_approve_missing_review(db):
    with pytest.raises(ReviewNotFound):
        await aggregator.approve_review(12345)


async def test_approval_survives_failed_recalculation(db, make_tool, make_structured_review, monkeypatch):
    tool_id = await make_tool()
    review_id = await make_structured_review(tool_id, {"quality": 9}, status="pending")

    async def broken(tool_id):
        raise InternalError("Internal server error: locked")

    monkeypatch.setattr(aggregator, "recalculate", broken)

    review, aggregated = await aggregator.approve_review(review_id)

    assert review.status == "approved"
    assert aggregated is None
    async with db() as session:
        stored = await session.get(StructuredReview, review_id)
        assert stored.status == "approved"


async def test_tool_scores_prefer_reliable_aggregate(db, make_tool, make_structured_review):
    tool_id = await make_tool()
    for _ in range(3):
        await make_structured_review(tool_id, {"quality": 8}, overall_rating=8)
    await aggregator.recalculate(tool_id)

    scores = await aggregator.get_tool_scores(tool_id)

    assert scores["recommended"] == "aggregated"
    assert scores["aggregated"]["confidenceScore"] == 30.0
    assert scores["editorial"] is None


async def test_tool_scores_fall_back_to_editorial(db, make_tool, make_structured_review, make_editorial_score):
    tool_id = await make_tool()
    await make_structured_review(tool_id, {"quality": 8})
    await aggregator.recalculate(tool_id)
    await make_editorial_score(tool_id, {"quality": 9})

    scores = await aggregator.get_tool_scores(tool_id)

    assert scores["recommended"] == "editorial"
    assert scores["fallbackReason"] == "Low confidence score"
    assert scores["editorial"]["metricScores"] == {"quality": 9}
    assert scores["aggregated"]["totalReviews"] == 1


async def test_tool_scores_fall_back_to_tool_defaults(db, make_tool, make_editorial_score):
    tool_id = await make_tool(content_quality=8.0, value_for_money=3.0)
    await make_editorial_score(tool_id, {"quality": 9}, is_active=False)

    scores = await aggregator.get_tool_scores(tool_id)

    assert scores["recommended"] == "default"
    assert scores["aggregated"] is None
    assert scores["toolDefaults"]["contentQuality"] == 8.0
    assert scores["toolDefaults"]["valueForMoney"] == 3.0
    assert scores["toolDefaults"]["learningCurve"] == 5


async def test_tool_scores_unknown_tool(db):
    with pytest.raises(ToolNotFound):
        await aggregator.get_tool_scores(77)
