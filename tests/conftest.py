"""Shared fixtures: a throwaway SQLite database per test and row builders."""

from __future__ import annotations

import json
from datetime import datetime, timedelta

import pytest

from tool_scoring.db import close_db, get_session_factory, init_db
from tool_scoring.sqlmodels import EditorialScore, Review, SavedTool, StructuredReview, Tool


@pytest.fixture
async def db(tmp_path, monkeypatch):
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.delenv("DATABASE_URL", raising=False)
    await close_db()
    await init_db()
    yield get_session_factory()
    await close_db()


async def _add(session_factory, row):
    async with session_factory() as session:
        session.add(row)
        await session.commit()
        return row.id


@pytest.fixture
def make_tool(db):
    async def _make_tool(**overrides):
        fields = {
            "title": "Tool",
            "category": "writing",
            "status": "approved",
            "created_at": datetime.utcnow() - timedelta(days=60),
        }
        fields.update(overrides)
        return await _add(db, Tool(**fields))

    return _make_tool


@pytest.fixture
def make_structured_review(db):
    async def _make_structured_review(tool_id, metric_scores=None, overall_rating=7, **overrides):
        if metric_scores is None:
            metric_scores = {}
        if not isinstance(metric_scores, str):
            metric_scores = json.dumps(metric_scores)
        fields = {
            "tool_id": tool_id,
            "user_id": "reviewer",
            "metric_scores": metric_scores,
            "overall_rating": overall_rating,
            "reviewer_type": "user",
            "is_verified": False,
            "status": "approved",
        }
        fields.update(overrides)
        return await _add(db, StructuredReview(**fields))

    return _make_structured_review


@pytest.fixture
def make_rating(db):
    async def _make_rating(tool_id, rating, user_id="rater"):
        return await _add(db, Review(tool_id=tool_id, rating=rating, user_id=user_id))

    return _make_rating


@pytest.fixture
def make_save(db):
    async def _make_save(tool_id, user_id="saver"):
        return await _add(db, SavedTool(tool_id=tool_id, user_id=user_id))

    return _make_save


@pytest.fixture
def make_editorial_score(db):
    async def _make_editorial_score(tool_id, metric_scores, is_active=True):
        return await _add(db, EditorialScore(
            tool_id=tool_id,
            metric_scores=json.dumps(metric_scores),
            editor_id="editor-1",
            is_active=is_active,
        ))

    return _make_editorial_score
