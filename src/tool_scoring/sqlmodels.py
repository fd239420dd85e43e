"""SQLAlchemy models for the tool directory tables the scoring core touches.

Tools, reviews and saves are written by the rest of the application; this
package only reads them, except for ``Tool.is_featured`` and the
``aggregated_scores`` table, which it owns.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class Tool(Base):
    """A listed tool with its editorial quality sub-metrics (0-10 each)."""

    __tablename__ = "tools"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="general")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    popularity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    content_quality: Mapped[float | None] = mapped_column(Float, nullable=True)
    speed_efficiency: Mapped[float | None] = mapped_column(Float, nullable=True)
    creative_features: Mapped[float | None] = mapped_column(Float, nullable=True)
    integration_options: Mapped[float | None] = mapped_column(Float, nullable=True)
    learning_curve: Mapped[float | None] = mapped_column(Float, nullable=True)
    value_for_money: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_premium: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_tool_of_the_week: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("ix_tools_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Tool id={self.id} title={self.title!r}>"


class StructuredReview(Base):
    """A review scored per metric (1-10) plus an overall rating."""

    __tablename__ = "structured_reviews"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tool_id: Mapped[int] = mapped_column(Integer, ForeignKey("tools.id"), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    metric_scores: Mapped[str] = mapped_column(Text, nullable=False, default="{}")  # JSON object
    overall_rating: Mapped[int] = mapped_column(Integer, nullable=False)
    reviewer_type: Mapped[str] = mapped_column(String(20), nullable=False, default="user")
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("ix_structured_reviews_tool_status", "tool_id", "status"),
    )


class AggregatedScore(Base):
    """Per-tool summary derived from approved structured reviews."""

    __tablename__ = "aggregated_scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tool_id: Mapped[int] = mapped_column(Integer, ForeignKey("tools.id"), unique=True, nullable=False)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    metric_scores: Mapped[str] = mapped_column(Text, nullable=False, default="{}")  # JSON metric -> stats
    overall_average: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_reviews: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    verified_reviews: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    editorial_reviews: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    last_calculated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class EditorialScore(Base):
    """Editor-assigned metric scores, used when aggregated scores are unreliable."""

    __tablename__ = "editorial_scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tool_id: Mapped[int] = mapped_column(Integer, ForeignKey("tools.id"), nullable=False)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    metric_scores: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    editor_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_editorial_scores_tool_active", "tool_id", "is_active"),
    )


class Review(Base):
    """Simple 1-5 star user review."""

    __tablename__ = "reviews"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tool_id: Mapped[int] = mapped_column(Integer, ForeignKey("tools.id"), nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class SavedTool(Base):
    """A user's bookmark of a tool."""

    __tablename__ = "saved_tools"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    tool_id: Mapped[int] = mapped_column(Integer, ForeignKey("tools.id"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
