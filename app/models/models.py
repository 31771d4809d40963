from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import String, Integer, Float, Boolean, ForeignKey, Text, JSON, Index, UniqueConstraint
import sqlalchemy as sa
import uuid
from datetime import datetime
from app.core.db import Base, UTCDateTime, utcnow

CATEGORIES = ("top", "bottom", "dress", "outerwear", "shoes", "accessories", "underwear", "other")
OCCASIONS = ("work", "casual", "formal", "party", "date", "gym", "travel", "other", "general")
SEASONS = ("spring", "summer", "fall", "winter", "all-season")
FORMALITIES = ("casual", "business-casual", "business", "formal", "semi-formal")


class CleanlinessStatus:
    FRESH = "fresh"
    WORN_WEARABLE = "worn_wearable"
    NEEDS_WASH = "needs_wash"
    IN_LAUNDRY = "in_laundry"
    WASHED = "washed"
    READY_TO_WEAR = "ready_to_wear"

    ALL = (FRESH, WORN_WEARABLE, NEEDS_WASH, IN_LAUNDRY, WASHED, READY_TO_WEAR)
    IN_LAUNDRY_STATES = (IN_LAUNDRY, WASHED)
    # READY_TO_WEAR counts as fresh until the next worn-event recomputes it.
    RECOMMENDABLE = (FRESH, WORN_WEARABLE, READY_TO_WEAR)


class WashPreference:
    AFTER_EACH_WEAR = "afterEachWear"
    AFTER_FEW_WEARS = "afterFewWears"
    MANUAL = "manual"

    ALL = (AFTER_EACH_WEAR, AFTER_FEW_WEARS, MANUAL)


class LaundryStatus:
    IN_LAUNDRY = "in_laundry"
    WASHED = "washed"
    READY_TO_WEAR = "ready_to_wear"

    ALL = (IN_LAUNDRY, WASHED, READY_TO_WEAR)


class WashDecision:
    MOVED_TO_LAUNDRY = "moved_to_laundry"
    KEPT_WEARING = "kept_wearing"

    ALL = (MOVED_TO_LAUNDRY, KEPT_WEARING)


class ClothingItem(Base):
    __tablename__ = "clothing_item"
    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    embedding: Mapped[list[float] | None] = mapped_column(JSON, nullable=True)
    wear_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_worn_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cleanliness_status: Mapped[str] = mapped_column(String(32), default=CleanlinessStatus.FRESH, nullable=False)
    freshness_score: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    wash_preference: Mapped[str] = mapped_column(String(32), default=WashPreference.MANUAL, nullable=False)
    suggestion_dismissed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index("ix_clothing_item_user_status", "user_id", "cleanliness_status"),
        Index("ix_clothing_item_user_category", "user_id", "category"),
        sa.CheckConstraint("freshness_score >= 0 AND freshness_score <= 100", name="ck_clothing_item_score_range"),
    )


class LaundryEntry(Base):
    __tablename__ = "laundry_entry"
    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    clothing_item_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, ForeignKey("clothing_item.id", ondelete="CASCADE"))
    status: Mapped[str] = mapped_column(String(32), default=LaundryStatus.IN_LAUNDRY, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    added_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    expected_return: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(String(16), default="medium", nullable=False)
    item: Mapped["ClothingItem"] = relationship("ClothingItem", lazy="selectin")

    __table_args__ = (
        Index(
            "uq_laundry_entry_active_item",
            "clothing_item_id",
            unique=True,
            postgresql_where=sa.text("active"),
            sqlite_where=sa.text("active"),
        ),
        Index("ix_laundry_entry_user_status", "user_id", "status"),
    )


class WashDecisionRecord(Base):
    __tablename__ = "wash_decision_record"
    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    clothing_item_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, ForeignKey("clothing_item.id", ondelete="CASCADE"))
    decision: Mapped[str] = mapped_column(String(32), nullable=False)
    item_type: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    __table_args__ = (Index("ix_wash_decision_user_type", "user_id", "item_type"),)


class WearLearningState(Base):
    __tablename__ = "wear_learning_state"
    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    category: Mapped[str] = mapped_column(String(64), primary_key=True)
    dismiss_rate: Mapped[float] = mapped_column(Float, nullable=False)
    decay_constant: Mapped[float] = mapped_column(Float, nullable=False)
    decisions_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)


class Recommendation(Base):
    __tablename__ = "recommendation"
    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    context: Mapped[dict] = mapped_column(JSON, nullable=False)
    items_by_category: Mapped[dict] = mapped_column(JSON, nullable=False)
    weather: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    narrative: Mapped[str | None] = mapped_column(Text, nullable=True)
    degraded: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    items: Mapped[list["RecommendationItem"]] = relationship(
        "RecommendationItem",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="RecommendationItem.rank",
    )


class RecommendationItem(Base):
    __tablename__ = "recommendation_item"
    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    recommendation_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, ForeignKey("recommendation.id", ondelete="CASCADE"))
    clothing_item_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, ForeignKey("clothing_item.id", ondelete="CASCADE"))
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    similarity: Mapped[float] = mapped_column(Float, nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (Index("ix_recommendation_item_rec", "recommendation_id"),)


class RecommendationWear(Base):
    __tablename__ = "recommendation_wear"
    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    recommendation_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, ForeignKey("recommendation.id", ondelete="CASCADE"))
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    worn_item_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    skipped_item_ids: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    worn_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class Feedback(Base):
    __tablename__ = "feedback"
    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    recommendation_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, ForeignKey("recommendation.id", ondelete="CASCADE"))
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    specific_aspects: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    would_wear_again: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    improvements: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "recommendation_id", name="uq_feedback_user_recommendation"),
        sa.CheckConstraint("rating >= 1 AND rating <= 5", name="ck_feedback_rating_range"),
    )


class FeedbackQuality(Base):
    __tablename__ = "feedback_quality"
    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    occasion: Mapped[str] = mapped_column(String(32), nullable=False)
    season: Mapped[str] = mapped_column(String(32), nullable=False)
    scope: Mapped[str] = mapped_column(String(16), nullable=False)
    key: Mapped[str] = mapped_column(String(64), nullable=False)
    score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "occasion", "season", "scope", "key", name="uq_feedback_quality_bucket"),
    )
