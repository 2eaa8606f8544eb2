"""
SQLAlchemy models for review datasets and their derived analysis.
A dataset owns its reviews and every artifact produced by the evidence engine.
"""

import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, Integer, Float, DateTime, ForeignKey, Text, JSON, Uuid
from sqlalchemy.orm import relationship

from backend.database import Base


# ============================================
# ENUMS
# ============================================

class DatasetStatus(str, Enum):
    """Lifecycle of an uploaded dataset"""
    UPLOADING = "uploading"
    PARSING = "parsing"
    ANALYZING = "analyzing"
    COMPLETE = "complete"
    ERROR = "error"


class InsightCategory(str, Enum):
    FEATURE_GAP = "feature_gap"
    CHURN_DRIVER = "churn_driver"
    PRODUCT_STRENGTH = "product_strength"
    PRICING_CONCERN = "pricing_concern"


class Level(str, Enum):
    """Shared high/medium/low scale for impact, priority and claim confidence"""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ActionItemStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


CATEGORY_LABELS = {
    InsightCategory.FEATURE_GAP.value: "Feature Gap",
    InsightCategory.CHURN_DRIVER.value: "Churn Driver",
    InsightCategory.PRODUCT_STRENGTH.value: "Product Strength",
    InsightCategory.PRICING_CONCERN.value: "Pricing Concern",
}


# ============================================
# DATASET MODEL
# ============================================

class Dataset(Base):
    """One uploaded CSV file and the analysis derived from it"""
    __tablename__ = "datasets"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    status = Column(String(20), default=DatasetStatus.UPLOADING.value, nullable=False)
    error_msg = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    reviews = relationship("Review", back_populates="dataset", cascade="all, delete-orphan",
                           order_by="Review.position")
    competitors = relationship("Competitor", back_populates="dataset", cascade="all, delete-orphan")
    insight_themes = relationship("InsightTheme", back_populates="dataset", cascade="all, delete-orphan")
    claims = relationship("Claim", back_populates="dataset", cascade="all, delete-orphan")
    action_items = relationship("ActionItem", back_populates="dataset", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Dataset(id={self.id}, name='{self.name}', status={self.status})>"


# ============================================
# REVIEW MODEL
# ============================================

class Review(Base):
    """A single customer review parsed from the uploaded CSV"""
    __tablename__ = "reviews"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    dataset_id = Column(Uuid(as_uuid=True), ForeignKey("datasets.id", ondelete="CASCADE"), nullable=False, index=True)

    # Row order in the source file; the model refers to reviews by this index
    position = Column(Integer, nullable=False, default=0)

    review_text = Column(Text, nullable=False)
    rating = Column(Float, nullable=False, default=3.0)
    review_date = Column(Text, nullable=False)
    platform = Column(Text, default="Unknown")
    reviewer_name = Column(Text, default="Anonymous")
    reviewer_role = Column(Text, default="")
    product_name = Column(Text, default="Unknown Product")
    review_url = Column(Text, default="")

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)

    dataset = relationship("Dataset", back_populates="reviews")

    def __repr__(self):
        return f"<Review(id={self.id}, product='{self.product_name}', rating={self.rating})>"


# ============================================
# ANALYSIS MODELS
# ============================================

class Competitor(Base):
    """A product/company identified by the model across the reviews"""
    __tablename__ = "competitors"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    dataset_id = Column(Uuid(as_uuid=True), ForeignKey("datasets.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    mention_count = Column(Integer, default=1)
    avg_sentiment = Column(Float, default=0.0)  # -1.0 (negative) to 1.0 (positive)
    complaint_themes = Column(JSON, default=list)
    praise_themes = Column(JSON, default=list)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)

    dataset = relationship("Dataset", back_populates="competitors")

    def __repr__(self):
        return f"<Competitor(id={self.id}, name='{self.name}')>"


class InsightTheme(Base):
    """A synthesized insight, backed by source quotes"""
    __tablename__ = "insight_themes"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    dataset_id = Column(Uuid(as_uuid=True), ForeignKey("datasets.id", ondelete="CASCADE"), nullable=False, index=True)

    title = Column(String(500), nullable=False)
    description = Column(Text, default="")
    category = Column(String(50), default=InsightCategory.FEATURE_GAP.value)
    impact = Column(String(20), default=Level.MEDIUM.value)
    confidence_score = Column(Float, default=0.5)  # Always within [0, 1]

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)

    dataset = relationship("Dataset", back_populates="insight_themes")
    source_quotes = relationship("InsightSourceQuote", back_populates="insight_theme", cascade="all, delete-orphan")
    action_items = relationship("ActionItem", back_populates="insight_theme")

    def __repr__(self):
        return f"<InsightTheme(id={self.id}, title='{self.title}')>"


class Claim(Base):
    """A claim extracted from one review in support of an insight"""
    __tablename__ = "claims"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    dataset_id = Column(Uuid(as_uuid=True), ForeignKey("datasets.id", ondelete="CASCADE"), nullable=False, index=True)
    review_id = Column(Uuid(as_uuid=True), ForeignKey("reviews.id", ondelete="CASCADE"), nullable=False)

    claim_text = Column(Text, nullable=False)
    category = Column(String(50), nullable=False)
    quote_text = Column(Text, nullable=False)
    confidence = Column(String(20), default=Level.MEDIUM.value)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)

    dataset = relationship("Dataset", back_populates="claims")
    review = relationship("Review")

    def __repr__(self):
        return f"<Claim(id={self.id}, review_id={self.review_id})>"


class InsightSourceQuote(Base):
    """Join of insight, claim and the review the claim was taken from"""
    __tablename__ = "insight_source_quotes"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    insight_theme_id = Column(Uuid(as_uuid=True), ForeignKey("insight_themes.id", ondelete="CASCADE"), nullable=False, index=True)
    claim_id = Column(Uuid(as_uuid=True), ForeignKey("claims.id", ondelete="CASCADE"), nullable=False)
    review_id = Column(Uuid(as_uuid=True), ForeignKey("reviews.id", ondelete="CASCADE"), nullable=False)

    insight_theme = relationship("InsightTheme", back_populates="source_quotes")
    claim = relationship("Claim")
    review = relationship("Review")

    def __repr__(self):
        return f"<InsightSourceQuote(insight={self.insight_theme_id}, review={self.review_id})>"


class ActionItem(Base):
    """A recommended task derived from an insight"""
    __tablename__ = "action_items"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    dataset_id = Column(Uuid(as_uuid=True), ForeignKey("datasets.id", ondelete="CASCADE"), nullable=False, index=True)
    insight_theme_id = Column(Uuid(as_uuid=True), ForeignKey("insight_themes.id", ondelete="SET NULL"), nullable=True)

    title = Column(String(500), nullable=False)
    description = Column(Text, default="")
    priority = Column(String(20), default=Level.MEDIUM.value)
    status = Column(String(20), default=ActionItemStatus.NOT_STARTED.value, nullable=False)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    dataset = relationship("Dataset", back_populates="action_items")
    insight_theme = relationship("InsightTheme", back_populates="action_items")

    def __repr__(self):
        return f"<ActionItem(id={self.id}, title='{self.title}', status={self.status})>"
