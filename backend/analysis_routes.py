# analysis_routes.py
"""
FastAPI routes for the evidence engine.
Starts the single-call analysis of a dataset and serves its results:
competitors, insights with source quotes, action items and dashboard analytics.
"""

from datetime import datetime
from typing import Dict, Any, List, Optional
import pandas as pd
from fastapi import APIRouter, HTTPException, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import case
from sqlalchemy.orm import Session, selectinload

from backend.database import get_db, settings
from backend.dataset_routes import CamelModel, get_dataset_or_404, parse_uuid, count_reviews
from backend.evidence_engine import (
    GeminiClient, MissingAPIKeyError, AnalysisInProgressError, RATE_LIMIT_MESSAGE, VALID_ACTION_STATUSES,
    validate_api_key, is_rate_limit_error, run_full_pipeline
)
from backend.models import (
    Dataset, Review, Competitor, InsightTheme, InsightSourceQuote, ActionItem,
    DatasetStatus, Level, ActionItemStatus, CATEGORY_LABELS
)

# ============================================
# ROUTER CONFIGURATION
# ============================================

router = APIRouter(prefix="/api", tags=["analysis"])

# ============================================
# PYDANTIC SCHEMAS
# ============================================

class AnalyzeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    dataset_id: Optional[str] = Field(None, alias="datasetId")


class ActionItemUpdate(BaseModel):
    id: Optional[str] = None
    status: Optional[str] = None


class SourceQuoteResponse(CamelModel):
    id: str
    claim_text: str
    quote_text: str
    review_id: str
    platform: str
    rating: float
    review_date: str
    reviewer_name: str
    reviewer_role: str
    product_name: str
    review_url: str


class CompetitorResponse(CamelModel):
    id: str
    name: str
    mention_count: int
    avg_sentiment: float
    complaint_themes: List[str] = []
    praise_themes: List[str] = []


class InsightResponse(CamelModel):
    id: str
    title: str
    description: str
    category: str
    impact: str
    confidence_score: float
    created_at: Optional[datetime] = None
    source_quotes: List[SourceQuoteResponse] = []


class ActionItemResponse(CamelModel):
    id: str
    title: str
    description: str
    priority: str
    status: str
    confidence_score: float = 0.0
    insight_theme_id: Optional[str] = None
    insight_title: Optional[str] = None
    insight_category: Optional[str] = None
    insight_description: Optional[str] = None
    source_quotes: List[SourceQuoteResponse] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

# ============================================
# DEPENDENCIES
# ============================================

def get_llm_client() -> GeminiClient:
    """Model client used by the analysis endpoint (overridable in tests)"""
    return GeminiClient()

# ============================================
# HELPER FUNCTIONS
# ============================================

# high -> medium -> low, unknown values last
PRIORITY_ORDER = case(
    {Level.HIGH.value: 0, Level.MEDIUM.value: 1, Level.LOW.value: 2},
    value=ActionItem.priority,
    else_=3,
)

STATUS_ORDER = case(
    {ActionItemStatus.NOT_STARTED.value: 0, ActionItemStatus.IN_PROGRESS.value: 1,
     ActionItemStatus.COMPLETE.value: 2},
    value=ActionItem.status,
    else_=3,
)


def sentiment_label(avg_sentiment: float) -> str:
    if avg_sentiment > 0.3:
        return "Positive"
    if avg_sentiment < -0.3:
        return "Negative"
    return "Mixed"


def ordered_quotes(quotes: List[InsightSourceQuote]) -> List[InsightSourceQuote]:
    """Source quotes in the order of their reviews in the file"""
    return sorted(quotes, key=lambda sq: (sq.review.position, str(sq.id)))


def serialize_source_quotes(quotes: List[InsightSourceQuote]) -> List[SourceQuoteResponse]:
    return [
        SourceQuoteResponse(
            id=str(sq.id),
            claim_text=sq.claim.claim_text,
            quote_text=sq.claim.quote_text,
            review_id=str(sq.review_id),
            platform=sq.review.platform,
            rating=sq.review.rating,
            review_date=sq.review.review_date,
            reviewer_name=sq.review.reviewer_name,
            reviewer_role=sq.review.reviewer_role or "",
            product_name=sq.review.product_name,
            review_url=sq.review.review_url or "",
        )
        for sq in ordered_quotes(quotes)
    ]


def serialize_competitor(comp: Competitor) -> CompetitorResponse:
    return CompetitorResponse(
        id=str(comp.id),
        name=comp.name,
        mention_count=comp.mention_count,
        avg_sentiment=comp.avg_sentiment,
        complaint_themes=comp.complaint_themes or [],
        praise_themes=comp.praise_themes or [],
    )


def serialize_insight(theme: InsightTheme) -> InsightResponse:
    return InsightResponse(
        id=str(theme.id),
        title=theme.title,
        description=theme.description or "",
        category=theme.category,
        impact=theme.impact,
        confidence_score=theme.confidence_score,
        created_at=theme.created_at,
        source_quotes=serialize_source_quotes(theme.source_quotes),
    )


def serialize_action_item(item: ActionItem) -> ActionItemResponse:
    theme = item.insight_theme
    return ActionItemResponse(
        id=str(item.id),
        title=item.title,
        description=item.description or "",
        priority=item.priority,
        status=item.status,
        confidence_score=theme.confidence_score if theme else 0.0,
        insight_theme_id=str(theme.id) if theme else None,
        insight_title=theme.title if theme else None,
        insight_category=theme.category if theme else None,
        insight_description=theme.description if theme else None,
        source_quotes=serialize_source_quotes(theme.source_quotes) if theme else [],
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


def _quote_options():
    return (
        selectinload(InsightTheme.source_quotes).selectinload(InsightSourceQuote.review),
        selectinload(InsightTheme.source_quotes).selectinload(InsightSourceQuote.claim),
    )


def load_competitors(db: Session, dataset: Dataset) -> List[Competitor]:
    """Competitors by mention count (highest first)"""
    return (
        db.query(Competitor)
        .filter(Competitor.dataset_id == dataset.id)
        .order_by(Competitor.mention_count.desc(), Competitor.name, Competitor.id)
        .all()
    )


def load_insights(db: Session, dataset: Dataset) -> List[InsightTheme]:
    """Insights by confidence (highest first), with their source quotes"""
    return (
        db.query(InsightTheme)
        .options(*_quote_options())
        .filter(InsightTheme.dataset_id == dataset.id)
        .order_by(InsightTheme.confidence_score.desc(), InsightTheme.created_at, InsightTheme.id)
        .all()
    )


def load_action_items(db: Session, dataset: Dataset) -> List[ActionItem]:
    """Action items by priority (high first), then status"""
    return (
        db.query(ActionItem)
        .filter(ActionItem.dataset_id == dataset.id)
        .order_by(PRIORITY_ORDER, STATUS_ORDER, ActionItem.created_at, ActionItem.id)
        .all()
    )

# ============================================
# ANALYSIS ENDPOINTS
# ============================================

@router.post("/analyze", response_model=Dict[str, Any])
def analyze_dataset(
    payload: Optional[AnalyzeRequest] = None,
    db: Session = Depends(get_db),
    client=Depends(get_llm_client)
):
    """
    Run the evidence engine on a dataset (one model call).

    Blocks until the analysis is complete. The endpoint is synchronous so
    FastAPI runs it in its threadpool and other requests keep being served.
    """
    dataset_id = payload.dataset_id if payload else None
    if not dataset_id:
        raise HTTPException(status_code=400, detail="Missing datasetId.")

    dataset = get_dataset_or_404(db, dataset_id)

    if dataset.status == DatasetStatus.ANALYZING.value:
        raise HTTPException(status_code=409, detail="Analysis already in progress for this dataset.")

    try:
        validate_api_key(settings.GEMINI_API_KEY)
    except MissingAPIKeyError as e:
        raise HTTPException(status_code=400, detail=str(e))

    print(f"🚀 Analysis requested for dataset {dataset.id} ({dataset.name})")

    try:
        counts = run_full_pipeline(db, dataset.id, client)
    except AnalysisInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        print(f"❌ Analysis error: {e}")
        if is_rate_limit_error(e):
            raise HTTPException(status_code=429, detail=RATE_LIMIT_MESSAGE)
        raise HTTPException(status_code=500, detail=str(e) or "Analysis failed")

    return {
        "status": DatasetStatus.COMPLETE.value,
        "insightCount": counts["insight_count"],
        "competitorCount": counts["competitor_count"],
        "actionItemCount": counts["action_item_count"],
    }


@router.get("/analyze", response_model=Dict[str, Any])
async def get_analysis_status(
    dataset_id: Optional[str] = Query(None, alias="datasetId"),
    db: Session = Depends(get_db)
):
    """Current status of a dataset, with the error message if analysis failed"""
    dataset = get_dataset_or_404(db, dataset_id)
    return {
        "datasetId": str(dataset.id),
        "status": dataset.status,
        "error": dataset.error_msg,
    }

# ============================================
# RESULT ENDPOINTS
# ============================================

@router.get("/competitors", response_model=Dict[str, List[CompetitorResponse]])
async def list_competitors(
    dataset_id: Optional[str] = Query(None, alias="datasetId"),
    db: Session = Depends(get_db)
):
    dataset = get_dataset_or_404(db, dataset_id)
    return {"competitors": [serialize_competitor(c) for c in load_competitors(db, dataset)]}


@router.get("/insights", response_model=Dict[str, List[InsightResponse]])
async def list_insights(
    dataset_id: Optional[str] = Query(None, alias="datasetId"),
    db: Session = Depends(get_db)
):
    dataset = get_dataset_or_404(db, dataset_id)
    return {"insights": [serialize_insight(t) for t in load_insights(db, dataset)]}


@router.get("/action-items", response_model=Dict[str, List[ActionItemResponse]])
async def list_action_items(
    dataset_id: Optional[str] = Query(None, alias="datasetId"),
    db: Session = Depends(get_db)
):
    dataset = get_dataset_or_404(db, dataset_id)
    return {"actionItems": [serialize_action_item(a) for a in load_action_items(db, dataset)]}


@router.patch("/action-items", response_model=Dict[str, ActionItemResponse])
async def update_action_item(update: ActionItemUpdate, db: Session = Depends(get_db)):
    """Move an action item through not_started -> in_progress -> complete"""
    if not update.id or not update.status:
        raise HTTPException(status_code=400, detail="Missing id or status.")

    if update.status not in VALID_ACTION_STATUSES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid status. Must be one of: {', '.join(VALID_ACTION_STATUSES)}"
        )

    item_id = parse_uuid(update.id)
    item = db.get(ActionItem, item_id) if item_id else None
    if item is None:
        raise HTTPException(status_code=404, detail="Action item not found.")

    try:
        item.status = update.status
        db.commit()
        db.refresh(item)
        print(f"✅ Action item '{item.title}' -> {item.status}")
        return {"actionItem": serialize_action_item(item)}
    except Exception as e:
        db.rollback()
        print(f"❌ Error while updating action item: {e}")
        raise HTTPException(status_code=500, detail=f"Error: {str(e)}")

# ============================================
# DASHBOARD ANALYTICS
# ============================================

def review_frame(db: Session, dataset: Dataset) -> pd.DataFrame:
    """Reviews of a dataset as a DataFrame (rating, platform, product_name)"""
    rows = (
        db.query(Review.rating, Review.platform, Review.product_name)
        .filter(Review.dataset_id == dataset.id)
        .all()
    )
    return pd.DataFrame(
        [{"rating": r.rating, "platform": r.platform, "product_name": r.product_name} for r in rows],
        columns=["rating", "platform", "product_name"],
    )


@router.get("/analytics", response_model=Dict[str, Any])
async def get_analytics(
    dataset_id: Optional[str] = Query(None, alias="datasetId"),
    db: Session = Depends(get_db)
):
    """
    Chart data for the dashboard.

    - mentionData: mentions per competitor
    - sentimentData: competitors per sentiment bucket (empty buckets omitted)
    - sentimentCompare: average sentiment per competitor, as a percentage
    - categoryData: insight count per category label
    - ratingDistribution: review count per rounded star rating
    - platformBreakdown: review count per platform
    """
    dataset = get_dataset_or_404(db, dataset_id)

    competitors = load_competitors(db, dataset)
    insights = (
        db.query(InsightTheme.category)
        .filter(InsightTheme.dataset_id == dataset.id)
        .all()
    )

    category_counts: Dict[str, int] = {}
    for (category,) in insights:
        label = CATEGORY_LABELS.get(category, category)
        category_counts[label] = category_counts.get(label, 0) + 1

    sentiment_buckets = {"Positive": 0, "Mixed": 0, "Negative": 0}
    for c in competitors:
        sentiment_buckets[sentiment_label(c.avg_sentiment)] += 1

    df = review_frame(db, dataset)
    if df.empty:
        average_rating = None
        rating_distribution = {str(star): 0 for star in range(1, 6)}
        platform_breakdown: Dict[str, int] = {}
    else:
        average_rating = round(float(df["rating"].mean()), 2)
        stars = df["rating"].round().clip(1, 5).astype(int)
        counts = stars.value_counts()
        rating_distribution = {str(star): int(counts.get(star, 0)) for star in range(1, 6)}
        platform_breakdown = {
            str(platform): int(n) for platform, n in df["platform"].value_counts().sort_index().items()
        }

    return {
        "reviewCount": count_reviews(db, dataset.id),
        "competitorCount": len(competitors),
        "insightCount": len(insights),
        "averageRating": average_rating,
        "mentionData": [{"name": c.name, "mentions": c.mention_count} for c in competitors],
        "sentimentData": [
            {"name": name, "value": n} for name, n in sentiment_buckets.items() if n > 0
        ],
        "sentimentCompare": [
            {"name": c.name, "sentiment": int(round(c.avg_sentiment * 100))} for c in competitors
        ],
        "categoryData": [
            {"name": label, "count": count} for label, count in sorted(category_counts.items())
        ],
        "ratingDistribution": rating_distribution,
        "platformBreakdown": platform_breakdown,
    }
