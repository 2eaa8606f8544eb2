# evidence_engine.py
"""
Evidence Engine Pipeline

Processes uploaded reviews into source-traced competitive insights using a
SINGLE model call:
  1. build_mega_prompt - every review serialized into one instruction prompt
  2. GeminiClient.generate - one round trip, JSON response mode
  3. normalize_analysis - whitelist enums, clamp scores, default missing text
  4. store_analysis_results - persist competitors, insights, claims, actions

The model only SUGGESTS content. Every value it returns goes through the
normalizer before it reaches the database. Cross references (insight to
review, action item to insight) are trusted by array index only.
"""

import json
import re
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional

from google import genai
from google.genai import errors, types
from sqlalchemy.orm import Session

from backend.database import settings
from backend.models import (
    Dataset, Review, Competitor, InsightTheme, Claim, InsightSourceQuote, ActionItem,
    DatasetStatus, InsightCategory, Level, ActionItemStatus
)


# ============================================
# ERRORS
# ============================================

class EvidenceEngineError(Exception):
    """Base exception for pipeline errors."""
    pass


class MissingAPIKeyError(EvidenceEngineError):
    """The provider API key is absent or still a placeholder."""
    pass


class LLMRateLimitError(EvidenceEngineError):
    """The provider rejected the call because of rate limiting."""
    pass


class LLMResponseError(EvidenceEngineError):
    """The provider returned empty or unparseable output."""
    pass


class AnalysisInProgressError(EvidenceEngineError):
    """Another request is already analyzing the dataset."""
    pass


# ============================================
# CONSTANTS
# ============================================

VALID_CATEGORIES = [c.value for c in InsightCategory]
VALID_LEVELS = [lv.value for lv in Level]
VALID_ACTION_STATUSES = [s.value for s in ActionItemStatus]

DEFAULT_CATEGORY = InsightCategory.FEATURE_GAP.value
DEFAULT_LEVEL = Level.MEDIUM.value
DEFAULT_CONFIDENCE = 0.5

PLACEHOLDER_API_KEYS = {"your-key-here"}
MIN_API_KEY_LENGTH = 10

QUOTE_MAX_LENGTH = 500
# Column lengths of competitor names and insight or action titles
NAME_MAX_LENGTH = 255
TITLE_MAX_LENGTH = 500

_INTEGER = re.compile(r"^-?[0-9]+$")

RATE_LIMIT_MESSAGE = "LLM rate limit exceeded. Please wait a moment and try again."


# ============================================
# MEGA-PROMPT
# ============================================

MEGA_PROMPT_TEMPLATE = """You are a competitive intelligence analyst for HR Tech SaaS companies.

Analyze ALL of the following customer reviews and produce a COMPLETE analysis in a single JSON response.

## REVIEWS DATA:
{reviews_json}

## INSTRUCTIONS:
Analyze every review above and produce the following:

### 1. COMPETITORS
Identify each unique product/company mentioned. For each competitor:
- Count how many reviews mention them
- Calculate average sentiment (-1.0 = very negative, 0 = neutral, +1.0 = very positive)
- List 2-4 praise themes (what users love)
- List 2-4 complaint themes (what users dislike)

### 2. INSIGHTS
Generate 5-10 actionable insights from patterns across reviews. Each insight must:
- Have a clear, specific title
- Have a detailed 1-2 sentence description
- Be categorized as: "feature_gap", "churn_driver", "product_strength", or "pricing_concern"
- Have impact rated as: "high", "medium", or "low"
- Have a confidenceScore (0.0 to 1.0) based on how many reviews support it
- Reference which reviews support it using their "index" values from the input

### 3. ACTION ITEMS
Generate 4-8 concrete action items based on the insights. Each must:
- Have a specific, actionable title (start with a verb)
- Have a detailed description of what to do
- Be prioritized as: "high", "medium", or "low"
- Reference which insight it relates to (by index in the insights array)

## REQUIRED JSON FORMAT:
{{
  "competitors": [
    {{
      "name": "Product Name",
      "mentionCount": 5,
      "avgSentiment": 0.3,
      "praiseThemes": ["Easy to use", "Good reporting"],
      "complaintThemes": ["Slow support", "High pricing"]
    }}
  ],
  "insights": [
    {{
      "title": "Onboarding Complexity Drives Churn",
      "description": "Multiple reviews across Workday and BambooHR mention...",
      "category": "churn_driver",
      "impact": "high",
      "confidenceScore": 0.8,
      "sourceReviewIndices": [0, 3, 7, 12]
    }}
  ],
  "actionItems": [
    {{
      "title": "Build guided onboarding wizard",
      "description": "Create a step-by-step onboarding flow...",
      "priority": "high",
      "relatedInsightIndex": 0
    }}
  ]
}}

Return ONLY valid JSON. No markdown, no explanation, just the JSON object."""


def build_review_inputs(reviews: List[Review]) -> List[Dict[str, Any]]:
    """Compact per-review records sent to the model, indexed in CSV order"""
    return [
        {
            "index": i,
            "text": r.review_text,
            "rating": r.rating,
            "platform": r.platform,
            "product": r.product_name,
            "date": r.review_date,
            "reviewer": r.reviewer_name,
            "role": r.reviewer_role,
        }
        for i, r in enumerate(reviews)
    ]


def build_mega_prompt(review_inputs: List[Dict[str, Any]]) -> str:
    """Embed the whole review set into the fixed instruction template"""
    reviews_json = json.dumps(review_inputs, indent=1, ensure_ascii=False)
    return MEGA_PROMPT_TEMPLATE.format(reviews_json=reviews_json)


# ============================================
# MODEL CLIENT
# ============================================

def validate_api_key(api_key: Optional[str]) -> None:
    """Reject a missing, too short or placeholder key before any network call"""
    if not api_key or len(api_key) < MIN_API_KEY_LENGTH or api_key in PLACEHOLDER_API_KEYS:
        raise MissingAPIKeyError(
            "Missing Gemini API key. Please set GEMINI_API_KEY in the environment or backend/.env."
        )


def is_rate_limit_error(exc: BaseException) -> bool:
    """Provider errors that mean 'slow down' rather than 'broken request'"""
    if isinstance(exc, LLMRateLimitError):
        return True
    if getattr(exc, "code", None) == 429:
        return True
    message = str(exc).lower()
    return "rate limit" in message or "429" in message or "resource_exhausted" in message


class GeminiClient:
    """
    Thin wrapper around the Google Gen AI SDK.

    USAGE:
        client = GeminiClient()
        text = client.generate(prompt)  # raw JSON text

    One call per prompt: no retry, no streaming. The key is validated and the
    SDK client created on the first generate() call.
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 temperature: Optional[float] = None, timeout_seconds: Optional[int] = None):
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.model = model or settings.GEMINI_MODEL
        self.temperature = temperature if temperature is not None else settings.LLM_TEMPERATURE
        self.timeout_seconds = timeout_seconds or settings.LLM_TIMEOUT_SECONDS
        self._client = None

    def _get_client(self):
        if self._client is None:
            validate_api_key(self.api_key)
            self._client = genai.Client(
                api_key=self.api_key,
                http_options=types.HttpOptions(timeout=self.timeout_seconds * 1000),
            )
        return self._client

    def generate(self, prompt: str) -> str:
        """Send one prompt and return the response text ('' when the model returns nothing)"""
        try:
            response = self._get_client().models.generate_content(
                model=self.model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    temperature=self.temperature,
                ),
            )
        except errors.APIError as e:
            if is_rate_limit_error(e):
                raise LLMRateLimitError(RATE_LIMIT_MESSAGE) from e
            raise

        return response.text or ""


# ============================================
# RESPONSE PARSING
# ============================================

_CODE_FENCE = re.compile(r'^\s*```(?:json)?\s*(.*?)\s*```\s*$', re.DOTALL)


def parse_model_response(content: Optional[str]) -> Dict[str, List[Any]]:
    """
    Parse the raw model text into its three sections.

    Raises:
        LLMResponseError: empty text, invalid JSON, or JSON that is not an object
    """
    if not content or not content.strip():
        raise LLMResponseError("The model returned an empty response.")

    fenced = _CODE_FENCE.match(content)
    if fenced:
        content = fenced.group(1)

    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        print(f"[pipeline] ❌ Failed to parse model response: {content[:500]}")
        raise LLMResponseError("The model returned invalid JSON. Please try again.")

    if not isinstance(parsed, dict):
        raise LLMResponseError("The model returned invalid JSON. Please try again.")

    action_items = parsed.get("actionItems")
    if action_items is None:
        action_items = parsed.get("actions")

    return {
        "competitors": _as_list(parsed.get("competitors")),
        "insights": _as_list(parsed.get("insights")),
        "actionItems": _as_list(action_items),
    }


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


# ============================================
# NORMALIZATION
# ============================================

@dataclass
class NormalizedCompetitor:
    name: str
    mention_count: int
    avg_sentiment: float
    praise_themes: List[str] = field(default_factory=list)
    complaint_themes: List[str] = field(default_factory=list)


@dataclass
class NormalizedInsight:
    title: str
    description: str
    category: str
    impact: str
    confidence_score: float
    source_review_indices: List[int] = field(default_factory=list)


@dataclass
class NormalizedActionItem:
    title: str
    description: str
    priority: str
    related_insight_index: Optional[int] = None


@dataclass
class AnalysisResult:
    competitors: List[NormalizedCompetitor] = field(default_factory=list)
    insights: List[NormalizedInsight] = field(default_factory=list)
    action_items: List[NormalizedActionItem] = field(default_factory=list)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _to_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def _to_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and _INTEGER.match(value.strip()):
        return int(value.strip())
    return None


def _text(value: Any, default: str) -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text if text else default


def whitelist(value: Any, allowed: List[str], default: str) -> str:
    """Return the value when it is one of the allowed enum values, else the default"""
    if isinstance(value, str):
        candidate = value.strip().lower()
        if candidate in allowed:
            return candidate
    return default


def _themes(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(t).strip() for t in value if isinstance(t, (str, int, float)) and str(t).strip()]


def normalize_competitor(raw: Any) -> NormalizedCompetitor:
    raw = raw if isinstance(raw, dict) else {}

    mention_count = _to_int(raw.get("mentionCount"))
    if mention_count is None:
        as_float = _to_float(raw.get("mentionCount"))
        mention_count = int(as_float) if as_float is not None else None
    if mention_count is None or mention_count < 1:
        mention_count = 1

    sentiment = _to_float(raw.get("avgSentiment"))

    return NormalizedCompetitor(
        name=_text(raw.get("name"), "Unknown")[:NAME_MAX_LENGTH],
        mention_count=mention_count,
        avg_sentiment=clamp(sentiment, -1.0, 1.0) if sentiment is not None else 0.0,
        praise_themes=_themes(raw.get("praiseThemes")),
        complaint_themes=_themes(raw.get("complaintThemes")),
    )


def normalize_insight(raw: Any) -> NormalizedInsight:
    raw = raw if isinstance(raw, dict) else {}

    confidence = _to_float(raw.get("confidenceScore"))

    indices: List[int] = []
    for value in _as_list(raw.get("sourceReviewIndices")):
        idx = _to_int(value)
        if idx is not None and idx not in indices:
            indices.append(idx)

    return NormalizedInsight(
        title=_text(raw.get("title"), "Untitled Insight")[:TITLE_MAX_LENGTH],
        description=_text(raw.get("description"), ""),
        category=whitelist(raw.get("category"), VALID_CATEGORIES, DEFAULT_CATEGORY),
        impact=whitelist(raw.get("impact"), VALID_LEVELS, DEFAULT_LEVEL),
        confidence_score=clamp(confidence, 0.0, 1.0) if confidence is not None else DEFAULT_CONFIDENCE,
        source_review_indices=indices,
    )


def normalize_action_item(raw: Any) -> NormalizedActionItem:
    raw = raw if isinstance(raw, dict) else {}

    return NormalizedActionItem(
        title=_text(raw.get("title"), "Action Item")[:TITLE_MAX_LENGTH],
        description=_text(raw.get("description"), ""),
        priority=whitelist(raw.get("priority"), VALID_LEVELS, DEFAULT_LEVEL),
        related_insight_index=_to_int(raw.get("relatedInsightIndex")),
    )


def normalize_analysis(parsed: Dict[str, List[Any]]) -> AnalysisResult:
    """Apply every whitelist, clamp and default to the parsed model output"""
    return AnalysisResult(
        competitors=[normalize_competitor(c) for c in parsed.get("competitors", [])],
        insights=[normalize_insight(i) for i in parsed.get("insights", [])],
        action_items=[normalize_action_item(a) for a in parsed.get("actionItems", [])],
    )


def claim_confidence_label(confidence_score: float) -> str:
    if confidence_score > 0.7:
        return Level.HIGH.value
    if confidence_score > 0.4:
        return Level.MEDIUM.value
    return Level.LOW.value


# ============================================
# PERSISTENCE
# ============================================

def clear_analysis_results(db: Session, dataset_id: uuid.UUID) -> None:
    """Remove artifacts of a previous run so a re-run replaces them"""
    insight_ids = [row.id for row in db.query(InsightTheme.id).filter(InsightTheme.dataset_id == dataset_id)]
    if insight_ids:
        db.query(InsightSourceQuote).filter(
            InsightSourceQuote.insight_theme_id.in_(insight_ids)
        ).delete(synchronize_session=False)

    db.query(ActionItem).filter(ActionItem.dataset_id == dataset_id).delete(synchronize_session=False)
    db.query(Claim).filter(Claim.dataset_id == dataset_id).delete(synchronize_session=False)
    db.query(InsightTheme).filter(InsightTheme.dataset_id == dataset_id).delete(synchronize_session=False)
    db.query(Competitor).filter(Competitor.dataset_id == dataset_id).delete(synchronize_session=False)
    db.expire_all()


def store_analysis_results(db: Session, dataset_id: uuid.UUID, result: AnalysisResult,
                           reviews: List[Review]) -> None:
    """
    Write normalized results for a dataset.

    Source review indices outside the stored reviews are skipped; an action
    item whose related insight index does not exist is stored unlinked.
    Does not commit.
    """
    print(f"[store] Storing {len(result.competitors)} competitors, {len(result.insights)} insights, "
          f"{len(result.action_items)} action items")

    for comp in result.competitors:
        db.add(Competitor(
            dataset_id=dataset_id,
            name=comp.name,
            mention_count=comp.mention_count,
            avg_sentiment=comp.avg_sentiment,
            complaint_themes=comp.complaint_themes,
            praise_themes=comp.praise_themes,
        ))

    themes: List[InsightTheme] = []
    for insight in result.insights:
        theme = InsightTheme(
            dataset_id=dataset_id,
            title=insight.title,
            description=insight.description,
            category=insight.category,
            impact=insight.impact,
            confidence_score=insight.confidence_score,
        )
        db.add(theme)
        themes.append(theme)

        for review_idx in insight.source_review_indices:
            if not 0 <= review_idx < len(reviews):
                continue
            review = reviews[review_idx]
            claim = Claim(
                dataset_id=dataset_id,
                review=review,
                claim_text=insight.title,
                category=insight.category,
                quote_text=review.review_text[:QUOTE_MAX_LENGTH],
                confidence=claim_confidence_label(insight.confidence_score),
            )
            db.add(claim)
            db.add(InsightSourceQuote(insight_theme=theme, claim=claim, review=review))

    for item in result.action_items:
        idx = item.related_insight_index
        related = themes[idx] if idx is not None and 0 <= idx < len(themes) else None
        db.add(ActionItem(
            dataset_id=dataset_id,
            insight_theme=related,
            title=item.title,
            description=item.description,
            priority=item.priority,
            status=ActionItemStatus.NOT_STARTED.value,
        ))

    db.flush()


# ============================================
# FULL PIPELINE
# ============================================

def claim_dataset_for_analysis(db: Session, dataset_id: uuid.UUID) -> None:
    """
    Move a dataset to 'analyzing' unless another run already holds it.

    The status check and the update are one conditional UPDATE, so two
    concurrent requests cannot both claim the same dataset.

    Raises:
        EvidenceEngineError: the dataset does not exist
        AnalysisInProgressError: the dataset is already being analyzed
    """
    claimed = (
        db.query(Dataset)
        .filter(Dataset.id == dataset_id, Dataset.status != DatasetStatus.ANALYZING.value)
        .update(
            {Dataset.status: DatasetStatus.ANALYZING.value, Dataset.error_msg: None},
            synchronize_session=False,
        )
    )
    db.commit()

    if claimed == 0:
        if db.get(Dataset, dataset_id) is None:
            raise EvidenceEngineError("Dataset not found.")
        raise AnalysisInProgressError("Analysis already in progress for this dataset.")


def run_full_pipeline(db: Session, dataset_id: uuid.UUID, client) -> Dict[str, int]:
    """
    Run the single-call analysis for a dataset.

    Args:
        db: Session used for every read and write
        dataset_id: Dataset to analyze
        client: Object exposing generate(prompt) -> str

    Returns:
        Counts of stored insights, competitors and action items

    Raises AnalysisInProgressError, without touching the dataset, when another
    run holds it. On any later failure the partial writes are rolled back, the
    dataset is marked 'error' with the message stored in error_msg, and the
    exception is re-raised.
    """
    claim_dataset_for_analysis(db, dataset_id)

    try:
        reviews = (
            db.query(Review)
            .filter(Review.dataset_id == dataset_id)
            .order_by(Review.position)
            .all()
        )
        print(f"[pipeline] Starting analysis for dataset {dataset_id} with {len(reviews)} reviews")

        if len(reviews) == 0:
            raise EvidenceEngineError("No reviews found for this dataset.")

        # ONE single API call
        print("[pipeline] Sending single mega-prompt to the model...")
        prompt = build_mega_prompt(build_review_inputs(reviews))
        content = client.generate(prompt)
        print(f"[pipeline] Model response received ({len(content or '')} chars)")

        result = normalize_analysis(parse_model_response(content))
        print(f"[pipeline] Parsed: {len(result.competitors)} competitors, {len(result.insights)} insights, "
              f"{len(result.action_items)} action items")

        clear_analysis_results(db, dataset_id)
        store_analysis_results(db, dataset_id, result, reviews)

        dataset = db.get(Dataset, dataset_id)
        dataset.status = DatasetStatus.COMPLETE.value
        db.commit()

        counts = {
            "insight_count": db.query(InsightTheme).filter(InsightTheme.dataset_id == dataset_id).count(),
            "competitor_count": db.query(Competitor).filter(Competitor.dataset_id == dataset_id).count(),
            "action_item_count": db.query(ActionItem).filter(ActionItem.dataset_id == dataset_id).count(),
        }
        print(f"[pipeline] ✅ Complete: {counts['insight_count']} insights, "
              f"{counts['competitor_count']} competitors, {counts['action_item_count']} action items")
        return counts

    except Exception as e:
        print(f"[pipeline] ❌ Error: {e}")
        db.rollback()
        dataset = db.get(Dataset, dataset_id)
        if dataset is not None:
            dataset.status = DatasetStatus.ERROR.value
            dataset.error_msg = str(e) or "An unknown error occurred"
            db.commit()
        raise
