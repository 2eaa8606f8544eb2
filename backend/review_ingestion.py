# review_ingestion.py
"""
Review CSV Ingestion Module

Turns a raw review export into normalized review records.

Three header layouts are recognised:
- standard: snake_case columns (review_text, rating, ...)
- capterra: Capterra exports (Review, Overall Rating, ...)
- g2: G2 exports (Review Text, Star Rating, ...)

Unknown layouts fall back to the standard column names. Optional columns
that are missing (or blank) receive documented defaults; rows without any
review text are dropped.
"""

import io
import re
from dataclasses import dataclass, asdict
from datetime import date
from typing import Dict, List, Optional, Tuple, Any

import pandas as pd


# ============================================
# DATA STRUCTURES
# ============================================

@dataclass(frozen=True)
class ColumnMap:
    """Source header name for each logical review field"""
    name: str
    review_text: str
    rating: str
    review_date: str
    platform: str
    reviewer_name: str
    reviewer_role: str
    product_name: str
    review_url: str


@dataclass
class ParsedReview:
    """A normalized review extracted from one CSV row"""
    review_text: str
    rating: float
    review_date: str
    platform: str
    reviewer_name: str
    reviewer_role: str
    product_name: str
    review_url: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CSVParseError(ValueError):
    """Raised when an upload cannot produce a single usable review"""
    pass


# ============================================
# KNOWN HEADER LAYOUTS
# ============================================

STANDARD_COLUMNS = ColumnMap(
    name="standard",
    review_text="review_text",
    rating="rating",
    review_date="review_date",
    platform="platform",
    reviewer_name="reviewer_name",
    reviewer_role="reviewer_role",
    product_name="product_name",
    review_url="review_url",
)

CAPTERRA_COLUMNS = ColumnMap(
    name="capterra",
    review_text="Review",
    rating="Overall Rating",
    review_date="Date",
    platform="platform",
    reviewer_name="Reviewer",
    reviewer_role="Role",
    product_name="Product",
    review_url="URL",
)

G2_COLUMNS = ColumnMap(
    name="g2",
    review_text="Review Text",
    rating="Star Rating",
    review_date="Review Date",
    platform="platform",
    reviewer_name="Reviewer Name",
    reviewer_role="Reviewer Role",
    product_name="Product Name",
    review_url="Review URL",
)

DEFAULT_RATING = 3.0
MIN_RATING = 1.0
MAX_RATING = 5.0

FIELD_DEFAULTS = {
    "platform": "Unknown",
    "reviewer_name": "Anonymous",
    "reviewer_role": "",
    "product_name": "Unknown Product",
    "review_url": "",
}

_LEADING_NUMBER = re.compile(r'^\s*([-+]?(?:\d+(?:\.\d*)?|\.\d+))')


# ============================================
# COLUMN DETECTION
# ============================================

def detect_column_map(headers: List[str]) -> ColumnMap:
    """
    Pick the header layout used by a file.

    Headers are compared trimmed and lower-cased. The checks run in
    priority order and the standard layout is the fallback.
    """
    h = {str(header).strip().lower() for header in headers}

    if "review_text" in h and "rating" in h:
        return STANDARD_COLUMNS
    if "overall rating" in h or "review" in h:
        return CAPTERRA_COLUMNS
    if "star rating" in h or "review text" in h:
        return G2_COLUMNS
    return STANDARD_COLUMNS


def get_field(row: Dict[str, Any], column_map: ColumnMap, field: str, fallback: str = "") -> str:
    """
    Read a logical field from a CSV row.

    Exact header lookup first, then a case-insensitive scan of the row keys.
    Missing columns and blank cells both return the fallback.
    """
    key = getattr(column_map, field)

    value: Optional[Any] = None
    if key in row:
        value = row[key]
    else:
        lower = key.lower()
        for k, v in row.items():
            if str(k).strip().lower() == lower:
                value = v
                break

    if value is None:
        return fallback
    value = str(value).strip()
    return value if value else fallback


def parse_rating(raw: str) -> float:
    """Leading numeric part of the cell, defaulting to 3 and clamped to [1, 5]"""
    match = _LEADING_NUMBER.match(raw or "")
    if not match:
        return DEFAULT_RATING
    try:
        rating = float(match.group(1))
    except ValueError:
        return DEFAULT_RATING
    return min(MAX_RATING, max(MIN_RATING, rating))


# ============================================
# CSV PARSING
# ============================================

def decode_upload(content: bytes) -> str:
    """Decode uploaded bytes; UTF-8 (with or without BOM), latin-1 otherwise"""
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        return content.decode("latin-1")


def read_csv_records(csv_content: str) -> List[Dict[str, str]]:
    """
    Load the CSV as a list of row dicts with trimmed headers and cells.

    The header row is read as data so that rows with more fields than the
    header are rejected instead of being shifted into an index column.
    Short rows are padded with blanks.
    """
    csv_content = csv_content.lstrip("\ufeff")

    try:
        df = pd.read_csv(
            io.StringIO(csv_content),
            header=None,
            index_col=False,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except pd.errors.EmptyDataError:
        raise CSVParseError("CSV file is empty or has no valid rows.")
    except pd.errors.ParserError as e:
        raise CSVParseError(f"Failed to parse CSV. Check the format. ({e})")

    df = df.fillna("")
    headers = [str(c).strip() for c in df.iloc[0]]

    return [
        dict(zip(headers, (str(v).strip() for v in values)))
        for values in df.iloc[1:].itertuples(index=False, name=None)
    ]


def parse_csv_with_layout(csv_content: str, today: Optional[date] = None) -> Tuple[List[ParsedReview], ColumnMap]:
    """
    Extract normalized reviews from raw CSV text.

    Args:
        csv_content: Decoded CSV text (header row required)
        today: Date used when a row has no review date (defaults to today)

    Returns:
        Reviews in file order, each with non-empty text and a rating in [1, 5],
        and the header layout that was detected

    Raises:
        CSVParseError: malformed rows, no data rows, or no row with review text
    """
    records = read_csv_records(csv_content)

    if len(records) == 0:
        raise CSVParseError("CSV file is empty or has no valid rows.")

    column_map = detect_column_map(list(records[0].keys()))
    upload_day = (today or date.today()).isoformat()

    reviews = []
    for row in records:
        review_text = get_field(row, column_map, "review_text")
        if not review_text:
            continue

        reviews.append(ParsedReview(
            review_text=review_text,
            rating=parse_rating(get_field(row, column_map, "rating")),
            review_date=get_field(row, column_map, "review_date", upload_day),
            platform=get_field(row, column_map, "platform", FIELD_DEFAULTS["platform"]),
            reviewer_name=get_field(row, column_map, "reviewer_name", FIELD_DEFAULTS["reviewer_name"]),
            reviewer_role=get_field(row, column_map, "reviewer_role", FIELD_DEFAULTS["reviewer_role"]),
            product_name=get_field(row, column_map, "product_name", FIELD_DEFAULTS["product_name"]),
            review_url=get_field(row, column_map, "review_url", FIELD_DEFAULTS["review_url"]),
        ))

    if len(reviews) == 0:
        raise CSVParseError(
            "No valid reviews found. Ensure your CSV has a column for review text "
            "(e.g., 'review_text', 'Review', or 'Review Text')."
        )

    return reviews, column_map


def parse_csv(csv_content: str, today: Optional[date] = None) -> List[ParsedReview]:
    """Reviews from raw CSV text, see parse_csv_with_layout"""
    reviews, _ = parse_csv_with_layout(csv_content, today)
    return reviews
