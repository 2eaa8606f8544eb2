# dataset_routes.py
"""
FastAPI routes for uploaded datasets.
Lists datasets, shows one dataset with its review count, lists its reviews,
and deletes a dataset together with every derived artifact.
"""

import uuid
from datetime import datetime
from typing import Dict, Any, List, Optional
from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy import func
from sqlalchemy.orm import Session

from backend.database import get_db
from backend.models import Dataset, Review

# ============================================
# ROUTER CONFIGURATION
# ============================================

router = APIRouter(prefix="/api/datasets", tags=["datasets"])

# ============================================
# PYDANTIC SCHEMAS
# ============================================

class CamelModel(BaseModel):
    """Response base: snake_case in Python, camelCase on the wire"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class DatasetResponse(CamelModel):
    id: str
    name: str
    status: str
    error_msg: Optional[str] = None
    review_count: int = 0
    created_at: Optional[datetime] = None


class ReviewResponse(CamelModel):
    id: str
    review_text: str
    rating: float
    review_date: str
    platform: str
    reviewer_name: str
    reviewer_role: str
    product_name: str
    review_url: str

# ============================================
# HELPER FUNCTIONS
# ============================================

def parse_uuid(value: Optional[str]) -> Optional[uuid.UUID]:
    """UUID from a request string, None when it is not a valid identifier"""
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        return None


def get_dataset_or_404(db: Session, dataset_id: Optional[str]) -> Dataset:
    """
    Resolve a dataset id sent by the dashboard.
    Missing id -> 400, unknown or malformed id -> 404.
    """
    if not dataset_id:
        raise HTTPException(status_code=400, detail="Missing datasetId parameter.")

    parsed = parse_uuid(dataset_id)
    dataset = db.get(Dataset, parsed) if parsed else None
    if dataset is None:
        raise HTTPException(status_code=404, detail="Dataset not found.")
    return dataset


def count_reviews(db: Session, dataset_id: uuid.UUID) -> int:
    return db.query(func.count(Review.id)).filter(Review.dataset_id == dataset_id).scalar() or 0


def serialize_dataset(db: Session, dataset: Dataset) -> DatasetResponse:
    return DatasetResponse(
        id=str(dataset.id),
        name=dataset.name,
        status=dataset.status,
        error_msg=dataset.error_msg,
        review_count=count_reviews(db, dataset.id),
        created_at=dataset.created_at,
    )

# ============================================
# ENDPOINTS
# ============================================

@router.get("", response_model=Dict[str, List[DatasetResponse]])
async def list_datasets(db: Session = Depends(get_db)):
    """All datasets, most recent first"""
    datasets = db.query(Dataset).order_by(Dataset.created_at.desc(), Dataset.id).all()
    return {"datasets": [serialize_dataset(db, d) for d in datasets]}


@router.get("/{dataset_id}", response_model=DatasetResponse)
async def get_dataset(dataset_id: str, db: Session = Depends(get_db)):
    """Dataset status and review count"""
    dataset = get_dataset_or_404(db, dataset_id)
    return serialize_dataset(db, dataset)


@router.get("/{dataset_id}/reviews", response_model=Dict[str, Any])
async def list_reviews(dataset_id: str, db: Session = Depends(get_db)):
    """Reviews of a dataset in their original CSV order"""
    dataset = get_dataset_or_404(db, dataset_id)
    reviews = (
        db.query(Review)
        .filter(Review.dataset_id == dataset.id)
        .order_by(Review.position)
        .all()
    )
    return {
        "count": len(reviews),
        "reviews": [
            ReviewResponse(
                id=str(r.id),
                review_text=r.review_text,
                rating=r.rating,
                review_date=r.review_date,
                platform=r.platform,
                reviewer_name=r.reviewer_name,
                reviewer_role=r.reviewer_role,
                product_name=r.product_name,
                review_url=r.review_url,
            ).model_dump(by_alias=True)
            for r in reviews
        ]
    }


@router.delete("/{dataset_id}", response_model=Dict[str, str])
async def delete_dataset(dataset_id: str, db: Session = Depends(get_db)):
    """Delete a dataset and everything derived from it"""
    dataset = get_dataset_or_404(db, dataset_id)

    try:
        name = dataset.name
        db.delete(dataset)
        db.commit()
        print(f"✅ Dataset deleted: {name}")
        return {"message": f"Dataset '{name}' deleted"}
    except Exception as e:
        db.rollback()
        print(f"❌ Error while deleting dataset: {e}")
        raise HTTPException(status_code=500, detail=f"Error: {str(e)}")
