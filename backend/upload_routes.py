# upload_routes.py
"""
CSV Upload API routes for review datasets.
Handles file upload, column mapping, and review storage in the database.
"""

import io
from fastapi import APIRouter, UploadFile, File, HTTPException, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from typing import Dict, Any, Optional

from backend.database import get_db
from backend.models import Dataset, Review, DatasetStatus
from backend.review_ingestion import (
    CSVParseError, STANDARD_COLUMNS, CAPTERRA_COLUMNS, G2_COLUMNS,
    decode_upload, parse_csv_with_layout
)

router = APIRouter(prefix="/api", tags=["upload"])

# Logical fields and what they hold
REVIEW_SCHEMA = {
    "review_text": "Full text of the review (required)",
    "rating": "Star rating, 1 to 5 (defaults to 3)",
    "review_date": "Date of the review (defaults to the upload date)",
    "platform": "Review platform, e.g. G2 or Capterra (defaults to 'Unknown')",
    "reviewer_name": "Name of the reviewer (defaults to 'Anonymous')",
    "reviewer_role": "Job title of the reviewer",
    "product_name": "Product being reviewed (defaults to 'Unknown Product')",
    "review_url": "Link to the original review",
}

SAMPLE_CSV = """review_text,rating,review_date,platform,reviewer_name,reviewer_role,product_name,review_url
"Onboarding took three months and the implementation partner kept changing. Reporting is powerful once it works.",3,2024-03-02,G2,Dana K.,HR Director,Workday,https://www.g2.com/products/workday/reviews/1
"Very easy for employees to use. Time-off requests are simple but custom reports are limited.",4,2024-03-05,Capterra,Luis M.,People Ops Manager,BambooHR,https://www.capterra.com/p/bamboohr/reviews/2
"Pricing went up 30% at renewal with no new features. We are evaluating alternatives.",2,2024-03-09,G2,Priya S.,VP People,BambooHR,https://www.g2.com/products/bamboohr/reviews/3
"Payroll and benefits in one place saved us hours every month. Support response times are slow.",4,2024-03-12,G2,Tom R.,Office Manager,Gusto,https://www.g2.com/products/gusto/reviews/4
"The mobile app is clunky and managers refuse to approve timesheets on it.",2,2024-03-15,Capterra,Anna B.,HR Generalist,Workday,https://www.capterra.com/p/workday/reviews/5
"Global payroll coverage is excellent, but contractor onboarding has too many manual steps.",4,2024-03-18,G2,Kenji T.,Head of Talent,Rippling,https://www.g2.com/products/rippling/reviews/6
"""


@router.post("/upload", response_model=Dict[str, Any])
async def upload_csv(file: Optional[UploadFile] = File(None), db: Session = Depends(get_db)):
    """
    Upload a CSV file of customer reviews.

    Accepted header layouts:
    - standard: review_text, rating, review_date, platform, ...
    - capterra: Review, Overall Rating, Date, Reviewer, ...
    - g2: Review Text, Star Rating, Review Date, Reviewer Name, ...

    Rows without review text are skipped. The dataset is left in the
    'parsing' status, ready for analysis.
    """
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file provided.")

    # Check file type
    if not file.filename.lower().endswith('.csv'):
        raise HTTPException(
            status_code=400,
            detail="Invalid file type. Please upload a CSV file."
        )

    try:
        content = await file.read()
        text = decode_upload(content)

        if not text.strip():
            raise HTTPException(status_code=400, detail="CSV file is empty.")

        try:
            reviews, column_map = parse_csv_with_layout(text)
        except CSVParseError as e:
            raise HTTPException(status_code=400, detail=str(e))

        csv_format = column_map.name

        dataset = Dataset(name=file.filename, status=DatasetStatus.UPLOADING.value)
        db.add(dataset)
        db.flush()

        for position, parsed in enumerate(reviews):
            db.add(Review(dataset_id=dataset.id, position=position, **parsed.to_dict()))

        dataset.status = DatasetStatus.PARSING.value
        db.commit()

        print(f"[upload] ✅ {file.filename}: {len(reviews)} reviews stored ({csv_format} layout)")

        return {
            "datasetId": str(dataset.id),
            "reviewCount": len(reviews),
            "status": dataset.status,
            "format": csv_format,
        }

    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        print(f"[upload] ❌ Error while processing {file.filename}: {e}")
        raise HTTPException(
            status_code=500,
            detail=f"Error while processing the file: {str(e)}"
        )


@router.get("/sample-data")
async def get_sample_data():
    """Describe the accepted CSV layouts and show a sample file"""
    return {
        "schema": REVIEW_SCHEMA,
        "formats": {
            layout.name: {
                "review_text": layout.review_text,
                "rating": layout.rating,
                "review_date": layout.review_date,
                "reviewer_name": layout.reviewer_name,
                "reviewer_role": layout.reviewer_role,
                "product_name": layout.product_name,
                "review_url": layout.review_url,
            }
            for layout in (STANDARD_COLUMNS, CAPTERRA_COLUMNS, G2_COLUMNS)
        },
        "sample_preview": SAMPLE_CSV
    }


@router.get("/sample-data/download")
async def download_sample_csv():
    """Download a sample CSV file"""
    return StreamingResponse(
        io.BytesIO(SAMPLE_CSV.encode('utf-8')),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=sample_reviews.csv"}
    )
