from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from datetime import datetime

# ============================================
# IMPORTS WITH backend. PREFIX
# ============================================
from backend.models import Dataset, Review, InsightTheme
from backend.database import get_db, init_db, settings, test_connection
from backend.upload_routes import router as upload_router
from backend.analysis_routes import router as analysis_router
from backend.dataset_routes import router as dataset_router
from backend.reporting_routes import router as reporting_router

API_VERSION = "1.0.0"

# ============================================
# FASTAPI CONFIGURATION
# ============================================

# Create the tables at startup
init_db()

app = FastAPI(
    title="ReviewIntel API - Evidence Engine",
    version=API_VERSION,
    description="Turns customer review CSVs into source-traced competitive insights for the ReviewIntel dashboard."
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(upload_router)
app.include_router(analysis_router)
app.include_router(dataset_router)
app.include_router(reporting_router)

# ============================================
# STARTUP EVENT
# ============================================

@app.on_event("startup")
async def startup_event():
    """Checks the database connection at startup"""
    print("🚀 Starting the ReviewIntel API...")
    if not test_connection():
        print("⚠️ Warning: the database did not answer, requests will fail until it is reachable")
        return

    try:
        db = next(get_db())
        dataset_count = db.query(Dataset).count()
        review_count = db.query(Review).count()
        print(f"✅ Connected: {dataset_count} datasets, {review_count} reviews")
        db.close()
    except Exception as e:
        print(f"⚠️ Warning: database connection problem: {e}")

    if not settings.GEMINI_API_KEY:
        print("⚠️ Warning: GEMINI_API_KEY is not set, analysis requests will be rejected")

# ============================================
# BASE ENDPOINTS
# ============================================

@app.get("/")
async def root():
    return {
        "message": "ReviewIntel API - Evidence Engine",
        "version": API_VERSION,
        "endpoints": {
            "upload": "/api/upload",
            "analyze": "/api/analyze",
            "competitors": "/api/competitors",
            "insights": "/api/insights",
            "action_items": "/api/action-items",
            "analytics": "/api/analytics",
            "datasets": "/api/datasets",
            "export": "/api/export",
            "sample_data": "/api/sample-data/download"
        }
    }

@app.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """Health check with a database round trip"""
    try:
        dataset_count = db.query(Dataset).count()
        insight_count = db.query(InsightTheme).count()

        return {
            "status": "healthy",
            "version": API_VERSION,
            "timestamp": datetime.now(),
            "database": {
                "status": "connected",
                "datasets": dataset_count,
                "insights": insight_count
            },
            "llm": {
                "model": settings.GEMINI_MODEL,
                "configured": bool(settings.GEMINI_API_KEY)
            }
        }
    except Exception as e:
        return {
            "status": "unhealthy",
            "version": API_VERSION,
            "timestamp": datetime.now(),
            "database": {
                "status": "error",
                "error": str(e)
            }
        }
