"""Shared pytest fixtures: in-memory database, fake model client, API client."""

import os

# Must be set before backend.database is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["GEMINI_API_KEY"] = "test-gemini-key-0123456789"

import json

import pytest
from fastapi.testclient import TestClient

from backend.database import Base, engine, SessionLocal
from backend.main import app
from backend.analysis_routes import get_llm_client


REVIEWS_CSV = """review_text,rating,review_date,platform,reviewer_name,reviewer_role,product_name,review_url
"Onboarding took months, the setup is painful.",2,2024-01-10,G2,Alice,HR Manager,Workday,https://g2.com/r/1
"Great reporting, but the price keeps going up.",4,2024-01-12,Capterra,Bob,CFO,BambooHR,https://capterra.com/r/2
"Support never answers and we are thinking of leaving.",1,2024-01-15,G2,Carol,People Ops,Workday,https://g2.com/r/3
"""

MODEL_ANALYSIS = {
    "competitors": [
        {
            "name": "Workday",
            "mentionCount": 2,
            "avgSentiment": -0.6,
            "praiseThemes": ["Powerful"],
            "complaintThemes": ["Painful onboarding", "Slow support"],
        },
        {
            "name": "BambooHR",
            "mentionCount": 1,
            "avgSentiment": 0.5,
            "praiseThemes": ["Great reporting"],
            "complaintThemes": ["Price increases"],
        },
    ],
    "insights": [
        {
            "title": "Onboarding Complexity Drives Churn",
            "description": "Workday customers describe long, painful implementations.",
            "category": "churn_driver",
            "impact": "high",
            "confidenceScore": 0.8,
            "sourceReviewIndices": [0, 2],
        },
        {
            "title": "Pricing Pressure at Renewal",
            "description": "Price increases frustrate BambooHR customers.",
            "category": "pricing_concern",
            "impact": "medium",
            "confidenceScore": 0.4,
            "sourceReviewIndices": [1],
        },
    ],
    "actionItems": [
        {
            "title": "Build a guided onboarding wizard",
            "description": "Ship a step-by-step setup flow for new accounts.",
            "priority": "high",
            "relatedInsightIndex": 0,
        },
        {
            "title": "Publish transparent pricing",
            "description": "Commit to price locks at renewal.",
            "priority": "low",
            "relatedInsightIndex": 1,
        },
    ],
}


class FakeLLMClient:
    """Stands in for GeminiClient: records prompts and returns a canned response"""

    def __init__(self, response="", error=None):
        self.response = response
        self.error = error
        self.prompts = []

    def generate(self, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_llm():
    fake = FakeLLMClient(response=json.dumps(MODEL_ANALYSIS))
    app.dependency_overrides[get_llm_client] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_llm_client, None)


@pytest.fixture
def client(fake_llm):
    with TestClient(app) as test_client:
        yield test_client


def upload_csv(client, content=REVIEWS_CSV, filename="reviews.csv"):
    return client.post(
        "/api/upload",
        files={"file": (filename, content.encode("utf-8"), "text/csv")},
    )


@pytest.fixture
def dataset_id(client):
    response = upload_csv(client)
    assert response.status_code == 200, response.text
    return response.json()["datasetId"]


@pytest.fixture
def analyzed_dataset_id(client, dataset_id):
    response = client.post("/api/analyze", json={"datasetId": dataset_id})
    assert response.status_code == 200, response.text
    return dataset_id
