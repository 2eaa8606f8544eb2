"""Tests for the analysis endpoints and result reads"""

import uuid

import pytest

from backend import analysis_routes
from backend.database import settings
from backend.evidence_engine import LLMRateLimitError, RATE_LIMIT_MESSAGE
from backend.models import Dataset


# ============================================
# ANALYZE
# ============================================

def test_analyze_returns_counts(client, dataset_id, fake_llm):
    response = client.post("/api/analyze", json={"datasetId": dataset_id})

    assert response.status_code == 200
    assert response.json() == {
        "status": "complete",
        "insightCount": 2,
        "competitorCount": 2,
        "actionItemCount": 2,
    }
    assert len(fake_llm.prompts) == 1
    assert "Support never answers" in fake_llm.prompts[0]

    status = client.get("/api/analyze", params={"datasetId": dataset_id}).json()
    assert status["status"] == "complete"
    assert status["error"] is None


def test_analyze_requires_dataset_id(client):
    assert client.post("/api/analyze", json={}).status_code == 400


def test_analyze_unknown_dataset(client):
    response = client.post("/api/analyze", json={"datasetId": str(uuid.uuid4())})
    assert response.status_code == 404


def test_analyze_malformed_dataset_id(client):
    assert client.post("/api/analyze", json={"datasetId": "not-a-uuid"}).status_code == 404


def test_analyze_conflict_while_running(client, db, dataset_id, fake_llm):
    dataset = db.get(Dataset, uuid.UUID(dataset_id))
    dataset.status = "analyzing"
    db.commit()

    response = client.post("/api/analyze", json={"datasetId": dataset_id})

    assert response.status_code == 409
    assert fake_llm.prompts == []


def test_analyze_conflict_when_claimed_after_status_check(client, db, dataset_id, fake_llm, monkeypatch):
    def claim_elsewhere(api_key):
        dataset = db.get(Dataset, uuid.UUID(dataset_id))
        dataset.status = "analyzing"
        db.commit()

    monkeypatch.setattr(analysis_routes, "validate_api_key", claim_elsewhere)

    response = client.post("/api/analyze", json={"datasetId": dataset_id})

    assert response.status_code == 409
    assert fake_llm.prompts == []
    db.expire_all()
    dataset = db.get(Dataset, uuid.UUID(dataset_id))
    assert dataset.status == "analyzing"
    assert dataset.error_msg is None


def test_analyze_tolerates_malformed_indices(client, dataset_id, fake_llm):
    fake_llm.response = (
        '{"insights": [{"title": "x", "sourceReviewIndices": ["--1", 0]}],'
        ' "actionItems": [{"title": "y", "relatedInsightIndex": "--1"}]}'
    )

    response = client.post("/api/analyze", json={"datasetId": dataset_id})

    assert response.status_code == 200
    assert response.json()["insightCount"] == 1


@pytest.mark.parametrize("key", ["", "your-key-here"])
def test_analyze_rejects_missing_api_key(client, dataset_id, fake_llm, monkeypatch, key):
    monkeypatch.setattr(settings, "GEMINI_API_KEY", key)

    response = client.post("/api/analyze", json={"datasetId": dataset_id})

    assert response.status_code == 400
    assert "GEMINI_API_KEY" in response.json()["detail"]
    assert fake_llm.prompts == []


def test_analyze_rate_limited(client, dataset_id, fake_llm):
    fake_llm.error = LLMRateLimitError("429 RESOURCE_EXHAUSTED")

    response = client.post("/api/analyze", json={"datasetId": dataset_id})

    assert response.status_code == 429
    assert response.json()["detail"] == RATE_LIMIT_MESSAGE
    assert client.get("/api/analyze", params={"datasetId": dataset_id}).json()["status"] == "error"


def test_analyze_malformed_model_output(client, dataset_id, fake_llm):
    fake_llm.response = "Sorry, I cannot help with that."

    response = client.post("/api/analyze", json={"datasetId": dataset_id})

    assert response.status_code == 500
    assert "invalid JSON" in response.json()["detail"]

    status = client.get("/api/analyze", params={"datasetId": dataset_id}).json()
    assert status["status"] == "error"
    assert "invalid JSON" in status["error"]


def test_analyze_can_be_retried_after_error(client, dataset_id, fake_llm):
    good_response = fake_llm.response
    fake_llm.response = ""
    assert client.post("/api/analyze", json={"datasetId": dataset_id}).status_code == 500

    fake_llm.response = good_response
    assert client.post("/api/analyze", json={"datasetId": dataset_id}).status_code == 200


def test_status_requires_dataset_id(client):
    assert client.get("/api/analyze").status_code == 400

# ============================================
# RESULT READS
# ============================================

def test_competitors_sorted_by_mentions(client, analyzed_dataset_id):
    body = client.get("/api/competitors", params={"datasetId": analyzed_dataset_id}).json()

    names = [c["name"] for c in body["competitors"]]
    assert names == ["Workday", "BambooHR"]
    workday = body["competitors"][0]
    assert workday["mentionCount"] == 2
    assert workday["avgSentiment"] == -0.6
    assert workday["complaintThemes"] == ["Painful onboarding", "Slow support"]
    assert workday["praiseThemes"] == ["Powerful"]


def test_insights_sorted_by_confidence_with_quotes(client, analyzed_dataset_id):
    body = client.get("/api/insights", params={"datasetId": analyzed_dataset_id}).json()

    insights = body["insights"]
    assert [i["confidenceScore"] for i in insights] == [0.8, 0.4]

    top = insights[0]
    assert top["category"] == "churn_driver"
    assert top["impact"] == "high"
    assert len(top["sourceQuotes"]) == 2
    first = top["sourceQuotes"][0]
    assert first["claimText"] == "Onboarding Complexity Drives Churn"
    assert first["quoteText"] == "Onboarding took months, the setup is painful."
    assert first["platform"] == "G2"
    assert first["rating"] == 2.0
    assert first["reviewDate"] == "2024-01-10"
    assert first["reviewerName"] == "Alice"
    assert first["reviewerRole"] == "HR Manager"
    assert first["productName"] == "Workday"
    assert first["reviewUrl"] == "https://g2.com/r/1"


def test_action_items_sorted_by_priority_with_insight(client, analyzed_dataset_id):
    body = client.get("/api/action-items", params={"datasetId": analyzed_dataset_id}).json()

    items = body["actionItems"]
    assert [a["priority"] for a in items] == ["high", "low"]
    assert items[0]["status"] == "not_started"
    assert items[0]["insightTitle"] == "Onboarding Complexity Drives Churn"
    assert items[0]["insightCategory"] == "churn_driver"
    assert len(items[0]["sourceQuotes"]) == 2
    assert items[0]["confidenceScore"] == 0.8
    assert items[1]["confidenceScore"] == 0.4
    assert items[0]["sourceQuotes"][1]["claimText"] == "Onboarding Complexity Drives Churn"
    assert items[0]["sourceQuotes"][1]["reviewerRole"] == "People Ops"


def test_unlinked_action_item_has_zero_confidence(client, dataset_id, fake_llm):
    fake_llm.response = '{"actionItems": [{"title": "Standalone task", "relatedInsightIndex": 5}]}'
    assert client.post("/api/analyze", json={"datasetId": dataset_id}).status_code == 200

    item = client.get("/api/action-items", params={"datasetId": dataset_id}).json()["actionItems"][0]

    assert item["confidenceScore"] == 0.0
    assert item["insightThemeId"] is None
    assert item["sourceQuotes"] == []


def test_reads_are_idempotent(client, analyzed_dataset_id):
    params = {"datasetId": analyzed_dataset_id}
    for path in ("/api/competitors", "/api/insights", "/api/action-items", "/api/analytics"):
        assert client.get(path, params=params).json() == client.get(path, params=params).json()


@pytest.mark.parametrize("path", ["/api/competitors", "/api/insights", "/api/action-items", "/api/analytics"])
def test_reads_require_dataset_id(client, path):
    assert client.get(path).status_code == 400


@pytest.mark.parametrize("path", ["/api/competitors", "/api/insights", "/api/action-items"])
def test_reads_unknown_dataset(client, path):
    assert client.get(path, params={"datasetId": str(uuid.uuid4())}).status_code == 404


def test_reads_before_analysis_are_empty(client, dataset_id):
    assert client.get("/api/insights", params={"datasetId": dataset_id}).json() == {"insights": []}

# ============================================
# ACTION ITEM STATUS
# ============================================

def _first_action_item(client, dataset_id):
    return client.get("/api/action-items", params={"datasetId": dataset_id}).json()["actionItems"][0]


def test_update_action_item_status(client, analyzed_dataset_id):
    item = _first_action_item(client, analyzed_dataset_id)

    response = client.patch("/api/action-items", json={"id": item["id"], "status": "in_progress"})

    assert response.status_code == 200
    assert response.json()["actionItem"]["status"] == "in_progress"
    assert _first_action_item(client, analyzed_dataset_id)["status"] == "in_progress"


def test_update_action_item_invalid_status(client, analyzed_dataset_id):
    item = _first_action_item(client, analyzed_dataset_id)

    response = client.patch("/api/action-items", json={"id": item["id"], "status": "done"})

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert "not_started" in detail and "in_progress" in detail and "complete" in detail


def test_update_action_item_missing_fields(client):
    assert client.patch("/api/action-items", json={"status": "complete"}).status_code == 400
    assert client.patch("/api/action-items", json={"id": str(uuid.uuid4())}).status_code == 400


def test_update_unknown_action_item(client):
    response = client.patch("/api/action-items", json={"id": str(uuid.uuid4()), "status": "complete"})
    assert response.status_code == 404

# ============================================
# ANALYTICS
# ============================================

def test_analytics(client, analyzed_dataset_id):
    body = client.get("/api/analytics", params={"datasetId": analyzed_dataset_id}).json()

    assert body["reviewCount"] == 3
    assert body["competitorCount"] == 2
    assert body["averageRating"] == pytest.approx(2.33, abs=0.01)
    assert body["mentionData"] == [{"name": "Workday", "mentions": 2}, {"name": "BambooHR", "mentions": 1}]
    assert body["sentimentData"] == [{"name": "Positive", "value": 1}, {"name": "Negative", "value": 1}]
    assert body["sentimentCompare"] == [{"name": "Workday", "sentiment": -60}, {"name": "BambooHR", "sentiment": 50}]
    assert body["categoryData"] == [
        {"name": "Churn Driver", "count": 1},
        {"name": "Pricing Concern", "count": 1},
    ]
    assert body["ratingDistribution"] == {"1": 1, "2": 1, "3": 0, "4": 1, "5": 0}
    assert body["platformBreakdown"] == {"Capterra": 1, "G2": 2}
