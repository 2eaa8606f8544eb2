"""ReviewIntel backend: review CSV ingestion, evidence engine and dashboard API."""
