"""Tests for the infections read API."""

import pytest
from flask import Flask

from database import get_engine
from query_api import register_api


@pytest.fixture
def client(engine):
    server = Flask(__name__)
    register_api(server, engine)
    return server.test_client()


class TestInfectionsEndpoint:
    def test_no_filters_returns_everything(self, client):
        response = client.get("/api/infections")
        assert response.status_code == 200
        assert len(response.get_json()) == 5

    def test_state_filter(self, client):
        rows = client.get("/api/infections?state=Beta").get_json()
        assert [r["hospital_id"] for r in rows] == ["Coastal Clinic"]

    def test_filters_combine(self, client):
        rows = client.get(
            "/api/infections",
            query_string={"state": "Alpha", "hospital": "General Hospital", "infectionType": "CAUTI: Observed Cases"},
        ).get_json()
        assert len(rows) == 1
        assert rows[0]["score"] == 3.0

    def test_infection_type_matches_raw_name(self, client):
        # Canonical names are not stored, so they match nothing
        assert client.get("/api/infections?infectionType=MRSA bacteremia").get_json() == []

    def test_missing_coordinate_is_null(self, client):
        row = client.get("/api/infections?state=Beta").get_json()[0]
        assert row["lat"] is None
        assert row["lon"] == -77.0

    def test_record_fields(self, client):
        row = client.get("/api/infections").get_json()[0]
        assert set(row) >= {"id", "hospital_id", "state", "measure_name", "score", "lat", "lon", "original_address"}

    def test_query_failure_is_500(self, tmp_path):
        server = Flask(__name__)
        register_api(server, get_engine(f"sqlite:///{tmp_path / 'empty.db'}"))
        response = server.test_client().get("/api/infections")
        assert response.status_code == 500
        assert response.get_json() == {"error": "Database query failed"}


class TestHealth:
    def test_healthy(self, client):
        body = client.get("/health").get_json()
        assert body["status"] == "healthy"
        assert body["database"] == "healthy"
