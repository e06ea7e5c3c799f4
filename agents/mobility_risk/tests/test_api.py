"""
Mobility Risk Agent - API Unit Tests

Tests for the FastAPI endpoints using TestClient.
Run with: pytest tests/test_api.py -v
"""

import copy

import pytest
from fastapi.testclient import TestClient

# Import the FastAPI app
import sys
import os

# Add agents directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from mobility_risk.api import app, app_state
from mobility_risk.config import settings
from mobility_risk.model import RiskCalculator


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    return TestClient(app)


@pytest.fixture
def patient():
    """Valid patient snapshot."""
    return {
        "age": 35,
        "sex": "M",
        "weight_kg": 75,
        "height_cm": 178,
        "mobility_status": "walking_assist",
        "cognitive_status": "normal",
        "level_of_care": "ward",
        "baseline_function": "independent",
        "admission_diagnosis": "appendectomy",
        "days_immobile": 1,
        "on_vte_prophylaxis": True,
    }


class TestHealthEndpoint:
    """Tests for the /health endpoint."""

    def test_health_check_returns_200(self, client):
        """Health endpoint should return 200 OK."""
        response = client.get("/health")
        assert response.status_code == 200

    def test_health_check_returns_valid_structure(self, client):
        """Health endpoint should return expected JSON structure."""
        data = client.get("/health").json()

        assert data["status"] == "healthy"
        assert data["service"] == settings.service_name
        assert "version" in data
        assert "timestamp" in data
        assert "calculator" in data["checks"]
        assert data["checks"]["calculator"]["status"] == "ok"


class TestAssessEndpoint:
    """Tests for the /assess endpoint."""

    def test_assess_returns_full_result(self, client, patient):
        """A valid snapshot returns all outcomes and the prescription."""
        response = client.post("/assess", json=patient)

        assert response.status_code == 200
        data = response.json()

        assert "request_id" in data
        for outcome in ("deconditioning", "vte", "falls", "pressure"):
            assert set(data[outcome]) == {
                "probability", "odds_ratio_vs_mobile", "risk_level", "contributing_factors",
            }
        assert data["falls"]["risk_level"] == "low"
        assert data["pressure"]["risk_level"] == "moderate"
        assert data["mobility_recommendation"]["watt_goal"] == 38.6
        assert data["mobility_recommendation"]["sessions_per_day"] == 2

    def test_assess_echoes_input(self, client, patient):
        """The echo holds what the caller sent, extra keys included."""
        response = client.post("/assess", json={**patient, "bed": "12C"})
        echo = response.json()["input_echo"]

        assert echo["sex"] == "M"
        assert echo["admission_diagnosis"] == "appendectomy"
        assert echo["bed"] == "12C"
        assert "has_ventilator" not in echo

    def test_echo_is_request_body_verbatim(self, client, patient):
        """Integers and string booleans are echoed exactly as sent."""
        payload = {**patient, "on_vte_prophylaxis": "no", "incontinent": "yes"}
        response = client.post("/assess", json=payload)

        assert response.status_code == 200
        data = response.json()
        assert data["input_echo"] == payload
        assert "no_prophylaxis" in data["vte"]["contributing_factors"]

    def test_assess_counts_assessments(self, client, patient):
        """Each assessment is counted in the app state."""
        before = app_state.assessments_performed
        client.post("/assess", json=patient)
        assert app_state.assessments_performed == before + 1

    def test_unknown_mobility_returns_422(self, client, patient):
        """Unknown categorical values are rejected by the calculator."""
        response = client.post("/assess", json={**patient, "mobility_status": "crawling"})

        assert response.status_code == 422
        data = response.json()
        assert data["error"] == "invalid_assessment_input"
        assert data["field"] == "mobility_status"
        assert "crawling" in data["message"]

    def test_missing_required_field_returns_422(self, client, patient):
        """Missing age is caught by request validation."""
        del patient["age"]
        response = client.post("/assess", json=patient)
        assert response.status_code == 422

    def test_negative_days_immobile_returns_422(self, client, patient):
        """days_immobile must be non-negative."""
        response = client.post("/assess", json={**patient, "days_immobile": -1})
        assert response.status_code == 422

    def test_invalid_json_returns_422(self, client):
        """Malformed JSON should return 422."""
        response = client.post(
            "/assess",
            content="not valid json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 422


class TestBatchEndpoint:
    """Tests for the /assess/batch endpoint."""

    def test_batch_summary(self, client, patient):
        """Summary counts patients per outcome and risk level."""
        sick = {
            **patient,
            "mobility_status": "bedbound",
            "level_of_care": "icu",
            "cognitive_status": "delirium_dementia",
            "days_immobile": 5,
        }
        response = client.post("/assess/batch", json={"patients": [patient, sick]})

        assert response.status_code == 200
        data = response.json()
        assert data["total_patients"] == 2
        assert data["skipped"] == 0
        assert data["summary"]["falls"] == {"low": 1, "moderate": 0, "high": 1}
        assert data["summary"]["pressure"] == {"low": 0, "moderate": 1, "high": 1}
        assert len(data["results"]) == 2

    def test_batch_echoes_request_bodies(self, client, patient):
        """Each batch result echoes its patient as sent."""
        payload = {**patient, "albumin_low": "true"}
        data = client.post("/assess/batch", json={"patients": [payload]}).json()

        assert data["results"][0]["input_echo"] == payload

    def test_batch_skips_invalid_patients(self, client, patient):
        """Invalid snapshots are skipped, not fatal."""
        bad = {**patient, "level_of_care": "cafeteria"}
        data = client.post("/assess/batch", json={"patients": [patient, bad]}).json()

        assert data["total_patients"] == 1
        assert data["skipped"] == 1

    def test_empty_batch_returns_422(self, client):
        """At least one patient is required."""
        response = client.post("/assess/batch", json={"patients": []})
        assert response.status_code == 422

    def test_batch_size_limit(self, client, patient, monkeypatch):
        """Batches over MAX_BATCH_SIZE are rejected."""
        monkeypatch.setattr(settings, "max_batch_size", 1)
        response = client.post("/assess/batch", json={"patients": [patient, patient]})

        assert response.status_code == 422
        assert "exceeds" in response.json()["detail"]


class TestStayPredictions:
    """Tests for the stay-prediction extension behind /assess."""

    @pytest.fixture(autouse=True)
    def enabled(self, monkeypatch):
        monkeypatch.setattr(settings, "stay_predictions_enabled", True)

    def test_configured_predictor_is_loaded(self, client, monkeypatch):
        """STAY_PREDICTOR_PATH is resolved when the calculator is created."""
        monkeypatch.setattr(settings, "stay_predictor_path", "copy.deepcopy")
        monkeypatch.setattr(app_state, "calculator", None)

        assert client.get("/health").status_code == 200
        assert app_state.calculator.stay_predictor is copy.deepcopy

    def test_extension_keys_reach_response(self, client, patient, monkeypatch):
        """Keys added by the predictor are returned next to the base result."""
        def predictor(result):
            return {**result, "los": {"expected_days": 3.5}}

        monkeypatch.setattr(app_state, "calculator", RiskCalculator(stay_predictor=predictor))
        response = client.post("/assess", json=patient)

        assert response.status_code == 200
        data = response.json()
        assert data["los"] == {"expected_days": 3.5}
        assert data["mobility_recommendation"]["watt_goal"] == 38.6

    def test_failing_predictor_returns_base_result(self, client, patient, monkeypatch):
        """A predictor that raises still yields a 200 with the base result."""
        def predictor(result):
            raise RuntimeError("stay model offline")

        monkeypatch.setattr(app_state, "calculator", RiskCalculator(stay_predictor=predictor))
        response = client.post("/assess", json=patient)

        assert response.status_code == 200
        data = response.json()
        assert "los" not in data
        assert data["falls"]["risk_level"] == "low"


class TestCalibrationEndpoint:
    """Tests for the /calibration endpoint."""

    def test_calibration_table(self, client):
        """The calibration table is exposed read-only."""
        response = client.get("/calibration")

        assert response.status_code == 200
        data = response.json()
        assert set(data["outcomes"]) == {"deconditioning", "vte", "falls", "pressure"}
        assert data["outcomes"]["deconditioning"]["bands"] == {"moderate": 0.15, "high": 0.25}
        assert data["outcomes"]["falls"]["intercept"] == -5.8


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
