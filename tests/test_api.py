"""Tests for the HTTP endpoints."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from rulelogic.web.api import app

CONFLICT = [
    {"name": "rule1", "expr": {"if": {">": ["x", 1]}, "then": {"<": ["y", 0]}}},
    {"name": "rule2", "expr": {">": ["x", 2]}},
    {"name": "rule3", "expr": {">": ["y", 1]}},
]


@pytest.fixture
def client():
    """Create a test client."""
    return TestClient(app)


class TestPing:
    def test_ping(self, client):
        response = client.get("/api/ping")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestFeasibility:
    def test_feasible(self, client):
        response = client.post(
            "/api/feasibility",
            json={"rules": [{"name": "r", "expr": {"==": ["x", 4]}}]},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["feasible"] is True
        assert data["assignment"]["x"] == pytest.approx(4)
        assert "infeasible_rules" not in data

    def test_infeasible_lists_culprits(self, client):
        response = client.post("/api/feasibility", json={"rules": CONFLICT})
        data = response.json()
        assert data["feasible"] is False
        assert data["infeasible_rules"] == ["rule1"]

    def test_nonlinear_rule_is_422(self, client):
        response = client.post(
            "/api/feasibility",
            json={"rules": [{"name": "bad", "expr": {">": [{"*": ["x", "y"]}, 0]}}]},
        )
        assert response.status_code == 422
        assert response.json()["error"] == "EncodingError"
        assert response.json()["rule"] == "bad"

    def test_bad_settings_is_422(self, client):
        response = client.post(
            "/api/feasibility",
            json={"rules": CONFLICT, "settings": {"epsilon": "tiny"}},
        )
        assert response.status_code == 422
        assert response.json()["error"] == "DefinitionError"

    def test_unavailable_backend_is_503(self, client):
        response = client.post(
            "/api/feasibility",
            json={"rules": CONFLICT, "settings": {"backend": "NO_SUCH_BACKEND"}},
        )
        assert response.status_code == 503
        assert response.json()["status"] == "UNAVAILABLE"


class TestQueries:
    def test_implied_by(self, client):
        rules = [
            {"name": "r1", "expr": {">": ["x", 1]}},
            {"name": "r2", "expr": {">": ["x", 2]}},
        ]
        response = client.post("/api/implied-by/r1", json={"rules": rules})
        assert response.status_code == 200
        assert response.json() == {"rule": "r1", "implied_by": ["r2"]}

    def test_contradicted_by(self, client):
        rules = [
            {"name": "r1", "expr": {">": ["x", 5]}},
            {"name": "r2", "expr": {"<": ["x", 3]}},
        ]
        response = client.post("/api/contradicted-by/r1", json={"rules": rules})
        assert response.json() == {"rule": "r1", "contradicted_by": ["r2"]}

    def test_unknown_rule_is_404(self, client):
        response = client.post("/api/implied-by/nope", json={"rules": CONFLICT})
        assert response.status_code == 404

    def test_simplify_with_bindings(self, client):
        rules = [
            {
                "name": "rule",
                "expr": {"if": {"==": ["gender", {"label": "male"}]}, "then": {">": ["weight", 50]}},
            }
        ]
        response = client.post(
            "/api/simplify", json={"rules": rules, "bindings": {"gender": "male"}}
        )
        assert response.status_code == 200
        assert response.json()["rules"] == [
            {"name": "rule", "expr": {">": ["weight", 50.0]}},
            {"name": ".const_gender", "expr": {"in": ["gender", ["male"]]}},
        ]
