"""
HTTP API tests.

Uses FastAPI's TestClient on a bare app carrying the real routes, so the
startup hook does not touch the on-disk database.
"""

import time

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from concept_tournament.services.tournament_service import get_controller
from main import app

from conftest import ScriptedReviewer

TERMINAL = ("completed", "failed", "cancelled")

VALID_REQUEST = {
    "drug_name": "Dapagliflozin",
    "indication": "Heart failure with preserved ejection fraction",
    "strategic_goals": [{"goal": "expand_label", "weight": 0.7}, {"goal": "facilitate_market_access", "weight": 0.3}],
    "geography": ["DE", "FR", "IT"],
    "study_phase_pref": "III",
    "lane_count": 2,
    "max_rounds": 2,
}


@pytest.fixture
def controller(make_controller):
    return make_controller()


@pytest.fixture
def client(controller):
    test_app = FastAPI()
    # Copy all routes from the real app
    for route in app.routes:
        test_app.routes.append(route)
    test_app.dependency_overrides[get_controller] = lambda: controller
    # Copied routes resolve overrides through the app they were created on
    app.dependency_overrides[get_controller] = lambda: controller

    try:
        with TestClient(test_app) as c:
            yield c
    finally:
        app.dependency_overrides.pop(get_controller, None)


def wait_until_finished(client, tournament_id, attempts=300):
    for _ in range(attempts):
        data = client.get(f"/tournaments/{tournament_id}").json()
        if data["status"] in TERMINAL:
            return data
        time.sleep(0.01)
    raise AssertionError(f"tournament {tournament_id} did not finish")


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"


class TestCreateTournament:
    def test_accepted_and_runs_to_completion(self, client):
        resp = client.post("/tournaments", json=VALID_REQUEST)
        assert resp.status_code == 202
        data = resp.json()
        assert data["status"] == "created"

        final = wait_until_finished(client, data["tournament_id"])
        assert final["status"] == "completed"
        assert final["current_round"] == 2
        assert final["max_rounds"] == 2
        assert final["lane_count"] == 2
        assert final["progress"] == {"percent": 100, "stage": "completed", "label": "Completed after round 2"}

    @pytest.mark.parametrize("change", [
        {"geography": []},
        {"strategic_goals": []},
        {"lane_count": 0},
        {"max_rounds": 0},
        {"score_weights": {"scientific_validity": 0.5, "clinical_impact": 0.5,
                           "commercial_value": 0.5, "feasibility": 0.5}},
    ])
    def test_invalid_config_is_400(self, client, change):
        resp = client.post("/tournaments", json={**VALID_REQUEST, **change})
        assert resp.status_code == 400

    def test_missing_drug_is_422(self, client):
        payload = {k: v for k, v in VALID_REQUEST.items() if k != "drug_name"}
        assert client.post("/tournaments", json=payload).status_code == 422


class TestReadEndpoints:
    @pytest.fixture
    def finished(self, client):
        tournament_id = client.post("/tournaments", json=VALID_REQUEST).json()["tournament_id"]
        wait_until_finished(client, tournament_id)
        return tournament_id

    def test_ideas(self, client, finished):
        ideas = client.get(f"/tournaments/{finished}/ideas").json()
        assert len(ideas) == 6
        assert {i["idea_key"] for i in ideas if i["round"] == 0} == {"A_v1", "B_v1"}
        assert sum(1 for i in ideas if i["is_champion"]) == 2
        assert all(i["created_at"].endswith("Z") for i in ideas)

    def test_rounds(self, client, finished):
        rounds = client.get(f"/tournaments/{finished}/rounds").json()
        assert [(r["round_number"], r["lane_id"]) for r in rounds] == [
            (0, 0), (0, 1), (1, 0), (1, 1), (2, 0), (2, 1)
        ]
        assert rounds[0]["outcome"] == "seeded"

    def test_lane_history(self, client, finished):
        resp = client.get(f"/tournaments/{finished}/lanes/1/ideas", params={"through_round": 0})
        assert resp.status_code == 200
        data = resp.json()
        assert data["through_round"] == 0
        assert len(data["ideas"]) == 1
        assert data["champion_idea_id"] == data["ideas"][0]["id"]

    def test_lane_out_of_range(self, client, finished):
        assert client.get(f"/tournaments/{finished}/lanes/7/ideas").status_code == 404

    def test_review(self, client, finished):
        idea = client.get(f"/tournaments/{finished}/ideas").json()[0]
        resp = client.get(f"/tournaments/{finished}/ideas/{idea['id']}/reviews/OPS")
        assert resp.status_code == 200
        review = resp.json()
        assert review["dimensions"] == ["feasibility"]
        assert review["additional_metrics"]["recruitment_feasibility"] == 3.0

        assert client.get(f"/tournaments/{finished}/ideas/{idea['id']}/reviews/ETH").status_code == 404

    def test_list(self, client, finished):
        listed = client.get("/tournaments").json()
        assert listed[0]["id"] == finished
        assert listed[0]["status"] == "completed"

    def test_cancel_finished_is_409(self, client, finished):
        assert client.post(f"/tournaments/{finished}/cancel").status_code == 409


class TestNotFound:
    def test_unknown_tournament(self, client):
        assert client.get("/tournaments/999").status_code == 404
        assert client.get("/tournaments/999/ideas").status_code == 404
        assert client.get("/tournaments/999/rounds").status_code == 404
        assert client.post("/tournaments/999/cancel").status_code == 404


class TestDegradedRun:
    @pytest.fixture
    def controller(self, make_controller):
        return make_controller(reviewer=ScriptedReviewer(fail=lambda lane, rnd, rid: rnd >= 1))

    def test_all_lanes_degraded_reports_failed(self, client):
        tournament_id = client.post("/tournaments", json=VALID_REQUEST).json()["tournament_id"]
        final = wait_until_finished(client, tournament_id)
        assert final["status"] == "failed"
        assert final["progress"]["stage"] == "failed"
        assert "degraded" in final["failure_reason"]
