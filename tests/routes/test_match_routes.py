import pytest
from fastapi.testclient import TestClient

ADMIN = {"X-Actor-Id": "referee_1"}


@pytest.fixture
def tournament_id(client: TestClient) -> int:
    tournament_id = client.post(
        "/tournaments/",
        json={"name": "Autumn Royale", "slots_total": 8, "phases": [{"name": "Qualifiers"}]},
    ).json()["id"]
    for team in ("alpha", "bravo"):
        registration = client.post(
            f"/registrations/tournament/{tournament_id}",
            json={"team_id": team, "qualified_through": "direct_seed"},
        ).json()
        client.post(f"/registrations/{registration['id']}/phase", json={"phase": "Qualifiers"})
    client.post(f"/tournaments/{tournament_id}/phases/Qualifiers/start")
    return tournament_id


@pytest.fixture
def match_id(client: TestClient, tournament_id: int) -> int:
    response = client.post(f"/matches/tournament/{tournament_id}", json={"phase": "Qualifiers", "team_ids": ["alpha", "bravo"]})
    assert response.status_code == 201
    return response.json()["id"]


class TestMatchRoutes:

    def test_create_match(self, client: TestClient, tournament_id: int, match_id: int):
        match = client.get(f"/matches/{match_id}").json()

        assert match["status"] == "scheduled"
        assert sorted(p["team_id"] for p in match["participants"]) == ["alpha", "bravo"]
        assert [m["id"] for m in client.get(f"/matches/tournament/{tournament_id}?phase=Qualifiers").json()] == [match_id]

    def test_unregistered_team_is_rejected(self, client: TestClient, tournament_id: int):
        response = client.post(f"/matches/tournament/{tournament_id}", json={"phase": "Qualifiers", "team_ids": ["ghost"]})
        assert response.status_code == 422

    def test_unknown_match(self, client: TestClient):
        assert client.get("/matches/999").status_code == 404

    def test_record_results_and_propagate(self, client: TestClient, match_id: int):
        recorded = client.post(
            f"/matches/{match_id}/results",
            json={"results": [{"team_id": "alpha", "position": 1, "kills": 4}, {"team_id": "bravo", "position": 2, "kills": 1}]},
            headers=ADMIN,
        )
        assert recorded.status_code == 200
        alpha = next(p for p in recorded.json()["participants"] if p["team_id"] == "alpha")
        assert (alpha["points"], alpha["chicken_dinner"]) == (14, True)

        changes = client.post(f"/matches/{match_id}/propagate").json()
        assert {c["team_id"]: (c["points_delta"], c["new_match"]) for c in changes} == {
            "alpha": (14, True),
            "bravo": (7, True),
        }
        assert client.post(f"/matches/{match_id}/propagate").json() == []

    def test_duplicate_positions_are_rejected(self, client: TestClient, match_id: int):
        response = client.post(
            f"/matches/{match_id}/results",
            json={"results": [{"team_id": "alpha", "position": 1}, {"team_id": "bravo", "position": 1}]},
        )
        assert response.status_code == 422

    def test_duplicate_team_in_payload(self, client: TestClient, match_id: int):
        response = client.post(
            f"/matches/{match_id}/results",
            json={"results": [{"team_id": "alpha", "position": 1}, {"team_id": "alpha", "position": 2}]},
        )
        assert response.status_code == 422

    def test_finalize_refreshes_the_phase_snapshot(self, client: TestClient, tournament_id: int, match_id: int):
        client.post(
            f"/matches/{match_id}/results",
            json={"results": [{"team_id": "alpha", "position": 2, "kills": 0}, {"team_id": "bravo", "position": 1, "kills": 2}]},
        )

        finalized = client.post(f"/matches/{match_id}/finalize", headers=ADMIN)

        assert finalized.status_code == 200
        assert finalized.json()["status"] == "completed"
        snapshot = client.get(f"/tournaments/{tournament_id}/phases/Qualifiers/standing").json()
        assert snapshot["leaders"]["most_points"] == {"team_id": "bravo", "value": 12}
        assert client.post(f"/matches/{match_id}/finalize").status_code == 422
