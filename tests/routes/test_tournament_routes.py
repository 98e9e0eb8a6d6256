from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from royale.core.exceptions import ConflictError, NotFoundError
from royale.services.progression_service import ProgressionService

ADMIN = {"X-Actor-Id": "admin_1"}

TOURNAMENT_PAYLOAD = {
    "name": "Autumn Royale",
    "slots_total": 8,
    "phases": [
        {
            "name": "Qualifiers",
            "qualification_rules": [{"slots": 1, "next_phase": "Finals"}],
        },
        {"name": "Finals", "type": "final_stage"},
    ],
}


def _seed_team(client: TestClient, tournament_id: int, team_id: str) -> int:
    response = client.post(
        f"/registrations/tournament/{tournament_id}",
        json={"team_id": team_id, "qualified_through": "direct_seed"},
        headers=ADMIN,
    )
    assert response.status_code == 201
    registration_id = response.json()["id"]
    assert client.post(f"/registrations/{registration_id}/phase", json={"phase": "Qualifiers"}).status_code == 200
    return registration_id


def _play(client: TestClient, tournament_id: int, results: dict) -> dict:
    match = client.post(
        f"/matches/tournament/{tournament_id}",
        json={"phase": "Qualifiers", "team_ids": list(results)},
    ).json()
    client.post(
        f"/matches/{match['id']}/results",
        json={"results": [{"team_id": t, "position": p, "kills": k} for t, (p, k) in results.items()]},
        headers=ADMIN,
    )
    return client.post(f"/matches/{match['id']}/finalize", headers=ADMIN).json()


class TestTournamentRoutes:

    def test_create_tournament(self, client: TestClient):
        response = client.post("/tournaments/", json=TOURNAMENT_PAYLOAD)

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "Autumn Royale"
        assert data["status"] == "registration_open"
        assert [p["name"] for p in data["phases"]] == ["Qualifiers", "Finals"]
        assert data["phases"][0]["qualification_rules"] == [{"slots": 1, "source": "overall", "next_phase": "Finals"}]

    def test_rule_pointing_at_unknown_phase_is_rejected(self, client: TestClient):
        payload = dict(TOURNAMENT_PAYLOAD, phases=[{"name": "Qualifiers", "qualification_rules": [{"slots": 1, "next_phase": "Nowhere"}]}])

        response = client.post("/tournaments/", json=payload)

        assert response.status_code == 422

    def test_payload_validation(self, client: TestClient):
        assert client.post("/tournaments/", json={"name": "X", "slots_total": 8}).status_code == 422

    def test_get_unknown_tournament(self, client: TestClient):
        response = client.get("/tournaments/999")
        assert response.status_code == 404
        assert "999" in response.json()["detail"]

    def test_list_and_filter(self, client: TestClient):
        client.post("/tournaments/", json=TOURNAMENT_PAYLOAD)
        client.post("/tournaments/", json=dict(TOURNAMENT_PAYLOAD, name="Winter Royale", status="announced"))

        assert len(client.get("/tournaments/").json()) == 2
        assert [t["name"] for t in client.get("/tournaments/?status_filter=announced").json()] == ["Winter Royale"]

    def test_full_phase_lifecycle(self, client: TestClient):
        tournament_id = client.post("/tournaments/", json=TOURNAMENT_PAYLOAD).json()["id"]
        for team in ("alpha", "bravo", "charlie"):
            _seed_team(client, tournament_id, team)

        started = client.post(f"/tournaments/{tournament_id}/phases/Qualifiers/start")
        assert started.status_code == 200
        assert started.json()["status"] == "in_progress"

        finalized = _play(client, tournament_id, {"alpha": (2, 3), "bravo": (1, 5), "charlie": (3, 0)})
        assert finalized["status"] == "completed"

        leaderboard = client.get(f"/tournaments/{tournament_id}/phases/Qualifiers/leaderboard").json()
        assert [(row["team_id"], row["points"]) for row in leaderboard] == [("bravo", 15), ("alpha", 9), ("charlie", 5)]
        assert len(client.get(f"/tournaments/{tournament_id}/phases/Qualifiers/leaderboard?limit=1").json()) == 1

        snapshot = client.get(f"/tournaments/{tournament_id}/phases/Qualifiers/standing").json()
        assert snapshot["status"] == "in_progress"
        assert snapshot["statistics"]["total_matches"] == 1
        assert snapshot["is_stale"] is False

        completed = client.post(f"/tournaments/{tournament_id}/phases/Qualifiers/complete", headers=ADMIN)
        assert completed.status_code == 200
        assert completed.json()["qualified_teams"] == ["bravo"]
        assert completed.json()["eliminated_teams"] == ["alpha", "charlie"]

        again = client.post(f"/tournaments/{tournament_id}/phases/Qualifiers/complete", headers=ADMIN)
        assert again.status_code == 422

        progress = client.get(f"/tournaments/{tournament_id}/progress").json()
        assert (progress["completed"], progress["upcoming"]) == (1, 1)

    def test_phases_start_in_order(self, client: TestClient):
        tournament_id = client.post("/tournaments/", json=TOURNAMENT_PAYLOAD).json()["id"]

        response = client.post(f"/tournaments/{tournament_id}/phases/Finals/start")

        assert response.status_code == 422
        assert "Qualifiers" in response.json()["detail"]

    def test_manual_recalculate(self, client: TestClient):
        tournament_id = client.post("/tournaments/", json=TOURNAMENT_PAYLOAD).json()["id"]
        _seed_team(client, tournament_id, "alpha")
        client.post(f"/tournaments/{tournament_id}/phases/Qualifiers/start")

        response = client.post(f"/tournaments/{tournament_id}/phases/Qualifiers/recalculate")

        assert response.status_code == 200
        assert response.json()["calculated_by"] == "manual"
        assert response.json()["statistics"]["total_teams"] == 1

    def test_stale_standings(self, client: TestClient):
        tournament_id = client.post("/tournaments/", json=TOURNAMENT_PAYLOAD).json()["id"]
        _seed_team(client, tournament_id, "alpha")
        client.post(f"/tournaments/{tournament_id}/phases/Qualifiers/start")

        stale = client.get("/tournaments/stale-standings").json()

        assert [(s["tournament_id"], s["phase"], s["is_stale"]) for s in stale] == [(tournament_id, "Qualifiers", True)]

    def test_standing_of_unknown_phase(self, client: TestClient):
        tournament_id = client.post("/tournaments/", json=TOURNAMENT_PAYLOAD).json()["id"]
        assert client.get(f"/tournaments/{tournament_id}/phases/Nope/leaderboard").status_code == 404


class TestTournamentRoutesErrorMapping:

    @pytest.fixture
    def mock_progression_service(self):
        return MagicMock(spec=ProgressionService)

    def test_conflict_is_409(self, client: TestClient, mock_progression_service: MagicMock):
        mock_progression_service.complete_phase.side_effect = ConflictError("Registrations changed while completing phase")
        with patch("royale.api.endpoints.tournaments.progression_service", mock_progression_service):
            response = client.post("/tournaments/1/phases/Qualifiers/complete", headers=ADMIN)

        assert response.status_code == 409
        assert response.json() == {"detail": "Registrations changed while completing phase"}
        mock_progression_service.complete_phase.assert_called_once()
        assert mock_progression_service.complete_phase.call_args.args[1:] == (1, "Qualifiers", "admin_1")

    def test_not_found_is_404(self, client: TestClient, mock_progression_service: MagicMock):
        mock_progression_service.start_phase.side_effect = NotFoundError("Tournament 7 not found")
        with patch("royale.api.endpoints.tournaments.progression_service", mock_progression_service):
            response = client.post("/tournaments/7/phases/Qualifiers/start")

        assert response.status_code == 404
