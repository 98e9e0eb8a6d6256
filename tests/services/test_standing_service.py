from datetime import datetime, timedelta

import pytest

from royale.models.standing import Standing
from royale.schemas.tournament_schemas import PhaseCreate
from royale.services import standing_service


def _standing(team_id, points, kills, registered_at):
    return Standing(team_id=team_id, points=points, kills=kills, registered_at=registered_at)


class TestOrdering:

    def test_strict_total_order(self):
        t0 = datetime(2026, 1, 1, 12, 0)
        rows = [
            _standing("d", 20, 5, t0),
            _standing("c", 20, 5, t0),
            _standing("b", 20, 5, t0 - timedelta(minutes=1)),
            _standing("a", 20, 8, t0 + timedelta(minutes=5)),
            _standing("e", 31, 0, t0 + timedelta(days=1)),
        ]

        ranked = standing_service.rank(rows)

        # points, then kills, then earliest registration, then team id
        assert [s.team_id for s in ranked] == ["e", "a", "b", "c", "d"]

    def test_rank_is_stable_across_input_order(self):
        t0 = datetime(2026, 1, 1)
        rows = [_standing(team, 10, 2, t0) for team in ("x", "y", "z")]

        assert [s.team_id for s in standing_service.rank(rows)] == ["x", "y", "z"]
        assert [s.team_id for s in standing_service.rank(list(reversed(rows)))] == ["x", "y", "z"]


class TestRefresh:

    def test_builds_ranked_rows_from_registrations(self, db, make_tournament, enroll, play_match):
        tournament = make_tournament()
        enroll(tournament.id, ["A", "B", "C"])
        play_match(tournament.id, {"A": (2, 3), "B": (1, 5), "C": (3, 0)})

        rows = standing_service.refresh(db, tournament.id, "Qualifiers")

        assert [(s.team_id, s.position, s.points) for s in rows] == [("B", 1, 15), ("A", 2, 9), ("C", 3, 5)]
        assert rows[0].chicken_dinners == 1
        assert rows[0].matches_played == 1
        assert rows[0].average_position == 1

    def test_refresh_is_idempotent(self, db, make_tournament, enroll, play_match):
        tournament = make_tournament()
        enroll(tournament.id, ["A", "B"])
        play_match(tournament.id, {"A": (1, 1), "B": (2, 1)})

        standing_service.refresh(db, tournament.id, "Qualifiers")
        standing_service.refresh(db, tournament.id, "Qualifiers")

        assert db.query(Standing).filter(Standing.tournament_id == tournament.id).count() == 2

    def test_inactive_teams_drop_out(self, db, registration_service, make_tournament, enroll):
        tournament = make_tournament()
        enroll(tournament.id, ["A", "B"])
        standing_service.refresh(db, tournament.id, "Qualifiers")

        registration = registration_service.get_for_team(db, tournament.id, "B")
        registration_service.disqualify(db, registration.id, "admin", "No show")
        rows = standing_service.refresh(db, tournament.id, "Qualifiers")

        assert [s.team_id for s in rows] == ["A"]
        assert standing_service.team_standing(db, tournament.id, "Qualifiers", "B") is None

    def test_qualification_flags_survive_refresh(self, db, make_tournament, enroll):
        tournament = make_tournament()
        enroll(tournament.id, ["A"])
        standing_service.refresh(db, tournament.id, "Qualifiers")
        standing = standing_service.team_standing(db, tournament.id, "Qualifiers", "A")
        standing.is_qualified = True
        db.commit()

        standing_service.refresh(db, tournament.id, "Qualifiers")

        assert standing_service.team_standing(db, tournament.id, "Qualifiers", "A").is_qualified is True


class TestLeaderboard:

    @pytest.fixture
    def grouped(self, db, make_tournament, enroll, play_match):
        tournament = make_tournament(phases=[PhaseCreate(name="Qualifiers", groups=["A", "B"])])
        enroll(tournament.id, ["a1", "a2"], group="A")
        enroll(tournament.id, ["b1", "b2"], group="B")
        play_match(tournament.id, {"a1": (2, 0), "a2": (1, 0)}, group="A")
        play_match(tournament.id, {"b1": (1, 9), "b2": (2, 0)}, group="B")
        standing_service.refresh(db, tournament.id, "Qualifiers")
        return tournament

    def test_overall(self, db, grouped):
        rows = standing_service.leaderboard(db, grouped.id, "Qualifiers")
        assert [s.team_id for s in rows] == ["b1", "a2", "a1", "b2"]

    def test_group_scope_excludes_other_groups(self, db, grouped):
        rows = standing_service.leaderboard(db, grouped.id, "Qualifiers", group="A")
        assert [s.team_id for s in rows] == ["a2", "a1"]

    def test_limit(self, db, grouped):
        assert len(standing_service.leaderboard(db, grouped.id, "Qualifiers", limit=2)) == 2
        assert len(standing_service.leaderboard(db, grouped.id, "Qualifiers", limit=0)) == 4

    def test_group_leaderboards(self, db, grouped):
        groups = standing_service.group_leaderboards(db, grouped.id, "Qualifiers")
        assert {name: [s.team_id for s in rows] for name, rows in groups.items()} == {
            "A": ["a2", "a1"],
            "B": ["b1", "b2"],
        }
