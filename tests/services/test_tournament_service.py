import pytest

from royale.core.exceptions import NotFoundError, ValidationError
from royale.schemas.tournament_schemas import PhaseCreate, QualificationRuleCreate
from royale.services import tournament_service


class TestCreateTournament:

    def test_per_group_rule_needs_groups(self, make_tournament):
        with pytest.raises(ValidationError, match="no groups"):
            make_tournament(
                phases=[
                    PhaseCreate(
                        name="Qualifiers",
                        qualification_rules=[QualificationRuleCreate(slots=1, source="per_group", next_phase="Finals")],
                    ),
                    PhaseCreate(name="Finals"),
                ]
            )


class TestLookups:

    def test_get_or_raise(self, db, make_tournament):
        tournament = make_tournament()

        assert tournament_service.get_tournament_or_raise(db, tournament.id).name == "Spring Clash"
        with pytest.raises(NotFoundError):
            tournament_service.get_tournament_or_raise(db, tournament.id + 1)

    def test_phase_lookup(self, db, make_tournament):
        tournament = make_tournament()

        assert tournament_service.get_phase(db, tournament.id, "Qualifiers") is not None
        assert tournament_service.get_phase(db, tournament.id, "Finals") is None
        with pytest.raises(NotFoundError, match="Finals"):
            tournament_service.get_phase_or_raise(db, tournament.id, "Finals")

    def test_list_filters_by_status(self, db, make_tournament):
        make_tournament(name="Open Cup")
        make_tournament(name="Future Cup", status="announced")

        assert len(tournament_service.list_tournaments(db)) == 2
        assert [t.name for t in tournament_service.list_tournaments(db, status="announced")] == ["Future Cup"]


class TestUpdateStatus:

    def test_update(self, db, make_tournament):
        tournament = make_tournament()

        updated = tournament_service.update_tournament_status(db, tournament.id, "registration_closed")

        assert updated.status == "registration_closed"

    def test_unknown_status(self, db, make_tournament):
        tournament = make_tournament()
        with pytest.raises(ValidationError, match="Invalid status"):
            tournament_service.update_tournament_status(db, tournament.id, "paused")

    def test_closed_tournaments_stay_closed(self, db, make_tournament):
        tournament = make_tournament()
        tournament_service.update_tournament_status(db, tournament.id, "cancelled")

        with pytest.raises(ValidationError, match="already cancelled"):
            tournament_service.update_tournament_status(db, tournament.id, "registration_open")
