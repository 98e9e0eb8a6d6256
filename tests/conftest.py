from typing import Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import royale.models  # noqa: F401
from royale.api.dependencies import get_db
from royale.core.database import Base
from royale.main import app
from royale.models.registration import QualifiedThrough
from royale.models.tournament import TournamentStatus
from royale.schemas.match_schemas import MatchCreate, TeamResult
from royale.schemas.registration_schemas import RegistrationCreate
from royale.schemas.tournament_schemas import PhaseCreate, QualificationRuleCreate, TournamentCreate
from royale.services import tournament_service
from royale.services.invitation_service import InvitationService
from royale.services.match_service import MatchService
from royale.services.phase_standing_service import PhaseStandingService
from royale.services.progression_service import ProgressionService
from royale.services.registration_service import RegistrationService


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def events():
    return MagicMock()


@pytest.fixture
def registration_service(events):
    return RegistrationService(events=events)


@pytest.fixture
def match_service(events, registration_service):
    return MatchService(events=events, registration_service=registration_service)


@pytest.fixture
def phase_standing_service():
    return PhaseStandingService()


@pytest.fixture
def progression_service(events, registration_service, match_service, phase_standing_service):
    return ProgressionService(
        events=events,
        registration_service=registration_service,
        match_service=match_service,
        phase_standing_service=phase_standing_service,
    )


@pytest.fixture
def invitation_service(events, registration_service):
    return InvitationService(events=events, registration_service=registration_service)


@pytest.fixture
def emitted(events: MagicMock):
    """Payloads of every event of one name sent to the mocked sink."""

    def _emitted(name: str) -> List[dict]:
        return [c.args[1] for c in events.emit.call_args_list if c.args[0] == name]

    return _emitted


@pytest.fixture
def make_tournament(db):
    def _make(
        name: str = "Spring Clash",
        slots_total: int = 16,
        phases: Optional[List[PhaseCreate]] = None,
        status: TournamentStatus = TournamentStatus.REGISTRATION_OPEN,
    ):
        if phases is None:
            phases = [PhaseCreate(name="Qualifiers")]
        return tournament_service.create_tournament(
            db,
            TournamentCreate(name=name, slots_total=slots_total, status=status, phases=phases),
        )

    return _make


@pytest.fixture
def two_phase_tournament(make_tournament):
    """Qualifiers (top `slots` overall go through) -> Finals."""

    def _make(slots: int = 2, name: str = "Two Phase Cup"):
        return make_tournament(
            name=name,
            phases=[
                PhaseCreate(
                    name="Qualifiers",
                    qualification_rules=[QualificationRuleCreate(slots=slots, next_phase="Finals")],
                ),
                PhaseCreate(name="Finals", type="final_stage"),
            ],
        )

    return _make


@pytest.fixture
def enroll(db, registration_service):
    """Register seeded (pre-approved) teams and place them in a phase."""

    def _enroll(tournament_id: int, team_ids: List[str], phase: Optional[str] = "Qualifiers", group: Optional[str] = None):
        registrations = []
        for team_id in team_ids:
            registration = registration_service.register(
                db,
                tournament_id,
                RegistrationCreate(team_id=team_id, qualified_through=QualifiedThrough.DIRECT_SEED),
                actor="admin",
            )
            if phase is not None:
                registration = registration_service.assign_phase(db, registration.id, phase, group)
            registrations.append(registration)
        return registrations

    return _enroll


@pytest.fixture
def play_match(db, match_service):
    """Create a match, record `results` ({team: (position, kills)}) and finalize it."""

    def _play(
        tournament_id: int,
        results: Dict[str, Tuple[Optional[int], int]],
        phase: str = "Qualifiers",
        group: Optional[str] = None,
        finalize: bool = True,
    ):
        match = match_service.create_match(
            db, tournament_id, MatchCreate(phase=phase, team_ids=list(results), group=group)
        )
        match_service.record_results(
            db,
            match.id,
            [TeamResult(team_id=team, position=pos, kills=kills) for team, (pos, kills) in results.items()],
            actor="referee",
        )
        if finalize:
            match = match_service.finalize_match(db, match.id, actor="referee")
        return match

    return _play


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
