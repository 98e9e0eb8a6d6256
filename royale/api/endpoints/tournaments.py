from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from royale.api.dependencies import (
    get_actor_id,
    get_db,
    phase_standing_service,
    progression_service,
    service_errors,
)
from royale.models.phase_standing import CalculatedBy, PhaseStanding
from royale.schemas import standing_schemas, tournament_schemas
from royale.services import standing_service, tournament_service

router = APIRouter()


def _snapshot_read(phase_standing: PhaseStanding) -> standing_schemas.PhaseStandingRead:
    snapshot = standing_schemas.PhaseStandingRead.model_validate(phase_standing)
    snapshot.is_stale = phase_standing_service.is_stale(phase_standing)
    return snapshot


@router.post("/", response_model=tournament_schemas.TournamentRead, status_code=status.HTTP_201_CREATED)
async def create_tournament_endpoint(
    tournament_in: tournament_schemas.TournamentCreate,
    db: Session = Depends(get_db),
):
    with service_errors():
        return progression_service.create_tournament(db, tournament_in)


@router.get("/", response_model=List[tournament_schemas.TournamentRead])
async def list_tournaments_endpoint(
    status_filter: Optional[str] = None,
    db: Session = Depends(get_db),
):
    return tournament_service.list_tournaments(db, status=status_filter)


@router.get("/stale-standings", response_model=List[standing_schemas.PhaseStandingRead])
async def list_stale_standings_endpoint(
    threshold_minutes: Optional[float] = None,
    db: Session = Depends(get_db),
):
    return [_snapshot_read(ps) for ps in phase_standing_service.get_stale(db, threshold_minutes)]


@router.get("/{tournament_id}", response_model=tournament_schemas.TournamentRead)
async def get_tournament_endpoint(tournament_id: int, db: Session = Depends(get_db)):
    with service_errors():
        return tournament_service.get_tournament_or_raise(db, tournament_id)


@router.patch("/{tournament_id}/status", response_model=tournament_schemas.TournamentRead)
async def update_tournament_status_endpoint(
    tournament_id: int,
    new_status: str,
    db: Session = Depends(get_db),
):
    with service_errors():
        return tournament_service.update_tournament_status(db, tournament_id, new_status)


@router.get("/{tournament_id}/progress", response_model=standing_schemas.TournamentProgress)
async def tournament_progress_endpoint(tournament_id: int, db: Session = Depends(get_db)):
    with service_errors():
        return phase_standing_service.tournament_progress(db, tournament_id)


@router.post("/{tournament_id}/phases/{phase}/start", response_model=tournament_schemas.PhaseRead)
async def start_phase_endpoint(tournament_id: int, phase: str, db: Session = Depends(get_db)):
    with service_errors():
        return progression_service.start_phase(db, tournament_id, phase)


@router.post("/{tournament_id}/phases/{phase}/complete", response_model=tournament_schemas.PhaseAdvancement)
async def complete_phase_endpoint(
    tournament_id: int,
    phase: str,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(get_actor_id),
):
    with service_errors():
        return progression_service.complete_phase(db, tournament_id, phase, actor)


@router.get("/{tournament_id}/phases/{phase}/leaderboard", response_model=List[standing_schemas.StandingRead])
async def leaderboard_endpoint(
    tournament_id: int,
    phase: str,
    group: Optional[str] = None,
    limit: Optional[int] = None,
    db: Session = Depends(get_db),
):
    with service_errors():
        tournament_service.get_phase_or_raise(db, tournament_id, phase)
        return standing_service.leaderboard(db, tournament_id, phase, group=group, limit=limit)


@router.get("/{tournament_id}/phases/{phase}/standing", response_model=standing_schemas.PhaseStandingRead)
async def phase_standing_endpoint(tournament_id: int, phase: str, db: Session = Depends(get_db)):
    with service_errors():
        return _snapshot_read(phase_standing_service.get_or_raise(db, tournament_id, phase))


@router.post("/{tournament_id}/phases/{phase}/recalculate", response_model=standing_schemas.PhaseStandingRead)
async def recalculate_phase_endpoint(tournament_id: int, phase: str, db: Session = Depends(get_db)):
    with service_errors():
        phase_standing = phase_standing_service.recalculate(db, tournament_id, phase, CalculatedBy.MANUAL)
        return _snapshot_read(phase_standing)
