from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from royale.api.dependencies import get_actor_id, get_db, match_service, progression_service, service_errors
from royale.schemas import match_schemas

router = APIRouter()


@router.post(
    "/tournament/{tournament_id}",
    response_model=match_schemas.MatchRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_match_endpoint(
    tournament_id: int,
    match_in: match_schemas.MatchCreate,
    db: Session = Depends(get_db),
):
    with service_errors():
        return match_service.create_match(db, tournament_id, match_in)


@router.get("/tournament/{tournament_id}", response_model=List[match_schemas.MatchRead])
async def list_matches_endpoint(
    tournament_id: int,
    phase: Optional[str] = None,
    db: Session = Depends(get_db),
):
    return match_service.list_matches(db, tournament_id, phase=phase)


@router.get("/{match_id}", response_model=match_schemas.MatchRead)
async def get_match_endpoint(match_id: int, db: Session = Depends(get_db)):
    with service_errors():
        return match_service.get_match(db, match_id)


@router.post("/{match_id}/results", response_model=match_schemas.MatchRead)
async def record_results_endpoint(
    match_id: int,
    submission: match_schemas.MatchResultsSubmit,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(get_actor_id),
):
    with service_errors():
        return match_service.record_results(db, match_id, submission.results, actor)


@router.post("/{match_id}/propagate", response_model=List[match_schemas.StatChange])
async def propagate_stats_endpoint(match_id: int, db: Session = Depends(get_db)):
    with service_errors():
        return match_service.propagate_stats(db, match_id)


@router.post("/{match_id}/finalize", response_model=match_schemas.MatchRead)
async def finalize_match_endpoint(
    match_id: int,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(get_actor_id),
):
    with service_errors():
        return progression_service.on_match_finalized(db, match_id, actor)
