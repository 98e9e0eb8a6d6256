from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from royale.api.dependencies import (
    get_actor_id,
    get_db,
    invitation_service,
    registration_service,
    service_errors,
)
from royale.schemas import invitation_schemas, registration_schemas

router = APIRouter()


@router.post(
    "/tournament/{tournament_id}",
    response_model=registration_schemas.RegistrationRead,
    status_code=status.HTTP_201_CREATED,
)
async def register_team_endpoint(
    tournament_id: int,
    registration_in: registration_schemas.RegistrationCreate,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(get_actor_id),
):
    with service_errors():
        return registration_service.register(db, tournament_id, registration_in, actor=actor)


@router.get("/tournament/{tournament_id}", response_model=List[registration_schemas.RegistrationRead])
async def list_registrations_endpoint(
    tournament_id: int,
    status_filter: Optional[str] = None,
    db: Session = Depends(get_db),
):
    return registration_service.list_for_tournament(db, tournament_id, status=status_filter)


@router.get("/tournament/{tournament_id}/stats", response_model=registration_schemas.RegistrationStats)
async def registration_stats_endpoint(tournament_id: int, db: Session = Depends(get_db)):
    return registration_service.count_by_status(db, tournament_id)


@router.get("/{registration_id}", response_model=registration_schemas.RegistrationRead)
async def get_registration_endpoint(registration_id: int, db: Session = Depends(get_db)):
    with service_errors():
        return registration_service.get(db, registration_id)


@router.post("/{registration_id}/approve", response_model=registration_schemas.RegistrationRead)
async def approve_registration_endpoint(
    registration_id: int,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(get_actor_id),
):
    with service_errors():
        return registration_service.approve(db, registration_id, actor)


@router.post("/{registration_id}/reject", response_model=registration_schemas.RegistrationRead)
async def reject_registration_endpoint(
    registration_id: int,
    request: registration_schemas.TransitionRequest,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(get_actor_id),
):
    with service_errors():
        return registration_service.reject(db, registration_id, actor, request.reason)


@router.post("/{registration_id}/check-in", response_model=registration_schemas.RegistrationRead)
async def check_in_registration_endpoint(
    registration_id: int,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(get_actor_id),
):
    with service_errors():
        return registration_service.check_in(db, registration_id, actor)


@router.post("/{registration_id}/withdraw", response_model=registration_schemas.RegistrationRead)
async def withdraw_registration_endpoint(
    registration_id: int,
    request: registration_schemas.TransitionRequest,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(get_actor_id),
):
    with service_errors():
        return registration_service.withdraw(db, registration_id, actor, request.reason)


@router.post("/{registration_id}/disqualify", response_model=registration_schemas.RegistrationRead)
async def disqualify_registration_endpoint(
    registration_id: int,
    request: registration_schemas.TransitionRequest,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(get_actor_id),
):
    with service_errors():
        return registration_service.disqualify(db, registration_id, actor, request.reason)


@router.post("/{registration_id}/phase", response_model=registration_schemas.RegistrationRead)
async def assign_phase_endpoint(
    registration_id: int,
    assignment: registration_schemas.PhaseAssignment,
    db: Session = Depends(get_db),
):
    with service_errors():
        return registration_service.assign_phase(db, registration_id, assignment.phase, assignment.group)


@router.post(
    "/tournament/{tournament_id}/invitations",
    response_model=invitation_schemas.InvitationRead,
    status_code=status.HTTP_201_CREATED,
)
async def invite_team_endpoint(
    tournament_id: int,
    invitation_in: invitation_schemas.InvitationCreate,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(get_actor_id),
):
    with service_errors():
        return invitation_service.invite_team(db, tournament_id, invitation_in, invited_by=actor or "system")


@router.post("/invitations/{invitation_id}/accept", response_model=registration_schemas.RegistrationRead)
async def accept_invitation_endpoint(
    invitation_id: int,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(get_actor_id),
):
    with service_errors():
        return invitation_service.accept_invitation(db, invitation_id, actor)


@router.post("/invitations/{invitation_id}/decline", response_model=invitation_schemas.InvitationRead)
async def decline_invitation_endpoint(
    invitation_id: int,
    db: Session = Depends(get_db),
    actor: Optional[str] = Depends(get_actor_id),
):
    with service_errors():
        return invitation_service.decline_invitation(db, invitation_id, actor)
