import logging
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from royale.core import events as domain_events
from royale.core.config import settings
from royale.core.database import utcnow
from royale.core.events import EventSink, event_bus
from royale.core.exceptions import ConflictError, NotFoundError, ValidationError
from royale.models.invitation import Invitation, InvitationStatus
from royale.models.registration import QualifiedThrough, Registration
from royale.schemas import invitation_schemas, registration_schemas
from royale.services import tournament_service
from royale.services.registration_service import RegistrationService

logger = logging.getLogger(__name__)


class InvitationService:
    """Direct invitations: an accepted invitation becomes an approved `invite` registration."""

    def __init__(self, events: EventSink = event_bus, registration_service: Optional[RegistrationService] = None):
        self.events = events
        self.registration_service = registration_service or RegistrationService(events=events)

    def get(self, db: Session, invitation_id: int) -> Invitation:
        invitation = db.query(Invitation).filter(Invitation.id == invitation_id).first()
        if not invitation:
            raise NotFoundError(f"Invitation {invitation_id} not found", invitation_id=invitation_id)
        return invitation

    def list_for_tournament(self, db: Session, tournament_id: int, status: Optional[str] = None) -> List[Invitation]:
        query = db.query(Invitation).filter(Invitation.tournament_id == tournament_id)
        if status:
            query = query.filter(Invitation.status == status)
        return query.order_by(Invitation.created_at.asc(), Invitation.id.asc()).all()

    def has_active_invitation(self, db: Session, tournament_id: int, team_id: str) -> bool:
        return self._active_invitation(db, tournament_id, team_id) is not None

    def _active_invitation(self, db: Session, tournament_id: int, team_id: str) -> Optional[Invitation]:
        return (
            db.query(Invitation)
            .filter(
                Invitation.tournament_id == tournament_id,
                Invitation.team_id == team_id,
                Invitation.status == InvitationStatus.PENDING.value,
                Invitation.expires_at > utcnow(),
            )
            .first()
        )

    def invite_team(
        self,
        db: Session,
        tournament_id: int,
        invitation_in: invitation_schemas.InvitationCreate,
        invited_by: str,
    ) -> Invitation:
        tournament = tournament_service.get_tournament_or_raise(db, tournament_id)
        if tournament.status in tournament_service.CLOSED_STATUSES:
            raise ValidationError(f"Tournament {tournament_id} is {tournament.status}", tournament_id=tournament_id)
        if invitation_in.phase is not None:
            phase = tournament_service.get_phase_or_raise(db, tournament_id, invitation_in.phase)
            if invitation_in.group is not None and invitation_in.group not in phase.group_names():
                raise ValidationError(
                    f"Phase '{phase.name}' has no group '{invitation_in.group}'",
                    phase=phase.name,
                    group=invitation_in.group,
                )
        if self.has_active_invitation(db, tournament_id, invitation_in.team_id):
            raise ConflictError(
                f"Team {invitation_in.team_id} already has a pending invitation",
                tournament_id=tournament_id,
                team_id=invitation_in.team_id,
            )
        if self.registration_service.is_team_registered(db, tournament_id, invitation_in.team_id):
            raise ConflictError(
                f"Team {invitation_in.team_id} is already registered for tournament {tournament_id}",
                tournament_id=tournament_id,
                team_id=invitation_in.team_id,
            )

        expires_at = invitation_in.expires_at or utcnow() + timedelta(days=settings.INVITATION_TTL_DAYS)
        invitation = Invitation(
            tournament_id=tournament_id,
            team_id=invitation_in.team_id,
            phase=invitation_in.phase,
            group_name=invitation_in.group,
            invited_by=invited_by,
            message=invitation_in.message,
            status=InvitationStatus.PENDING.value,
            expires_at=expires_at,
        )
        try:
            db.add(invitation)
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(invitation)
        logger.info("Invited team %s to tournament %s (expires %s)", invitation.team_id, tournament_id, expires_at)
        self.events.emit(
            domain_events.INVITATION_ISSUED,
            {
                "invitation_id": invitation.id,
                "tournament_id": tournament_id,
                "team_id": invitation.team_id,
                "phase": invitation.phase,
                "invited_by": invited_by,
                "expires_at": invitation.expires_at.isoformat(),
            },
        )
        return invitation

    def accept_invitation(self, db: Session, invitation_id: int, actor: Optional[str] = None) -> Registration:
        """Registration, phase placement and the invitation answer commit together or not at all."""
        invitation = self._pending(db, invitation_id)
        try:
            phase = None
            if invitation.phase is not None:
                phase = tournament_service.get_phase_or_raise(db, invitation.tournament_id, invitation.phase)
            registration = self.registration_service.stage_registration(
                db,
                invitation.tournament_id,
                registration_schemas.RegistrationCreate(
                    team_id=invitation.team_id,
                    qualified_through=QualifiedThrough.INVITE,
                ),
                actor=invitation.invited_by,
            )
            if phase is not None:
                self.registration_service.place_in_phase(db, registration, phase, invitation.group_name)
            invitation.status = InvitationStatus.ACCEPTED.value
            invitation.responded_at = utcnow()
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ConflictError(
                f"Team {invitation.team_id} is already registered for tournament {invitation.tournament_id}",
                tournament_id=invitation.tournament_id,
                team_id=invitation.team_id,
            )
        except Exception:
            db.rollback()
            raise
        db.refresh(registration)
        logger.info("Team %s accepted invitation %s (by %s)", registration.team_id, invitation_id, actor)
        self.registration_service.emit_registered(registration, invitation.invited_by)
        return registration

    def decline_invitation(self, db: Session, invitation_id: int, actor: Optional[str] = None) -> Invitation:
        invitation = self._pending(db, invitation_id)
        invitation.status = InvitationStatus.DECLINED.value
        invitation.responded_at = utcnow()
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(invitation)
        logger.info("Team %s declined invitation %s (by %s)", invitation.team_id, invitation_id, actor)
        return invitation

    def _pending(self, db: Session, invitation_id: int) -> Invitation:
        invitation = self.get(db, invitation_id)
        if invitation.status != InvitationStatus.PENDING.value:
            raise ValidationError(
                f"Invitation {invitation_id} is already {invitation.status}",
                invitation_id=invitation_id,
            )
        if invitation.expires_at <= utcnow():
            invitation.status = InvitationStatus.EXPIRED.value
            try:
                db.commit()
            except Exception:
                db.rollback()
                raise
            raise ValidationError(f"Invitation {invitation_id} has expired", invitation_id=invitation_id)
        return invitation
