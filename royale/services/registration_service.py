"""Registration lifecycle of one team in one tournament.

    pending ──► approved ──► checked_in
       │           │             │
       ▼           ▼             ▼
    rejected   disqualified / withdrawn

Transitions are one-way. Entering or leaving the active set (approved,
checked_in) recomputes Tournament.participating_teams_count in the same
transaction as the status change.
"""
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from royale.core import events as domain_events
from royale.core.database import utcnow
from royale.core.events import EventSink, event_bus
from royale.core.exceptions import ConflictError, NotFoundError, ValidationError
from royale.models.registration import ACTIVE_STATUSES, QualifiedThrough, Registration, RegistrationStatus
from royale.models.tournament import Phase, PhaseStatus, PhaseTeam, Tournament, TournamentStatus
from royale.schemas import registration_schemas
from royale.services import tournament_service

logger = logging.getLogger(__name__)

S = RegistrationStatus

ALLOWED_TRANSITIONS: Dict[str, frozenset] = {
    S.PENDING.value: frozenset({S.APPROVED.value, S.REJECTED.value}),
    S.APPROVED.value: frozenset({S.CHECKED_IN.value, S.DISQUALIFIED.value, S.WITHDRAWN.value}),
    S.CHECKED_IN.value: frozenset({S.DISQUALIFIED.value, S.WITHDRAWN.value}),
}

# Registrations that skip the approval queue
PRE_APPROVED = (QualifiedThrough.INVITE.value, QualifiedThrough.DIRECT_SEED.value)

TRANSITION_EVENTS = {
    S.APPROVED.value: domain_events.REGISTRATION_APPROVED,
    S.REJECTED.value: domain_events.REGISTRATION_REJECTED,
    S.WITHDRAWN.value: domain_events.REGISTRATION_WITHDRAWN,
    S.DISQUALIFIED.value: domain_events.REGISTRATION_DISQUALIFIED,
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def _event_payload(registration: Registration, actor: Optional[str] = None, reason: Optional[str] = None) -> dict:
    return {
        "tournament_id": registration.tournament_id,
        "registration_id": registration.id,
        "team_id": registration.team_id,
        "status": registration.status,
        "actor": actor,
        "reason": reason,
    }


class RegistrationService:
    def __init__(self, events: EventSink = event_bus):
        self.events = events

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, db: Session, registration_id: int) -> Registration:
        registration = db.query(Registration).filter(Registration.id == registration_id).first()
        if not registration:
            raise NotFoundError(f"Registration {registration_id} not found", registration_id=registration_id)
        return registration

    def get_for_team(self, db: Session, tournament_id: int, team_id: str) -> Optional[Registration]:
        return (
            db.query(Registration)
            .filter(Registration.tournament_id == tournament_id, Registration.team_id == team_id)
            .first()
        )

    def list_for_tournament(self, db: Session, tournament_id: int, status: Optional[str] = None) -> List[Registration]:
        query = db.query(Registration).filter(Registration.tournament_id == tournament_id)
        if status:
            query = query.filter(Registration.status == status)
        return query.order_by(Registration.registered_at.asc(), Registration.id.asc()).all()

    def list_active(self, db: Session, tournament_id: int) -> List[Registration]:
        return (
            db.query(Registration)
            .filter(Registration.tournament_id == tournament_id, Registration.status.in_(ACTIVE_STATUSES))
            .order_by(Registration.registered_at.asc(), Registration.id.asc())
            .all()
        )

    def list_pending(self, db: Session, tournament_id: int) -> List[Registration]:
        return self.list_for_tournament(db, tournament_id, status=S.PENDING.value)

    def count_by_status(self, db: Session, tournament_id: int) -> registration_schemas.RegistrationStats:
        rows = (
            db.query(Registration.status, func.count(Registration.id))
            .filter(Registration.tournament_id == tournament_id)
            .group_by(Registration.status)
            .all()
        )
        counts = {status.value: 0 for status in S}
        counts.update({status: count for status, count in rows})
        return registration_schemas.RegistrationStats(total=sum(counts.values()), counts=counts)

    def is_team_registered(self, db: Session, tournament_id: int, team_id: str) -> bool:
        registration = self.get_for_team(db, tournament_id, team_id)
        return bool(registration) and registration.status in (S.PENDING.value,) + ACTIVE_STATUSES

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def register(
        self,
        db: Session,
        tournament_id: int,
        registration_in: registration_schemas.RegistrationCreate,
        actor: Optional[str] = None,
    ) -> Registration:
        try:
            registration = self.stage_registration(db, tournament_id, registration_in, actor)
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ConflictError(
                f"Team {registration_in.team_id} is already registered for tournament {tournament_id}",
                tournament_id=tournament_id,
                team_id=registration_in.team_id,
            )
        except Exception:
            db.rollback()
            raise

        db.refresh(registration)
        logger.info(
            "Registered team %s for tournament %s (%s, %s)",
            registration.team_id, tournament_id, registration.qualified_through, registration.status,
        )
        self.emit_registered(registration, actor)
        return registration

    def stage_registration(
        self,
        db: Session,
        tournament_id: int,
        registration_in: registration_schemas.RegistrationCreate,
        actor: Optional[str] = None,
    ) -> Registration:
        """Validate and flush a new registration with its counters. Does not commit."""
        tournament = tournament_service.get_tournament_or_raise(db, tournament_id)
        qualified_through = registration_in.qualified_through.value
        pre_approved = qualified_through in PRE_APPROVED

        if tournament.status in tournament_service.CLOSED_STATUSES:
            raise ValidationError(f"Tournament is {tournament.status}; registrations are closed")
        if not pre_approved and tournament.status != TournamentStatus.REGISTRATION_OPEN.value:
            raise ValidationError(
                f"Tournament is not open for registration. Current status: {tournament.status}"
            )
        if self.get_for_team(db, tournament_id, registration_in.team_id):
            raise ConflictError(
                f"Team {registration_in.team_id} is already registered for tournament {tournament_id}",
                tournament_id=tournament_id,
                team_id=registration_in.team_id,
            )

        now = utcnow()
        registration = Registration(
            tournament_id=tournament_id,
            team_id=registration_in.team_id,
            qualified_through=qualified_through,
            status=S.PENDING.value,
            roster=[entry.model_dump(mode="json") for entry in registration_in.roster],
            seed_number=registration_in.seed_number,
            notes=registration_in.notes,
            registered_at=now,
        )
        if pre_approved:
            self._ensure_capacity(db, tournament)
            registration.status = S.APPROVED.value
            registration.approved_at = now
            registration.approved_by = actor

        db.add(registration)
        try:
            db.flush()
        except IntegrityError:
            raise ConflictError(
                f"Team {registration_in.team_id} is already registered for tournament {tournament_id}",
                tournament_id=tournament_id,
                team_id=registration_in.team_id,
            )
        db.query(Tournament).filter(Tournament.id == tournament_id).update(
            {Tournament.registered_count: Tournament.registered_count + 1},
            synchronize_session=False,
        )
        db.expire(tournament, ["registered_count"])
        if pre_approved:
            self._recount_participating(db, tournament_id)
        return registration

    def emit_registered(self, registration: Registration, actor: Optional[str] = None) -> None:
        self.events.emit(domain_events.REGISTRATION_CREATED, _event_payload(registration, actor))
        if registration.status == S.APPROVED.value:
            self.events.emit(domain_events.REGISTRATION_APPROVED, _event_payload(registration, actor))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def approve(self, db: Session, registration_id: int, actor: str) -> Registration:
        return self._transition(db, registration_id, S.APPROVED.value, actor)

    def reject(self, db: Session, registration_id: int, actor: str, reason: Optional[str] = None) -> Registration:
        return self._transition(db, registration_id, S.REJECTED.value, actor, reason)

    def check_in(self, db: Session, registration_id: int, actor: str) -> Registration:
        return self._transition(db, registration_id, S.CHECKED_IN.value, actor)

    def disqualify(self, db: Session, registration_id: int, actor: str, reason: Optional[str] = None) -> Registration:
        return self._transition(db, registration_id, S.DISQUALIFIED.value, actor, reason)

    def withdraw(self, db: Session, registration_id: int, actor: str, reason: Optional[str] = None) -> Registration:
        return self._transition(db, registration_id, S.WITHDRAWN.value, actor, reason)

    def bulk_approve(self, db: Session, registration_ids: Iterable[int], actor: str) -> List[Registration]:
        """Approve every pending registration in the list; anything else is skipped."""
        approved: List[Registration] = []
        try:
            registrations = (
                db.query(Registration)
                .filter(Registration.id.in_(list(registration_ids)))
                .order_by(Registration.registered_at.asc(), Registration.id.asc())
                .with_for_update()
                .all()
            )
            now = utcnow()
            touched_tournaments = set()
            for registration in registrations:
                if registration.status != S.PENDING.value:
                    logger.debug("bulk_approve skips registration %s (%s)", registration.id, registration.status)
                    continue
                self._ensure_open(registration.tournament)
                self._ensure_capacity(db, registration.tournament)
                self._stamp(registration, S.APPROVED.value, actor, None, now)
                db.flush()
                touched_tournaments.add(registration.tournament_id)
                approved.append(registration)
            for tournament_id in touched_tournaments:
                self._recount_participating(db, tournament_id)
            db.commit()
        except StaleDataError:
            db.rollback()
            raise ConflictError("Registrations were modified concurrently; nothing was approved")
        except Exception:
            db.rollback()
            raise

        for registration in approved:
            self.events.emit(domain_events.REGISTRATION_APPROVED, _event_payload(registration, actor))
        logger.info("Bulk-approved %d registration(s)", len(approved))
        return approved

    def _transition(
        self,
        db: Session,
        registration_id: int,
        target: str,
        actor: Optional[str],
        reason: Optional[str] = None,
    ) -> Registration:
        try:
            registration = (
                db.query(Registration)
                .filter(Registration.id == registration_id)
                .with_for_update()
                .first()
            )
            if not registration:
                raise NotFoundError(f"Registration {registration_id} not found", registration_id=registration_id)
            self._ensure_open(registration.tournament)
            current = registration.status
            if not can_transition(current, target):
                raise ValidationError(
                    f"Invalid registration transition: {current} -> {target}",
                    registration_id=registration_id,
                    current=current,
                    target=target,
                )
            if target == S.APPROVED.value:
                self._ensure_capacity(db, registration.tournament)

            was_active = registration.is_active
            self._stamp(registration, target, actor, reason, utcnow())
            db.flush()
            if was_active != registration.is_active:
                self._recount_participating(db, registration.tournament_id)
            db.commit()
        except StaleDataError:
            db.rollback()
            raise ConflictError(
                f"Registration {registration_id} was modified concurrently",
                registration_id=registration_id,
            )
        except Exception:
            db.rollback()
            raise

        db.refresh(registration)
        logger.info(
            "Registration %s (team %s): %s -> %s by %s",
            registration.id, registration.team_id, current, target, actor,
        )
        event_name = TRANSITION_EVENTS.get(target)
        if event_name:
            self.events.emit(event_name, _event_payload(registration, actor, reason))
        return registration

    @staticmethod
    def _stamp(registration: Registration, target: str, actor: Optional[str], reason: Optional[str], now) -> None:
        registration.status = target
        if target == S.APPROVED.value:
            registration.approved_at = now
            registration.approved_by = actor
        elif target == S.REJECTED.value:
            registration.rejected_at = now
            registration.rejected_by = actor
            registration.rejection_reason = reason
        elif target == S.CHECKED_IN.value:
            registration.checked_in_at = now
            registration.checked_in_by = actor
        elif target == S.DISQUALIFIED.value:
            registration.disqualified_at = now
            registration.disqualified_by = actor
            registration.disqualification_reason = reason
        elif target == S.WITHDRAWN.value:
            registration.withdrawn_at = now
            registration.withdrawn_by = actor
            registration.withdrawal_reason = reason

    @staticmethod
    def _ensure_open(tournament: Tournament) -> None:
        if tournament.status in tournament_service.CLOSED_STATUSES:
            raise ValidationError(
                f"Tournament {tournament.id} is {tournament.status}; registrations are frozen",
                tournament_id=tournament.id,
            )

    @staticmethod
    def _ensure_capacity(db: Session, tournament: Tournament) -> None:
        # Approvals for one tournament serialize on its row
        db.query(Tournament).filter(Tournament.id == tournament.id).with_for_update().first()
        active = (
            db.query(func.count(Registration.id))
            .filter(Registration.tournament_id == tournament.id, Registration.status.in_(ACTIVE_STATUSES))
            .scalar()
        )
        if active >= tournament.slots_total:
            raise ValidationError(
                f"Tournament is full ({active}/{tournament.slots_total} teams)",
                tournament_id=tournament.id,
            )

    @staticmethod
    def _recount_participating(db: Session, tournament_id: int) -> None:
        # Counted inside the UPDATE so the stored value matches committed membership
        active_count = (
            db.query(func.count(Registration.id))
            .filter(Registration.tournament_id == tournament_id, Registration.status.in_(ACTIVE_STATUSES))
            .scalar_subquery()
        )
        db.query(Tournament).filter(Tournament.id == tournament_id).update(
            {Tournament.participating_teams_count: active_count},
            synchronize_session=False,
        )
        tournament = db.get(Tournament, tournament_id)
        if tournament is not None:
            db.expire(tournament, ["participating_teams_count"])

    # ------------------------------------------------------------------
    # Phase placement
    # ------------------------------------------------------------------

    def assign_phase(
        self, db: Session, registration_id: int, phase_name: str, group: Optional[str] = None
    ) -> Registration:
        """Put an active team into a phase (and group). Membership is a set."""
        try:
            registration = self.get(db, registration_id)
            if not registration.is_active:
                raise ValidationError(
                    f"Team must be approved or checked in to join a phase (status: {registration.status})",
                    registration_id=registration_id,
                )
            phase = tournament_service.get_phase_or_raise(db, registration.tournament_id, phase_name)
            self.place_in_phase(db, registration, phase, group)
            db.commit()
        except StaleDataError:
            db.rollback()
            raise ConflictError(f"Registration {registration_id} was modified concurrently")
        except Exception:
            db.rollback()
            raise
        db.refresh(registration)
        logger.info("Team %s placed in phase %s (group %s)", registration.team_id, phase_name, group)
        return registration

    @staticmethod
    def place_in_phase(db: Session, registration: Registration, phase: Phase, group: Optional[str] = None) -> bool:
        """Add the team to `phase` without committing. Returns False if it was already there."""
        if not registration.is_active:
            raise ValidationError(
                f"Team {registration.team_id} is {registration.status} and cannot join phase '{phase.name}'",
                registration_id=registration.id,
                phase=phase.name,
            )
        if phase.status == PhaseStatus.COMPLETED.value:
            raise ValidationError(f"Phase '{phase.name}' is already completed", phase=phase.name)
        if group is not None and group not in phase.group_names():
            raise ValidationError(f"Phase '{phase.name}' has no group '{group}'", phase=phase.name, group=group)

        membership = (
            db.query(PhaseTeam)
            .filter(PhaseTeam.phase_id == phase.id, PhaseTeam.team_id == registration.team_id)
            .first()
        )
        added = membership is None
        if added:
            if phase.slots is not None and len(phase.teams) >= phase.slots:
                raise ValidationError(f"Phase '{phase.name}' is full ({phase.slots} teams)", phase=phase.name)
            membership = PhaseTeam(team_id=registration.team_id, group_name=group)
            phase.teams.append(membership)
        elif group is not None:
            membership.group_name = group

        registration.phase = phase.name
        registration.group_name = group if group is not None else membership.group_name
        return added

    # ------------------------------------------------------------------
    # Aggregates (called only from match result propagation)
    # ------------------------------------------------------------------

    @staticmethod
    def update_stats(
        registration: Registration,
        points: int,
        kills: int,
        is_chicken_dinner: bool = False,
        position: Optional[int] = None,
    ) -> None:
        """Account for one more match. All fields move together in the caller's flush."""
        registration.total_points += points
        registration.total_kills += kills
        if is_chicken_dinner:
            registration.total_chicken_dinners += 1
        if position is not None:
            registration.placement_total += position
            registration.placed_matches += 1
        registration.matches_played += 1

    @staticmethod
    def adjust_stats(
        registration: Registration,
        points_delta: int,
        kills_delta: int,
        chicken_dinner_delta: int = 0,
        placement_delta: int = 0,
        placed_delta: int = 0,
    ) -> None:
        """Compensating correction for a match that was already counted."""
        registration.total_points += points_delta
        registration.total_kills += kills_delta
        registration.total_chicken_dinners += chicken_dinner_delta
        registration.placement_total += placement_delta
        registration.placed_matches += placed_delta
