import logging
from collections import defaultdict
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from royale.core.exceptions import ConflictError, NotFoundError, ValidationError
from royale.models.tournament import (
    Phase,
    PhaseGroup,
    PhaseStatus,
    QualificationRule,
    QualificationSource,
    Tournament,
    TournamentStatus,
)
from royale.schemas import tournament_schemas

logger = logging.getLogger(__name__)

CLOSED_STATUSES = (TournamentStatus.COMPLETED.value, TournamentStatus.CANCELLED.value)


def _validate_phases(phases: List[tournament_schemas.PhaseCreate]) -> None:
    """Phase order is fixed here, so every rule can be checked against it once."""
    order: Dict[str, int] = {}
    for index, phase in enumerate(phases):
        if phase.name in order:
            raise ValidationError(f"Duplicate phase name: {phase.name}", phase=phase.name)
        order[phase.name] = index

    incoming: Dict[str, int] = defaultdict(int)
    for index, phase in enumerate(phases):
        for rule in phase.qualification_rules:
            if rule.next_phase not in order:
                raise ValidationError(
                    f"Qualification rule of phase '{phase.name}' references unknown phase '{rule.next_phase}'",
                    phase=phase.name,
                    next_phase=rule.next_phase,
                )
            if order[rule.next_phase] <= index:
                raise ValidationError(
                    f"Qualification rule of phase '{phase.name}' must point to a later phase, not '{rule.next_phase}'",
                    phase=phase.name,
                    next_phase=rule.next_phase,
                )
            if rule.source == QualificationSource.PER_GROUP and not phase.groups:
                raise ValidationError(
                    f"Phase '{phase.name}' has no groups; per_group qualification is not possible",
                    phase=phase.name,
                )
            if rule.source == QualificationSource.PER_GROUP:
                incoming[rule.next_phase] += rule.slots * len(phase.groups)
            else:
                incoming[rule.next_phase] += rule.slots

    for phase in phases:
        if phase.slots is not None and incoming[phase.name] > phase.slots:
            raise ValidationError(
                f"Qualification rules send {incoming[phase.name]} teams to '{phase.name}' "
                f"which only has {phase.slots} slots",
                phase=phase.name,
            )


def create_tournament(db: Session, tournament: tournament_schemas.TournamentCreate) -> Tournament:
    existing = db.query(Tournament).filter(Tournament.name == tournament.name).first()
    if existing:
        raise ConflictError(f"Tournament '{tournament.name}' already exists", tournament_id=existing.id)

    _validate_phases(tournament.phases)

    db_tournament = Tournament(
        name=tournament.name,
        slots_total=tournament.slots_total,
        start_date=tournament.start_date,
        end_date=tournament.end_date,
        status=tournament.status.value,
    )
    for index, phase in enumerate(tournament.phases):
        db_phase = Phase(
            name=phase.name,
            order_index=index,
            type=phase.type.value,
            status=PhaseStatus.UPCOMING.value,
            slots=phase.slots,
            start_date=phase.start_date,
            end_date=phase.end_date,
        )
        db_phase.groups = [PhaseGroup(name=name) for name in phase.groups]
        db_phase.qualification_rules = [
            QualificationRule(slots=rule.slots, source=rule.source.value, next_phase=rule.next_phase)
            for rule in phase.qualification_rules
        ]
        db_tournament.phases.append(db_phase)

    try:
        db.add(db_tournament)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(db_tournament)
    logger.info("Created tournament %s (%s) with %d phase(s)", db_tournament.id, db_tournament.name, len(db_tournament.phases))
    return db_tournament


def get_tournament(db: Session, tournament_id: int) -> Optional[Tournament]:
    return db.query(Tournament).filter(Tournament.id == tournament_id).first()


def get_tournament_or_raise(db: Session, tournament_id: int) -> Tournament:
    tournament = get_tournament(db, tournament_id)
    if not tournament:
        raise NotFoundError(f"Tournament {tournament_id} not found", tournament_id=tournament_id)
    return tournament


def list_tournaments(db: Session, status: Optional[str] = None) -> List[Tournament]:
    query = db.query(Tournament)
    if status:
        query = query.filter(Tournament.status == status)
    return query.order_by(Tournament.created_at.desc(), Tournament.id.desc()).all()


def get_phase(db: Session, tournament_id: int, phase_name: str) -> Optional[Phase]:
    return (
        db.query(Phase)
        .filter(Phase.tournament_id == tournament_id, Phase.name == phase_name)
        .first()
    )


def get_phase_or_raise(db: Session, tournament_id: int, phase_name: str) -> Phase:
    phase = get_phase(db, tournament_id, phase_name)
    if not phase:
        raise NotFoundError(
            f"Phase '{phase_name}' not found in tournament {tournament_id}",
            tournament_id=tournament_id,
            phase=phase_name,
        )
    return phase


def update_tournament_status(db: Session, tournament_id: int, status: str) -> Tournament:
    allowed_statuses = {s.value for s in TournamentStatus}
    if status not in allowed_statuses:
        raise ValidationError(f"Invalid status value: {status}")
    tournament = get_tournament_or_raise(db, tournament_id)
    if tournament.status in CLOSED_STATUSES and status != tournament.status:
        raise ValidationError(f"Tournament is already {tournament.status}")
    tournament.status = status
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(tournament)
    logger.info("Tournament %s status -> %s", tournament_id, status)
    return tournament
