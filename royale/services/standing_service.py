import logging
from collections import OrderedDict
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from royale.core.config import settings
from royale.models.registration import ACTIVE_STATUSES, Registration
from royale.models.standing import Standing
from royale.models.tournament import PhaseStatus
from royale.services import tournament_service

logger = logging.getLogger(__name__)

# Leaderboard order: points desc, kills desc, earliest registration, team id.
# The last key makes it a strict total order, so ranks never flip between calls.
LEADERBOARD_ORDER = (
    Standing.points.desc(),
    Standing.kills.desc(),
    Standing.registered_at.asc(),
    Standing.team_id.asc(),
)


def standing_sort_key(standing: Standing):
    return (
        -standing.points,
        -standing.kills,
        standing.registered_at or datetime.max,
        standing.team_id,
    )


def rank(standings: List[Standing]) -> List[Standing]:
    return sorted(standings, key=standing_sort_key)


def leaderboard(
    db: Session,
    tournament_id: int,
    phase: str,
    group: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[Standing]:
    """Ranked standings of a phase, or of one group when `group` is given.

    `limit=None` uses the configured default; `limit=0` returns every row.
    """
    query = db.query(Standing).filter(Standing.tournament_id == tournament_id, Standing.phase == phase)
    if group is not None:
        query = query.filter(Standing.group_name == group)
    query = query.order_by(*LEADERBOARD_ORDER)
    if limit is None:
        limit = settings.LEADERBOARD_DEFAULT_LIMIT
    if limit:
        query = query.limit(limit)
    return query.all()


def full_leaderboard(db: Session, tournament_id: int, phase: str, group: Optional[str] = None) -> List[Standing]:
    return leaderboard(db, tournament_id, phase, group=group, limit=0)


def group_leaderboards(db: Session, tournament_id: int, phase: str) -> Dict[str, List[Standing]]:
    """Every group's ranking, keyed by group name in first-appearance order."""
    groups: Dict[str, List[Standing]] = OrderedDict()
    for standing in full_leaderboard(db, tournament_id, phase):
        if standing.group_name:
            groups.setdefault(standing.group_name, []).append(standing)
    return groups


def team_standing(db: Session, tournament_id: int, phase: str, team_id: str) -> Optional[Standing]:
    return (
        db.query(Standing)
        .filter(Standing.tournament_id == tournament_id, Standing.phase == phase, Standing.team_id == team_id)
        .first()
    )


def refresh_standings(db: Session, tournament_id: int, phase: str) -> List[Standing]:
    """Regenerate the phase's Standing rows from registration aggregates.

    Does not commit. Completed phases are frozen and returned as they are.
    Qualification flags survive the refresh; rows of teams that left the phase
    (or are no longer active) are removed.
    """
    db_phase = tournament_service.get_phase_or_raise(db, tournament_id, phase)
    if db_phase.status == PhaseStatus.COMPLETED.value:
        logger.debug("Phase %s/%s is completed; standings are frozen", tournament_id, phase)
        return full_leaderboard(db, tournament_id, phase)

    registrations = (
        db.query(Registration)
        .filter(
            Registration.tournament_id == tournament_id,
            Registration.phase == phase,
            Registration.status.in_(ACTIVE_STATUSES),
        )
        .all()
    )
    existing = {
        s.team_id: s
        for s in db.query(Standing).filter(Standing.tournament_id == tournament_id, Standing.phase == phase).all()
    }

    rows: List[Standing] = []
    for registration in registrations:
        standing = existing.pop(registration.team_id, None)
        if standing is None:
            standing = Standing(
                tournament_id=tournament_id,
                phase=phase,
                team_id=registration.team_id,
                is_qualified=False,
                is_eliminated=False,
            )
            db.add(standing)
        standing.registration_id = registration.id
        standing.group_name = registration.group_name
        standing.points = registration.total_points
        standing.kills = registration.total_kills
        standing.chicken_dinners = registration.total_chicken_dinners
        standing.matches_played = registration.matches_played
        standing.average_position = registration.average_position
        standing.registered_at = registration.registered_at
        rows.append(standing)

    for gone in existing.values():
        logger.debug("Dropping standing of team %s from %s/%s", gone.team_id, tournament_id, phase)
        db.delete(gone)

    rows = rank(rows)
    for position, standing in enumerate(rows, start=1):
        standing.position = position
    db.flush()
    logger.debug("Refreshed %d standing(s) for %s/%s", len(rows), tournament_id, phase)
    return rows


def refresh(db: Session, tournament_id: int, phase: str) -> List[Standing]:
    try:
        rows = refresh_standings(db, tournament_id, phase)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return rows
