"""PhaseStanding: a materialized per-phase summary built from Standing rows.

It is a cache, not a source of truth. Every snapshot carries `last_calculated`
and callers ask `is_stale()` explicitly. Recalculation of one (tournament, phase)
is single-flight: concurrent requests share one execution and its result.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from royale.core.config import settings
from royale.core.database import utcnow
from royale.core.exceptions import NotFoundError
from royale.core.singleflight import SingleFlight
from royale.models.match import Match, MatchStatus
from royale.models.phase_standing import CalculatedBy, PhaseStanding
from royale.models.standing import Standing
from royale.models.tournament import Phase, PhaseStatus
from royale.schemas import standing_schemas
from royale.services import standing_service, tournament_service

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Pure summary builders
# ----------------------------------------------------------------------

def compute_statistics(standings: Sequence[Standing], completed_matches: int) -> Dict[str, Any]:
    total_teams = len(standings)
    total_points = sum(s.points for s in standings)
    total_kills = sum(s.kills for s in standings)
    return {
        "total_teams": total_teams,
        "total_matches": completed_matches,
        "team_matches_played": sum(s.matches_played for s in standings),
        "total_points": total_points,
        "total_kills": total_kills,
        "total_chicken_dinners": sum(s.chicken_dinners for s in standings),
        "average_points_per_team": round(total_points / total_teams, 2) if total_teams else 0,
        "average_kills_per_team": round(total_kills / total_teams, 2) if total_teams else 0,
    }


def compute_top_teams(standings: Sequence[Standing], limit: int) -> List[Dict[str, Any]]:
    return [
        {
            "position": index,
            "team_id": s.team_id,
            "group": s.group_name,
            "points": s.points,
            "kills": s.kills,
            "chicken_dinners": s.chicken_dinners,
            "matches_played": s.matches_played,
        }
        for index, s in enumerate(standings[:limit], start=1)
    ]


def _leader(standing: Optional[Standing], value) -> Dict[str, Any]:
    return {"team_id": standing.team_id if standing else None, "value": value}


def compute_leaders(standings: Sequence[Standing]) -> Dict[str, Dict[str, Any]]:
    """Category leaders, each an independent sort with the leaderboard order as tiebreak.

    `standings` must already be in leaderboard order; sorted() is stable.
    """
    if not standings:
        return {}
    most_points = standings[0]
    most_kills = sorted(standings, key=lambda s: -s.kills)[0]
    most_dinners = sorted(standings, key=lambda s: -s.chicken_dinners)[0]
    positioned = [s for s in standings if s.average_position is not None]
    best_average = sorted(positioned, key=lambda s: s.average_position)[0] if positioned else None
    return {
        "most_points": _leader(most_points, most_points.points),
        "most_kills": _leader(most_kills, most_kills.kills),
        "most_chicken_dinners": _leader(most_dinners, most_dinners.chicken_dinners),
        "best_average_position": _leader(best_average, best_average.average_position if best_average else 0),
    }


def compute_group_summaries(standings: Sequence[Standing], group_names: Sequence[str]) -> List[Dict[str, Any]]:
    names = list(group_names)
    for s in standings:
        if s.group_name and s.group_name not in names:
            names.append(s.group_name)
    summaries = []
    for name in names:
        members = [s for s in standings if s.group_name == name]
        leader = members[0] if members else None
        summaries.append(
            {
                "group_name": name,
                "teams_count": len(members),
                "matches_played": sum(s.matches_played for s in members),
                "leader": {"team_id": leader.team_id if leader else None, "points": leader.points if leader else 0},
            }
        )
    return summaries


def compute_qualification(standings: Sequence[Standing], phase: Phase) -> Dict[str, Any]:
    group_count = len(phase.groups)
    rules = phase.qualification_rules
    return {
        "slots_available": sum(rule.output_count(group_count) for rule in rules),
        "qualified_teams": [s.team_id for s in standings if s.is_qualified],
        "eliminated_teams": [s.team_id for s in standings if s.is_eliminated],
        "qualifies_to": rules[0].next_phase if rules else None,
    }


def _growth(previous: Optional[int], current: int) -> Optional[float]:
    if not previous:
        return None
    return round((current - previous) / previous * 100, 2)


def compute_trends(previous: Optional[Dict[str, Any]], current: Dict[str, Any]) -> Dict[str, Any]:
    previous = previous or {}
    return {
        "points_growth": _growth(previous.get("total_points"), current["total_points"]),
        "kills_growth": _growth(previous.get("total_kills"), current["total_kills"]),
        "matches_added": current["total_matches"] - previous.get("total_matches", 0),
    }


def is_stale(
    phase_standing: PhaseStanding,
    threshold_minutes: Optional[float] = None,
    now: Optional[datetime] = None,
) -> bool:
    """True when the snapshot was never calculated or is older than the threshold."""
    if phase_standing.last_calculated is None:
        return True
    if threshold_minutes is None:
        threshold_minutes = settings.STALE_THRESHOLD_MINUTES
    now = now or utcnow()
    return now - phase_standing.last_calculated > timedelta(minutes=threshold_minutes)


# ----------------------------------------------------------------------
# Service
# ----------------------------------------------------------------------

class PhaseStandingService:
    def __init__(self, single_flight: Optional[SingleFlight] = None, top_teams_limit: Optional[int] = None):
        self._flight = single_flight or SingleFlight()
        self.top_teams_limit = top_teams_limit or settings.TOP_TEAMS_LIMIT

    def get(self, db: Session, tournament_id: int, phase: str) -> Optional[PhaseStanding]:
        return (
            db.query(PhaseStanding)
            .filter(PhaseStanding.tournament_id == tournament_id, PhaseStanding.phase == phase)
            .first()
        )

    def get_or_raise(self, db: Session, tournament_id: int, phase: str) -> PhaseStanding:
        phase_standing = self.get(db, tournament_id, phase)
        if not phase_standing:
            raise NotFoundError(
                f"No standings snapshot for phase '{phase}' of tournament {tournament_id}",
                tournament_id=tournament_id,
                phase=phase,
            )
        return phase_standing

    def get_or_create(self, db: Session, tournament_id: int, phase: str) -> PhaseStanding:
        """Insert-if-absent on the (tournament, phase) unique key. Does not commit."""
        existing = self.get(db, tournament_id, phase)
        if existing:
            return existing
        db_phase = tournament_service.get_phase_or_raise(db, tournament_id, phase)
        try:
            with db.begin_nested():
                phase_standing = PhaseStanding(
                    tournament_id=tournament_id,
                    phase=phase,
                    status=db_phase.status,
                    phase_start_date=db_phase.start_date,
                    phase_end_date=db_phase.end_date,
                )
                db.add(phase_standing)
        except IntegrityError:
            # Another writer created it first
            logger.debug("PhaseStanding %s/%s created concurrently", tournament_id, phase)
            return self.get(db, tournament_id, phase)
        return phase_standing

    def is_stale(self, phase_standing: PhaseStanding, threshold_minutes: Optional[float] = None) -> bool:
        return is_stale(phase_standing, threshold_minutes)

    def recalculate(
        self,
        db: Session,
        tournament_id: int,
        phase: str,
        calculated_by: CalculatedBy = CalculatedBy.AUTOMATIC,
    ) -> PhaseStanding:
        """Rebuild the snapshot. Concurrent calls for the same phase share one run."""
        key = (tournament_id, phase)
        phase_standing_id = self._flight.do(key, self._recalculate, db, tournament_id, phase, calculated_by)
        return (
            db.query(PhaseStanding)
            .filter(PhaseStanding.id == phase_standing_id)
            .populate_existing()
            .one()
        )

    def _recalculate(self, db: Session, tournament_id: int, phase: str, calculated_by: CalculatedBy) -> int:
        try:
            db_phase = tournament_service.get_phase_or_raise(db, tournament_id, phase)
            phase_standing = self.get_or_create(db, tournament_id, phase)
            phase_standing.status = db_phase.status
            standings = standing_service.refresh_standings(db, tournament_id, phase)

            if not standings:
                # Nothing to rank yet; keep whatever snapshot exists
                logger.info("No standings for %s/%s; snapshot left unchanged", tournament_id, phase)
                db.commit()
                return phase_standing.id

            completed_matches = (
                db.query(func.count(Match.id))
                .filter(
                    Match.tournament_id == tournament_id,
                    Match.phase == phase,
                    Match.status == MatchStatus.COMPLETED.value,
                )
                .scalar()
            )
            statistics = compute_statistics(standings, completed_matches)
            previous = dict(phase_standing.statistics) if phase_standing.statistics else None

            phase_standing.trends = compute_trends(previous, statistics)
            phase_standing.statistics = statistics
            phase_standing.top_teams = compute_top_teams(standings, self.top_teams_limit)
            phase_standing.leaders = compute_leaders(standings)
            phase_standing.group_summaries = compute_group_summaries(standings, db_phase.group_names())
            phase_standing.qualification = compute_qualification(standings, db_phase)
            phase_standing.last_calculated = utcnow()
            phase_standing.calculated_by = CalculatedBy(calculated_by).value
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(
            "Recalculated %s/%s: %d teams, %d points (%s)",
            tournament_id, phase, statistics["total_teams"], statistics["total_points"], phase_standing.calculated_by,
        )
        return phase_standing.id

    def recalculate_all(self, db: Session, tournament_id: int) -> int:
        tournament = tournament_service.get_tournament_or_raise(db, tournament_id)
        phase_names = [p.name for p in tournament.phases]
        for name in phase_names:
            self.recalculate(db, tournament_id, name, CalculatedBy.MANUAL)
        return len(phase_names)

    # ------------------------------------------------------------------
    # Staleness
    # ------------------------------------------------------------------

    def get_stale(self, db: Session, threshold_minutes: Optional[float] = None) -> List[PhaseStanding]:
        """In-progress snapshots older than the threshold. Completed phases never appear."""
        if threshold_minutes is None:
            threshold_minutes = settings.STALE_THRESHOLD_MINUTES
        cutoff = utcnow() - timedelta(minutes=threshold_minutes)
        return (
            db.query(PhaseStanding)
            .filter(
                PhaseStanding.status == PhaseStatus.IN_PROGRESS.value,
                (PhaseStanding.last_calculated == None) | (PhaseStanding.last_calculated < cutoff),  # noqa: E711
            )
            .order_by(PhaseStanding.id.asc())
            .all()
        )

    def sweep_stale(self, db: Session, threshold_minutes: Optional[float] = None) -> standing_schemas.SweepReport:
        """Recalculate every stale phase; one phase failing never stops the others."""
        report = standing_schemas.SweepReport()
        targets = [(ps.id, ps.tournament_id, ps.phase) for ps in self.get_stale(db, threshold_minutes)]
        for phase_standing_id, tournament_id, phase in targets:
            try:
                self.recalculate(db, tournament_id, phase, CalculatedBy.SCHEDULED)
            except Exception as exc:
                logger.exception("Sweep failed to recalculate %s/%s", tournament_id, phase)
                report.failed.append(phase_standing_id)
                report.errors[phase_standing_id] = str(exc)
            else:
                report.recalculated.append(phase_standing_id)
        logger.info("Stale sweep: %d recalculated, %d failed", len(report.recalculated), len(report.failed))
        return report

    # ------------------------------------------------------------------
    # Status and cross-phase views
    # ------------------------------------------------------------------

    def mark_in_progress(self, db: Session, tournament_id: int, phase: str) -> PhaseStanding:
        """Does not commit."""
        phase_standing = self.get_or_create(db, tournament_id, phase)
        phase_standing.status = PhaseStatus.IN_PROGRESS.value
        return phase_standing

    def complete(self, db: Session, tournament_id: int, phase: str) -> PhaseStanding:
        """Freeze the snapshot. Completed snapshots are never picked up by sweeps. Does not commit."""
        phase_standing = self.get_or_create(db, tournament_id, phase)
        phase_standing.status = PhaseStatus.COMPLETED.value
        return phase_standing

    def compare_phases(self, db: Session, tournament_id: int, phases: Sequence[str]) -> List[Dict[str, Any]]:
        snapshots = (
            db.query(PhaseStanding)
            .join(Phase, (Phase.tournament_id == PhaseStanding.tournament_id) & (Phase.name == PhaseStanding.phase))
            .filter(PhaseStanding.tournament_id == tournament_id, PhaseStanding.phase.in_(list(phases)))
            .order_by(Phase.order_index.asc())
            .all()
        )
        comparison = []
        for ps in snapshots:
            statistics = ps.statistics or {}
            comparison.append(
                {
                    "phase": ps.phase,
                    "status": ps.status,
                    "total_teams": statistics.get("total_teams", 0),
                    "average_points": statistics.get("average_points_per_team", 0),
                    "leader": (ps.leaders or {}).get("most_points"),
                }
            )
        return comparison

    def tournament_progress(self, db: Session, tournament_id: int) -> standing_schemas.TournamentProgress:
        tournament = tournament_service.get_tournament_or_raise(db, tournament_id)
        snapshots = {
            ps.phase: ps
            for ps in db.query(PhaseStanding).filter(PhaseStanding.tournament_id == tournament_id).all()
        }
        phases = []
        for phase in tournament.phases:
            statistics = (snapshots[phase.name].statistics if phase.name in snapshots else None) or {}
            phases.append(
                standing_schemas.PhaseProgress(
                    name=phase.name,
                    status=phase.status,
                    teams=statistics.get("total_teams", 0),
                    matches=statistics.get("total_matches", 0),
                )
            )
        statuses = [p.status for p in tournament.phases]
        current = next((p.name for p in tournament.phases if p.status == PhaseStatus.IN_PROGRESS.value), None)
        return standing_schemas.TournamentProgress(
            total=len(statuses),
            completed=statuses.count(PhaseStatus.COMPLETED.value),
            in_progress=statuses.count(PhaseStatus.IN_PROGRESS.value),
            upcoming=statuses.count(PhaseStatus.UPCOMING.value),
            current_phase=current,
            phases=phases,
        )
