import logging
from typing import List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from royale.core import events as domain_events
from royale.core.database import utcnow
from royale.core.events import EventSink, event_bus
from royale.core.exceptions import ConflictError, NotFoundError, ValidationError
from royale.models.match import Match, MatchParticipant, MatchStatus
from royale.models.registration import Registration, StatContribution
from royale.models.tournament import PhaseStatus
from royale.schemas import match_schemas
from royale.services import scoring, tournament_service
from royale.services.registration_service import RegistrationService

logger = logging.getLogger(__name__)


class MatchService:
    """Records Battle-Royale match results and propagates them to registrations.

    Recording and propagation are separate steps. Recording overwrites the
    participant rows; propagation diffs them against the StatContribution
    ledger, so correcting a result and propagating again moves the team's
    totals to the corrected values instead of adding twice.
    """

    def __init__(self, events: EventSink = event_bus, registration_service: Optional[RegistrationService] = None):
        self.events = events
        self.registration_service = registration_service or RegistrationService(events=events)

    def get_match(self, db: Session, match_id: int) -> Match:
        match = db.query(Match).filter(Match.id == match_id).first()
        if not match:
            raise NotFoundError(f"Match {match_id} not found", match_id=match_id)
        return match

    def list_matches(self, db: Session, tournament_id: int, phase: Optional[str] = None) -> List[Match]:
        query = db.query(Match).filter(Match.tournament_id == tournament_id)
        if phase:
            query = query.filter(Match.phase == phase)
        return query.order_by(Match.match_number.asc(), Match.id.asc()).all()

    def create_match(
        self,
        db: Session,
        tournament_id: int,
        match_in: match_schemas.MatchCreate,
    ) -> Match:
        phase = tournament_service.get_phase_or_raise(db, tournament_id, match_in.phase)
        if phase.status == PhaseStatus.COMPLETED.value:
            raise ValidationError(f"Phase '{phase.name}' is already completed", phase=phase.name)
        if len(set(match_in.team_ids)) != len(match_in.team_ids):
            raise ValidationError("A team can only be declared once per match")
        if match_in.group is not None and match_in.group not in phase.group_names():
            raise ValidationError(f"Phase '{phase.name}' has no group '{match_in.group}'", group=match_in.group)

        members = phase.team_ids()
        unknown = [team_id for team_id in match_in.team_ids if team_id not in members]
        if unknown:
            raise ValidationError(
                f"Teams not in phase '{phase.name}': {', '.join(unknown)}",
                phase=phase.name,
                team_ids=unknown,
            )
        if match_in.group is not None:
            outside = [t for t in match_in.team_ids if t not in phase.group_team_ids(match_in.group)]
            if outside:
                raise ValidationError(
                    f"Teams not in group '{match_in.group}': {', '.join(outside)}",
                    group=match_in.group,
                    team_ids=outside,
                )
        inactive = [
            team_id
            for team_id in match_in.team_ids
            if not self._registration_for(db, tournament_id, team_id).is_active
        ]
        if inactive:
            raise ValidationError(f"Teams without an active registration: {', '.join(inactive)}", team_ids=inactive)

        match = Match(
            tournament_id=tournament_id,
            phase=phase.name,
            group_name=match_in.group,
            match_number=match_in.match_number,
            scheduled_at=match_in.scheduled_at,
            status=MatchStatus.SCHEDULED.value,
        )
        match.participants = [MatchParticipant(team_id=team_id) for team_id in match_in.team_ids]
        try:
            db.add(match)
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(match)
        logger.info("Created match %s in %s/%s with %d teams", match.id, tournament_id, phase.name, len(match.participants))
        return match

    def record_results(
        self,
        db: Session,
        match_id: int,
        results: List[match_schemas.TeamResult],
        actor: Optional[str] = None,
    ) -> Match:
        """Write placement, kills and points for the listed teams (overwrite, not add)."""
        try:
            match = self.get_match(db, match_id)
            if match.status == MatchStatus.COMPLETED.value:
                raise ValidationError(f"Match {match_id} is already finalized", match_id=match_id)
            self._ensure_phase_open(db, match)

            seen = set()
            for result in results:
                if result.team_id in seen:
                    raise ValidationError(f"Team {result.team_id} appears twice in the results", match_id=match_id)
                seen.add(result.team_id)
                participant = match.participant_for(result.team_id)
                if participant is None:
                    raise ValidationError(
                        f"Team {result.team_id} is not a participant of match {match_id}",
                        match_id=match_id,
                        team_id=result.team_id,
                    )
                if result.kills < 0:
                    raise ValidationError(f"Kills cannot be negative (team {result.team_id})")
                participant.position = result.position
                participant.kills = result.kills
                participant.points = scoring.total_points(result.position, result.kills)
                participant.chicken_dinner = scoring.is_chicken_dinner(result.position)

            winners = [p.team_id for p in match.participants if p.chicken_dinner]
            if len(winners) > 1:
                raise ValidationError(
                    f"Only one team can finish first in match {match_id}: {', '.join(winners)}",
                    match_id=match_id,
                )
            positions = [p.position for p in match.participants if p.position is not None]
            if len(positions) != len(set(positions)):
                raise ValidationError(f"Two teams share a finishing position in match {match_id}", match_id=match_id)

            match.status = MatchStatus.IN_PROGRESS.value
            match.results_updated_at = utcnow()
            match.results_updated_by = actor
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(match)
        logger.info("Recorded results for %d team(s) in match %s", len(results), match_id)
        self.events.emit(
            domain_events.MATCH_RESULTS_UPDATED,
            {
                "match_id": match.id,
                "tournament_id": match.tournament_id,
                "phase": match.phase,
                "actor": actor,
                "results": [
                    {"team_id": p.team_id, "position": p.position, "kills": p.kills, "points": p.points}
                    for p in match.participants
                    if p.has_result
                ],
            },
        )
        return match

    def propagate_stats(self, db: Session, match_id: int) -> List[match_schemas.StatChange]:
        """Bring registration aggregates in line with the match's current results."""
        try:
            match = self.get_match(db, match_id)
            self._ensure_phase_open(db, match)
            changes = self._reconcile(db, match)
            db.commit()
        except StaleDataError:
            db.rollback()
            raise ConflictError(f"Registrations changed while propagating match {match_id}", match_id=match_id)
        except Exception:
            db.rollback()
            raise
        logger.info("Propagated match %s: %d registration change(s)", match_id, len(changes))
        return changes

    def finalize_match(self, db: Session, match_id: int, actor: Optional[str] = None) -> Match:
        """Propagate the results and close the match against further edits."""
        try:
            match = self.get_match(db, match_id)
            if match.status == MatchStatus.COMPLETED.value:
                raise ValidationError(f"Match {match_id} is already finalized", match_id=match_id)
            self._ensure_phase_open(db, match)
            missing = [p.team_id for p in match.participants if not p.has_result]
            if missing:
                raise ValidationError(
                    f"Results missing for teams: {', '.join(missing)}",
                    match_id=match_id,
                    team_ids=missing,
                )
            self._reconcile(db, match)
            match.status = MatchStatus.COMPLETED.value
            match.finalized_at = utcnow()
            match.finalized_by = actor
            db.commit()
        except StaleDataError:
            db.rollback()
            raise ConflictError(f"Registrations changed while finalizing match {match_id}", match_id=match_id)
        except Exception:
            db.rollback()
            raise
        db.refresh(match)
        logger.info("Finalized match %s", match_id)
        return match

    def _reconcile(self, db: Session, match: Match) -> List[match_schemas.StatChange]:
        ledger = {
            row.team_id: row
            for row in db.query(StatContribution).filter(StatContribution.match_id == match.id).all()
        }
        changes: List[match_schemas.StatChange] = []

        for participant in match.participants:
            if not participant.has_result:
                continue
            registration = self._registration_for(db, match.tournament_id, participant.team_id)
            kills = participant.kills or 0
            applied = ledger.get(participant.team_id)

            if applied is None:
                self.registration_service.update_stats(
                    registration,
                    participant.points,
                    kills,
                    participant.chicken_dinner,
                    participant.position,
                )
                db.add(
                    StatContribution(
                        match_id=match.id,
                        registration_id=registration.id,
                        team_id=participant.team_id,
                        phase=match.phase,
                        points=participant.points,
                        kills=kills,
                        position=participant.position,
                        chicken_dinner=participant.chicken_dinner,
                    )
                )
                changes.append(
                    match_schemas.StatChange(
                        team_id=participant.team_id,
                        points_delta=participant.points,
                        kills_delta=kills,
                        chicken_dinner_delta=int(participant.chicken_dinner),
                        new_match=True,
                    )
                )
                continue

            points_delta = participant.points - applied.points
            kills_delta = kills - applied.kills
            dinner_delta = int(participant.chicken_dinner) - int(applied.chicken_dinner)
            placement_delta = (participant.position or 0) - (applied.position or 0)
            placed_delta = int(participant.position is not None) - int(applied.position is not None)
            if not (points_delta or kills_delta or dinner_delta or placement_delta or placed_delta):
                continue

            self.registration_service.adjust_stats(
                registration, points_delta, kills_delta, dinner_delta, placement_delta, placed_delta
            )
            applied.points = participant.points
            applied.kills = kills
            applied.position = participant.position
            applied.chicken_dinner = participant.chicken_dinner
            changes.append(
                match_schemas.StatChange(
                    team_id=participant.team_id,
                    points_delta=points_delta,
                    kills_delta=kills_delta,
                    chicken_dinner_delta=dinner_delta,
                    new_match=False,
                )
            )

        db.flush()
        return changes

    @staticmethod
    def _ensure_phase_open(db: Session, match: Match) -> None:
        phase = tournament_service.get_phase_or_raise(db, match.tournament_id, match.phase)
        if phase.status == PhaseStatus.COMPLETED.value:
            raise ValidationError(
                f"Phase '{phase.name}' is already completed; match {match.id} can no longer change",
                match_id=match.id,
                phase=phase.name,
            )

    @staticmethod
    def _registration_for(db: Session, tournament_id: int, team_id: str) -> Registration:
        registration = (
            db.query(Registration)
            .filter(Registration.tournament_id == tournament_id, Registration.team_id == team_id)
            .first()
        )
        if not registration:
            raise NotFoundError(
                f"No registration for team {team_id} in tournament {tournament_id}",
                tournament_id=tournament_id,
                team_id=team_id,
            )
        return registration
