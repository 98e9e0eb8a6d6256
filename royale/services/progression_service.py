"""Moves a tournament through its phases and decides who advances.

Qualification reads the phase leaderboard, so a phase is only finalized from a
fresh snapshot. A stale snapshot forces one recalculation and one retry.
"""
import logging
from collections import OrderedDict
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from royale.core import events as domain_events
from royale.core.database import utcnow
from royale.core.events import EventSink, emit_all, event_bus
from royale.core.exceptions import ConflictError, NotFoundError, StaleComputationError, ValidationError
from royale.models.match import Match, MatchStatus
from royale.models.phase_standing import CalculatedBy, PhaseStanding
from royale.models.standing import Standing
from royale.models.tournament import (
    Phase,
    PhaseStatus,
    QualificationRule,
    QualificationSource,
    Tournament,
    TournamentStatus,
)
from royale.schemas import tournament_schemas
from royale.services import standing_service, tournament_service
from royale.services.match_service import MatchService
from royale.services.phase_standing_service import PhaseStandingService, is_stale
from royale.services.registration_service import RegistrationService

logger = logging.getLogger(__name__)


def select_qualifiers(
    standings: Sequence[Standing],
    rule: QualificationRule,
    exclude: Iterable[str] = (),
) -> List[Standing]:
    """Pick the standings a rule sends forward, in leaderboard order.

    `standings` must be in leaderboard order. Teams in `exclude` were already
    taken by an earlier rule of the same phase and are skipped.
    """
    excluded = set(exclude)
    candidates = [s for s in standings if s.team_id not in excluded]
    if rule.source == QualificationSource.PER_GROUP.value:
        by_group = OrderedDict()
        for standing in candidates:
            if standing.group_name:
                by_group.setdefault(standing.group_name, []).append(standing)
        selected = [s for members in by_group.values() for s in members[: rule.slots]]
        return standing_service.rank(selected)
    return list(candidates[: rule.slots])


class ProgressionService:
    def __init__(
        self,
        events: EventSink = event_bus,
        registration_service: Optional[RegistrationService] = None,
        match_service: Optional[MatchService] = None,
        phase_standing_service: Optional[PhaseStandingService] = None,
    ):
        self.events = events
        self.registration_service = registration_service or RegistrationService(events=events)
        self.match_service = match_service or MatchService(
            events=events, registration_service=self.registration_service
        )
        self.phase_standings = phase_standing_service or PhaseStandingService()

    def create_tournament(self, db: Session, tournament_in: tournament_schemas.TournamentCreate) -> Tournament:
        return tournament_service.create_tournament(db, tournament_in)

    def start_phase(self, db: Session, tournament_id: int, phase_name: str) -> Phase:
        """upcoming -> in_progress. Phases start in order and never go back."""
        try:
            tournament = tournament_service.get_tournament_or_raise(db, tournament_id)
            if tournament.status in tournament_service.CLOSED_STATUSES:
                raise ValidationError(f"Tournament {tournament_id} is {tournament.status}", tournament_id=tournament_id)
            phase = tournament_service.get_phase_or_raise(db, tournament_id, phase_name)
            if phase.status != PhaseStatus.UPCOMING.value:
                raise ValidationError(
                    f"Phase '{phase_name}' cannot start from status {phase.status}",
                    phase=phase_name,
                    status=phase.status,
                )
            waiting = [
                p.name
                for p in tournament.phases
                if p.order_index < phase.order_index and p.status == PhaseStatus.UPCOMING.value
            ]
            if waiting:
                raise ValidationError(
                    f"Phase '{phase_name}' cannot start before {', '.join(waiting)}",
                    phase=phase_name,
                )

            phase.status = PhaseStatus.IN_PROGRESS.value
            if tournament.status != TournamentStatus.IN_PROGRESS.value:
                tournament.status = TournamentStatus.IN_PROGRESS.value
            self.phase_standings.mark_in_progress(db, tournament_id, phase_name)
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(phase)
        logger.info("Started phase %s of tournament %s", phase_name, tournament_id)
        return phase

    def complete_phase(
        self,
        db: Session,
        tournament_id: int,
        phase_name: str,
        actor: Optional[str] = None,
    ) -> tournament_schemas.PhaseAdvancement:
        forced = False
        try:
            advancement, pending_events = self._finalize_phase(db, tournament_id, phase_name, actor)
        except StaleComputationError:
            logger.info("Snapshot of %s/%s is stale; recalculating before completion", tournament_id, phase_name)
            self.phase_standings.recalculate(db, tournament_id, phase_name, CalculatedBy.MANUAL)
            advancement, pending_events = self._finalize_phase(db, tournament_id, phase_name, actor, force=True)
            forced = True
        advancement.forced_recalculation = forced

        # Completed phases are frozen, so this only folds the new flags into the snapshot
        self.phase_standings.recalculate(db, tournament_id, phase_name, CalculatedBy.AUTOMATIC)
        emit_all(self.events, pending_events)
        return advancement

    def _finalize_phase(
        self,
        db: Session,
        tournament_id: int,
        phase_name: str,
        actor: Optional[str],
        force: bool = False,
    ) -> Tuple[tournament_schemas.PhaseAdvancement, List[tuple]]:
        try:
            tournament = tournament_service.get_tournament_or_raise(db, tournament_id)
            phase = tournament_service.get_phase_or_raise(db, tournament_id, phase_name)
            if phase.status != PhaseStatus.IN_PROGRESS.value:
                raise ValidationError(
                    f"Phase '{phase_name}' is {phase.status}; only an in-progress phase can be completed",
                    phase=phase_name,
                    status=phase.status,
                )
            snapshot = self.phase_standings.get(db, tournament_id, phase_name)
            if not force and self._is_outdated(db, snapshot, phase):
                raise StaleComputationError(
                    f"Standings of phase '{phase_name}' are out of date",
                    tournament_id=tournament_id,
                    phase=phase_name,
                )

            # Rebuilt from live registrations; withdrawn or disqualified teams drop out here
            standings = standing_service.refresh_standings(db, tournament_id, phase_name)
            if not standings:
                raise ValidationError(f"Phase '{phase_name}' has no standings to qualify from", phase=phase_name)

            next_phase = tournament.next_phase_after(phase)
            advancement = tournament_schemas.PhaseAdvancement(
                tournament_id=tournament_id,
                phase=phase_name,
                is_final_phase=next_phase is None,
            )
            qualified: List[str] = []
            for rule in phase.qualification_rules:
                taken = self.apply_qualification_rule(db, tournament, rule, standings, exclude=qualified)
                qualified.extend(taken)
                advancement.details.append(
                    tournament_schemas.AdvancementDetail(
                        rule=f"{rule.source}:{rule.slots}",
                        next_phase=rule.next_phase,
                        teams_qualified=len(taken),
                    )
                )
            if not phase.qualification_rules and next_phase is not None:
                for standing in standings:
                    self._advance(db, tournament_id, standing, next_phase)
                    qualified.append(standing.team_id)
                advancement.details.append(
                    tournament_schemas.AdvancementDetail(
                        rule="all", next_phase=next_phase.name, teams_qualified=len(standings)
                    )
                )

            if next_phase is not None:
                for standing in standings:
                    if standing.team_id not in qualified:
                        standing.is_qualified = False
                        standing.is_eliminated = True
                        advancement.eliminated_teams.append(standing.team_id)
            else:
                self._record_final_positions(db, tournament, standings)
            advancement.qualified_teams = qualified

            now = utcnow()
            phase.status = PhaseStatus.COMPLETED.value
            phase.completed_at = now
            self.phase_standings.complete(db, tournament_id, phase_name)
            db.commit()
        except StaleDataError:
            db.rollback()
            raise ConflictError(f"Phase '{phase_name}' changed while completing it", phase=phase_name)
        except Exception:
            db.rollback()
            raise

        logger.info(
            "Completed phase %s/%s by %s: %d qualified, %d eliminated%s",
            tournament_id, phase_name, actor, len(advancement.qualified_teams), len(advancement.eliminated_teams),
            " (final)" if advancement.is_final_phase else "",
        )
        return advancement, self._completion_events(advancement, actor)

    def apply_qualification_rule(
        self,
        db: Session,
        tournament: Tournament,
        rule: QualificationRule,
        standings: Sequence[Standing],
        exclude: Iterable[str] = (),
    ) -> List[str]:
        """Move the teams `rule` selects into its next phase. Does not commit.

        Membership is a set, so applying the same rule twice changes nothing.
        """
        target = tournament.get_phase(rule.next_phase)
        if target is None:
            raise ValidationError(f"Unknown next phase '{rule.next_phase}'", next_phase=rule.next_phase)
        selected = select_qualifiers(standings, rule, exclude)
        for standing in selected:
            self._advance(db, tournament.id, standing, target)
        return [s.team_id for s in selected]

    def _registration(self, db: Session, tournament_id: int, team_id: str):
        registration = self.registration_service.get_for_team(db, tournament_id, team_id)
        if registration is None:
            raise NotFoundError(
                f"No registration for team {team_id} in tournament {tournament_id}",
                tournament_id=tournament_id,
                team_id=team_id,
            )
        return registration

    def _advance(self, db: Session, tournament_id: int, standing: Standing, target: Phase) -> None:
        registration = self._registration(db, tournament_id, standing.team_id)
        self.registration_service.place_in_phase(db, registration, target)
        standing.is_qualified = True
        standing.is_eliminated = False

    def _record_final_positions(self, db: Session, tournament: Tournament, standings: Sequence[Standing]) -> None:
        final_standings = []
        for standing in standings:
            registration = self._registration(db, tournament.id, standing.team_id)
            registration.final_position = standing.position
            final_standings.append(
                {
                    "position": standing.position,
                    "team_id": standing.team_id,
                    "points": standing.points,
                    "kills": standing.kills,
                    "chicken_dinners": standing.chicken_dinners,
                }
            )
        tournament.final_standings = final_standings
        tournament.status = TournamentStatus.COMPLETED.value
        tournament.completed_at = utcnow()

    @staticmethod
    def _is_outdated(db: Session, snapshot: Optional[PhaseStanding], phase: Phase) -> bool:
        """Stale by age, or older than the newest finalized match of the phase."""
        if snapshot is None or is_stale(snapshot):
            return True
        latest = (
            db.query(func.max(Match.finalized_at))
            .filter(
                Match.tournament_id == phase.tournament_id,
                Match.phase == phase.name,
                Match.status == MatchStatus.COMPLETED.value,
            )
            .scalar()
        )
        return latest is not None and latest > snapshot.last_calculated

    @staticmethod
    def _completion_events(advancement: tournament_schemas.PhaseAdvancement, actor: Optional[str]) -> List[tuple]:
        base = {"tournament_id": advancement.tournament_id, "phase": advancement.phase}
        pending = [
            (
                domain_events.PHASE_COMPLETED,
                dict(
                    base,
                    actor=actor,
                    qualified_teams=list(advancement.qualified_teams),
                    eliminated_teams=list(advancement.eliminated_teams),
                    is_final_phase=advancement.is_final_phase,
                ),
            )
        ]
        pending.extend((domain_events.TEAM_QUALIFIED, dict(base, team_id=t)) for t in advancement.qualified_teams)
        pending.extend((domain_events.TEAM_ELIMINATED, dict(base, team_id=t)) for t in advancement.eliminated_teams)
        return pending

    def on_match_finalized(self, db: Session, match_id: int, actor: Optional[str] = None) -> Match:
        """Finalize a match and bring its phase snapshot up to date."""
        match = self.match_service.finalize_match(db, match_id, actor)
        self.phase_standings.recalculate(db, match.tournament_id, match.phase, CalculatedBy.AUTOMATIC)
        return match
