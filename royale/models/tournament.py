from enum import Enum
from typing import List, Optional, Set

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, UniqueConstraint
from sqlalchemy.orm import relationship

from royale.core.database import Base, utcnow


class TournamentStatus(str, Enum):
    ANNOUNCED = "announced"
    REGISTRATION_OPEN = "registration_open"
    REGISTRATION_CLOSED = "registration_closed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PhaseType(str, Enum):
    QUALIFIERS = "qualifiers"
    FINAL_STAGE = "final_stage"


class PhaseStatus(str, Enum):
    UPCOMING = "upcoming"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class QualificationSource(str, Enum):
    OVERALL = "overall"
    PER_GROUP = "per_group"


class Tournament(Base):
    __tablename__ = "tournaments"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    status = Column(String, default=TournamentStatus.ANNOUNCED.value, nullable=False)
    slots_total = Column(Integer, nullable=False)
    registered_count = Column(Integer, default=0, nullable=False)  # pending + everything after
    participating_teams_count = Column(Integer, default=0, nullable=False)  # approved + checked_in
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    final_standings = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    completed_at = Column(DateTime, nullable=True)

    phases = relationship(
        "Phase",
        back_populates="tournament",
        order_by="Phase.order_index",
        cascade="all, delete-orphan",
    )
    registrations = relationship("Registration", back_populates="tournament")

    def get_phase(self, name: str) -> Optional["Phase"]:
        return next((p for p in self.phases if p.name == name), None)

    def next_phase_after(self, phase: "Phase") -> Optional["Phase"]:
        return next((p for p in self.phases if p.order_index == phase.order_index + 1), None)


class Phase(Base):
    __tablename__ = "phases"
    __table_args__ = (
        UniqueConstraint("tournament_id", "name", name="uq_phase_name"),
        UniqueConstraint("tournament_id", "order_index", name="uq_phase_order"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    order_index = Column(Integer, nullable=False)
    type = Column(String, nullable=False)
    status = Column(String, default=PhaseStatus.UPCOMING.value, nullable=False)
    slots = Column(Integer, nullable=True)  # None means no declared capacity
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    tournament = relationship("Tournament", back_populates="phases")
    groups = relationship(
        "PhaseGroup", back_populates="phase", order_by="PhaseGroup.id", cascade="all, delete-orphan"
    )
    teams = relationship("PhaseTeam", back_populates="phase", cascade="all, delete-orphan")
    qualification_rules = relationship(
        "QualificationRule",
        back_populates="phase",
        order_by="QualificationRule.id",
        cascade="all, delete-orphan",
    )

    def team_ids(self) -> Set[str]:
        return {t.team_id for t in self.teams}

    def group_names(self) -> List[str]:
        return [g.name for g in self.groups]

    def group_team_ids(self, group_name: str) -> Set[str]:
        return {t.team_id for t in self.teams if t.group_name == group_name}


class PhaseGroup(Base):
    __tablename__ = "phase_groups"
    __table_args__ = (UniqueConstraint("phase_id", "name", name="uq_phase_group"),)

    id = Column(Integer, primary_key=True, index=True)
    phase_id = Column(Integer, ForeignKey("phases.id"), nullable=False, index=True)
    name = Column(String, nullable=False)

    phase = relationship("Phase", back_populates="groups")


class PhaseTeam(Base):
    """Membership of one team in one phase (and optionally one of its groups)."""

    __tablename__ = "phase_teams"
    __table_args__ = (UniqueConstraint("phase_id", "team_id", name="uq_phase_team"),)

    id = Column(Integer, primary_key=True, index=True)
    phase_id = Column(Integer, ForeignKey("phases.id"), nullable=False, index=True)
    team_id = Column(String, nullable=False, index=True)
    group_name = Column(String, nullable=True)
    added_at = Column(DateTime, default=utcnow)

    phase = relationship("Phase", back_populates="teams")


class QualificationRule(Base):
    __tablename__ = "qualification_rules"

    id = Column(Integer, primary_key=True, index=True)
    phase_id = Column(Integer, ForeignKey("phases.id"), nullable=False, index=True)
    slots = Column(Integer, nullable=False)
    source = Column(String, default=QualificationSource.OVERALL.value, nullable=False)
    next_phase = Column(String, nullable=False)

    phase = relationship("Phase", back_populates="qualification_rules")

    def output_count(self, group_count: int) -> int:
        """Most teams this rule can send to its next phase."""
        if self.source == QualificationSource.PER_GROUP.value:
            return self.slots * group_count
        return self.slots
