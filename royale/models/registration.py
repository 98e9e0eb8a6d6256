from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from royale.core.database import Base, utcnow


class RegistrationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CHECKED_IN = "checked_in"
    DISQUALIFIED = "disqualified"
    WITHDRAWN = "withdrawn"


class QualifiedThrough(str, Enum):
    INVITE = "invite"
    OPEN_REGISTRATION = "open_registration"
    QUALIFIER = "qualifier"
    WILDCARD = "wildcard"
    DIRECT_SEED = "direct_seed"


ACTIVE_STATUSES = (RegistrationStatus.APPROVED.value, RegistrationStatus.CHECKED_IN.value)


class Registration(Base):
    __tablename__ = "registrations"
    __table_args__ = (UniqueConstraint("tournament_id", "team_id", name="uq_registration_team"),)

    id = Column(Integer, primary_key=True, index=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id"), nullable=False, index=True)
    team_id = Column(String, nullable=False, index=True)
    status = Column(String, default=RegistrationStatus.PENDING.value, nullable=False, index=True)
    qualified_through = Column(String, default=QualifiedThrough.OPEN_REGISTRATION.value)

    # Where the team currently plays
    phase = Column(String, nullable=True, index=True)
    group_name = Column(String, nullable=True)

    # Aggregates across every propagated match
    total_points = Column(Integer, default=0, nullable=False)
    total_kills = Column(Integer, default=0, nullable=False)
    total_chicken_dinners = Column(Integer, default=0, nullable=False)
    matches_played = Column(Integer, default=0, nullable=False)
    placement_total = Column(Integer, default=0, nullable=False)
    # Matches that recorded a finishing position; the divisor for average_position
    placed_matches = Column(Integer, default=0, nullable=False)

    final_position = Column(Integer, nullable=True)
    seed_number = Column(Integer, nullable=True)
    roster = Column(JSON, nullable=True)
    notes = Column(String, nullable=True)

    registered_at = Column(DateTime, default=utcnow, nullable=False)
    approved_at = Column(DateTime, nullable=True)
    approved_by = Column(String, nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejected_by = Column(String, nullable=True)
    rejection_reason = Column(String, nullable=True)
    checked_in_at = Column(DateTime, nullable=True)
    checked_in_by = Column(String, nullable=True)
    disqualified_at = Column(DateTime, nullable=True)
    disqualified_by = Column(String, nullable=True)
    disqualification_reason = Column(String, nullable=True)
    withdrawn_at = Column(DateTime, nullable=True)
    withdrawn_by = Column(String, nullable=True)
    withdrawal_reason = Column(String, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    version = Column(Integer, nullable=False)

    tournament = relationship("Tournament", back_populates="registrations")
    contributions = relationship("StatContribution", back_populates="registration")

    # Every UPDATE is guarded by the version it was read at
    __mapper_args__ = {"version_id_col": version}

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def average_points_per_match(self) -> float:
        if not self.matches_played:
            return 0.0
        return round(self.total_points / self.matches_played, 2)

    @property
    def average_position(self) -> Optional[float]:
        if not self.placed_matches:
            return None
        return round(self.placement_total / self.placed_matches, 2)


class StatContribution(Base):
    """What one match has added to one registration's aggregates.

    Propagation compares the match participant against this row and applies
    only the difference, so re-running it never double counts.
    """

    __tablename__ = "stat_contributions"
    __table_args__ = (UniqueConstraint("match_id", "team_id", name="uq_contribution"),)

    id = Column(Integer, primary_key=True, index=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False, index=True)
    registration_id = Column(Integer, ForeignKey("registrations.id"), nullable=False, index=True)
    team_id = Column(String, nullable=False)
    phase = Column(String, nullable=False)
    points = Column(Integer, default=0, nullable=False)
    kills = Column(Integer, default=0, nullable=False)
    position = Column(Integer, nullable=True)
    chicken_dinner = Column(Boolean, default=False, nullable=False)
    applied_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    registration = relationship("Registration", back_populates="contributions")
