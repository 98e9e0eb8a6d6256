from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from royale.core.database import Base, utcnow


class MatchStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Match(Base):
    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, index=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id"), nullable=False, index=True)
    phase = Column(String, nullable=False, index=True)
    group_name = Column(String, nullable=True)
    match_number = Column(Integer, nullable=True)
    status = Column(String, default=MatchStatus.SCHEDULED.value, nullable=False)
    scheduled_at = Column(DateTime, nullable=True)
    results_updated_at = Column(DateTime, nullable=True)
    results_updated_by = Column(String, nullable=True)
    finalized_at = Column(DateTime, nullable=True)
    finalized_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    participants = relationship(
        "MatchParticipant",
        back_populates="match",
        order_by="MatchParticipant.id",
        cascade="all, delete-orphan",
    )

    def participant_for(self, team_id: str):
        return next((p for p in self.participants if p.team_id == team_id), None)


class MatchParticipant(Base):
    __tablename__ = "match_participants"
    __table_args__ = (UniqueConstraint("match_id", "team_id", name="uq_match_team"),)

    id = Column(Integer, primary_key=True, index=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False, index=True)
    team_id = Column(String, nullable=False)
    position = Column(Integer, nullable=True)
    kills = Column(Integer, nullable=True)
    points = Column(Integer, nullable=True)  # None until results are entered
    chicken_dinner = Column(Boolean, default=False, nullable=False)

    match = relationship("Match", back_populates="participants")

    @property
    def has_result(self) -> bool:
        return self.points is not None
