from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, UniqueConstraint

from royale.core.database import Base, utcnow


class CalculatedBy(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class PhaseStanding(Base):
    """Materialized summary of one phase, rebuilt from its Standing rows."""

    __tablename__ = "phase_standings"
    __table_args__ = (UniqueConstraint("tournament_id", "phase", name="uq_phase_standing"),)

    id = Column(Integer, primary_key=True, index=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id"), nullable=False, index=True)
    phase = Column(String, nullable=False)
    status = Column(String, default="upcoming", nullable=False, index=True)

    statistics = Column(JSON, nullable=True)
    top_teams = Column(JSON, nullable=True)
    leaders = Column(JSON, nullable=True)
    group_summaries = Column(JSON, nullable=True)
    qualification = Column(JSON, nullable=True)
    trends = Column(JSON, nullable=True)

    phase_start_date = Column(DateTime, nullable=True)
    phase_end_date = Column(DateTime, nullable=True)

    # None until the first real calculation; a never-calculated snapshot is stale
    last_calculated = Column(DateTime, nullable=True, index=True)
    calculated_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
