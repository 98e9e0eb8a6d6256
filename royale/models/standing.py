from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint

from royale.core.database import Base, utcnow


class Standing(Base):
    """Ranking row of one team in one phase. Regenerated, never edited by hand."""

    __tablename__ = "standings"
    __table_args__ = (UniqueConstraint("tournament_id", "phase", "team_id", name="uq_standing"),)

    id = Column(Integer, primary_key=True, index=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id"), nullable=False, index=True)
    phase = Column(String, nullable=False, index=True)
    team_id = Column(String, nullable=False)
    registration_id = Column(Integer, ForeignKey("registrations.id"), nullable=False)
    group_name = Column(String, nullable=True, index=True)

    points = Column(Integer, default=0, nullable=False)
    kills = Column(Integer, default=0, nullable=False)
    chicken_dinners = Column(Integer, default=0, nullable=False)
    matches_played = Column(Integer, default=0, nullable=False)
    average_position = Column(Float, nullable=True)
    position = Column(Integer, nullable=True)
    registered_at = Column(DateTime, nullable=False)  # final tiebreak

    is_qualified = Column(Boolean, default=False, nullable=False)
    is_eliminated = Column(Boolean, default=False, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
