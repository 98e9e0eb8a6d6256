from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class StandingRead(BaseModel):
    position: Optional[int] = None
    team_id: str
    group_name: Optional[str] = None
    points: int
    kills: int
    chicken_dinners: int
    matches_played: int
    average_position: Optional[float] = None
    is_qualified: bool = False
    is_eliminated: bool = False

    class Config:
        from_attributes = True


class PhaseStandingRead(BaseModel):
    tournament_id: int
    phase: str
    status: str
    statistics: Optional[dict] = None
    top_teams: Optional[list] = None
    leaders: Optional[dict] = None
    group_summaries: Optional[list] = None
    qualification: Optional[dict] = None
    trends: Optional[dict] = None
    last_calculated: Optional[datetime] = None
    calculated_by: Optional[str] = None
    is_stale: bool = False

    class Config:
        from_attributes = True


class SweepReport(BaseModel):
    """Result of one staleness sweep; failures are per phase, never global."""

    recalculated: List[int] = Field(default_factory=list)
    failed: List[int] = Field(default_factory=list)
    errors: Dict[int, str] = Field(default_factory=dict)


class PhaseProgress(BaseModel):
    name: str
    status: str
    teams: int = 0
    matches: int = 0


class TournamentProgress(BaseModel):
    total: int
    completed: int
    in_progress: int
    upcoming: int
    current_phase: Optional[str] = None
    phases: List[PhaseProgress] = Field(default_factory=list)
