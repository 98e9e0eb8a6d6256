from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class MatchCreate(BaseModel):
    phase: str
    team_ids: List[str] = Field(..., min_length=1)
    group: Optional[str] = None
    match_number: Optional[int] = Field(None, ge=1)
    scheduled_at: Optional[datetime] = None


class TeamResult(BaseModel):
    team_id: str
    position: Optional[int] = Field(None, ge=1)
    kills: int = Field(0, ge=0)


class MatchResultsSubmit(BaseModel):
    results: List[TeamResult] = Field(..., min_length=1)

    @field_validator("results")
    @classmethod
    def unique_teams(cls, v):
        team_ids = [r.team_id for r in v]
        if len(set(team_ids)) != len(team_ids):
            raise ValueError("Each team may appear only once in a result submission")
        return v


class ParticipantRead(BaseModel):
    team_id: str
    position: Optional[int] = None
    kills: Optional[int] = None
    points: Optional[int] = None
    chicken_dinner: bool = False

    class Config:
        from_attributes = True


class MatchRead(BaseModel):
    id: int
    tournament_id: int
    phase: str
    group_name: Optional[str] = None
    match_number: Optional[int] = None
    status: str
    scheduled_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None
    participants: List[ParticipantRead] = []

    class Config:
        from_attributes = True


class StatChange(BaseModel):
    """One propagation step applied to a registration."""

    team_id: str
    points_delta: int
    kills_delta: int
    chicken_dinner_delta: int
    new_match: bool
