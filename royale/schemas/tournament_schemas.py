from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from royale.models.tournament import PhaseStatus, PhaseType, QualificationSource, TournamentStatus


class QualificationRuleCreate(BaseModel):
    slots: int = Field(..., ge=0, description="Teams that advance (per group for per_group rules)")
    source: QualificationSource = QualificationSource.OVERALL
    next_phase: str


class PhaseCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: PhaseType = PhaseType.QUALIFIERS
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    slots: Optional[int] = Field(None, ge=1)
    groups: List[str] = Field(default_factory=list)
    qualification_rules: List[QualificationRuleCreate] = Field(default_factory=list)

    @field_validator("groups")
    @classmethod
    def unique_groups(cls, v):
        if len(set(v)) != len(v):
            raise ValueError("Group names must be unique within a phase")
        return v


class TournamentCreate(BaseModel):
    name: str = Field(..., min_length=3, max_length=150)
    slots_total: int = Field(..., ge=2)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: TournamentStatus = TournamentStatus.REGISTRATION_OPEN
    phases: List[PhaseCreate] = Field(default_factory=list)

    @field_validator("end_date")
    @classmethod
    def end_date_after_start_date(cls, v, info):
        start = info.data.get("start_date")
        if v and start and v < start:
            raise ValueError("End date must be after start date")
        return v


class QualificationRuleRead(BaseModel):
    slots: int
    source: str
    next_phase: str

    class Config:
        from_attributes = True


class PhaseTeamRead(BaseModel):
    team_id: str
    group_name: Optional[str] = None

    class Config:
        from_attributes = True


class PhaseRead(BaseModel):
    id: int
    name: str
    order_index: int
    type: str
    status: PhaseStatus
    slots: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    teams: List[PhaseTeamRead] = []
    qualification_rules: List[QualificationRuleRead] = []

    class Config:
        from_attributes = True


class TournamentRead(BaseModel):
    id: int
    name: str
    status: TournamentStatus
    slots_total: int
    registered_count: int
    participating_teams_count: int
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    final_standings: Optional[list] = None
    phases: List[PhaseRead] = []

    class Config:
        from_attributes = True


class AdvancementDetail(BaseModel):
    rule: str
    next_phase: str
    teams_qualified: int


class PhaseAdvancement(BaseModel):
    """Outcome of completing a phase."""

    tournament_id: int
    phase: str
    qualified_teams: List[str] = Field(default_factory=list)
    eliminated_teams: List[str] = Field(default_factory=list)
    details: List[AdvancementDetail] = Field(default_factory=list)
    is_final_phase: bool = False
    forced_recalculation: bool = False
