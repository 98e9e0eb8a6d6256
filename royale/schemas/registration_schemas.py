from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from royale.models.registration import QualifiedThrough, RegistrationStatus


class RosterRole(str, Enum):
    IGL = "IGL"
    FRAGGER = "Fragger"
    SUPPORT = "Support"
    SNIPER = "Sniper"
    SUBSTITUTE = "Substitute"


class RosterEntry(BaseModel):
    player_id: str
    role: Optional[RosterRole] = None
    in_game_name: Optional[str] = None


class RegistrationCreate(BaseModel):
    team_id: str = Field(..., min_length=1)
    qualified_through: QualifiedThrough = QualifiedThrough.OPEN_REGISTRATION
    roster: List[RosterEntry] = Field(default_factory=list)
    seed_number: Optional[int] = Field(None, ge=1)
    notes: Optional[str] = None


class TransitionRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class PhaseAssignment(BaseModel):
    phase: str
    group: Optional[str] = None


class RegistrationRead(BaseModel):
    id: int
    tournament_id: int
    team_id: str
    status: RegistrationStatus
    qualified_through: Optional[str] = None
    phase: Optional[str] = None
    group_name: Optional[str] = None
    total_points: int
    total_kills: int
    total_chicken_dinners: int
    matches_played: int
    average_position: Optional[float] = None
    final_position: Optional[int] = None
    seed_number: Optional[int] = None
    roster: Optional[list] = None
    registered_at: datetime
    approved_by: Optional[str] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    withdrawal_reason: Optional[str] = None
    disqualification_reason: Optional[str] = None

    class Config:
        from_attributes = True


class RegistrationStats(BaseModel):
    total: int = 0
    counts: Dict[str, int] = Field(default_factory=dict)
