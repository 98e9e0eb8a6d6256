from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class InvitationCreate(BaseModel):
    team_id: str
    phase: Optional[str] = None
    group: Optional[str] = None
    message: Optional[str] = None
    expires_at: Optional[datetime] = None


class InvitationRead(BaseModel):
    id: int
    tournament_id: int
    team_id: str
    phase: Optional[str] = None
    group_name: Optional[str] = None
    invited_by: str
    message: Optional[str] = None
    status: str
    expires_at: datetime

    class Config:
        from_attributes = True
