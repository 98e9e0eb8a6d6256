from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from royale.core.database import Base, utcnow


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


class Invitation(Base):
    __tablename__ = "invitations"

    id = Column(Integer, primary_key=True, index=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id"), nullable=False, index=True)
    team_id = Column(String, nullable=False, index=True)
    phase = Column(String, nullable=True)
    group_name = Column(String, nullable=True)
    invited_by = Column(String, nullable=False)
    message = Column(String, nullable=True)
    status = Column(String, default=InvitationStatus.PENDING.value, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    responded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
