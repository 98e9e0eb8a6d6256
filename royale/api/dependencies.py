from contextlib import contextmanager
from typing import Optional

from fastapi import Header, HTTPException, status

from royale.core.database import SessionLocal
from royale.core.exceptions import ConflictError, NotFoundError, RoyaleError, ValidationError
from royale.services.invitation_service import InvitationService
from royale.services.match_service import MatchService
from royale.services.phase_standing_service import PhaseStandingService
from royale.services.progression_service import ProgressionService
from royale.services.registration_service import RegistrationService


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_actor_id(x_actor_id: Optional[str] = Header(None)) -> Optional[str]:
    """Caller identity as forwarded by the gateway. Authentication happens upstream."""
    return x_actor_id


ERROR_STATUS = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ConflictError: status.HTTP_409_CONFLICT,
    NotFoundError: status.HTTP_404_NOT_FOUND,
}


@contextmanager
def service_errors():
    """Translate service exceptions into HTTP errors."""
    try:
        yield
    except RoyaleError as exc:
        status_code = next(
            (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
        raise HTTPException(status_code=status_code, detail=exc.message) from exc


# Process-wide service instances; the recalculation guard lives on phase_standing_service
phase_standing_service = PhaseStandingService()
registration_service = RegistrationService()
match_service = MatchService(registration_service=registration_service)
invitation_service = InvitationService(registration_service=registration_service)
progression_service = ProgressionService(
    registration_service=registration_service,
    match_service=match_service,
    phase_standing_service=phase_standing_service,
)
