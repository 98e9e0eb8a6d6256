# Import all models here to ensure they are registered with Base
from .tournament import Phase, PhaseGroup, PhaseTeam, QualificationRule, Tournament
from .registration import Registration, StatContribution
from .match import Match, MatchParticipant
from .standing import Standing
from .phase_standing import PhaseStanding
from .invitation import Invitation
