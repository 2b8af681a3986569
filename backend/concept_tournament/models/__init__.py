# Database models
from .tournament import Tournament, TournamentStatus
from .idea import Idea
from .review import Review
from .lane_result import LaneResult, LaneOutcome

__all__ = ["Tournament", "TournamentStatus", "Idea", "Review", "LaneResult", "LaneOutcome"]
