# Tournament engine services
from .idea_store import IdeaStore
from .review_aggregator import ReviewAggregator
from .lane_runner import LaneRunner
from .round_coordinator import RoundCoordinator
from .tournament_service import TournamentController, get_controller

__all__ = ["IdeaStore", "ReviewAggregator", "LaneRunner", "RoundCoordinator", "TournamentController", "get_controller"]
