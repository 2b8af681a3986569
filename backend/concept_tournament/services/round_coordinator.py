"""
Round coordinator: moves all lanes through round boundaries together
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from concept_tournament.core.database import SessionLocal, session_scope
from concept_tournament.core.errors import NotFoundError, TournamentError
from concept_tournament.models.tournament import Tournament, TournamentStatus
from concept_tournament.schemas.idea_schemas import IdeaDraft
from concept_tournament.schemas.review_schemas import ReviewResult
from concept_tournament.services.idea_store import IdeaStore
from concept_tournament.services.lane_runner import (
    LaneDecision,
    LanePreparation,
    LaneRunner,
    LaneState,
    draft_from_idea,
    review_result_from_row,
)

logger = logging.getLogger(__name__)

# Rounds without any promotion before early stopping kicks in
QUIET_ROUNDS_TO_STOP = 2


async def _gather_all(coroutines) -> list:
    """gather() that waits for every task before re-raising the first failure"""
    results = await asyncio.gather(*coroutines, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results


class RoundCoordinator:
    """
    Runs rounds 1..max_rounds for one tournament.

    Each round: load every lane's champion, let all lanes prepare their
    challengers concurrently, then commit the whole round (ideas, reviews,
    promotions, lane results, current_round and any terminal status) in a
    single transaction. Round r+1 starts only after round r is committed.
    """

    def __init__(
        self,
        tournament_id: int,
        lanes: List[LaneRunner],
        max_rounds: int,
        session_factory=SessionLocal,
        early_stop: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.tournament_id = tournament_id
        self.lanes = lanes
        self.max_rounds = max_rounds
        self.session_factory = session_factory
        self.early_stop = early_stop
        self.cancel_event = cancel_event or asyncio.Event()

    def _cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def _finish(self, tournament: Tournament, status: str, reason: Optional[str] = None) -> None:
        tournament.status = status
        tournament.failure_reason = reason
        tournament.completed_at = datetime.now(timezone.utc)
        for lane in self.lanes:
            lane.state = LaneState.TERMINATED
        logger.info(f"Tournament {self.tournament_id} {status} at round {tournament.current_round}")

    def _mark_cancelled(self) -> str:
        with session_scope(self.session_factory) as db:
            tournament = db.get(Tournament, self.tournament_id)
            if tournament.status not in TournamentStatus.TERMINAL:
                self._finish(tournament, TournamentStatus.CANCELLED)
                db.commit()
            return tournament.status

    async def seed_lanes(self) -> None:
        """
        Seed every lane that has no champion yet, committing all seeds at once.

        Raises:
            ProviderError: a seed could not be generated
        """
        with session_scope(self.session_factory) as db:
            champions = IdeaStore(db).champions(self.tournament_id)
        missing = [lane for lane in self.lanes if lane.lane_id not in champions]
        if not missing:
            return

        logger.info(f"Tournament {self.tournament_id}: seeding {len(missing)} lane(s)")
        preparations = await _gather_all(lane.seed() for lane in missing)

        if self._cancelled():
            return
        with session_scope(self.session_factory) as db:
            store = IdeaStore(db)
            for lane, prep in zip(missing, preparations):
                lane.commit_seed(store, prep)
            db.commit()

    def _load_champions(self) -> Dict[int, Tuple[IdeaDraft, List[ReviewResult]]]:
        with session_scope(self.session_factory) as db:
            store = IdeaStore(db)
            loaded = {}
            for lane in self.lanes:
                champion = store.current_champion(self.tournament_id, lane.lane_id)
                reviews = [review_result_from_row(r) for r in store.reviews_for_idea(champion.id)]
                loaded[lane.lane_id] = (draft_from_idea(champion), reviews)
            return loaded

    def commit_round(
        self,
        round_number: int,
        preparations: Sequence[LanePreparation],
        quiet_rounds: int,
    ) -> Tuple[str, int, List[LaneDecision]]:
        """Write one round atomically and evaluate termination"""
        with session_scope(self.session_factory) as db:
            tournament = db.get(Tournament, self.tournament_id)
            if tournament is None:
                raise NotFoundError(f"tournament {self.tournament_id} does not exist")
            if tournament.status != TournamentStatus.RUNNING:
                logger.info(f"Tournament {self.tournament_id} is {tournament.status}, discarding round {round_number}")
                return tournament.status, quiet_rounds, []

            tournament.current_round = round_number
            db.flush()

            store = IdeaStore(db)
            by_lane = {prep.lane_id: prep for prep in preparations}
            decisions = [lane.decide(store, by_lane[lane.lane_id]) for lane in self.lanes]

            quiet_rounds = 0 if any(d.promoted for d in decisions) else quiet_rounds + 1
            status = TournamentStatus.RUNNING
            if all(prep.degraded for prep in preparations):
                status = TournamentStatus.FAILED
                self._finish(tournament, status, f"every lane degraded in round {round_number}")
            elif round_number >= self.max_rounds:
                status = TournamentStatus.COMPLETED
                self._finish(tournament, status)
            elif self.early_stop and quiet_rounds >= QUIET_ROUNDS_TO_STOP:
                status = TournamentStatus.COMPLETED
                logger.info(f"Tournament {self.tournament_id}: no promotion in {quiet_rounds} rounds, stopping early")
                self._finish(tournament, status)

            db.commit()

        degraded = sum(1 for prep in preparations if prep.degraded)
        promoted = sum(1 for d in decisions if d.promoted)
        logger.info(
            f"Tournament {self.tournament_id} round {round_number}/{self.max_rounds} committed: "
            f"{promoted} promoted, {degraded} degraded"
        )
        return status, quiet_rounds, decisions

    async def run(self) -> str:
        """Seed, then play rounds until a terminal status. Returns that status."""
        if self._cancelled():
            return self._mark_cancelled()

        await self.seed_lanes()
        if self._cancelled():
            return self._mark_cancelled()

        with session_scope(self.session_factory) as db:
            tournament = db.get(Tournament, self.tournament_id)
            start_round = tournament.current_round + 1
            quiet_rounds = IdeaStore(db).rounds_without_promotion(self.tournament_id, tournament.current_round)
            if start_round > self.max_rounds and tournament.status == TournamentStatus.RUNNING:
                self._finish(tournament, TournamentStatus.COMPLETED)
                db.commit()
            if tournament.status != TournamentStatus.RUNNING:
                return tournament.status

        for round_number in range(start_round, self.max_rounds + 1):
            if self._cancelled():
                return self._mark_cancelled()

            champions = self._load_champions()
            preparations = await _gather_all(
                lane.prepare_round(round_number, *champions[lane.lane_id]) for lane in self.lanes
            )

            # In-flight calls have finished; drop the round rather than commit it
            if self._cancelled():
                return self._mark_cancelled()

            status, quiet_rounds, _ = self.commit_round(round_number, preparations, quiet_rounds)
            if status != TournamentStatus.RUNNING:
                return status

        raise TournamentError(f"tournament {self.tournament_id} ran out of rounds without finishing")
