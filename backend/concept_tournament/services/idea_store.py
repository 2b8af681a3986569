"""
Idea store: append-only idea history with one champion per lane
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from concept_tournament.core.errors import ConflictError, NotFoundError, ValidationError
from concept_tournament.models.idea import Idea
from concept_tournament.models.lane_result import LaneResult, LaneOutcome
from concept_tournament.models.review import Review
from concept_tournament.models.tournament import Tournament
from concept_tournament.schemas.review_schemas import ReviewResult

logger = logging.getLogger(__name__)


class IdeaStore:
    """
    Persistence for ideas, their reviews and per-round lane results.

    Works inside the caller's session and never commits: the round coordinator
    commits a whole round (ideas, promotions, lane results, round counter) in
    one transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def _tournament(self, tournament_id: int) -> Tournament:
        tournament = self.db.get(Tournament, tournament_id)
        if not tournament:
            raise NotFoundError(f"tournament {tournament_id} does not exist")
        return tournament

    def latest_round(self, tournament_id: int, lane_id: int) -> Optional[int]:
        return self.db.query(func.max(Idea.round)).filter(
            Idea.tournament_id == tournament_id,
            Idea.lane_id == lane_id
        ).scalar()

    def append(self, idea: Idea) -> int:
        """Store a new idea and return its id"""
        tournament = self._tournament(idea.tournament_id)

        if idea.lane_id is None or not 0 <= idea.lane_id < tournament.lane_count:
            raise ValidationError(
                f"lane {idea.lane_id} is outside 0..{tournament.lane_count - 1}"
            )
        if idea.round is None or idea.round < 0:
            raise ValidationError("idea round must be >= 0")
        if idea.round > tournament.current_round:
            raise ValidationError(
                f"idea round {idea.round} is ahead of tournament round {tournament.current_round}"
            )
        latest = self.latest_round(idea.tournament_id, idea.lane_id)
        if latest is not None and idea.round < latest:
            raise ValidationError(
                f"lane {idea.lane_id} is already at round {latest}, cannot append round {idea.round}"
            )
        if idea.is_champion:
            raise ValidationError("ideas are appended as non-champions; use promote()")

        idea.is_champion = False
        self.db.add(idea)
        self.db.flush()
        return idea.id

    def promote(
        self,
        tournament_id: int,
        lane_id: int,
        new_champion_id: int,
        expected_champion_id: Optional[int] = None,
    ) -> Idea:
        """
        Swap the lane's champion marker.

        expected_champion_id is the champion the caller decided against; None
        means the lane must not have a champion yet (seeding).

        Raises:
            ConflictError: the lane's champion is not the expected one
        """
        challenger = self.db.get(Idea, new_champion_id)
        if not challenger or challenger.tournament_id != tournament_id or challenger.lane_id != lane_id:
            raise ValidationError(f"idea {new_champion_id} does not belong to lane {lane_id}")
        if new_champion_id == expected_champion_id:
            raise ValidationError(f"idea {new_champion_id} is already the expected champion")

        lane_filter = (Idea.tournament_id == tournament_id, Idea.lane_id == lane_id)
        if expected_champion_id is None:
            held = self.db.query(Idea.id).filter(*lane_filter, Idea.is_champion.is_(True)).first()
            if held:
                raise ConflictError(f"lane {lane_id} already has champion {held[0]}")
        else:
            # Compare-and-swap on the old champion's marker
            cleared = self.db.execute(
                update(Idea)
                .where(*lane_filter, Idea.id == expected_champion_id, Idea.is_champion.is_(True))
                .values(is_champion=False)
                .execution_options(synchronize_session="fetch")
            )
            if cleared.rowcount != 1:
                raise ConflictError(
                    f"lane {lane_id} champion changed, expected idea {expected_champion_id}"
                )

        challenger.is_champion = True
        self.db.flush()
        return challenger

    def current_champion(self, tournament_id: int, lane_id: int) -> Idea:
        champion = self.db.query(Idea).filter(
            Idea.tournament_id == tournament_id,
            Idea.lane_id == lane_id,
            Idea.is_champion.is_(True)
        ).first()
        if not champion:
            raise NotFoundError(f"lane {lane_id} of tournament {tournament_id} has no champion yet")
        return champion

    def champions(self, tournament_id: int) -> Dict[int, Idea]:
        rows = self.db.query(Idea).filter(
            Idea.tournament_id == tournament_id,
            Idea.is_champion.is_(True)
        ).all()
        return {idea.lane_id: idea for idea in rows}

    def list_by_lane(self, tournament_id: int, lane_id: int, through_round: Optional[int] = None) -> List[Idea]:
        """Lane ideas with round <= through_round, oldest first"""
        query = self.db.query(Idea).filter(
            Idea.tournament_id == tournament_id,
            Idea.lane_id == lane_id
        )
        if through_round is not None:
            query = query.filter(Idea.round <= through_round)
        return query.order_by(Idea.round, Idea.id).all()

    def champion_at(self, tournament_id: int, lane_id: int, round_number: int) -> int:
        """Id of the lane's champion once round_number had been decided"""
        result = self.db.query(LaneResult).filter(
            LaneResult.tournament_id == tournament_id,
            LaneResult.lane_id == lane_id,
            LaneResult.round_number <= round_number
        ).order_by(LaneResult.round_number.desc()).first()
        if not result:
            raise NotFoundError(f"lane {lane_id} had no champion at round {round_number}")
        return result.champion_idea_id

    def ideas_for_tournament(self, tournament_id: int) -> List[Idea]:
        return self.db.query(Idea).filter(
            Idea.tournament_id == tournament_id
        ).order_by(Idea.round, Idea.lane_id, Idea.id).all()

    def count_for_tournament(self, tournament_id: int) -> int:
        return self.db.query(func.count(Idea.id)).filter(
            Idea.tournament_id == tournament_id
        ).scalar() or 0

    # Reviews

    def add_reviews(self, idea_id: int, reviews: List[ReviewResult]) -> None:
        for result in reviews:
            self.db.add(Review(
                idea_id=idea_id,
                reviewer_id=result.reviewer_id,
                score=result.score,
                dimensions=list(result.dimensions),
                strengths=list(result.strengths),
                weaknesses=list(result.weaknesses),
                additional_metrics=dict(result.additional_metrics)
            ))
        self.db.flush()

    def reviews_for_idea(self, idea_id: int) -> List[Review]:
        return self.db.query(Review).filter(Review.idea_id == idea_id).order_by(Review.id).all()

    def review_for(self, idea_id: int, reviewer_id: str) -> Review:
        review = self.db.query(Review).filter(
            Review.idea_id == idea_id,
            Review.reviewer_id == reviewer_id
        ).order_by(Review.id.desc()).first()
        if not review:
            raise NotFoundError(f"no {reviewer_id} review stored for idea {idea_id}")
        return review

    # Lane results

    def record_lane_result(
        self,
        tournament_id: int,
        round_number: int,
        lane_id: int,
        outcome: str,
        champion_idea_id: int,
        challenger_idea_id: Optional[int] = None,
        score_change: Optional[float] = None,
        detail: Optional[str] = None,
    ) -> LaneResult:
        result = LaneResult(
            tournament_id=tournament_id,
            round_number=round_number,
            lane_id=lane_id,
            outcome=outcome,
            champion_idea_id=champion_idea_id,
            challenger_idea_id=challenger_idea_id,
            score_change=score_change,
            detail=detail
        )
        self.db.add(result)
        self.db.flush()
        return result

    def lane_results(self, tournament_id: int) -> List[LaneResult]:
        return self.db.query(LaneResult).filter(
            LaneResult.tournament_id == tournament_id
        ).order_by(LaneResult.round_number, LaneResult.lane_id).all()

    def rounds_without_promotion(self, tournament_id: int, through_round: int) -> int:
        """Consecutive rounds, counting back from through_round, with no promotion"""
        promoted_rounds = {
            row[0] for row in self.db.query(LaneResult.round_number).filter(
                LaneResult.tournament_id == tournament_id,
                LaneResult.outcome == LaneOutcome.PROMOTED
            ).all()
        }
        quiet = 0
        for round_number in range(through_round, 0, -1):
            if round_number in promoted_rounds:
                break
            quiet += 1
        return quiet
