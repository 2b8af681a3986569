"""
Lane runner: one lane's seed, challenge, review and promotion cycle
"""

import asyncio
import enum
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from concept_tournament.core.errors import ConflictError, ProviderError
from concept_tournament.core.utils import idea_key, lane_label
from concept_tournament.models.idea import Idea
from concept_tournament.models.lane_result import LaneOutcome
from concept_tournament.models.review import Review
from concept_tournament.schemas.idea_schemas import GenerationContext, GoalWeight, IdeaDraft
from concept_tournament.schemas.review_schemas import ReviewResult, ScoreCard
from concept_tournament.schemas.tournament_schemas import TournamentCreate
from concept_tournament.services.expert_reviewer import ExpertReviewer
from concept_tournament.services.idea_generator import IdeaGenerator
from concept_tournament.services.idea_store import IdeaStore
from concept_tournament.services.retry import CallPolicy, call_with_retry
from concept_tournament.services.review_aggregator import ReviewAggregator

logger = logging.getLogger(__name__)


class LaneState(str, enum.Enum):
    SEEDING = "seeding"
    AWAITING_CHALLENGER = "awaiting_challenger"
    AWAITING_REVIEW = "awaiting_review"
    DECIDING = "deciding"
    IDLE = "idle"
    TERMINATED = "terminated"


@dataclass
class ReviewedCandidate:
    draft: IdeaDraft
    reviews: List[ReviewResult] = field(default_factory=list)
    scores: Optional[ScoreCard] = None  # None when every review was lost


@dataclass
class LanePreparation:
    """A lane's round worked out in memory, not yet written to the store"""
    lane_id: int
    round: int
    candidates: List[ReviewedCandidate] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.error is not None or all(c.scores is None for c in self.candidates)

    def best(self) -> Optional[ReviewedCandidate]:
        """Highest overall among reviewed candidates, feasibility breaking ties"""
        reviewed = [c for c in self.candidates if c.scores is not None]
        if not reviewed:
            return None
        return max(reviewed, key=lambda c: (c.scores.overall, c.scores.feasibility))


@dataclass
class LaneDecision:
    lane_id: int
    round: int
    outcome: str
    champion_idea_id: int
    challenger_idea_id: Optional[int] = None
    score_change: Optional[float] = None
    detail: Optional[str] = None

    @property
    def promoted(self) -> bool:
        return self.outcome == LaneOutcome.PROMOTED


def draft_from_idea(idea: Idea) -> IdeaDraft:
    """Rebuild the provider-facing draft of a stored idea"""
    return IdeaDraft.model_validate({
        "title": idea.title,
        "study_phase": idea.study_phase,
        "target_subpopulation": idea.target_subpopulation,
        "comparator_drugs": idea.comparator_drugs or [],
        "knowledge_gap_addressed": idea.knowledge_gap_addressed,
        "innovation_justification": idea.innovation_justification,
        "improvement_rationale": idea.improvement_rationale,
        "key_improvements": idea.key_improvements or [],
        "pico": idea.pico or {},
        "swot": idea.swot or {},
        "feasibility_data": idea.feasibility_data or {},
        "evidence_sources": idea.evidence_sources or [],
    })


def review_result_from_row(review: Review) -> ReviewResult:
    return ReviewResult(
        reviewer_id=review.reviewer_id,
        score=review.score,
        dimensions=review.dimensions or [],
        strengths=review.strengths or [],
        weaknesses=review.weaknesses or [],
        additional_metrics=review.additional_metrics or {}
    )


class LaneRunner:
    """
    Drives one lane of a tournament.

    Provider work (generation and review) happens in seed() and
    prepare_round() without touching the database. commit_seed() and decide()
    then write the outcome through an IdeaStore inside the coordinator's
    round transaction.
    """

    def __init__(
        self,
        tournament_id: int,
        lane_id: int,
        config: TournamentCreate,
        generator: IdeaGenerator,
        reviewer: ExpertReviewer,
        aggregator: ReviewAggregator,
        panel: Dict[str, List[str]],
        policy: CallPolicy,
        epsilon: float,
        challengers_per_lane: int = 1,
    ):
        self.tournament_id = tournament_id
        self.lane_id = lane_id
        self.config = config
        self.generator = generator
        self.reviewer = reviewer
        self.aggregator = aggregator
        self.panel = panel
        self.policy = policy
        self.epsilon = epsilon
        self.challengers_per_lane = max(1, challengers_per_lane)
        self.label = lane_label(lane_id)
        self.state = LaneState.SEEDING

    def _context(
        self,
        round_number: int,
        champion: Optional[IdeaDraft] = None,
        champion_reviews: Sequence[ReviewResult] = (),
    ) -> GenerationContext:
        config = self.config
        return GenerationContext(
            drug_name=config.drug_name,
            indication=config.indication,
            strategic_goals=[GoalWeight(goal=g.goal, weight=g.weight) for g in config.strategic_goals],
            geography=list(config.geography),
            study_phase=config.study_phase_pref,
            lane_id=self.lane_id,
            round=round_number,
            seed_idea=champion,
            seed_reviews=list(champion_reviews),
            budget_ceiling_eur=config.budget_ceiling_eur,
            timeline_ceiling_months=config.timeline_ceiling_months,
            additional_context=config.additional_context
        )

    async def _generate(self, context: GenerationContext) -> IdeaDraft:
        return await call_with_retry(
            lambda: self.generator.generate(context),
            self.policy,
            label=f"lane {self.label} round {context.round} generation"
        )

    async def _checked_review(self, draft: IdeaDraft, reviewer_id: str) -> ReviewResult:
        try:
            result = await self.reviewer.review(draft, reviewer_id)
        except PydanticValidationError as e:
            raise ProviderError(f"{reviewer_id} returned a malformed review: {e.errors()[:3]}")
        if not math.isfinite(result.score):
            raise ProviderError(f"{reviewer_id} returned a non-finite score: {result.score}")
        return result

    async def _review_one(self, draft: IdeaDraft, reviewer_id: str, round_number: int) -> ReviewResult:
        result = await call_with_retry(
            lambda: self._checked_review(draft, reviewer_id),
            self.policy,
            label=f"lane {self.label} round {round_number} {reviewer_id} review"
        )
        # Dimension tags come from the panel configuration, not the provider
        return result.model_copy(update={
            "reviewer_id": reviewer_id,
            "dimensions": list(self.panel[reviewer_id]),
        })

    async def _review(self, draft: IdeaDraft, round_number: int) -> ReviewedCandidate:
        """Send a draft to the whole panel in parallel, tolerating lost reviews"""
        reviewer_ids = list(self.panel)
        outcomes = await asyncio.gather(
            *(self._review_one(draft, rid, round_number) for rid in reviewer_ids),
            return_exceptions=True
        )
        reviews = []
        for reviewer_id, outcome in zip(reviewer_ids, outcomes):
            if isinstance(outcome, ProviderError):
                logger.warning(f"Lane {self.label} round {round_number}: {reviewer_id} review lost: {outcome.message}")
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                reviews.append(outcome)

        scores = self.aggregator.aggregate(reviews) if reviews else None
        return ReviewedCandidate(draft=draft, reviews=reviews, scores=scores)

    async def seed(self) -> LanePreparation:
        """
        Generate and review the round-0 idea.

        Raises:
            ProviderError: generation failed after retries
        """
        self.state = LaneState.SEEDING
        draft = await self._generate(self._context(0))
        candidate = await self._review(draft, 0)
        if candidate.scores is None:
            logger.warning(f"Lane {self.label}: every seed review lost, scoring at neutral")
            candidate.scores = self.aggregator.aggregate([])
        return LanePreparation(lane_id=self.lane_id, round=0, candidates=[candidate])

    async def prepare_round(
        self,
        round_number: int,
        champion: IdeaDraft,
        champion_reviews: Sequence[ReviewResult],
    ) -> LanePreparation:
        """Generate and review this round's challengers. Provider failures degrade the lane."""
        self.state = LaneState.AWAITING_CHALLENGER
        context = self._context(round_number, champion, champion_reviews)
        outcomes = await asyncio.gather(
            *(self._generate(context) for _ in range(self.challengers_per_lane)),
            return_exceptions=True
        )
        drafts, errors = [], []
        for outcome in outcomes:
            if isinstance(outcome, ProviderError):
                errors.append(outcome.message)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                drafts.append(outcome)

        if not drafts:
            logger.warning(f"Lane {self.label} round {round_number}: no challenger generated")
            return LanePreparation(
                lane_id=self.lane_id,
                round=round_number,
                error=f"challenger generation failed: {errors[0]}"
            )

        self.state = LaneState.AWAITING_REVIEW
        candidates = await asyncio.gather(*(self._review(d, round_number) for d in drafts))
        return LanePreparation(lane_id=self.lane_id, round=round_number, candidates=list(candidates))

    def _idea_row(
        self,
        candidate: ReviewedCandidate,
        round_number: int,
        parent_id: Optional[int],
        variant: int,
        score_change: Optional[float],
    ) -> Idea:
        draft, scores = candidate.draft, candidate.scores
        return Idea(
            tournament_id=self.tournament_id,
            lane_id=self.lane_id,
            round=round_number,
            idea_key=idea_key(self.lane_id, round_number, variant),
            parent_idea_id=parent_id,
            is_champion=False,
            title=draft.title,
            study_phase=draft.study_phase,
            target_subpopulation=draft.target_subpopulation,
            comparator_drugs=list(draft.comparator_drugs),
            knowledge_gap_addressed=draft.knowledge_gap_addressed,
            innovation_justification=draft.innovation_justification,
            improvement_rationale=draft.improvement_rationale,
            key_improvements=list(draft.key_improvements),
            pico=draft.pico.model_dump(),
            swot=draft.swot.model_dump(),
            feasibility_data=draft.feasibility_data.model_dump(),
            evidence_sources=[source.model_dump() for source in draft.evidence_sources],
            scientific_validity=scores.scientific_validity if scores else None,
            clinical_impact=scores.clinical_impact if scores else None,
            commercial_value=scores.commercial_value if scores else None,
            feasibility=scores.feasibility if scores else None,
            overall_score=scores.overall if scores else None,
            score_change=score_change
        )

    def _append(self, store: IdeaStore, idea: Idea, reviews: List[ReviewResult]) -> int:
        idea_id = store.append(idea)
        store.add_reviews(idea_id, reviews)
        return idea_id

    def commit_seed(self, store: IdeaStore, prep: LanePreparation) -> LaneDecision:
        candidate = prep.candidates[0]
        idea_id = self._append(store, self._idea_row(candidate, 0, None, 0, None), candidate.reviews)
        store.promote(self.tournament_id, self.lane_id, idea_id, expected_champion_id=None)
        store.record_lane_result(self.tournament_id, 0, self.lane_id, LaneOutcome.SEEDED, idea_id)
        self.state = LaneState.IDLE
        logger.info(f"Lane {self.label} seeded with idea {idea_id} (overall {candidate.scores.overall:.2f})")
        return LaneDecision(self.lane_id, 0, LaneOutcome.SEEDED, idea_id)

    @staticmethod
    def should_promote(
        challenger: ScoreCard,
        champion_overall: Optional[float],
        champion_feasibility: Optional[float],
        epsilon: float,
    ) -> bool:
        """Higher overall wins; within epsilon, higher feasibility wins"""
        if champion_overall is None:
            return True
        diff = challenger.overall - champion_overall
        if diff > 0:
            return True
        if abs(diff) <= epsilon:
            return challenger.feasibility > (champion_feasibility or 0.0)
        return False

    def decide(self, store: IdeaStore, prep: LanePreparation) -> LaneDecision:
        """Record the round's challengers and promote the best one if it beats the champion"""
        self.state = LaneState.DECIDING
        round_number = prep.round
        champion = store.current_champion(self.tournament_id, self.lane_id)

        if prep.error is not None:
            store.record_lane_result(
                self.tournament_id, round_number, self.lane_id, LaneOutcome.DEGRADED,
                champion.id, detail=prep.error
            )
            self.state = LaneState.IDLE
            return LaneDecision(self.lane_id, round_number, LaneOutcome.DEGRADED, champion.id, detail=prep.error)

        best = prep.best()
        multiple = len(prep.candidates) > 1
        best_id = None
        first_id = None
        for index, candidate in enumerate(prep.candidates):
            score_change = None
            if candidate.scores is not None and champion.overall_score is not None:
                score_change = candidate.scores.overall - champion.overall_score
            row = self._idea_row(candidate, round_number, champion.id, index + 1 if multiple else 0, score_change)
            idea_id = self._append(store, row, candidate.reviews)
            if first_id is None:
                first_id = idea_id
            if candidate is best:
                best_id = idea_id

        if best is None:
            detail = "no reviews returned for any challenger"
            logger.warning(f"Lane {self.label} round {round_number} degraded: {detail}")
            store.record_lane_result(
                self.tournament_id, round_number, self.lane_id, LaneOutcome.DEGRADED,
                champion.id, challenger_idea_id=first_id, detail=detail
            )
            self.state = LaneState.IDLE
            return LaneDecision(
                self.lane_id, round_number, LaneOutcome.DEGRADED, champion.id,
                challenger_idea_id=first_id, detail=detail
            )

        outcome = LaneOutcome.RETAINED
        champion_id = champion.id
        for attempt in range(2):
            score_change = (
                best.scores.overall - champion.overall_score if champion.overall_score is not None else None
            )
            if not self.should_promote(best.scores, champion.overall_score, champion.feasibility, self.epsilon):
                break
            try:
                store.promote(self.tournament_id, self.lane_id, best_id, expected_champion_id=champion.id)
                outcome, champion_id = LaneOutcome.PROMOTED, best_id
                break
            except ConflictError:
                if attempt:
                    raise
                logger.warning(f"Lane {self.label} round {round_number}: champion changed, deciding again")
                store.db.expire_all()
                champion = store.current_champion(self.tournament_id, self.lane_id)
                champion_id = champion.id
                # Challenger is now measured against the new predecessor
                challenger = store.db.get(Idea, best_id)
                challenger.parent_idea_id = champion.id
                challenger.score_change = (
                    best.scores.overall - champion.overall_score if champion.overall_score is not None else None
                )
                store.db.flush()

        store.record_lane_result(
            self.tournament_id, round_number, self.lane_id, outcome,
            champion_id, challenger_idea_id=best_id, score_change=score_change
        )
        self.state = LaneState.IDLE
        change = f"{score_change:+.2f}" if score_change is not None else "n/a"
        logger.info(
            f"Lane {self.label} round {round_number}: {outcome} "
            f"(challenger {best.scores.overall:.2f}, change {change})"
        )
        return LaneDecision(
            self.lane_id, round_number, outcome, champion_id,
            challenger_idea_id=best_id, score_change=score_change
        )
