"""
Tournament lifecycle management
"""

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from concept_tournament.core.config import Settings, settings
from concept_tournament.core.database import SessionLocal, session_scope
from concept_tournament.core.errors import ConflictError, NotFoundError, TournamentError, ValidationError
from concept_tournament.models.idea import Idea
from concept_tournament.models.tournament import Tournament, TournamentStatus
from concept_tournament.schemas.idea_schemas import IdeaResponse, LaneHistory
from concept_tournament.schemas.review_schemas import ReviewResponse
from concept_tournament.schemas.tournament_schemas import (
    STRATEGIC_GOALS,
    LaneResultResponse,
    TournamentCreate,
    TournamentStatusResponse,
    TournamentSummary,
)
from concept_tournament.services.expert_reviewer import ExpertReviewer, HeuristicReviewer, LLMExpertReviewer
from concept_tournament.services.idea_generator import HeuristicIdeaGenerator, IdeaGenerator, LLMIdeaGenerator
from concept_tournament.services.idea_store import IdeaStore
from concept_tournament.services.lane_runner import LaneRunner
from concept_tournament.services.llm_service import LLMClient
from concept_tournament.services.progress import project_progress
from concept_tournament.services.retry import CallPolicy
from concept_tournament.services.review_aggregator import ReviewAggregator, validate_weights
from concept_tournament.services.round_coordinator import RoundCoordinator

logger = logging.getLogger(__name__)

_REGION_CODE = re.compile(r"^[A-Z]{2}$")


def build_providers(config: Settings) -> Tuple[IdeaGenerator, ExpertReviewer]:
    """LLM-backed providers when enabled, deterministic offline ones otherwise"""
    if not config.LLM_ENABLED:
        return HeuristicIdeaGenerator(), HeuristicReviewer()
    client = LLMClient(
        base_url=config.LLM_BASE_URL,
        api_type=config.LLM_API_TYPE,
        model=config.LLM_MODEL,
        api_key=config.LLM_API_KEY,
        timeout=config.LLM_TIMEOUT,
        verify_ssl=config.LLM_VERIFY_SSL,
        max_tokens=config.LLM_MAX_TOKENS
    )
    return (
        LLMIdeaGenerator(client, temperature=config.GENERATOR_TEMPERATURE),
        LLMExpertReviewer(client, temperature=config.REVIEWER_TEMPERATURE),
    )


class TournamentController:
    """Creates, runs, cancels and reports on tournaments"""

    def __init__(
        self,
        session_factory=SessionLocal,
        generator: Optional[IdeaGenerator] = None,
        reviewer: Optional[ExpertReviewer] = None,
        config: Settings = settings,
    ):
        self.session_factory = session_factory
        self.config = config
        if generator is None or reviewer is None:
            default_generator, default_reviewer = build_providers(config)
            generator = generator or default_generator
            reviewer = reviewer or default_reviewer
        self.generator = generator
        self.reviewer = reviewer
        self._tasks: Dict[int, asyncio.Task] = {}
        self._cancel_events: Dict[int, asyncio.Event] = {}

    def _get(self, db, tournament_id: int) -> Tournament:
        tournament = db.get(Tournament, tournament_id)
        if not tournament:
            raise NotFoundError(f"tournament {tournament_id} does not exist")
        return tournament

    def resolve_config(self, request: TournamentCreate) -> TournamentCreate:
        """
        Validate a creation request and fill unset engine options from settings.

        Raises:
            ValidationError: the configuration cannot run
        """
        if request.lane_count < 1:
            raise ValidationError("lane_count must be at least 1")
        if request.max_rounds < 1:
            raise ValidationError("max_rounds must be at least 1")
        if not request.strategic_goals:
            raise ValidationError("at least one strategic goal is required")
        unknown = [g.goal for g in request.strategic_goals if g.goal not in STRATEGIC_GOALS]
        if unknown:
            raise ValidationError(f"unknown strategic goal(s): {', '.join(unknown)}")
        if not request.geography:
            raise ValidationError("at least one geography is required")
        geography = sorted({code.strip().upper() for code in request.geography})
        bad_codes = [code for code in geography if not _REGION_CODE.match(code)]
        if bad_codes:
            raise ValidationError(f"geography codes must be two letters: {', '.join(bad_codes)}")
        weights = validate_weights(request.score_weights)

        challengers = request.challengers_per_lane
        if challengers is None:
            challengers = self.config.CHALLENGERS_PER_LANE
        if challengers < 1:
            raise ValidationError("challengers_per_lane must be at least 1")

        return request.model_copy(update={
            "geography": geography,
            "score_weights": weights,
            "promotion_epsilon": (
                self.config.PROMOTION_EPSILON if request.promotion_epsilon is None else request.promotion_epsilon
            ),
            "early_stop": self.config.EARLY_STOP_ENABLED if request.early_stop is None else request.early_stop,
            "challengers_per_lane": challengers,
        })

    async def create(self, request: TournamentCreate) -> int:
        """Store a validated tournament in the created state and return its id"""
        config = self.resolve_config(request)
        with session_scope(self.session_factory) as db:
            tournament = Tournament(
                drug_name=config.drug_name,
                indication=config.indication,
                study_phase_pref=config.study_phase_pref,
                lane_count=config.lane_count,
                max_rounds=config.max_rounds,
                current_round=0,
                status=TournamentStatus.CREATED,
                settings=config.model_dump_json()
            )
            db.add(tournament)
            db.commit()
            logger.info(
                f"Created tournament {tournament.id} for {config.drug_name} / {config.indication}: "
                f"{config.lane_count} lanes, {config.max_rounds} rounds"
            )
            return tournament.id

    def start(self, tournament_id: int) -> asyncio.Task:
        """Run the tournament in the background on the current event loop"""
        existing = self._tasks.get(tournament_id)
        if existing and not existing.done():
            return existing
        self._cancel_events[tournament_id] = asyncio.Event()
        task = asyncio.create_task(self.run_tournament(tournament_id))
        self._tasks[tournament_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(tournament_id, None))
        return task

    def build_coordinator(
        self,
        tournament_id: int,
        config: TournamentCreate,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RoundCoordinator:
        aggregator = ReviewAggregator(
            config.score_weights,
            neutral_score=self.config.NEUTRAL_SCORE,
            scale_max=self.config.SCORE_SCALE_MAX
        )
        # One semaphore per tournament bounds its concurrent provider calls
        policy = CallPolicy.from_settings(self.config)
        lanes = [
            LaneRunner(
                tournament_id=tournament_id,
                lane_id=lane_id,
                config=config,
                generator=self.generator,
                reviewer=self.reviewer,
                aggregator=aggregator,
                panel=self.config.REVIEWER_PANEL,
                policy=policy,
                epsilon=config.promotion_epsilon,
                challengers_per_lane=config.challengers_per_lane
            )
            for lane_id in range(config.lane_count)
        ]
        return RoundCoordinator(
            tournament_id,
            lanes,
            config.max_rounds,
            session_factory=self.session_factory,
            early_stop=bool(config.early_stop),
            cancel_event=cancel_event
        )

    async def run_tournament(self, tournament_id: int) -> Optional[str]:
        """Drive a tournament to a terminal status; failures are recorded, not raised"""
        cancel_event = self._cancel_events.setdefault(tournament_id, asyncio.Event())
        try:
            with session_scope(self.session_factory) as db:
                tournament = self._get(db, tournament_id)
                if tournament.status in TournamentStatus.TERMINAL:
                    return tournament.status
                tournament.status = TournamentStatus.RUNNING
                db.commit()
                config = TournamentCreate.model_validate_json(tournament.settings)

            logger.info(f"Tournament {tournament_id} running")
            coordinator = self.build_coordinator(tournament_id, config, cancel_event)
            return await coordinator.run()
        except TournamentError as e:
            logger.error(f"Tournament {tournament_id} failed: {e.message}")
            return self._mark_failed(tournament_id, e.message)
        except Exception as e:
            logger.exception(f"Tournament {tournament_id} crashed")
            return self._mark_failed(tournament_id, f"unexpected error: {e}")
        finally:
            self._cancel_events.pop(tournament_id, None)

    def _mark_failed(self, tournament_id: int, reason: str) -> Optional[str]:
        with session_scope(self.session_factory) as db:
            tournament = db.get(Tournament, tournament_id)
            if tournament is None:
                return None
            if tournament.status not in TournamentStatus.TERMINAL:
                tournament.status = TournamentStatus.FAILED
                tournament.failure_reason = reason
                tournament.completed_at = datetime.now(timezone.utc)
                db.commit()
            return tournament.status

    async def status(self, tournament_id: int) -> TournamentStatusResponse:
        with session_scope(self.session_factory) as db:
            tournament = self._get(db, tournament_id)
            ideas_count = IdeaStore(db).count_for_tournament(tournament_id)
            return TournamentStatusResponse(
                tournament_id=tournament.id,
                status=tournament.status,
                current_round=tournament.current_round,
                max_rounds=tournament.max_rounds,
                lane_count=tournament.lane_count,
                ideas_count=ideas_count,
                progress=project_progress(
                    ideas_count,
                    tournament.current_round,
                    tournament.status,
                    tournament.lane_count,
                    tournament.max_rounds
                ),
                failure_reason=tournament.failure_reason
            )

    async def ideas(self, tournament_id: int) -> List[IdeaResponse]:
        with session_scope(self.session_factory) as db:
            self._get(db, tournament_id)
            ideas = IdeaStore(db).ideas_for_tournament(tournament_id)
            return [IdeaResponse.model_validate(idea) for idea in ideas]

    async def lane_history(self, tournament_id: int, lane_id: int, through_round: Optional[int] = None) -> LaneHistory:
        """A lane's ideas up to a round, with the champion as of that round"""
        with session_scope(self.session_factory) as db:
            tournament = self._get(db, tournament_id)
            if not 0 <= lane_id < tournament.lane_count:
                raise NotFoundError(f"tournament {tournament_id} has no lane {lane_id}")
            if through_round is None:
                through_round = tournament.current_round
            if through_round < 0:
                raise ValidationError("through_round must be >= 0")

            store = IdeaStore(db)
            ideas = store.list_by_lane(tournament_id, lane_id, through_round)
            try:
                champion_id = store.champion_at(tournament_id, lane_id, through_round)
            except NotFoundError:
                champion_id = None
            return LaneHistory(
                tournament_id=tournament_id,
                lane_id=lane_id,
                through_round=through_round,
                champion_idea_id=champion_id,
                ideas=[IdeaResponse.model_validate(idea) for idea in ideas]
            )

    async def rounds(self, tournament_id: int) -> List[LaneResultResponse]:
        with session_scope(self.session_factory) as db:
            self._get(db, tournament_id)
            results = IdeaStore(db).lane_results(tournament_id)
            return [LaneResultResponse.model_validate(result) for result in results]

    async def review_for(self, tournament_id: int, idea_id: int, reviewer_id: str) -> ReviewResponse:
        with session_scope(self.session_factory) as db:
            idea = db.get(Idea, idea_id)
            if not idea or idea.tournament_id != tournament_id:
                raise NotFoundError(f"idea {idea_id} does not exist in tournament {tournament_id}")
            review = IdeaStore(db).review_for(idea_id, reviewer_id.upper())
            return ReviewResponse.model_validate(review)

    async def cancel(self, tournament_id: int) -> TournamentStatusResponse:
        """
        Request cancellation. A running tournament stops at the next round
        boundary; one that never started is cancelled immediately.

        Raises:
            ConflictError: the tournament already finished
        """
        with session_scope(self.session_factory) as db:
            tournament = self._get(db, tournament_id)
            if tournament.status in TournamentStatus.TERMINAL:
                raise ConflictError(f"tournament {tournament_id} is already {tournament.status}")

            event = self._cancel_events.get(tournament_id)
            if event is not None:
                event.set()
                logger.info(f"Cancellation requested for tournament {tournament_id}")
            else:
                tournament.status = TournamentStatus.CANCELLED
                tournament.completed_at = datetime.now(timezone.utc)
                db.commit()
                logger.info(f"Tournament {tournament_id} cancelled before it ran")
        return await self.status(tournament_id)

    async def list(self, skip: int = 0, limit: int = 20) -> List[TournamentSummary]:
        """Tournaments, newest first"""
        with session_scope(self.session_factory) as db:
            tournaments = db.query(Tournament).order_by(
                Tournament.created_at.desc(), Tournament.id.desc()
            ).offset(skip).limit(limit).all()
            return [TournamentSummary.model_validate(t) for t in tournaments]

    async def resume_interrupted(self) -> List[int]:
        """Restart tournaments left created or running by a previous process"""
        with session_scope(self.session_factory) as db:
            interrupted = [row[0] for row in db.query(Tournament.id).filter(
                Tournament.status.in_([TournamentStatus.CREATED, TournamentStatus.RUNNING])
            ).order_by(Tournament.id).all()]

        if not interrupted:
            logger.info("No interrupted tournaments to resume")
            return []

        logger.info(f"Resuming {len(interrupted)} interrupted tournament(s)")
        for tournament_id in interrupted:
            self.start(tournament_id)
        return interrupted


_controller: Optional[TournamentController] = None


def get_controller() -> TournamentController:
    """Process-wide controller, shared by the routes"""
    global _controller
    if _controller is None:
        _controller = TournamentController()
    return _controller
