"""
Shared fixtures: in-memory database, fast settings and scripted providers.
"""

import asyncio
import re
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from concept_tournament.core.config import Settings
from concept_tournament.core.database import create_tables
from concept_tournament.core.errors import ProviderError
from concept_tournament.models.tournament import Tournament, TournamentStatus
from concept_tournament.schemas.idea_schemas import FeasibilityEstimate, GenerationContext, IdeaDraft
from concept_tournament.schemas.review_schemas import ReviewResult
from concept_tournament.schemas.tournament_schemas import TournamentCreate
from concept_tournament.services.expert_reviewer import ExpertReviewer
from concept_tournament.services.idea_generator import IdeaGenerator
from concept_tournament.services.tournament_service import TournamentController

TEST_PANEL = {
    "CLIN": ["clinical_impact", "scientific_validity"],
    "HEOR": ["commercial_value"],
    "OPS": ["feasibility"],
}

_TITLE = re.compile(r"lane-(\d+)-round-(\d+)")


def draft_title(lane_id: int, round_number: int, variant: int = 0) -> str:
    return f"lane-{lane_id}-round-{round_number}-v{variant}"


def parse_title(title: str) -> Tuple[int, int]:
    match = _TITLE.search(title)
    return int(match.group(1)), int(match.group(2))


class ScriptedGenerator(IdeaGenerator):
    """Generator whose drafts encode lane and round in the title"""

    def __init__(
        self,
        fail: Optional[Callable[[int, int], bool]] = None,
        hooks: Optional[Dict[int, Callable[[], Awaitable]]] = None,
        crash_on_round: Optional[int] = None,
    ):
        self.fail = fail or (lambda lane, rnd: False)
        self.hooks = hooks or {}
        self.crash_on_round = crash_on_round
        self.calls: List[Tuple[int, int]] = []
        self._variants: Dict[Tuple[int, int], int] = {}

    async def generate(self, context: GenerationContext) -> IdeaDraft:
        self.calls.append((context.lane_id, context.round))
        if context.round in self.hooks:
            await self.hooks[context.round]()
        if self.crash_on_round == context.round:
            raise ProcessCrash()
        if self.fail(context.lane_id, context.round):
            raise ProviderError(f"generator down for lane {context.lane_id}")
        key = (context.lane_id, context.round)
        variant = self._variants.get(key, 0)
        self._variants[key] = variant + 1
        return IdeaDraft(
            title=draft_title(context.lane_id, context.round, variant),
            feasibility_data=FeasibilityEstimate(completion_risk=0.2)
        )


class ScriptedReviewer(ExpertReviewer):
    """Reviewer scoring by (lane, round, reviewer); fails where told to"""

    def __init__(
        self,
        score: Optional[Callable[[int, int, str], float]] = None,
        fail: Optional[Callable[[int, int, str], bool]] = None,
    ):
        self.score = score or (lambda lane, rnd, rid: 2.0 + 0.5 * rnd)
        self.fail = fail or (lambda lane, rnd, rid: False)
        self.calls: List[Tuple[int, int, str]] = []

    async def review(self, idea: IdeaDraft, reviewer_id: str) -> ReviewResult:
        lane, rnd = parse_title(idea.title)
        self.calls.append((lane, rnd, reviewer_id))
        if self.fail(lane, rnd, reviewer_id):
            raise ProviderError(f"{reviewer_id} unavailable")
        return ReviewResult(
            reviewer_id=reviewer_id,
            score=self.score(lane, rnd, reviewer_id),
            strengths=["clear endpoint"],
            weaknesses=["small sample"],
            additional_metrics={"recruitment_feasibility": 3.0, "note": "scripted"}
        )


class ProcessCrash(BaseException):
    """Simulates the process dying mid-round"""


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    create_tables(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        LLM_ENABLED=False,
        PROVIDER_MAX_RETRIES=1,
        PROVIDER_BACKOFF_SECONDS=0.0,
        PROVIDER_CALL_TIMEOUT=5.0,
        MAX_CONCURRENT_CALLS=4,
        PROMOTION_EPSILON=0.05,
        REVIEWER_PANEL=TEST_PANEL,
    )


@pytest.fixture
def make_controller(session_factory, test_settings):
    def factory(generator=None, reviewer=None, **overrides):
        config = test_settings.model_copy(update=overrides) if overrides else test_settings
        return TournamentController(
            session_factory=session_factory,
            generator=generator or ScriptedGenerator(),
            reviewer=reviewer or ScriptedReviewer(),
            config=config
        )
    return factory


def tournament_request(**overrides) -> TournamentCreate:
    payload = {
        "drug_name": "Dapagliflozin",
        "indication": "Heart failure with preserved ejection fraction",
        "strategic_goals": [{"goal": "expand_label", "weight": 1.0}],
        "geography": ["DE", "FR"],
        "lane_count": 3,
        "max_rounds": 2,
    }
    payload.update(overrides)
    return TournamentCreate(**payload)


def add_tournament(db, lane_count: int = 2, max_rounds: int = 3, current_round: int = 0) -> Tournament:
    tournament = Tournament(
        drug_name="Dapagliflozin",
        indication="Heart failure",
        lane_count=lane_count,
        max_rounds=max_rounds,
        current_round=current_round,
        status=TournamentStatus.RUNNING,
        settings="{}"
    )
    db.add(tournament)
    db.commit()
    return tournament


async def wait_for_terminal(controller: TournamentController, tournament_id: int, attempts: int = 500):
    for _ in range(attempts):
        status = await controller.status(tournament_id)
        if status.status in TournamentStatus.TERMINAL:
            return status
        await asyncio.sleep(0.01)
    raise AssertionError(f"tournament {tournament_id} did not finish")
