"""
Tournament schemas
"""

from pydantic import BaseModel, Field, field_serializer
from typing import Optional, List, Dict, Literal
from datetime import datetime

from concept_tournament.core.config import settings
from concept_tournament.core.utils import format_timestamp_with_timezone
from concept_tournament.schemas.review_schemas import DIMENSIONS

STRATEGIC_GOALS = (
    "expand_label",
    "defend_market_share",
    "accelerate_uptake",
    "facilitate_market_access",
    "generate_real_world_evidence",
    "optimise_dosing",
    "validate_biomarker",
    "manage_safety_risk",
    "extend_lifecycle_combinations",
    "secure_initial_approval",
    "demonstrate_poc",
    "other",
)

StudyPhase = Literal["I", "II", "III", "IV", "any"]


def _equal_weights() -> Dict[str, float]:
    return {dimension: 1.0 / len(DIMENSIONS) for dimension in DIMENSIONS}


class StrategicGoalWeight(BaseModel):
    goal: str = Field(..., description="One of STRATEGIC_GOALS")
    weight: float = Field(1.0, ge=0, le=1)


class TournamentCreate(BaseModel):
    """Tournament creation request"""
    drug_name: str = Field(..., min_length=1, max_length=200)
    indication: str = Field(..., min_length=1, max_length=300)
    strategic_goals: List[StrategicGoalWeight] = Field(default_factory=list)
    other_strategic_goal_text: Optional[str] = None
    geography: List[str] = Field(default_factory=list, description="Two-letter region codes")
    study_phase_pref: StudyPhase = "any"
    lane_count: int = Field(default_factory=lambda: settings.DEFAULT_LANE_COUNT)
    max_rounds: int = Field(default_factory=lambda: settings.DEFAULT_MAX_ROUNDS)

    # Engine tuning; unset values fall back to settings when the tournament is created
    score_weights: Dict[str, float] = Field(default_factory=_equal_weights)
    promotion_epsilon: Optional[float] = Field(None, ge=0)
    early_stop: Optional[bool] = None
    challengers_per_lane: Optional[int] = None

    # Sponsor constraints forwarded to the idea generator
    budget_ceiling_eur: Optional[int] = Field(None, gt=0)
    timeline_ceiling_months: Optional[int] = Field(None, gt=0)
    additional_context: Optional[str] = None


class TournamentCreated(BaseModel):
    tournament_id: int
    status: str


class ProgressInfo(BaseModel):
    """Display-only progress, derived from persisted state"""
    percent: int
    stage: str
    label: str


class TournamentStatusResponse(BaseModel):
    tournament_id: int
    status: str
    current_round: int
    max_rounds: int
    lane_count: int
    ideas_count: int
    progress: ProgressInfo
    failure_reason: Optional[str] = None


class TournamentSummary(BaseModel):
    """Tournament list entry"""
    id: int
    drug_name: str
    indication: str
    study_phase_pref: str
    lane_count: int
    max_rounds: int
    current_round: int
    status: str
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @field_serializer('created_at', 'completed_at')
    def serialize_dt(self, dt: Optional[datetime]) -> Optional[str]:
        return format_timestamp_with_timezone(dt)

    class Config:
        from_attributes = True


class LaneResultResponse(BaseModel):
    round_number: int
    lane_id: int
    outcome: str
    champion_idea_id: int
    challenger_idea_id: Optional[int] = None
    score_change: Optional[float] = None
    detail: Optional[str] = None

    class Config:
        from_attributes = True
