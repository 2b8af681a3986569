"""
Study concept (idea) schemas
"""

from pydantic import BaseModel, Field, field_serializer
from typing import Optional, List
from datetime import datetime

from concept_tournament.core.utils import format_timestamp_with_timezone
from concept_tournament.schemas.review_schemas import ReviewResult


class PicoFramework(BaseModel):
    population: str = ""
    intervention: str = ""
    comparator: str = ""
    outcomes: str = ""


class SwotAnalysis(BaseModel):
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    opportunities: List[str] = Field(default_factory=list)
    threats: List[str] = Field(default_factory=list)


class FeasibilityEstimate(BaseModel):
    estimated_cost: Optional[float] = Field(None, description="Total cost in EUR")
    timeline_months: Optional[float] = None
    projected_roi: Optional[float] = None
    recruitment_rate: Optional[float] = Field(None, description="Patients per site per month")
    completion_risk: Optional[float] = Field(None, description="0..1 probability of not completing")


class EvidenceSource(BaseModel):
    title: str
    authors: Optional[str] = None
    publication: Optional[str] = None
    year: Optional[int] = None
    citation: Optional[str] = None


class IdeaDraft(BaseModel):
    """Concept as returned by the idea generation provider, before scoring"""
    title: str = Field(..., min_length=1)
    study_phase: Optional[str] = None
    target_subpopulation: Optional[str] = None
    comparator_drugs: List[str] = Field(default_factory=list)
    knowledge_gap_addressed: Optional[str] = None
    innovation_justification: Optional[str] = None
    improvement_rationale: Optional[str] = None
    key_improvements: List[str] = Field(default_factory=list)
    pico: PicoFramework = Field(default_factory=PicoFramework)
    swot: SwotAnalysis = Field(default_factory=SwotAnalysis)
    feasibility_data: FeasibilityEstimate = Field(default_factory=FeasibilityEstimate)
    evidence_sources: List[EvidenceSource] = Field(default_factory=list)


class GoalWeight(BaseModel):
    goal: str
    weight: float


class GenerationContext(BaseModel):
    """Everything the idea generation provider is told about a request"""
    drug_name: str
    indication: str
    strategic_goals: List[GoalWeight]
    geography: List[str]
    study_phase: str
    lane_id: int
    round: int
    seed_idea: Optional[IdeaDraft] = Field(None, description="Current champion; absent when seeding")
    seed_reviews: List[ReviewResult] = Field(default_factory=list)
    budget_ceiling_eur: Optional[int] = None
    timeline_ceiling_months: Optional[int] = None
    additional_context: Optional[str] = None


class IdeaResponse(BaseModel):
    """Stored idea"""
    id: int
    tournament_id: int
    lane_id: int
    round: int
    idea_key: str
    parent_idea_id: Optional[int] = None
    is_champion: bool
    title: str
    study_phase: Optional[str] = None
    target_subpopulation: Optional[str] = None
    comparator_drugs: List[str]
    knowledge_gap_addressed: Optional[str] = None
    innovation_justification: Optional[str] = None
    improvement_rationale: Optional[str] = None
    key_improvements: List[str]
    pico: PicoFramework
    swot: SwotAnalysis
    feasibility_data: FeasibilityEstimate
    evidence_sources: List[EvidenceSource]
    scientific_validity: Optional[float] = None
    clinical_impact: Optional[float] = None
    commercial_value: Optional[float] = None
    feasibility: Optional[float] = None
    overall_score: Optional[float] = None
    score_change: Optional[float] = None
    created_at: Optional[datetime] = None

    @field_serializer('created_at')
    def serialize_dt(self, dt: Optional[datetime]) -> Optional[str]:
        return format_timestamp_with_timezone(dt)

    class Config:
        from_attributes = True


class LaneHistory(BaseModel):
    """A lane's ideas up to a round plus the champion at that round"""
    tournament_id: int
    lane_id: int
    through_round: int
    champion_idea_id: Optional[int] = None
    ideas: List[IdeaResponse]
