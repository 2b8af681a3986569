"""
Review schemas
"""

from pydantic import BaseModel, Field, field_serializer
from typing import Optional, List, Dict, Any
from datetime import datetime

from concept_tournament.core.utils import format_timestamp_with_timezone

# MCDA scoring dimensions, in display order
SCIENTIFIC_VALIDITY = "scientific_validity"
CLINICAL_IMPACT = "clinical_impact"
COMMERCIAL_VALUE = "commercial_value"
FEASIBILITY = "feasibility"
DIMENSIONS = (SCIENTIFIC_VALIDITY, CLINICAL_IMPACT, COMMERCIAL_VALUE, FEASIBILITY)


class ReviewResult(BaseModel):
    """One reviewer's verdict on one idea, as returned by the review provider"""
    reviewer_id: str = Field(..., description="Reviewer agent id, e.g. CLIN")
    score: float = Field(..., allow_inf_nan=False, description="Score on the 0..SCORE_SCALE_MAX scale")
    dimensions: List[str] = Field(default_factory=list, description="Scoring dimensions this review feeds")
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    additional_metrics: Dict[str, Any] = Field(default_factory=dict, description="Free-form reviewer output, display only")


class ScoreCard(BaseModel):
    """Aggregated MCDA scores for one idea"""
    scientific_validity: float
    clinical_impact: float
    commercial_value: float
    feasibility: float
    overall: float


class ReviewResponse(BaseModel):
    """Stored review"""
    id: int
    idea_id: int
    reviewer_id: str
    score: float
    dimensions: List[str]
    strengths: List[str]
    weaknesses: List[str]
    additional_metrics: Dict[str, Any]
    created_at: Optional[datetime] = None

    @field_serializer('created_at')
    def serialize_dt(self, dt: Optional[datetime]) -> Optional[str]:
        return format_timestamp_with_timezone(dt)

    class Config:
        from_attributes = True
