"""
Study concept (idea) data model
"""

from sqlalchemy import Column, Integer, String, ForeignKey, Boolean, DateTime, Float, Text, JSON, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from concept_tournament.core.database import Base


class Idea(Base):
    """Append-only study concept table; only is_champion ever changes"""
    __tablename__ = "ideas"
    __table_args__ = (
        Index("ix_ideas_lane_round", "tournament_id", "lane_id", "round"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id"), nullable=False)
    lane_id = Column(Integer, nullable=False)
    round = Column(Integer, nullable=False, default=0)
    idea_key = Column(String(20), nullable=False)                               # A_v1, B_v3, ...
    parent_idea_id = Column(Integer, ForeignKey("ideas.id"), nullable=True)     # champion this challenger was derived from
    is_champion = Column(Boolean, nullable=False, default=False)

    # Concept design
    title = Column(String(500), nullable=False)
    study_phase = Column(String(10), nullable=True)
    target_subpopulation = Column(Text, nullable=True)
    comparator_drugs = Column(JSON, nullable=False, default=list)
    knowledge_gap_addressed = Column(Text, nullable=True)
    innovation_justification = Column(Text, nullable=True)
    improvement_rationale = Column(Text, nullable=True)
    key_improvements = Column(JSON, nullable=False, default=list)
    pico = Column(JSON, nullable=False, default=dict)
    swot = Column(JSON, nullable=False, default=dict)
    feasibility_data = Column(JSON, nullable=False, default=dict)
    evidence_sources = Column(JSON, nullable=False, default=list)

    # MCDA scores; all null when no review came back
    scientific_validity = Column(Float, nullable=True)
    clinical_impact = Column(Float, nullable=True)
    commercial_value = Column(Float, nullable=True)
    feasibility = Column(Float, nullable=True)
    overall_score = Column(Float, nullable=True)
    score_change = Column(Float, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    tournament = relationship("Tournament", back_populates="ideas")
    reviews = relationship("Review", back_populates="idea", order_by="Review.id")

    @property
    def is_reviewed(self) -> bool:
        return self.overall_score is not None
