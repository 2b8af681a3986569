"""
Per-lane round result data model
"""

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Float, Text, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from concept_tournament.core.database import Base


class LaneOutcome:
    SEEDED = "seeded"
    PROMOTED = "promoted"
    RETAINED = "retained"
    DEGRADED = "degraded"


class LaneResult(Base):
    """What happened in one lane in one round"""
    __tablename__ = "lane_results"
    __table_args__ = (
        UniqueConstraint("tournament_id", "round_number", "lane_id", name="uq_lane_result"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id"), nullable=False, index=True)
    round_number = Column(Integer, nullable=False)
    lane_id = Column(Integer, nullable=False)
    outcome = Column(String(20), nullable=False)  # seeded, promoted, retained, degraded
    champion_idea_id = Column(Integer, ForeignKey("ideas.id"), nullable=False)  # champion after this round
    challenger_idea_id = Column(Integer, ForeignKey("ideas.id"), nullable=True)
    score_change = Column(Float, nullable=True)
    detail = Column(Text, nullable=True)  # degradation reason
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    champion = relationship("Idea", foreign_keys=[champion_idea_id])
    challenger = relationship("Idea", foreign_keys=[challenger_idea_id])
