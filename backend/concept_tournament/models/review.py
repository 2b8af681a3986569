"""
Expert review data model
"""

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Float, JSON
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from concept_tournament.core.database import Base


class Review(Base):
    """Reviewer feedback kept for display; never read back into scoring"""
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, index=True)
    idea_id = Column(Integer, ForeignKey("ideas.id"), nullable=False, index=True)
    reviewer_id = Column(String(20), nullable=False)         # CLIN, STAT, SAF, ...
    score = Column(Float, nullable=False)
    dimensions = Column(JSON, nullable=False, default=list)  # scoring dimensions this review fed
    strengths = Column(JSON, nullable=False, default=list)
    weaknesses = Column(JSON, nullable=False, default=list)
    additional_metrics = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    idea = relationship("Idea", back_populates="reviews")
