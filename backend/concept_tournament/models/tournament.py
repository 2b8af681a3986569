"""
Tournament data model
"""

from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from concept_tournament.core.database import Base


class TournamentStatus:
    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    TERMINAL = (COMPLETED, FAILED, CANCELLED)


class Tournament(Base):
    """Tournament table"""
    __tablename__ = "tournaments"

    id = Column(Integer, primary_key=True, index=True)
    drug_name = Column(String(200), nullable=False)
    indication = Column(String(300), nullable=False)
    study_phase_pref = Column(String(10), nullable=False, default="any")
    lane_count = Column(Integer, nullable=False)
    max_rounds = Column(Integer, nullable=False)
    current_round = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=TournamentStatus.CREATED)  # created, running, completed, failed, cancelled
    settings = Column(Text, nullable=False)  # validated TournamentCreate as JSON
    failure_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    ideas = relationship("Idea", back_populates="tournament", order_by="Idea.id")
