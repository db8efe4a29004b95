"""Run model."""

from sqlalchemy import CheckConstraint, Column, DateTime, Index, Numeric, Text

from gpu_agent.database import Base
from gpu_agent.utils import new_id, utcnow


class Run(Base):
    """Run is one goal-directed, budget-bounded procurement session."""

    __tablename__ = "runs"

    id = Column(Text, primary_key=True, default=new_id)
    owner_id = Column(Text, nullable=False)
    goal = Column(Text, nullable=False)
    budget_total = Column(Numeric(12, 4), nullable=False)
    budget_remaining = Column(Numeric(12, 4), nullable=False)
    status = Column(Text, nullable=False)  # 'pending', 'running', 'completed', 'failed'
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("budget_remaining >= 0", name="ck_runs_budget_non_negative"),
        CheckConstraint("budget_remaining <= budget_total", name="ck_runs_budget_within_total"),
        Index("idx_runs_status", "status"),
    )
