"""Observation model (append-only audit trail)."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text

from gpu_agent.database import Base
from gpu_agent.utils import new_id, utcnow


class Observation(Base):
    """Immutable, timestamped audit entry attached to a run and optionally a job."""

    __tablename__ = "observations"

    id = Column(Text, primary_key=True, default=new_id)
    run_id = Column(Text, ForeignKey("runs.id", ondelete="CASCADE"), nullable=False)
    job_id = Column(Text)  # Back-reference only
    type = Column(Text, nullable=False)  # 'job_log', 'metric', 'error', 'agent_reasoning'
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (Index("idx_observations_run_ts", "run_id", "timestamp"),)
