"""Job model for rented vendor compute."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, Text

from gpu_agent.database import Base
from gpu_agent.utils import new_id, utcnow


class Job(Base):
    """One unit of rented vendor compute belonging to a run."""

    __tablename__ = "jobs"

    id = Column(Text, primary_key=True, default=new_id)
    run_id = Column(Text, ForeignKey("runs.id", ondelete="CASCADE"), nullable=False)
    vendor_id = Column(Text, nullable=False)
    vendor_job_id = Column(Text)  # Set once the vendor accepts the submission
    status = Column(Text, nullable=False)  # 'quoted', 'submitted', 'running', 'completed', 'failed', 'cancelled'
    expected_cost = Column(Numeric(12, 4))
    expected_duration_minutes = Column(Integer)
    actual_cost = Column(Numeric(12, 4))
    artifact_url = Column(Text)
    error_message = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_jobs_run_id", "run_id"),
        Index("idx_jobs_status", "status"),
    )
