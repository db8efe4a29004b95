"""Payment model."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Numeric, Text

from gpu_agent.database import Base
from gpu_agent.utils import new_id, utcnow


class Payment(Base):
    """Settlement record for one job submission attempt."""

    __tablename__ = "payments"

    id = Column(Text, primary_key=True, default=new_id)
    run_id = Column(Text, ForeignKey("runs.id", ondelete="CASCADE"), nullable=False)
    job_id = Column(Text, ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False)
    vendor_id = Column(Text, nullable=False)
    amount = Column(Numeric(12, 4), nullable=False)
    currency = Column(Text, nullable=False)
    status = Column(Text, nullable=False)  # 'pending', 'completed', 'failed'
    external_tx_id = Column(Text)
    error_message = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (Index("idx_payments_run_id", "run_id"),)
