"""Vendor model."""

from sqlalchemy import JSON, Column, DateTime, Float, Numeric, Text

from gpu_agent.database import Base
from gpu_agent.utils import utcnow


class Vendor(Base):
    """GPU vendor reference data. Provisioned externally, read-only to the agent."""

    __tablename__ = "vendors"

    id = Column(Text, primary_key=True)  # slug, e.g. 'gpu_vendor_1'
    name = Column(Text, nullable=False)
    endpoint = Column(Text, nullable=False)
    base_price_per_hour = Column(Numeric(12, 4), nullable=False)
    reliability_score = Column(Float, default=0.0)
    supported_gpu_types = Column(JSON, default=list)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
