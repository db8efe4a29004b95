"""SQLAlchemy ORM models."""

from gpu_agent.models.run import Run
from gpu_agent.models.vendor import Vendor
from gpu_agent.models.job import Job
from gpu_agent.models.payment import Payment
from gpu_agent.models.observation import Observation

__all__ = [
    "Run",
    "Vendor",
    "Job",
    "Payment",
    "Observation",
]
