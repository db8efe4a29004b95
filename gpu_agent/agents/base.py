"""Planner contract shared by the heuristic and model-backed planners."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Set

from gpu_agent.models.enums import JobStatus
from gpu_agent.models.job import Job
from gpu_agent.models.payment import Payment
from gpu_agent.models.run import Run
from gpu_agent.models.vendor import Vendor
from gpu_agent.schemas.planner import Decision

logger = logging.getLogger(__name__)


@dataclass
class PlannerContext:
    """Everything a planner may look at for one decision."""

    run: Run
    vendors: List[Vendor]
    jobs: List[Job] = field(default_factory=list)
    payments: List[Payment] = field(default_factory=list)

    def failed_vendor_ids(self) -> Set[str]:
        return {job.vendor_id for job in self.jobs if job.status == JobStatus.FAILED.value}

    def has_busy_job(self) -> bool:
        return any(
            job.status in (JobStatus.SUBMITTED.value, JobStatus.RUNNING.value)
            for job in self.jobs
        )

    def alternative_vendor(self, exclude: str) -> Optional[Vendor]:
        """Cheapest vendor other than ``exclude`` with no failed job on this run."""
        failed = self.failed_vendor_ids()
        candidates = [
            v for v in self.vendors
            if v.id != exclude and v.id not in failed and v.base_price_per_hour > 0
        ]
        return min(candidates, key=lambda v: v.base_price_per_hour, default=None)


@dataclass
class PlannerResult:
    """A decision plus the audit data recorded with it."""

    decision: Decision
    mode: str
    prompt: str
    raw_response: Optional[str] = None
    used_fallback: bool = False


class BasePlanner:
    """Base class for planners."""

    mode = "base"

    def decide(self, context: PlannerContext) -> PlannerResult:
        """
        Choose the next action for a run.

        Args:
            context: Run, vendors, jobs and payments

        Returns:
            PlannerResult with one of start_job / wait / abort
        """
        raise NotImplementedError

    def close(self) -> None:
        """Release any clients the planner owns."""
