"""Run lifecycle operations behind the control surface."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List

from sqlalchemy.orm import Session

from gpu_agent.errors import RequestValidationError, RunNotFoundError
from gpu_agent.models.job import Job
from gpu_agent.models.observation import Observation
from gpu_agent.models.payment import Payment
from gpu_agent.models.run import Run
from gpu_agent.services.ledger import LedgerStore
from gpu_agent.utils import parse_run_id

logger = logging.getLogger(__name__)

STATUS_OBSERVATION_LIMIT = 50


@dataclass
class RunStatusPayload:
    run: Run
    jobs: List[Job]
    payments: List[Payment]
    observations: List[Observation]


def start_run(db: Session, owner_id: str, goal: str, budget_total: Decimal) -> Run:
    """Create a pending run whose remaining budget equals its total."""
    if not owner_id or not owner_id.strip():
        raise RequestValidationError("ownerId is required")
    if not goal or not goal.strip():
        raise RequestValidationError("goal is required")
    if budget_total is None or Decimal(budget_total) <= 0:
        raise RequestValidationError("budgetTotal must be a positive number")

    return LedgerStore(db).create_run(owner_id.strip(), goal.strip(), Decimal(budget_total))


def get_run_status(db: Session, run_id: str, observation_limit: int = STATUS_OBSERVATION_LIMIT) -> RunStatusPayload:
    """Load a run with its jobs, payments and most recent observations (newest first)."""
    canonical_id = parse_run_id(run_id)
    if canonical_id is None:
        raise RunNotFoundError(run_id)

    ledger = LedgerStore(db)
    run = ledger.get_run(canonical_id)
    if run is None:
        raise RunNotFoundError(run_id)

    return RunStatusPayload(
        run=run,
        jobs=ledger.list_jobs(run.id, newest_first=True),
        payments=ledger.list_payments(run.id, newest_first=True),
        observations=ledger.recent_observations(run.id, limit=observation_limit),
    )
