"""Ledger store: persistence operations for runs, vendors, jobs, payments and observations."""

import json
import logging
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from gpu_agent.models.enums import TERMINAL_RUN_STATUSES, JobStatus, ObservationType, PaymentStatus, RunStatus
from gpu_agent.models.job import Job
from gpu_agent.models.observation import Observation
from gpu_agent.models.payment import Payment
from gpu_agent.models.run import Run
from gpu_agent.models.vendor import Vendor
from gpu_agent.utils import utcnow

logger = logging.getLogger(__name__)


class LedgerStore:
    """Record-scoped reads and writes over one session.

    Every mutating call commits immediately so the audit trail survives a
    failure later in the same tick.
    """

    def __init__(self, db: Session):
        self.db = db

    # Runs

    def create_run(self, owner_id: str, goal: str, budget_total: Decimal) -> Run:
        run = Run(
            owner_id=owner_id,
            goal=goal,
            budget_total=budget_total,
            budget_remaining=budget_total,
            status=RunStatus.PENDING.value,
        )
        self.db.add(run)
        self.db.commit()
        self.db.refresh(run)
        logger.info(f"Created run {run.id} for owner {owner_id} with budget {budget_total}")
        return run

    def get_run(self, run_id: str) -> Optional[Run]:
        return self.db.get(Run, run_id)

    def list_open_runs(self) -> List[Run]:
        return (
            self.db.query(Run)
            .filter(Run.status.notin_(TERMINAL_RUN_STATUSES))
            .order_by(Run.created_at)
            .all()
        )

    def set_run_status(self, run_id: str, status: RunStatus) -> bool:
        """Move a non-terminal run to ``status``. Returns False if the run was already terminal."""
        result = self.db.execute(
            update(Run)
            .where(Run.id == run_id, Run.status.notin_(TERMINAL_RUN_STATUSES))
            .values(status=status.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def deduct_budget(self, run_id: str, amount: Decimal) -> bool:
        """Conditionally decrement ``budget_remaining``.

        Applies only while the stored balance still covers ``amount``; returns
        False when no row changed (another tick already spent it).
        """
        result = self.db.execute(
            update(Run)
            .where(
                Run.id == run_id,
                Run.budget_remaining >= amount,
                Run.status.notin_(TERMINAL_RUN_STATUSES),
            )
            .values(budget_remaining=Run.budget_remaining - amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    # Vendors

    def list_vendors(self) -> List[Vendor]:
        return self.db.query(Vendor).order_by(Vendor.id).all()

    def get_vendor(self, vendor_id: str) -> Optional[Vendor]:
        return self.db.get(Vendor, vendor_id)

    # Jobs

    def list_jobs(self, run_id: str, newest_first: bool = False) -> List[Job]:
        order = Job.updated_at.desc() if newest_first else Job.created_at
        return self.db.query(Job).filter(Job.run_id == run_id).order_by(order).all()

    def create_job(
        self,
        run_id: str,
        vendor_id: str,
        expected_cost: Decimal,
        expected_duration_minutes: Optional[int],
    ) -> Job:
        job = Job(
            run_id=run_id,
            vendor_id=vendor_id,
            status=JobStatus.QUOTED.value,
            expected_cost=expected_cost,
            expected_duration_minutes=expected_duration_minutes,
        )
        self.db.add(job)
        self.db.commit()
        self.db.refresh(job)
        return job

    def update_job(self, job: Job, **fields: Any) -> Job:
        for name, value in fields.items():
            setattr(job, name, value.value if isinstance(value, JobStatus) else value)
        job.updated_at = utcnow()
        self.db.commit()
        return job

    def fail_job(self, job: Job, message: str, **fields: Any) -> Job:
        return self.update_job(job, status=JobStatus.FAILED, error_message=message, **fields)

    # Payments

    def list_payments(self, run_id: str, newest_first: bool = False) -> List[Payment]:
        order = Payment.updated_at.desc() if newest_first else Payment.created_at
        return self.db.query(Payment).filter(Payment.run_id == run_id).order_by(order).all()

    def create_payment(self, job: Job, amount: Decimal, currency: str) -> Payment:
        payment = Payment(
            run_id=job.run_id,
            job_id=job.id,
            vendor_id=job.vendor_id,
            amount=amount,
            currency=currency,
            status=PaymentStatus.PENDING.value,
        )
        self.db.add(payment)
        self.db.commit()
        self.db.refresh(payment)
        return payment

    def settle_payment(
        self,
        payment: Payment,
        status: PaymentStatus,
        external_tx_id: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> Payment:
        payment.status = status.value
        payment.external_tx_id = external_tx_id
        payment.error_message = error_message
        payment.updated_at = utcnow()
        self.db.commit()
        return payment

    # Observations

    def observe(
        self,
        run_id: str,
        type: ObservationType,
        content: Any,
        job_id: Optional[str] = None,
    ) -> Observation:
        """Append an observation. Non-string content is stored as JSON."""
        if not isinstance(content, str):
            content = json.dumps(content, default=str, sort_keys=True)
        observation = Observation(run_id=run_id, job_id=job_id, type=type.value, content=content)
        self.db.add(observation)
        self.db.commit()
        return observation

    def recent_observations(self, run_id: str, limit: int = 50) -> List[Observation]:
        return (
            self.db.query(Observation)
            .filter(Observation.run_id == run_id)
            .order_by(Observation.timestamp.desc())
            .limit(limit)
            .all()
        )

    def rollback(self) -> None:
        self.db.rollback()
