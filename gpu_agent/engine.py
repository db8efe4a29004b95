"""Tick engine: advances one run by at most one step per invocation."""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from gpu_agent.agents import build_planner
from gpu_agent.agents.base import BasePlanner, PlannerContext, PlannerResult
from gpu_agent.config import Settings
from gpu_agent.database import Database
from gpu_agent.models.enums import (
    ACTIVE_JOB_STATUSES,
    TERMINAL_RUN_STATUSES,
    JobStatus,
    ObservationType,
    PaymentStatus,
    RunStatus,
)
from gpu_agent.models.job import Job
from gpu_agent.models.run import Run
from gpu_agent.models.vendor import Vendor
from gpu_agent.schemas.planner import AbortDecision, StartJobDecision, WaitDecision, dump_decision
from gpu_agent.schemas.vendor import QuoteRequest, SubmitRequest
from gpu_agent.services.ledger import LedgerStore
from gpu_agent.services.vendor_client import VendorClient
from gpu_agent.utils import parse_run_id

logger = logging.getLogger(__name__)

MISSING_VENDOR_CONFIG = "Active job missing vendor configuration"
VENDOR_FAILURE_DEFAULT = "Vendor reported failure"
BUDGET_UPDATE_FAILED = "Budget update failed"


@dataclass(frozen=True)
class TickResult:
    message: str


class RunLockRegistry:
    """In-process, non-blocking mutual exclusion keyed by run id.

    An entry lives only while some caller is inside ``hold`` for that run.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._holders: Dict[str, int] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, run_id: str) -> Iterator[bool]:
        with self._guard:
            lock = self._locks.setdefault(run_id, threading.Lock())
            self._holders[run_id] = self._holders.get(run_id, 0) + 1
        acquired = lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()
            with self._guard:
                self._holders[run_id] -= 1
                if not self._holders[run_id]:
                    del self._holders[run_id]
                    del self._locks[run_id]


def pick_active_job(jobs: List[Job]) -> Optional[Job]:
    active = [job for job in jobs if job.status in ACTIVE_JOB_STATUSES]
    if len(active) > 1:
        logger.error(f"Run {active[0].run_id} has {len(active)} active jobs; advancing the oldest")
    return active[0] if active else None


def local_tx_id() -> str:
    return f"local_tx_{int(time.time() * 1000)}"


class TickEngine:
    """Reconciles a run with vendor state, plans, pays and submits.

    The engine owns every Run/Job/Payment status transition. ``tick`` never
    raises; each call performs at most one meaningful transition and reports
    what happened as a short message.
    """

    def __init__(
        self,
        database: Database,
        vendor_client: VendorClient,
        planner: BasePlanner,
        job_type: str = "fine_tune",
        default_gpu_type: str = "A10",
        currency: str = "USD",
        locks: Optional[RunLockRegistry] = None,
    ):
        self.database = database
        self.vendors = vendor_client
        self.planner = planner
        self.job_type = job_type
        self.default_gpu_type = default_gpu_type
        self.currency = currency
        self.locks = locks if locks is not None else RunLockRegistry()

    @classmethod
    def from_settings(cls, settings: Settings, database: Database) -> "TickEngine":
        """Build an engine with its own vendor client and planner."""
        return cls(
            database,
            VendorClient.from_settings(settings),
            build_planner(settings),
            job_type=settings.DEFAULT_JOB_TYPE,
            default_gpu_type=settings.DEFAULT_GPU_TYPE,
            currency=settings.CURRENCY,
        )

    def close(self) -> None:
        self.vendors.close()
        self.planner.close()

    def tick(self, run_id: str) -> TickResult:
        canonical_id = parse_run_id(run_id)
        if canonical_id is None:
            return TickResult("Invalid runId")

        with self.locks.hold(canonical_id) as acquired:
            if not acquired:
                logger.info(f"Tick for run {canonical_id} skipped: another tick is in progress")
                return TickResult("Tick already in progress")

            db = self.database.session()
            try:
                message = self._run_tick(LedgerStore(db), canonical_id)
            finally:
                db.close()

        logger.info(f"Tick for run {canonical_id}: {message}")
        return TickResult(message)

    def _run_tick(self, ledger: LedgerStore, run_id: str) -> str:
        run = None
        try:
            run = ledger.get_run(run_id)
            if run is None:
                return "Run not found"
            if run.status in TERMINAL_RUN_STATUSES:
                return f"Run already {run.status}"

            jobs = ledger.list_jobs(run.id)
            active_job = pick_active_job(jobs)
            if active_job is not None:
                return self._advance_active_job(ledger, run, active_job)

            return self._plan_next_job(ledger, run, jobs)

        except Exception as e:
            logger.exception(f"Tick failed for run {run_id}")
            ledger.rollback()
            if run is not None:
                self._record_crash(ledger, run_id, e)
            return "Tick failed"

    def _record_crash(self, ledger: LedgerStore, run_id: str, error: Exception) -> None:
        try:
            ledger.observe(run_id, ObservationType.ERROR, f"{error.__class__.__name__}: {error}")
        except SQLAlchemyError:
            ledger.rollback()
            logger.exception(f"Could not record tick failure for run {run_id}")

    # Active job

    def _advance_active_job(self, ledger: LedgerStore, run: Run, job: Job) -> str:
        vendor = ledger.get_vendor(job.vendor_id) if job.vendor_id else None
        if vendor is None or not job.vendor_job_id:
            logger.error(f"Job {job.id} on run {run.id} has no vendor mapping or vendor job id")
            ledger.fail_job(job, MISSING_VENDOR_CONFIG)
            ledger.observe(run.id, ObservationType.ERROR, MISSING_VENDOR_CONFIG, job_id=job.id)
            return MISSING_VENDOR_CONFIG

        outcome = self.vendors.status(vendor, job.vendor_job_id)
        if not outcome.ok:
            if outcome.status_code == 404:
                message = f"Vendor {vendor.id} has no record of job {job.vendor_job_id}"
                ledger.fail_job(job, message)
                ledger.observe(run.id, ObservationType.ERROR, message, job_id=job.id)
                return "Job failed"
            ledger.observe(run.id, ObservationType.ERROR, outcome.error, job_id=job.id)
            return "Job status check failed"

        status = outcome.value
        if status.logs:
            ledger.observe(run.id, ObservationType.JOB_LOG, "\n".join(status.logs), job_id=job.id)

        if status.status == "completed":
            ledger.update_job(
                job,
                status=JobStatus.COMPLETED,
                actual_cost=status.cost_so_far,
                artifact_url=status.artifact_url,
            )
            ledger.set_run_status(run.id, RunStatus.COMPLETED)
            if status.final_metrics:
                ledger.observe(run.id, ObservationType.METRIC, status.final_metrics, job_id=job.id)
            return "Job completed"

        if status.status == "failed":
            message = status.error_message or VENDOR_FAILURE_DEFAULT
            ledger.fail_job(job, message, actual_cost=status.cost_so_far)
            ledger.observe(run.id, ObservationType.ERROR, message, job_id=job.id)
            return "Job failed"

        return "Job still running"

    # Planning

    def _plan_next_job(self, ledger: LedgerStore, run: Run, jobs: List[Job]) -> str:
        vendors = ledger.list_vendors()
        payments = ledger.list_payments(run.id)

        if not vendors:
            ledger.observe(run.id, ObservationType.ERROR, "No vendors available")
            return "No vendors available"

        plan = self.planner.decide(PlannerContext(run=run, vendors=vendors, jobs=jobs, payments=payments))
        ledger.observe(run.id, ObservationType.AGENT_REASONING, self._describe_plan(plan))
        decision = plan.decision

        if isinstance(decision, WaitDecision):
            return "Waiting"

        if isinstance(decision, AbortDecision):
            ledger.set_run_status(run.id, RunStatus.FAILED)
            logger.info(f"Run {run.id} aborted: {decision.reason}")
            return "Run aborted"

        vendor = next((v for v in vendors if v.id == decision.vendor_id), None)
        if vendor is None:
            ledger.observe(run.id, ObservationType.ERROR, f"Unknown vendorId: {decision.vendor_id}")
            return "Unknown vendor"

        return self._purchase(ledger, run, vendor, decision)

    @staticmethod
    def _describe_plan(plan: PlannerResult) -> str:
        lines = [
            f"mode: {plan.mode}",
            f"prompt: {plan.prompt}",
            f"decision: {dump_decision(plan.decision)}",
            f"fallback: {'true' if plan.used_fallback else 'false'}",
        ]
        if plan.raw_response:
            lines.append(f"raw: {plan.raw_response}")
        return "\n".join(lines)

    # Quote, pay, submit, charge

    def _purchase(self, ledger: LedgerStore, run: Run, vendor: Vendor, decision: StartJobDecision) -> str:
        gpu_types = vendor.supported_gpu_types or []
        quote_outcome = self.vendors.quote(
            vendor,
            QuoteRequest(
                job_type=self.job_type,
                gpu_type=gpu_types[0] if gpu_types else self.default_gpu_type,
                max_hours=decision.max_hours,
                job_metadata={"goal": run.goal},
            ),
        )
        if not quote_outcome.ok:
            ledger.observe(run.id, ObservationType.ERROR, quote_outcome.error)
            return "Quote failed"

        quote = quote_outcome.value
        budget_remaining = Decimal(run.budget_remaining)
        if quote.currency != self.currency:
            ledger.observe(
                run.id,
                ObservationType.ERROR,
                f"Quote currency {quote.currency} does not match budget currency {self.currency}",
            )
            return "Quote currency mismatch"

        if quote.price_estimate > budget_remaining:
            ledger.observe(
                run.id,
                ObservationType.ERROR,
                f"Quote exceeds remaining budget: {quote.price_estimate} > {budget_remaining}",
            )
            return "Quote exceeds budget"

        job = ledger.create_job(run.id, vendor.id, quote.price_estimate, quote.eta_minutes)
        ledger.observe(
            run.id,
            ObservationType.AGENT_REASONING,
            "\n".join([
                f"Budget remaining: {budget_remaining}",
                f"Quote: {quote.price_estimate} {quote.currency}",
                f"Proceeding with payment to vendor {vendor.id}",
            ]),
            job_id=job.id,
        )

        job_params = {"goal": run.goal, "maxHours": decision.max_hours}
        payment = ledger.create_payment(job, quote.price_estimate, quote.currency)
        submit_outcome = self.vendors.submit(vendor, SubmitRequest(template_id=quote.template_id, job_params=job_params))

        if not submit_outcome.ok:
            ledger.settle_payment(payment, PaymentStatus.FAILED, error_message=submit_outcome.error)
            ledger.fail_job(job, submit_outcome.error)
            ledger.observe(run.id, ObservationType.ERROR, submit_outcome.error, job_id=job.id)
            return "Submit job failed"

        submitted = submit_outcome.value
        tx_id = submitted.payment_tx_id or local_tx_id()
        ledger.settle_payment(payment, PaymentStatus.COMPLETED, external_tx_id=tx_id)
        ledger.observe(
            run.id,
            ObservationType.AGENT_REASONING,
            f"Payment settled. txId={tx_id}",
            job_id=job.id,
        )

        if not ledger.deduct_budget(run.id, quote.price_estimate):
            # The vendor job exists and was paid for, but the run budget was not charged.
            logger.error(
                f"UNRECONCILED: run {run.id} vendor {vendor.id} job {submitted.vendor_job_id} "
                f"tx {tx_id} amount {quote.price_estimate} could not be charged to the budget"
            )
            ledger.fail_job(job, BUDGET_UPDATE_FAILED, vendor_job_id=submitted.vendor_job_id)
            ledger.observe(
                run.id,
                ObservationType.ERROR,
                f"Budget update failed or insufficient funds. UNRECONCILED: vendor {vendor.id} "
                f"job {submitted.vendor_job_id} (tx {tx_id}) may be running without a budget charge",
                job_id=job.id,
            )
            return BUDGET_UPDATE_FAILED

        ledger.update_job(job, vendor_job_id=submitted.vendor_job_id, status=JobStatus.RUNNING)
        ledger.set_run_status(run.id, RunStatus.RUNNING)
        return "Job started"
