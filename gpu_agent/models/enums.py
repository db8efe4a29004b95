"""Status and type vocabularies for ledger records."""

from enum import Enum


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_RUN_STATUSES = (RunStatus.COMPLETED.value, RunStatus.FAILED.value)


class JobStatus(str, Enum):
    QUOTED = "quoted"
    # Declared for two-phase submission; the tick engine goes quoted -> running.
    SUBMITTED = "submitted"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_JOB_STATUSES = (JobStatus.QUOTED.value, JobStatus.SUBMITTED.value, JobStatus.RUNNING.value)


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ObservationType(str, Enum):
    JOB_LOG = "job_log"
    METRIC = "metric"
    ERROR = "error"
    AGENT_REASONING = "agent_reasoning"
