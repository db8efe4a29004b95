"""Mock GPU vendor speaking the quote / submit-job / job-status protocol.

Jobs live in an in-memory arena keyed by vendor job id; each status poll runs
the pure ``advance_job`` transition. Run with ``python -m gpu_agent.vendor_mock``.
"""

import logging
import math
import random
import threading
import time
import uuid
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple

from fastapi import Body, FastAPI, Header, Query
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from gpu_agent.schemas.vendor import QuoteRequest, SubmitRequest
from gpu_agent.services.payments import encode_payment_receipt

logger = logging.getLogger(__name__)

POLLS_TO_FINISH = 3


class MockVendorSettings(BaseSettings):
    GPU_VENDOR_SECRET: str
    BASE_PRICE_PER_HOUR: float = 1.4
    FAIL_VENDOR_ID: Optional[str] = None
    FAIL_RATE: float = 0.1
    PORT: int = 4001

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")


@dataclass(frozen=True)
class MockJob:
    vendor_job_id: str
    status: str = "running"
    progress: float = 0.0
    logs: Tuple[str, ...] = ()
    polls: int = 0
    vendor_id: Optional[str] = None


def advance_job(job: MockJob, fail: bool) -> MockJob:
    """Return the job after one more status poll. Finished jobs are unchanged."""
    if job.status != "running":
        return job

    polls = job.polls + 1
    status = "running"
    if polls >= POLLS_TO_FINISH:
        status = "failed" if fail else "completed"

    return replace(
        job,
        polls=polls,
        progress=min(1.0, round(job.progress + 0.35, 2)),
        logs=job.logs + (f"Epoch {polls}/{POLLS_TO_FINISH} loss={1.5 / polls:.2f}",),
        status=status,
    )


class JobArena:
    """Thread-safe store of mock jobs indexed by vendor job id."""

    def __init__(self):
        self._lock = threading.Lock()
        self._jobs: Dict[str, MockJob] = {}

    def add(self, job: MockJob) -> MockJob:
        with self._lock:
            self._jobs[job.vendor_job_id] = job
        return job

    def get(self, vendor_job_id: str) -> Optional[MockJob]:
        with self._lock:
            return self._jobs.get(vendor_job_id)

    def poll(self, vendor_job_id: str, should_fail) -> Optional[MockJob]:
        with self._lock:
            job = self._jobs.get(vendor_job_id)
            if job is None:
                return None
            job = advance_job(job, fail=should_fail(job))
            self._jobs[vendor_job_id] = job
            return job


def _error(status_code: int, message: str, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


def create_mock_vendor_app(
    secret: str,
    base_price_per_hour: float = 1.4,
    fail_vendor_id: Optional[str] = None,
    fail_rate: float = 0.0,
    rng: Optional[random.Random] = None,
) -> FastAPI:
    """Build a mock vendor app. ``app.state.arena`` exposes the job arena."""
    app = FastAPI(title="GPU Vendor Mock")
    arena = JobArena()
    rng = rng or random.Random()
    app.state.arena = arena

    def authorized(authorization: Optional[str]) -> bool:
        return authorization == f"Bearer {secret}"

    def should_fail(job: MockJob) -> bool:
        if fail_vendor_id and job.vendor_id == fail_vendor_id:
            return True
        return rng.random() < fail_rate

    @app.post("/quote")
    def quote(
        body: Optional[Dict[str, Any]] = Body(default=None),
        authorization: Optional[str] = Header(default=None),
    ):
        if not authorized(authorization):
            return _error(401, "Unauthorized")
        try:
            request = QuoteRequest.model_validate(body or {})
        except ValidationError:
            return _error(400, "Missing jobType, gpuType, or maxHours")

        return {
            "vendorJobTemplateId": f"tmpl_{request.gpu_type}_{int(time.time() * 1000)}",
            "priceEstimate": round(base_price_per_hour * request.max_hours, 2),
            "currency": "USD",
            "etaMinutes": math.ceil(request.max_hours * 60),
        }

    @app.post("/submit-job")
    def submit_job(
        body: Optional[Dict[str, Any]] = Body(default=None),
        authorization: Optional[str] = Header(default=None),
        x_vendor_id: Optional[str] = Header(default=None),
    ):
        if not authorized(authorization):
            return _error(401, "Unauthorized")
        try:
            request = SubmitRequest.model_validate(body or {})
        except ValidationError:
            return _error(400, "Missing vendorJobTemplateId")

        if not request.payment_tx_id:
            return _error(402, "Payment required", headers={"x402-tx-id": f"mock_tx_{int(time.time() * 1000)}"})

        job = MockJob(
            vendor_job_id=f"vgpu_{uuid.uuid4().hex[:8]}",
            vendor_id=x_vendor_id,
            logs=(f"Starting job {request.template_id}",),
        )
        goal = request.job_params.get("goal")
        if goal:
            job = replace(job, logs=job.logs + (f"Goal: {goal}",))
        arena.add(job)
        logger.info(f"Accepted job {job.vendor_job_id} paid with {request.payment_tx_id}")

        return JSONResponse(
            content={"vendorJobId": job.vendor_job_id, "status": job.status},
            headers={"x-payment-response": encode_payment_receipt(request.payment_tx_id, network="mock")},
        )

    @app.get("/job-status")
    def job_status(
        vendor_job_id: Optional[str] = Query(default=None, alias="vendorJobId"),
        authorization: Optional[str] = Header(default=None),
    ):
        if not authorized(authorization):
            return _error(401, "Unauthorized")
        if not vendor_job_id:
            return _error(400, "Missing vendorJobId")

        job = arena.poll(vendor_job_id, should_fail)
        if job is None:
            return _error(404, "Job not found")

        payload = {"status": job.status, "progress": job.progress, "logs": list(job.logs)}
        if job.status == "completed":
            payload.update(
                estimatedRemainingMinutes=0,
                costSoFar=base_price_per_hour,
                finalMetrics={"loss": 0.78, "val_accuracy": 0.87},
                artifactUrl="https://fake-storage/artifacts/model.bin",
            )
        elif job.status == "failed":
            payload.update(
                estimatedRemainingMinutes=0,
                costSoFar=base_price_per_hour / 2,
                errorMessage="Simulated vendor failure",
            )
        else:
            payload.update(
                estimatedRemainingMinutes=math.ceil((1 - job.progress) * 60),
                costSoFar=round(job.progress * base_price_per_hour, 2),
            )
        return payload

    return app


def main():
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    mock_settings = MockVendorSettings()
    app = create_mock_vendor_app(
        mock_settings.GPU_VENDOR_SECRET,
        base_price_per_hour=mock_settings.BASE_PRICE_PER_HOUR,
        fail_vendor_id=mock_settings.FAIL_VENDOR_ID,
        fail_rate=mock_settings.FAIL_RATE,
    )
    uvicorn.run(app, host="0.0.0.0", port=mock_settings.PORT)


if __name__ == "__main__":
    main()
