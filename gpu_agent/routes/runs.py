"""Agent control routes: start, tick, status."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from gpu_agent.database import get_db
from gpu_agent.errors import ServiceError
from gpu_agent.schemas.run import (
    JobResponse,
    ObservationResponse,
    PaymentResponse,
    RunResponse,
    RunStart,
    RunStatusResponse,
    TickRequest,
    TickResponse,
)
from gpu_agent.services import runs as run_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/agent", tags=["agent"])


@router.post("/start", response_model=RunResponse)
def start_run(
    data: RunStart,
    db: Session = Depends(get_db),
):
    """Start a new run."""
    try:
        run = run_service.start_run(db, data.owner_id, data.goal, data.budget_total)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return RunResponse.model_validate(run)


@router.post("/tick", response_model=TickResponse)
def tick(data: TickRequest, request: Request):
    """Advance a run by one step."""
    result = request.app.state.engine.tick(data.run_id)
    return TickResponse(message=result.message)


@router.get("/status/{run_id}", response_model=RunStatusResponse)
def get_status(
    run_id: str,
    db: Session = Depends(get_db),
):
    """Get run status, jobs, payments and the latest observations."""
    try:
        payload = run_service.get_run_status(db, run_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return RunStatusResponse(
        run=RunResponse.model_validate(payload.run),
        jobs=[JobResponse.model_validate(j) for j in payload.jobs],
        payments=[PaymentResponse.model_validate(p) for p in payload.payments],
        observations=[ObservationResponse.model_validate(o) for o in payload.observations],
    )
