"""Vendor reference data routes."""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from gpu_agent.database import get_db
from gpu_agent.schemas.run import VendorResponse
from gpu_agent.services.ledger import LedgerStore

router = APIRouter(prefix="/vendors", tags=["vendors"])


@router.get("", response_model=List[VendorResponse])
def list_vendors(db: Session = Depends(get_db)):
    """List configured vendors."""
    return [VendorResponse.model_validate(v) for v in LedgerStore(db).list_vendors()]
