"""Run-related Pydantic schemas for the control surface."""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

# Money is stored as Decimal but rendered as a JSON number
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class RunStart(ApiModel):
    """Schema for starting a new run."""

    owner_id: str = Field(alias="ownerId", min_length=1)
    goal: str = Field(min_length=1)
    budget_total: Money = Field(alias="budgetTotal", gt=0, max_digits=12, decimal_places=4)


class TickRequest(ApiModel):
    run_id: str = Field(alias="runId", min_length=1)


class TickResponse(BaseModel):
    message: str


class RunResponse(ApiModel):
    id: str
    owner_id: str = Field(serialization_alias="ownerId")
    goal: str
    budget_total: Money = Field(serialization_alias="budgetTotal")
    budget_remaining: Money = Field(serialization_alias="budgetRemaining")
    status: str
    created_at: Optional[datetime] = Field(default=None, serialization_alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, serialization_alias="updatedAt")


class VendorResponse(ApiModel):
    id: str
    name: str
    endpoint: str
    base_price_per_hour: Money = Field(serialization_alias="basePricePerHour")
    reliability_score: Optional[float] = Field(default=None, serialization_alias="reliabilityScore")
    supported_gpu_types: List[str] = Field(default_factory=list, serialization_alias="supportedGpuTypes")


class JobResponse(ApiModel):
    id: str
    run_id: str = Field(serialization_alias="runId")
    vendor_id: str = Field(serialization_alias="vendorId")
    vendor_job_id: Optional[str] = Field(default=None, serialization_alias="vendorJobId")
    status: str
    expected_cost: Optional[Money] = Field(default=None, serialization_alias="expectedCost")
    expected_duration_minutes: Optional[int] = Field(default=None, serialization_alias="expectedDurationMinutes")
    actual_cost: Optional[Money] = Field(default=None, serialization_alias="actualCost")
    artifact_url: Optional[str] = Field(default=None, serialization_alias="artifactUrl")
    error_message: Optional[str] = Field(default=None, serialization_alias="errorMessage")
    created_at: Optional[datetime] = Field(default=None, serialization_alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, serialization_alias="updatedAt")


class PaymentResponse(ApiModel):
    id: str
    run_id: str = Field(serialization_alias="runId")
    job_id: str = Field(serialization_alias="jobId")
    vendor_id: str = Field(serialization_alias="vendorId")
    amount: Money
    currency: str
    status: str
    external_tx_id: Optional[str] = Field(default=None, serialization_alias="externalTxId")
    error_message: Optional[str] = Field(default=None, serialization_alias="errorMessage")
    created_at: Optional[datetime] = Field(default=None, serialization_alias="createdAt")


class ObservationResponse(ApiModel):
    id: str
    run_id: str = Field(serialization_alias="runId")
    job_id: Optional[str] = Field(default=None, serialization_alias="jobId")
    type: str
    content: str
    timestamp: datetime


class RunStatusResponse(BaseModel):
    """Run status with jobs, payments and the most recent observations."""

    run: RunResponse
    jobs: List[JobResponse]
    payments: List[PaymentResponse]
    observations: List[ObservationResponse]
