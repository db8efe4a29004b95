"""Wire schemas for the vendor quote / submit / status protocol."""

from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


def _to_decimal(value: Any) -> Any:
    # JSON numbers arrive as floats; go through str to keep 1.4 as Decimal('1.4')
    if isinstance(value, float):
        return Decimal(str(value))
    return value


Money = Annotated[Decimal, BeforeValidator(_to_decimal)]


class VendorModel(BaseModel):
    """Base for vendor payloads: camelCase on the wire, snake_case in code."""

    model_config = ConfigDict(populate_by_name=True)


class QuoteRequest(VendorModel):
    job_type: str = Field(alias="jobType")
    gpu_type: str = Field(alias="gpuType")
    max_hours: float = Field(alias="maxHours", gt=0)
    job_metadata: Dict[str, Any] = Field(default_factory=dict, alias="jobMetadata")


class QuoteResponse(VendorModel):
    template_id: str = Field(alias="vendorJobTemplateId", min_length=1)
    price_estimate: Money = Field(alias="priceEstimate", ge=0, max_digits=12, decimal_places=4)
    currency: str = "USD"
    eta_minutes: int = Field(alias="etaMinutes", ge=0)


class SubmitRequest(VendorModel):
    template_id: str = Field(alias="vendorJobTemplateId")
    payment_tx_id: Optional[str] = Field(default=None, alias="x402TxId")
    job_params: Dict[str, Any] = Field(default_factory=dict, alias="jobParams")


class SubmitResponse(VendorModel):
    vendor_job_id: str = Field(alias="vendorJobId", min_length=1)
    status: Literal["running", "queued"] = "running"
    payment_tx_id: Optional[str] = Field(default=None, alias="paymentTxId")


class JobStatusResponse(VendorModel):
    status: Literal["running", "completed", "failed"]
    progress: float = 0.0
    logs: List[str] = Field(default_factory=list)
    estimated_remaining_minutes: Optional[float] = Field(default=None, alias="estimatedRemainingMinutes")
    cost_so_far: Optional[Money] = Field(default=None, alias="costSoFar")
    final_metrics: Optional[Dict[str, Any]] = Field(default=None, alias="finalMetrics")
    artifact_url: Optional[str] = Field(default=None, alias="artifactUrl")
    error_message: Optional[str] = Field(default=None, alias="errorMessage")
