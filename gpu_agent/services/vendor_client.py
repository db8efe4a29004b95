"""HTTP client for the vendor quote / submit / status protocol.

Each call returns a ``VendorOutcome`` carrying either the decoded response or
an error description; transport and protocol failures never raise out of the
client. The only retry is the single payment retry in ``submit``.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Generic, Optional, TypeVar, Union

import httpx
from pydantic import ValidationError

from gpu_agent.config import Settings
from gpu_agent.models.vendor import Vendor
from gpu_agent.schemas.vendor import (
    JobStatusResponse,
    QuoteRequest,
    QuoteResponse,
    SubmitRequest,
    SubmitResponse,
)
from gpu_agent.services.payments import read_payment_receipt

logger = logging.getLogger(__name__)

T = TypeVar("T")

PAYMENT_REQUIRED = 402


@dataclass(frozen=True)
class VendorOutcome(Generic[T]):
    """Result of one vendor call: ``value`` on success, ``error`` otherwise."""

    value: Optional[T] = None
    error: Optional[str] = None
    status_code: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T, status_code: Optional[int] = None) -> "VendorOutcome[T]":
        return cls(value=value, status_code=status_code)

    @classmethod
    def failure(cls, error: str, status_code: Optional[int] = None) -> "VendorOutcome[T]":
        return cls(error=error, status_code=status_code)


class VendorClient:
    """Client for vendor HTTP endpoints authenticated with a shared secret."""

    def __init__(
        self,
        http_client: httpx.Client,
        secret: str,
        vendor_id_header: str = "x-vendor-id",
        payment_tx_header: str = "x402-tx-id",
        payment_response_header: str = "x-payment-response",
    ):
        if not secret:
            raise ValueError("Missing required setting: GPU_VENDOR_SECRET")
        self.http = http_client
        self.secret = secret
        self.vendor_id_header = vendor_id_header
        self.payment_tx_header = payment_tx_header
        self.payment_response_header = payment_response_header

    @classmethod
    def from_settings(cls, settings: Settings, http_client: Optional[httpx.Client] = None) -> "VendorClient":
        if http_client is None:
            http_client = httpx.Client(timeout=settings.VENDOR_TIMEOUT_SECONDS)
        return cls(
            http_client,
            secret=settings.GPU_VENDOR_SECRET,
            vendor_id_header=settings.VENDOR_ID_HEADER,
            payment_tx_header=settings.PAYMENT_TX_HEADER,
            payment_response_header=settings.PAYMENT_RESPONSE_HEADER,
        )

    def close(self) -> None:
        self.http.close()

    def _build_headers(self, vendor: Vendor) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.secret}",
            self.vendor_id_header: vendor.id,
        }

    def _url(self, vendor: Vendor, path: str) -> str:
        return f"{vendor.endpoint.rstrip('/')}{path}"

    def _send(self, stage: str, method: str, url: str, vendor: Vendor, **kwargs) -> Union[httpx.Response, VendorOutcome]:
        try:
            return self.http.request(method, url, headers=self._build_headers(vendor), **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"Vendor {vendor.id} {stage} transport error: {e}")
            return VendorOutcome.failure(f"Vendor {stage} request error: {e.__class__.__name__}: {e}")

    def quote(self, vendor: Vendor, request: QuoteRequest) -> VendorOutcome[QuoteResponse]:
        """Request a price quote. No retry."""
        response = self._send(
            "quote", "POST", self._url(vendor, "/quote"), vendor,
            json=request.model_dump(by_alias=True),
        )
        if isinstance(response, VendorOutcome):
            return response

        if not response.is_success:
            logger.warning(f"Vendor {vendor.id} quote failed with status {response.status_code}")
            return VendorOutcome.failure(f"Vendor quote failed: {response.status_code}", response.status_code)

        try:
            quote = QuoteResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            return VendorOutcome.failure(f"Vendor quote returned invalid body: {e}", response.status_code)

        logger.info(f"Vendor {vendor.id} quoted {quote.price_estimate} {quote.currency} ({quote.template_id})")
        return VendorOutcome.success(quote, response.status_code)

    def submit(self, vendor: Vendor, request: SubmitRequest) -> VendorOutcome[SubmitResponse]:
        """Submit a job, answering a payment-required challenge at most once.

        The settlement tx id is resolved from the response body, then the
        payment receipt header, then the tx id header (falling back to the id
        disclosed by the challenge).
        """
        url = self._url(vendor, "/submit-job")

        response = self._send("submit", "POST", url, vendor, json=request.model_dump(by_alias=True, exclude_none=True))
        if isinstance(response, VendorOutcome):
            return response

        challenge_tx_id = None
        if response.status_code == PAYMENT_REQUIRED and request.payment_tx_id is None:
            challenge_tx_id = response.headers.get(self.payment_tx_header)
            if challenge_tx_id:
                logger.info(f"Vendor {vendor.id} requested payment, retrying with tx {challenge_tx_id}")
                paid_request = request.model_copy(update={"payment_tx_id": challenge_tx_id})
                response = self._send(
                    "submit", "POST", url, vendor,
                    json=paid_request.model_dump(by_alias=True, exclude_none=True),
                )
                if isinstance(response, VendorOutcome):
                    return response

        if not response.is_success:
            logger.warning(f"Vendor {vendor.id} submit failed with status {response.status_code}")
            return VendorOutcome.failure(f"Vendor submit failed: {response.status_code}", response.status_code)

        try:
            submitted = SubmitResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            return VendorOutcome.failure(f"Vendor submit returned invalid body: {e}", response.status_code)

        receipt = read_payment_receipt(response.headers, self.payment_response_header)
        header_tx_id = response.headers.get(self.payment_tx_header) or challenge_tx_id

        payment_tx_id = submitted.payment_tx_id
        if payment_tx_id is None and receipt is not None:
            payment_tx_id = receipt.tx_id
        if payment_tx_id is None:
            payment_tx_id = header_tx_id

        logger.info(f"Vendor {vendor.id} accepted job {submitted.vendor_job_id} (tx: {payment_tx_id})")
        return VendorOutcome.success(
            submitted.model_copy(update={"payment_tx_id": payment_tx_id}),
            response.status_code,
        )

    def status(self, vendor: Vendor, vendor_job_id: str) -> VendorOutcome[JobStatusResponse]:
        """Poll job status. No retry; the next tick polls again."""
        response = self._send(
            "status", "GET", self._url(vendor, "/job-status"), vendor,
            params={"vendorJobId": vendor_job_id},
        )
        if isinstance(response, VendorOutcome):
            return response

        if not response.is_success:
            logger.warning(f"Vendor {vendor.id} status for {vendor_job_id} failed with status {response.status_code}")
            return VendorOutcome.failure(f"Vendor status failed: {response.status_code}", response.status_code)

        try:
            job_status = JobStatusResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            return VendorOutcome.failure(f"Vendor status returned invalid body: {e}", response.status_code)

        return VendorOutcome.success(job_status, response.status_code)
