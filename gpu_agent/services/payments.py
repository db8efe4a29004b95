"""Payment receipt lookup for settled submissions.

Vendors that settle through a payment facilitator attach a base64-encoded
JSON settlement receipt to the submit response. The receipt is optional: a
missing or undecodable header simply yields no receipt.
"""

import base64
import binascii
import json
import logging
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class PaymentReceipt(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    tx_id: str = Field(alias="transaction", min_length=1)
    network: Optional[str] = None
    payer: Optional[str] = None


def read_payment_receipt(headers: Mapping[str, str], header_name: str) -> Optional[PaymentReceipt]:
    """Decode the settlement receipt header, if present and well formed."""
    encoded = headers.get(header_name)
    if not encoded:
        return None

    try:
        decoded = base64.b64decode(encoded, validate=True)
        receipt = PaymentReceipt.model_validate(json.loads(decoded))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Ignoring malformed payment receipt header {header_name}: {e}")
        return None

    if not receipt.success:
        logger.warning(f"Payment receipt reports unsuccessful settlement for tx {receipt.tx_id}")
        return None
    return receipt


def encode_payment_receipt(tx_id: str, network: Optional[str] = None, payer: Optional[str] = None) -> str:
    """Build a receipt header value (used by the vendor mock)."""
    payload = {"success": True, "transaction": tx_id, "network": network, "payer": payer}
    return base64.b64encode(json.dumps(payload).encode()).decode()
