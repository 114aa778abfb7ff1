import logging
from enum import Enum
from typing import Any, Optional

from mrm_billing.modules.errors import ValidationFailure

logger = logging.getLogger(__name__)


class EntryStatus(str, Enum):
    """Coarse draft/submitted flag kept for older reports."""
    DRAFT = "draft"
    SUBMITTED = "submitted"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    BILL_SENT = "bill_sent"
    AMOUNT_RECEIVED = "amount_received"
    OUTSTANDING = "outstanding"
    SUBMITTED = "submitted"


INVOICE_STATUS_LABELS = {
    InvoiceStatus.DRAFT: "Draft",
    InvoiceStatus.BILL_SENT: "Bill Sent",
    InvoiceStatus.AMOUNT_RECEIVED: "Amount Received",
    InvoiceStatus.OUTSTANDING: "Outstanding Payment",
    InvoiceStatus.SUBMITTED: "Submitted",
}

# Usual progression; only consulted when a caller asks for strict checking.
WORKFLOW_ORDER = [
    InvoiceStatus.DRAFT,
    InvoiceStatus.BILL_SENT,
    InvoiceStatus.AMOUNT_RECEIVED,
    InvoiceStatus.OUTSTANDING,
    InvoiceStatus.SUBMITTED,
]


def parse_entry_status(value: Any) -> EntryStatus:
    if isinstance(value, EntryStatus):
        return value
    try:
        return EntryStatus(str(value).strip().lower())
    except ValueError:
        raise ValidationFailure(f"Unknown entry status: {value!r}")


def parse_invoice_status(value: Any) -> InvoiceStatus:
    if isinstance(value, InvoiceStatus):
        return value
    text = str(value).strip().lower().replace(" ", "_")
    for status, label in INVOICE_STATUS_LABELS.items():
        if text in (status.value, label.lower().replace(" ", "_")):
            return status
    raise ValidationFailure(f"Unknown invoice status: {value!r}")


def is_forward(current: InvoiceStatus, new: InvoiceStatus) -> bool:
    return WORKFLOW_ORDER.index(new) >= WORKFLOW_ORDER.index(current)


def check_transition(
    current: Optional[Any], new: Any, strict: bool = False
) -> InvoiceStatus:
    """Resolve a requested workflow state.

    Any jump is allowed by default. With strict=True a move backwards in
    WORKFLOW_ORDER raises ValidationFailure.
    """
    new_status = parse_invoice_status(new)
    if current is None:
        return new_status
    current_status = parse_invoice_status(current)
    if not is_forward(current_status, new_status):
        if strict:
            raise ValidationFailure(
                f"Invoice status cannot move from {current_status.value} to {new_status.value}"
            )
        logger.info(
            f"Invoice status moved backwards: {current_status.value} -> {new_status.value}"
        )
    return new_status
