from decimal import Decimal
from typing import List, Optional, Dict

from pydantic import BaseModel, Field

from mrm_billing.modules.fee_calculator import SOURCE_IDS, FOREIGN_CURRENCIES
from mrm_billing.modules.lifecycle import InvoiceStatus
from mrm_billing.modules.models import BillingEntry
from mrm_billing.modules.periods import Month


def _zero_by_source() -> Dict[str, Decimal]:
    return {s: Decimal("0") for s in SOURCE_IDS}


def _zero_by_currency() -> Dict[str, Decimal]:
    return {c: Decimal("0") for c in FOREIGN_CURRENCIES}


def _zero_by_invoice_status() -> Dict[str, int]:
    return {s.value: 0 for s in InvoiceStatus}


class BillingSummary(BaseModel):
    month: Optional[Month] = None
    fy_start: Optional[int] = None

    total_entries: int = 0
    draft_count: int = 0
    submitted_count: int = 0
    invoice_status_counts: Dict[str, int] = Field(default_factory=_zero_by_invoice_status)

    source_totals: Dict[str, Decimal] = Field(default_factory=_zero_by_source, description="Converted INR per source")
    commission_totals: Dict[str, Decimal] = Field(default_factory=_zero_by_source)
    foreign_totals: Dict[str, Decimal] = Field(default_factory=_zero_by_currency, description="Raw foreign amounts per currency")

    total_commission: Decimal = Decimal("0")
    total_gst: Decimal = Decimal("0")
    total_invoice: Decimal = Decimal("0")
    total_outstanding: Decimal = Decimal("0")


class ClientReport(BaseModel):
    client_id: str
    client_name: Optional[str] = None
    fy_start: int
    entries: List[BillingEntry] = []
    summary: BillingSummary


class DashboardStats(BaseModel):
    total_clients: int = 0
    active_clients: int = 0
    clients_with_entries: int = 0
    total_entries: int = 0
    draft_count: int = 0
    submitted_count: int = 0
    total_commission: Decimal = Decimal("0")
    total_invoice: Decimal = Decimal("0")


class OutstandingRow(BaseModel):
    client_id: str
    client_name: str
    draft_count: int = 0
    submitted_count: int = 0
    total_value: Decimal = Decimal("0")
    latest_outstanding: Decimal = Decimal("0")

    @property
    def complete(self) -> bool:
        return self.draft_count == 0


class OutstandingReport(BaseModel):
    rows: List[OutstandingRow] = []
    total_drafts: int = 0
    total_submitted: int = 0
    total_value: Decimal = Decimal("0")
    total_outstanding: Decimal = Decimal("0")
