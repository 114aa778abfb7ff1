import re
import datetime
import json
import os
import uuid
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Union, Dict, Any
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from mrm_billing.modules.errors import CorruptStore, ValidationFailure
from mrm_billing.modules.fee_calculator import SOURCE_IDS, parse_amount, validate_fee_ratio
from mrm_billing.modules.lifecycle import (
    EntryStatus,
    InvoiceStatus,
    parse_entry_status,
    parse_invoice_status,
)
from mrm_billing.modules.periods import FinancialYear, Month

# Regex Patterns
PAN_PATTERN = r"^[A-Z]{5}[0-9]{4}[A-Z]{1}$"
GSTIN_PATTERN = r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z]{1}[1-9A-Z]{1}Z[0-9A-Z]{1}$"


class ClientCategory(str, Enum):
    COMPOSER = "composer"
    FILM_COMPOSER = "film_composer"
    LYRICIST = "lyricist"
    MUSIC_DIRECTOR = "music_director"
    SINGER = "singer"
    PRODUCER = "producer"
    PUBLISHER = "publisher"
    OTHER = "other"


class OutstandingOperator(str, Enum):
    ADD = "+"
    SUBTRACT = "-"

    @classmethod
    def parse(cls, value: Any) -> "OutstandingOperator":
        if isinstance(value, OutstandingOperator):
            return value
        text = str(value or "+").strip().lower()
        if text in ("+", "add", "plus"):
            return cls.ADD
        if text in ("-", "−", "subtract", "minus"):
            return cls.SUBTRACT
        raise ValidationFailure(f"Unknown outstanding operator: {value!r}")

    def apply(self, previous: Decimal, current: Decimal) -> Decimal:
        if self is OutstandingOperator.SUBTRACT:
            return previous - current
        return previous + current


def _to_decimal(v):
    if v is None: return Decimal("0")
    if isinstance(v, float): return Decimal(str(v))
    if isinstance(v, str): return Decimal(v)
    return v


class ClientModel(BaseModel):
    id: str
    name: str
    category: ClientCategory = ClientCategory.COMPOSER
    fee: Decimal = Decimal("0.10")
    active: bool = True
    email: Optional[str] = None
    phone: Optional[str] = None
    pan: Optional[str] = None
    gstin: Optional[str] = None

    @model_validator(mode='before')
    @classmethod
    def map_legacy_fields(cls, data: Any) -> Any:
        if isinstance(data, dict):
            if 'clientId' in data and 'id' not in data:
                data['id'] = data.pop('clientId')
            if 'type' in data and 'category' not in data:
                data['category'] = data.pop('type')
            if 'isActive' in data and 'active' not in data:
                data['active'] = data.pop('isActive')
            if 'panNumber' in data and 'pan' not in data:
                data['pan'] = data.pop('panNumber')
            if 'gstNumber' in data and 'gstin' not in data:
                data['gstin'] = data.pop('gstNumber')
        return data

    @field_validator('category', mode='before')
    def normalize_category(cls, v):
        if isinstance(v, str):
            return v.strip().lower().replace(" ", "_")
        return v

    @field_validator('fee', mode='before')
    def check_fee(cls, v):
        return validate_fee_ratio(v)

    @field_validator('pan')
    def validate_pan(cls, v):
        if v and not re.match(PAN_PATTERN, v):
            raise ValueError(f"Invalid PAN format: {v}")
        return v

    @field_validator('gstin')
    def validate_gstin(cls, v):
        if v and not re.match(GSTIN_PATTERN, v):
            raise ValueError(f"Invalid GSTIN format: {v}")
        return v

    @property
    def display_name(self) -> str:
        return f"{self.name} ({self.id})"


class SourceLine(BaseModel):
    """One income channel of a billing entry, raw and derived."""
    currency: str = "INR"
    raw_amount: Decimal = Decimal("0")   # in `currency`
    rate: Decimal = Decimal("1")         # INR per unit of `currency`
    amount: Decimal = Decimal("0")       # converted to INR
    commission: Decimal = Decimal("0")
    remarks: str = ""

    @field_validator('raw_amount', 'rate', 'amount', 'commission', mode='before')
    def parse_currency(cls, v):
        return _to_decimal(v)


class BillingInput(BaseModel):
    """Raw period inputs as entered by a user; nothing here is derived."""
    client_id: str
    month: Month
    fy_start: Optional[int] = None
    amounts: Dict[str, Decimal] = {}
    remarks: Dict[str, str] = {}
    exchange_rates: Dict[str, Decimal] = {}
    invoice_date: Optional[datetime.date] = None
    invoice_number: Optional[str] = None
    invoice_status: InvoiceStatus = InvoiceStatus.DRAFT
    status: EntryStatus = EntryStatus.DRAFT
    previous_outstanding: Optional[Decimal] = None
    current_outstanding: Decimal = Decimal("0")
    outstanding_operator: OutstandingOperator = OutstandingOperator.ADD
    total_outstanding: Optional[Decimal] = None

    @model_validator(mode='before')
    @classmethod
    def map_form_fields(cls, data: Any) -> Any:
        """Accepts the flat field names used by the billing form."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        amounts = dict(data.get('amounts') or {})
        remarks = dict(data.get('remarks') or {})
        flat_amounts = {
            'iprsAmt': 'iprs', 'prsGbp': 'prs', 'soundExUsd': 'sound_exchange',
            'isamraAmt': 'isamra', 'ascapUsd': 'ascap', 'pplAmt': 'ppl',
        }
        for key, source in flat_amounts.items():
            if key in data:
                amounts.setdefault(source, data.pop(key))
        for key, source in (('iprsRemarks', 'iprs'), ('prsRemarks', 'prs')):
            if key in data:
                remarks.setdefault(source, data.pop(key))
        data['amounts'] = amounts
        data['remarks'] = remarks

        rates = dict(data.get('exchange_rates') or {})
        if 'gbpToInrRate' in data:
            rates.setdefault('GBP', data.pop('gbpToInrRate'))
        if 'usdToInrRate' in data:
            rates.setdefault('USD', data.pop('usdToInrRate'))
        data['exchange_rates'] = rates

        renames = {
            'clientId': 'client_id', 'invoiceDate': 'invoice_date',
            'invoiceNumber': 'invoice_number', 'invoiceStatus': 'invoice_status',
            'previousOutstanding': 'previous_outstanding',
            'currentMonthOutstanding': 'current_outstanding',
            'outstandingOperator': 'outstanding_operator',
            'totalOutstanding': 'total_outstanding',
        }
        for old, new in renames.items():
            if old in data and new not in data:
                data[new] = data.pop(old)
        if 'financialYear' in data and 'fy_start' not in data:
            fy = data.pop('financialYear')
            data['fy_start'] = fy.get('startYear', fy.get('start_year')) if isinstance(fy, dict) else fy
        return data

    @field_validator('month', mode='before')
    def parse_month(cls, v):
        return Month.parse(v)

    @field_validator('amounts', mode='before')
    def parse_amounts(cls, v):
        unknown = set(v or {}) - set(SOURCE_IDS)
        if unknown:
            raise ValidationFailure(f"Unknown income source(s): {', '.join(sorted(unknown))}")
        return {k: parse_amount(val, k) for k, val in (v or {}).items()}

    @field_validator('exchange_rates', mode='before')
    def parse_rates(cls, v):
        return {str(k).upper(): parse_amount(val, f"{k} rate") for k, val in (v or {}).items() if val not in (None, "")}

    @field_validator('current_outstanding', mode='before')
    def parse_current(cls, v):
        return parse_amount(v, 'current_outstanding')

    @field_validator('previous_outstanding', 'total_outstanding', mode='before')
    def parse_optional(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return parse_amount(v)

    @field_validator('invoice_date', mode='before')
    def parse_date(cls, v):
        if v in (None, ""):
            return None
        if isinstance(v, datetime.datetime):
            return v.date()
        if isinstance(v, str):
            try:
                return datetime.datetime.strptime(v[:10], "%Y-%m-%d").date()
            except ValueError:
                raise ValueError("Incorrect data format, should be YYYY-MM-DD")
        return v

    @field_validator('invoice_status', mode='before')
    def parse_inv_status(cls, v):
        return parse_invoice_status(v or InvoiceStatus.DRAFT)

    @field_validator('status', mode='before')
    def parse_status(cls, v):
        return parse_entry_status(v or EntryStatus.DRAFT)

    @field_validator('outstanding_operator', mode='before')
    def parse_operator(cls, v):
        return OutstandingOperator.parse(v)


class BillingEntry(BaseModel):
    """A fully derived billing record for one client, month and financial year."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    client_id: str
    client_name: str
    month: Month
    month_label: str
    financial_year: FinancialYear

    sources: Dict[str, SourceLine]
    exchange_rates: Dict[str, Decimal] = {}
    service_fee: Decimal

    total_commission: Decimal = Decimal("0")
    gst_rate: Decimal = Decimal("0.18")
    gst: Decimal = Decimal("0")
    total_invoice: Decimal = Decimal("0")

    previous_outstanding: Decimal = Decimal("0")
    current_outstanding: Decimal = Decimal("0")
    outstanding_operator: OutstandingOperator = OutstandingOperator.ADD
    total_outstanding: Decimal = Decimal("0")

    invoice_date: Optional[datetime.date] = None
    invoice_number: Optional[str] = None
    invoice_status: InvoiceStatus = InvoiceStatus.DRAFT
    status: EntryStatus = EntryStatus.DRAFT

    created_at: datetime.datetime = Field(default_factory=datetime.datetime.now)
    updated_at: datetime.datetime = Field(default_factory=datetime.datetime.now)

    @field_validator('service_fee', 'total_commission', 'gst_rate', 'gst', 'total_invoice',
                     'previous_outstanding', 'current_outstanding', 'total_outstanding', mode='before')
    def parse_currency(cls, v):
        return _to_decimal(v)

    @field_validator('sources')
    def check_sources(cls, v):
        missing = [s for s in SOURCE_IDS if s not in v]
        if missing:
            raise ValueError(f"Billing entry is missing income source(s): {', '.join(missing)}")
        return v

    @property
    def key(self) -> str:
        return entry_key(self.client_id, self.month, self.financial_year.start_year)

    @property
    def fy_start(self) -> int:
        return self.financial_year.start_year


def entry_key(client_id: str, month: Union[Month, str], fy_start: int) -> str:
    return f"{client_id}_{Month.parse(month).value}_{int(fy_start)}"


# --- Registry Models ---

class EntryRegistry(BaseModel):
    entries: Dict[str, BillingEntry] = {}
    revision: int = 0

    def get_entry(self, key: str) -> Optional[BillingEntry]:
        return self.entries.get(key)

    def upsert(self, entry: BillingEntry) -> BillingEntry:
        """Replace whatever is stored under the entry's key, keeping its identity."""
        existing = self.entries.get(entry.key)
        now = datetime.datetime.now()
        if existing:
            entry = entry.model_copy(update={
                "id": existing.id,
                "created_at": existing.created_at,
                "updated_at": now,
            })
        else:
            entry = entry.model_copy(update={"updated_at": now})
        self.entries[entry.key] = entry
        self.revision += 1
        return entry

    def remove(self, key: str) -> Optional[BillingEntry]:
        removed = self.entries.pop(key, None)
        if removed is not None:
            self.revision += 1
        return removed

    def save(self, path: Union[str, os.PathLike]):
        path_str = str(path)
        data = self.model_dump(mode='json')

        # Sort for stable diffs: client, then FY, then FY month order
        def sort_key(item):
            _, entry = item
            month = Month.parse(entry['month'])
            return (entry['client_id'], entry['financial_year']['start_year'], month.fy_index)

        data['entries'] = dict(sorted(data['entries'].items(), key=sort_key))

        with open(path_str, 'w') as f:
            json.dump(data, f, indent=2, sort_keys=False)

    @classmethod
    def load(cls, path: Union[str, os.PathLike]) -> 'EntryRegistry':
        path_str = str(path)
        if not os.path.exists(path_str):
            return cls()
        with open(path_str, 'r') as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise CorruptStore(f"Billing entries file {path_str} is not valid JSON: {e}") from e
        try:
            return cls(**data)
        except (TypeError, ValidationError) as e:
            raise CorruptStore(f"Billing entries file {path_str} has invalid records: {e}") from e
