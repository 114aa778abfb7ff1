import re
import logging
from decimal import Decimal, InvalidOperation
from typing import List, Dict, Any, Optional

from pydantic import BaseModel

from mrm_billing.modules.errors import ValidationFailure

logger = logging.getLogger(__name__)

# ==========================================
# HELPERS
# ==========================================


def to_dec(v):
    if v is None:
        return Decimal("0.00")
    if isinstance(v, Decimal):
        return v
    if isinstance(v, (int, float)):
        return Decimal(str(v))
    return Decimal(str(v).replace(",", ""))


def parse_amount(v, field: str = "amount") -> Decimal:
    """Lenient parse for user-entered amounts.

    Blank or malformed input counts as zero; a source may simply not apply.
    """
    if v is None or (isinstance(v, str) and not v.strip()):
        return Decimal("0")
    if isinstance(v, bool):
        logger.warning(f"Ignoring boolean value for {field}")
        return Decimal("0")
    try:
        if isinstance(v, str):
            v = re.sub(r"[₹£$,\s]", "", v)
        val = to_dec(v)
    except (InvalidOperation, ValueError, TypeError):
        logger.warning(f"Could not parse {field}={v!r}, defaulting to 0")
        return Decimal("0")
    if not val.is_finite():
        logger.warning(f"Non-finite {field}={v!r}, defaulting to 0")
        return Decimal("0")
    return val


def format_currency(value, symbol: str = "₹"):
    try:
        val = to_dec(value)
        sign = "-" if val < 0 else ""
        return "{}{}{:,.2f}".format(sign, symbol, abs(val))
    except (ValueError, TypeError, ArithmeticError):
        return str(value)


def format_percent(ratio) -> str:
    try:
        return "{:.0f}%".format(to_dec(ratio) * 100)
    except (ValueError, TypeError, ArithmeticError):
        return str(ratio)


# ==========================================
# INCOME SOURCES
# ==========================================


class IncomeSource(BaseModel):
    id: str
    label: str
    currency: str = "INR"

    model_config = {"frozen": True}

    @property
    def is_foreign(self) -> bool:
        return self.currency != "INR"


# Order is the display order used by forms and exports.
INCOME_SOURCES: List[IncomeSource] = [
    IncomeSource(id="iprs", label="IPRS"),
    IncomeSource(id="prs", label="PRS", currency="GBP"),
    IncomeSource(id="sound_exchange", label="Sound Exchange", currency="USD"),
    IncomeSource(id="isamra", label="ISAMRA"),
    IncomeSource(id="ascap", label="ASCAP", currency="USD"),
    IncomeSource(id="ppl", label="PPL"),
]

SOURCE_IDS = [s.id for s in INCOME_SOURCES]
FOREIGN_CURRENCIES = sorted({s.currency for s in INCOME_SOURCES if s.is_foreign})


# ==========================================
# PRIMITIVES
# ==========================================


def convert(amount, rate) -> Decimal:
    """Foreign amount to local currency. Missing amount or rate gives zero."""
    amount = parse_amount(amount)
    rate = parse_amount(rate, "rate")
    if not amount or not rate:
        return Decimal("0")
    return amount * rate


def validate_fee_ratio(value) -> Decimal:
    try:
        ratio = to_dec(value) if value is not None else None
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationFailure(f"Service fee is not a number: {value!r}")
    if ratio is None or not ratio.is_finite():
        raise ValidationFailure(f"Service fee is not a number: {value!r}")
    if ratio < 0 or ratio > 1:
        raise ValidationFailure(f"Service fee must be between 0 and 1, got {ratio}")
    return ratio


def commission(amount, ratio) -> Decimal:
    return parse_amount(amount) * validate_fee_ratio(ratio)


def calculate_totals(commissions: List[Decimal], tax_rate) -> Dict[str, Decimal]:
    total_commission = sum((to_dec(c) for c in commissions), Decimal("0"))
    tax_amount = total_commission * to_dec(tax_rate)
    return {
        "total_commission": total_commission,
        "gst": tax_amount,
        "total_invoice": total_commission + tax_amount,
    }


# ==========================================
# COMMISSION CALCULATOR ENGINE
# ==========================================


class CommissionCalculator:
    def __init__(self, tax_rate, sources: Optional[List[IncomeSource]] = None):
        self.tax_rate = to_dec(tax_rate)
        self.sources = sources or INCOME_SOURCES

    def calculate(
        self,
        amounts: Dict[str, Any],
        fee_ratio,
        rates: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        amounts: raw per-source value, in the source's own currency.
        rates: local currency per foreign unit, keyed by currency code.

        Returns { "lines": [ {source, currency, raw_amount, rate, amount, commission} ],
                  "total_commission", "gst", "total_invoice" }
        """
        ratio = validate_fee_ratio(fee_ratio)
        lines = []

        for source in self.sources:
            raw = parse_amount(amounts.get(source.id), source.id)
            if source.is_foreign:
                rate = parse_amount(rates.get(source.currency), f"{source.currency} rate")
                local = convert(raw, rate)
            else:
                rate = Decimal("1")
                local = raw

            lines.append(
                {
                    "source": source.id,
                    "currency": source.currency,
                    "raw_amount": raw,
                    "rate": rate,
                    "amount": local,
                    "commission": local * ratio,
                }
            )

        result = calculate_totals([line["commission"] for line in lines], self.tax_rate)
        result["lines"] = lines
        return result
