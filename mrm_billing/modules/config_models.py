import os
from decimal import Decimal
from typing import Dict, Union

import yaml
from pydantic import BaseModel, Field, field_validator

from mrm_billing.modules.periods import FinancialYear

# --- Settings Models ---

class ExchangeRates(BaseModel):
    """Local currency (INR) per one foreign unit."""
    GBP: Decimal = Decimal("110.50")
    USD: Decimal = Decimal("83.50")

    @field_validator("GBP", "USD", mode="before")
    def parse_rate(cls, v):
        if v is None: return Decimal("0")
        if isinstance(v, float): return Decimal(str(v))
        return v

    def rate_for(self, currency: str) -> Decimal:
        if currency == "INR":
            return Decimal("1")
        return getattr(self, currency, Decimal("0"))

class TaxRules(BaseModel):
    gst_rate: Decimal = Decimal("0.18")
    default_service_fee: Decimal = Decimal("0.10")

    @field_validator("gst_rate", "default_service_fee", mode="before")
    def parse_ratio(cls, v):
        if isinstance(v, float): return Decimal(str(v))
        return v

class SettingsModel(BaseModel):
    financial_year: FinancialYear = Field(default_factory=lambda: FinancialYear.starting(2025))
    exchange_rates: ExchangeRates = Field(default_factory=ExchangeRates)
    tax_rules: TaxRules = Field(default_factory=TaxRules)

    @property
    def tax_rate(self) -> Decimal:
        return self.tax_rules.gst_rate

    def save(self, path: Union[str, os.PathLike]):
        data = self.model_dump(mode="json")
        with open(str(path), "w") as f:
            yaml.dump(data, f, sort_keys=False)

    @classmethod
    def from_dict(cls, data: Dict) -> "SettingsModel":
        data = dict(data or {})
        # Flat legacy keys from the original settings collection
        if "gbpToInrRate" in data or "usdToInrRate" in data:
            rates = dict(data.get("exchange_rates", {}))
            if "gbpToInrRate" in data:
                rates["GBP"] = data.pop("gbpToInrRate")
            if "usdToInrRate" in data:
                rates["USD"] = data.pop("usdToInrRate")
            data["exchange_rates"] = rates
        if "gstRate" in data:
            rules = dict(data.get("tax_rules", {}))
            rules["gst_rate"] = data.pop("gstRate")
            data["tax_rules"] = rules
        if "financialYear" in data:
            data["financial_year"] = data.pop("financialYear")
        return cls(**data)
