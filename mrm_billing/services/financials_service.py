import datetime
from decimal import Decimal
from typing import Dict, Any, Optional

from mrm_billing.modules.config_models import SettingsModel
from mrm_billing.modules.fee_calculator import CommissionCalculator, FOREIGN_CURRENCIES
from mrm_billing.modules.models import (
    BillingEntry,
    BillingInput,
    ClientModel,
    SourceLine,
)
from mrm_billing.modules.periods import FinancialYear
from mrm_billing.services.outstanding_service import OutstandingService


class FinancialsService:
    """Turns raw period inputs into a fully derived billing entry. No I/O."""

    def __init__(self, settings: SettingsModel):
        self.settings = settings
        self.calculator = CommissionCalculator(settings.tax_rate)

    def resolve_rates(self, inputs: BillingInput) -> Dict[str, Decimal]:
        """Per-entry rates win over the configured defaults."""
        rates = {}
        for currency in FOREIGN_CURRENCIES:
            rate = inputs.exchange_rates.get(currency)
            if rate is None:
                rate = self.settings.exchange_rates.rate_for(currency)
            rates[currency] = rate
        return rates

    def calculate(self, inputs: BillingInput, fee_ratio) -> Dict[str, Any]:
        return self.calculator.calculate(inputs.amounts, fee_ratio, self.resolve_rates(inputs))

    def build_entry(
        self,
        inputs: BillingInput,
        client: ClientModel,
        previous_outstanding: Optional[Decimal] = None,
    ) -> BillingEntry:
        """The core math engine.

        previous_outstanding is the carried-in balance; an explicit value on
        the inputs takes precedence over it.
        """
        fy = FinancialYear.starting(inputs.fy_start or self.settings.financial_year.start_year)
        rates = self.resolve_rates(inputs)
        result = self.calculator.calculate(inputs.amounts, client.fee, rates)

        sources = {}
        for line in result["lines"]:
            sources[line["source"]] = SourceLine(
                currency=line["currency"],
                raw_amount=line["raw_amount"],
                rate=line["rate"],
                amount=line["amount"],
                commission=line["commission"],
                remarks=inputs.remarks.get(line["source"], ""),
            )

        previous = inputs.previous_outstanding
        if previous is None:
            previous = previous_outstanding if previous_outstanding is not None else Decimal("0")
        total_outstanding = inputs.total_outstanding
        if total_outstanding is None:
            total_outstanding = OutstandingService.combine(
                previous, inputs.current_outstanding, inputs.outstanding_operator
            )

        return BillingEntry(
            client_id=client.id,
            client_name=client.name,
            month=inputs.month,
            month_label=fy.month_label(inputs.month),
            financial_year=fy,
            sources=sources,
            exchange_rates=rates,
            service_fee=client.fee,
            total_commission=result["total_commission"],
            gst_rate=self.calculator.tax_rate,
            gst=result["gst"],
            total_invoice=result["total_invoice"],
            previous_outstanding=previous,
            current_outstanding=inputs.current_outstanding,
            outstanding_operator=inputs.outstanding_operator,
            total_outstanding=total_outstanding,
            invoice_date=inputs.invoice_date or datetime.date.today(),
            invoice_number=inputs.invoice_number,
            invoice_status=inputs.invoice_status,
            status=inputs.status,
        )
