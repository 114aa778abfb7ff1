import logging
from decimal import Decimal
from typing import Any, Optional

from mrm_billing.modules.fee_calculator import parse_amount
from mrm_billing.modules.models import BillingEntry, OutstandingOperator
from mrm_billing.modules.periods import Month, previous_period

logger = logging.getLogger(__name__)


class OutstandingService:
    """Carries a client's closing outstanding balance into the next month.

    Advisory only: the carried value is read once when an entry is first
    created and is never re-validated afterwards.
    """

    def __init__(self, store):
        self.store = store

    @staticmethod
    def combine(previous: Any, current: Any, operator: Any = OutstandingOperator.ADD) -> Decimal:
        return OutstandingOperator.parse(operator).apply(
            parse_amount(previous, "previous_outstanding"),
            parse_amount(current, "current_outstanding"),
        )

    def previous_entry(self, client_id: str, month: Month, fy_start: int) -> Optional[BillingEntry]:
        prev_month, prev_fy = previous_period(month, fy_start)
        return self.store.find_one(client_id, prev_month, prev_fy)

    def carry_in(self, client_id: str, month: Month, fy_start: int) -> Decimal:
        """Closing balance of the calendar-preceding month, or zero."""
        prev = self.previous_entry(client_id, month, fy_start)
        if prev is None:
            return Decimal("0")
        logger.info(
            f"Carrying outstanding {prev.total_outstanding} for {client_id} "
            f"from {prev.month_label} into {Month.parse(month).value}/{fy_start}"
        )
        return prev.total_outstanding
