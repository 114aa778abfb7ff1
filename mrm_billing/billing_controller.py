import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from mrm_billing.config import BillingConfig
from mrm_billing.modules.errors import ValidationFailure
from mrm_billing.modules.models import BillingEntry, BillingInput
from mrm_billing.modules.periods import Month
from mrm_billing.modules.report_models import BillingSummary, ClientReport, DashboardStats, OutstandingReport
from mrm_billing.services.client_directory import ClientDirectory
from mrm_billing.services.entry_store import EntryStore
from mrm_billing.services.export_service import ExportService
from mrm_billing.services.financials_service import FinancialsService
from mrm_billing.services.outstanding_service import OutstandingService
from mrm_billing.services.report_service import ReportService

logger = logging.getLogger(__name__)


def parse_inputs(data: Union[BillingInput, Dict[str, Any]]) -> BillingInput:
    if isinstance(data, BillingInput):
        return data
    try:
        return BillingInput(**data)
    except ValidationError as e:
        raise ValidationFailure(f"Invalid billing input: {e}") from e


class BillingController:
    """Orchestrates the save pipeline across the billing layers."""

    def __init__(
        self,
        config: BillingConfig,
        directory: Optional[ClientDirectory] = None,
        store: Optional[EntryStore] = None,
    ):
        self.config = config
        self.directory = directory or ClientDirectory.from_config(config)
        self.store = store if store is not None else EntryStore(config.entries_path)
        self.outstanding = OutstandingService(self.store)
        self.reports = ReportService()

    @property
    def settings(self):
        return self.config.settings

    @property
    def active_fy(self) -> int:
        return self.settings.financial_year.start_year

    def _fy(self, fy_start: Optional[int]) -> int:
        return int(fy_start) if fy_start is not None else self.active_fy

    def preview(self, data: Union[BillingInput, Dict[str, Any]]) -> BillingEntry:
        """Builds the entry that save() would store, without writing it."""
        inputs = parse_inputs(data)
        fy_start = self._fy(inputs.fy_start)
        inputs = inputs.model_copy(update={"fy_start": fy_start})

        # 1. Data Assembly Layer
        client = self.directory.get_client(inputs.client_id)
        if not client.active:
            logger.warning(f"Billing inactive client {client.id}")

        carried = None
        if inputs.previous_outstanding is None and not self.store.exists(client.id, inputs.month, fy_start):
            carried = self.outstanding.carry_in(client.id, inputs.month, fy_start)
        elif inputs.previous_outstanding is None:
            carried = self.store.get(client.id, inputs.month, fy_start).previous_outstanding

        # 2. Business Logic Layer
        return FinancialsService(self.settings).build_entry(inputs, client, carried)

    def save_entry(self, data: Union[BillingInput, Dict[str, Any]]) -> BillingEntry:
        entry = self.preview(data)
        # 3. Persistence Layer
        stored = self.store.save(entry)
        logger.info(
            f"Saved {stored.key}: commission={stored.total_commission} "
            f"gst={stored.gst} invoice={stored.total_invoice} status={stored.status.value}"
        )
        return stored

    def get_entry(self, client_id: str, month, fy_start: Optional[int] = None) -> BillingEntry:
        return self.store.get(client_id, Month.parse(month), self._fy(fy_start))

    def delete_entry(self, client_id: str, month, fy_start: Optional[int] = None) -> BillingEntry:
        return self.store.delete(client_id, Month.parse(month), self._fy(fy_start))

    def update_status(
        self, client_id: str, month, fy_start: Optional[int] = None,
        status=None, invoice_status=None, strict: bool = False,
    ) -> BillingEntry:
        return self.store.update_status(
            client_id, Month.parse(month), self._fy(fy_start),
            status=status, invoice_status=invoice_status, strict=strict,
        )

    def list_entries(self, month=None, client_id=None, status=None, fy_start: Optional[int] = None) -> List[BillingEntry]:
        if month is not None and client_id is None and status is None:
            return self.store.list_by_month(month, self._fy(fy_start))
        if client_id is not None and month is None and status is None:
            return self.store.list_by_client(client_id, fy_start)
        return self.store.find(month=month, client_id=client_id, status=status, fy_start=fy_start)

    # --- reports ---

    def summary(self, month=None, fy_start: Optional[int] = None) -> BillingSummary:
        return self.reports.summarize(self.store.all_entries(), month=month, fy_start=self._fy(fy_start))

    def client_report(self, client_id: str, fy_start: Optional[int] = None) -> ClientReport:
        client = self.directory.get_client(client_id)
        return self.reports.client_report(self.store.all_entries(), client_id, self._fy(fy_start), client)

    def dashboard(self, fy_start: Optional[int] = None) -> DashboardStats:
        entries = self.reports.filter_entries(self.store.all_entries(), fy_start=self._fy(fy_start))
        return self.reports.dashboard(self.directory.list_clients(), entries)

    def outstanding_report(self, fy_start: Optional[int] = None) -> OutstandingReport:
        entries = self.reports.filter_entries(self.store.all_entries(), fy_start=self._fy(fy_start))
        return self.reports.outstanding_report(self.directory.list_clients(), entries)

    def export(self, report_type: str, month=None, fy_start: Optional[int] = None,
               output_dir: Optional[Path] = None) -> Path:
        exporter = ExportService(output_dir or self.config.output_dir)
        fy = self._fy(fy_start)
        entries = self.list_entries(month=month, fy_start=fy) if month else self.store.find(fy_start=fy)
        rows = exporter.build_rows(
            report_type,
            entries=entries,
            clients=self.directory.list_clients(),
            outstanding=self.outstanding_report(fy) if report_type == "outstanding" else None,
        )
        suffix = Month.parse(month).value if month else str(fy)
        if report_type == "client-master":
            suffix = None
        return exporter.write(report_type, rows, suffix)
