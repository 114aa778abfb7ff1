import os
import csv
import logging
from decimal import Decimal
from pathlib import Path
from typing import List, Dict, Any, Iterable, Optional

from mrm_billing.modules.errors import ValidationFailure
from mrm_billing.modules.fee_calculator import INCOME_SOURCES, format_percent
from mrm_billing.modules.models import BillingEntry, ClientModel
from mrm_billing.modules.lifecycle import INVOICE_STATUS_LABELS
from mrm_billing.modules.report_models import OutstandingReport

logger = logging.getLogger(__name__)

REPORT_TYPES = ["client-master", "royalty", "commission", "gst", "invoice", "outstanding"]


class ExportService:
    """Writes report CSVs. Column order and number formatting live here only."""

    def __init__(self, output_dir: os.PathLike, file_prefix: str = "MRM"):
        self.output_dir = Path(output_dir)
        self.file_prefix = file_prefix

    def _num(self, amount: Decimal) -> str:
        return f"{Decimal(amount):.2f}"

    def client_master_rows(self, clients: Iterable[ClientModel]) -> List[List[Any]]:
        rows = [["Client ID", "Client Name", "Type", "Service Fee", "Active"]]
        for client in clients:
            rows.append([
                client.id,
                client.name,
                client.category.value.replace("_", " ").title(),
                format_percent(client.fee),
                "Yes" if client.active else "No",
            ])
        return rows

    def royalty_rows(self, entries: Iterable[BillingEntry]) -> List[List[Any]]:
        header = ["Client ID", "Client Name", "Month"]
        for source in INCOME_SOURCES:
            if source.is_foreign:
                header.append(f"{source.label} {source.currency}")
            header.append(f"{source.label} INR")
        header.append("Total")
        rows = [header]
        for e in entries:
            row = [e.client_id, e.client_name, e.month_label]
            for source in INCOME_SOURCES:
                line = e.sources[source.id]
                if source.is_foreign:
                    row.append(self._num(line.raw_amount))
                row.append(self._num(line.amount))
            row.append(self._num(sum((l.amount for l in e.sources.values()), Decimal("0"))))
            rows.append(row)
        return rows

    def commission_rows(self, entries: Iterable[BillingEntry]) -> List[List[Any]]:
        header = ["Client ID", "Client Name", "Month", "Fee %"]
        header += [f"{s.label} Comis" for s in INCOME_SOURCES]
        header.append("Total Commission")
        rows = [header]
        for e in entries:
            row = [e.client_id, e.client_name, e.month_label, format_percent(e.service_fee)]
            row += [self._num(e.sources[s.id].commission) for s in INCOME_SOURCES]
            row.append(self._num(e.total_commission))
            rows.append(row)
        return rows

    def gst_rows(self, entries: Iterable[BillingEntry]) -> List[List[Any]]:
        rows = [["Client ID", "Client Name", "Month", "Total Commission", "GST %", "GST Amount", "Total Invoice"]]
        for e in entries:
            rows.append([
                e.client_id,
                e.client_name,
                e.month_label,
                self._num(e.total_commission),
                format_percent(e.gst_rate),
                self._num(e.gst),
                self._num(e.total_invoice),
            ])
        return rows

    def invoice_rows(self, entries: Iterable[BillingEntry]) -> List[List[Any]]:
        rows = [["Client ID", "Client Name", "Month", "Invoice No", "Invoice Value",
                 "Status", "Invoice Status", "Date", "Total Outstanding"]]
        for e in entries:
            rows.append([
                e.client_id,
                e.client_name,
                e.month_label,
                e.invoice_number or "-",
                self._num(e.total_invoice),
                e.status.value,
                INVOICE_STATUS_LABELS[e.invoice_status],
                e.invoice_date.strftime("%d/%m/%Y") if e.invoice_date else "-",
                self._num(e.total_outstanding),
            ])
        return rows

    def outstanding_rows(self, report: OutstandingReport) -> List[List[Any]]:
        rows = [["Client ID", "Client Name", "Draft Entries", "Submitted Entries",
                 "Total Value", "Outstanding", "Status"]]
        for r in report.rows:
            rows.append([
                r.client_id,
                r.client_name,
                r.draft_count,
                r.submitted_count,
                self._num(r.total_value),
                self._num(r.latest_outstanding),
                "Complete" if r.complete else "Pending",
            ])
        return rows

    def build_rows(
        self,
        report_type: str,
        entries: Iterable[BillingEntry] = (),
        clients: Iterable[ClientModel] = (),
        outstanding: Optional[OutstandingReport] = None,
    ) -> List[List[Any]]:
        if report_type == "client-master":
            return self.client_master_rows(clients)
        if report_type == "royalty":
            return self.royalty_rows(entries)
        if report_type == "commission":
            return self.commission_rows(entries)
        if report_type == "gst":
            return self.gst_rows(entries)
        if report_type == "invoice":
            return self.invoice_rows(entries)
        if report_type == "outstanding":
            return self.outstanding_rows(outstanding or OutstandingReport())
        raise ValidationFailure(f"Unknown report type: {report_type}")

    def filename_for(self, report_type: str, suffix: Optional[str] = None) -> str:
        name = "_".join(part.title() for part in report_type.split("-"))
        if suffix:
            return f"{self.file_prefix}_{name}_Report_{suffix}.csv"
        return f"{self.file_prefix}_{name}_Report.csv"

    def write(self, report_type: str, rows: List[List[Any]], suffix: Optional[str] = None) -> Path:
        os.makedirs(self.output_dir, exist_ok=True)
        out_path = self.output_dir / self.filename_for(report_type, suffix)
        with open(out_path, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerows(rows)
        logger.info(f"Wrote {len(rows) - 1} rows to {out_path}")
        return out_path
