from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from mrm_billing.modules.lifecycle import EntryStatus
from mrm_billing.modules.models import BillingEntry, ClientModel
from mrm_billing.modules.periods import Month
from mrm_billing.modules.report_models import (
    BillingSummary,
    ClientReport,
    DashboardStats,
    OutstandingReport,
    OutstandingRow,
)


class ReportService:
    """Rolls stored entries up into summaries.
    Pure folds over whatever collection is passed in; callers do the fetching.
    """

    @staticmethod
    def filter_entries(
        entries: Iterable[BillingEntry],
        month=None,
        fy_start: Optional[int] = None,
        client_id: Optional[str] = None,
    ) -> List[BillingEntry]:
        month = Month.parse(month) if month is not None else None
        return [
            e
            for e in entries
            if (month is None or e.month is month)
            and (fy_start is None or e.fy_start == int(fy_start))
            and (client_id is None or e.client_id == client_id)
        ]

    @staticmethod
    def fold(summary: BillingSummary, entry: BillingEntry) -> BillingSummary:
        """Adds one entry into a running summary (in place) and returns it."""
        summary.total_entries += 1
        if entry.status is EntryStatus.DRAFT:
            summary.draft_count += 1
        elif entry.status is EntryStatus.SUBMITTED:
            summary.submitted_count += 1
        inv = entry.invoice_status.value
        summary.invoice_status_counts[inv] = summary.invoice_status_counts.get(inv, 0) + 1

        for source_id, line in entry.sources.items():
            summary.source_totals[source_id] = summary.source_totals.get(source_id, Decimal("0")) + line.amount
            summary.commission_totals[source_id] = summary.commission_totals.get(source_id, Decimal("0")) + line.commission
            if line.currency != "INR":
                summary.foreign_totals[line.currency] = (
                    summary.foreign_totals.get(line.currency, Decimal("0")) + line.raw_amount
                )

        summary.total_commission += entry.total_commission
        summary.total_gst += entry.gst
        summary.total_invoice += entry.total_invoice
        summary.total_outstanding += entry.total_outstanding
        return summary

    def summarize(
        self,
        entries: Iterable[BillingEntry],
        month=None,
        fy_start: Optional[int] = None,
    ) -> BillingSummary:
        summary = BillingSummary(
            month=Month.parse(month) if month is not None else None,
            fy_start=fy_start,
        )
        for entry in self.filter_entries(entries, month=month, fy_start=fy_start):
            self.fold(summary, entry)
        return summary

    def client_report(
        self,
        entries: Iterable[BillingEntry],
        client_id: str,
        fy_start: int,
        client: Optional[ClientModel] = None,
    ) -> ClientReport:
        rows = self.filter_entries(entries, fy_start=fy_start, client_id=client_id)
        rows.sort(key=lambda e: e.month.fy_index)
        summary = BillingSummary(fy_start=fy_start)
        for entry in rows:
            self.fold(summary, entry)
        name = client.name if client else (rows[0].client_name if rows else None)
        return ClientReport(
            client_id=client_id,
            client_name=name,
            fy_start=fy_start,
            entries=rows,
            summary=summary,
        )

    def dashboard(
        self, clients: Iterable[ClientModel], entries: Iterable[BillingEntry]
    ) -> DashboardStats:
        clients = list(clients)
        entries = list(entries)
        summary = BillingSummary()
        for entry in entries:
            self.fold(summary, entry)
        return DashboardStats(
            total_clients=len(clients),
            active_clients=sum(1 for c in clients if c.active),
            clients_with_entries=len({e.client_id for e in entries}),
            total_entries=summary.total_entries,
            draft_count=summary.draft_count,
            submitted_count=summary.submitted_count,
            total_commission=summary.total_commission,
            total_invoice=summary.total_invoice,
        )

    def outstanding_report(
        self, clients: Iterable[ClientModel], entries: Iterable[BillingEntry]
    ) -> OutstandingReport:
        by_client: Dict[str, List[BillingEntry]] = {}
        for entry in entries:
            by_client.setdefault(entry.client_id, []).append(entry)

        names = {c.id: c.name for c in clients}
        report = OutstandingReport()
        for client_id, rows in by_client.items():
            rows.sort(key=lambda e: (e.fy_start, e.month.fy_index))
            row = OutstandingRow(
                client_id=client_id,
                client_name=names.get(client_id, rows[-1].client_name),
                draft_count=sum(1 for e in rows if e.status is EntryStatus.DRAFT),
                submitted_count=sum(1 for e in rows if e.status is EntryStatus.SUBMITTED),
                total_value=sum((e.total_invoice for e in rows), Decimal("0")),
                latest_outstanding=rows[-1].total_outstanding,
            )
            report.rows.append(row)
            report.total_drafts += row.draft_count
            report.total_submitted += row.submitted_count
            report.total_value += row.total_value
            report.total_outstanding += row.latest_outstanding

        report.rows.sort(key=lambda r: (r.client_name.lower(), r.client_id))
        return report
