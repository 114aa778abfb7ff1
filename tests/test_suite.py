import unittest
import os
import sys
import csv
import random
import datetime
import tempfile
import shutil
import threading
from pathlib import Path
from decimal import Decimal

import yaml
from unittest.mock import patch

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import billing_cli
from mrm_billing.billing_controller import BillingController
from mrm_billing.config import BillingConfig
from mrm_billing.modules.config_models import SettingsModel
from mrm_billing.modules.errors import ConflictOnWrite, CorruptStore, NotFound, ValidationFailure
from mrm_billing.modules.fee_calculator import (
    CommissionCalculator,
    INCOME_SOURCES,
    SOURCE_IDS,
    calculate_totals,
    commission,
    convert,
    format_currency,
    parse_amount,
    validate_fee_ratio,
)
from mrm_billing.modules.lifecycle import EntryStatus, InvoiceStatus, check_transition, parse_invoice_status
from mrm_billing.modules.models import BillingInput, ClientModel, EntryRegistry, OutstandingOperator, entry_key
from mrm_billing.modules.periods import FinancialYear, Month, next_period, period_for_date, previous_period
from mrm_billing.services.client_directory import ClientDirectory
from mrm_billing.services.entry_store import EntryStore
from mrm_billing.services.export_service import ExportService
from mrm_billing.services.financials_service import FinancialsService
from mrm_billing.services.outstanding_service import OutstandingService
from mrm_billing.services.report_service import ReportService
from mrm_billing.wizard import state as app_state


CLIENTS = {
    "MRM001": {"name": "Zubin Rao", "category": "Composer", "fee": 0.10},
    "MRM002": {"name": "Anita Iyer", "category": "Lyricist", "fee": 0.15},
    "MRM003": {"name": "Old Label", "category": "Publisher", "fee": 0.12, "active": False},
}


def make_client(fee="0.10", client_id="MRM001", name="Zubin Rao"):
    return ClientModel(id=client_id, name=name, fee=fee)


def make_workspace(root):
    """Lays out config/ and data/profiles/ under root the way the repo does."""
    os.makedirs(os.path.join(root, "config"))
    os.makedirs(os.path.join(root, "data", "profiles"))
    SettingsModel().save(os.path.join(root, "config", "settings.yaml"))
    with open(os.path.join(root, "data", "profiles", "clients.yaml"), "w") as f:
        yaml.dump(CLIENTS, f)
    return BillingConfig(root_dir=Path(root))


class TestCurrencyConverter(unittest.TestCase):
    def test_amount_times_rate(self):
        self.assertEqual(convert(100, 110), Decimal("11000"))
        self.assertEqual(convert("12.5", "83.50"), Decimal("1043.750"))

    def test_zero_or_missing_gives_zero(self):
        """Absent data is valid: a source may not apply this month."""
        self.assertEqual(convert(0, 110), Decimal("0"))
        self.assertEqual(convert(100, 0), Decimal("0"))
        self.assertEqual(convert(None, 110), Decimal("0"))
        self.assertEqual(convert(100, None), Decimal("0"))
        self.assertEqual(convert("", ""), Decimal("0"))

    def test_full_precision_kept(self):
        self.assertEqual(convert("0.01", "110.555"), Decimal("1.10555"))


class TestCommissionCalculator(unittest.TestCase):
    def test_commission_is_amount_times_ratio(self):
        self.assertEqual(commission(1000, "0.10"), Decimal("100"))
        self.assertEqual(commission(1000, 0), Decimal("0"))
        self.assertEqual(commission(1000, 1), Decimal("1000"))

    def test_monotonic_in_both_arguments(self):
        amounts = [Decimal(a) for a in ("0", "1", "250.5", "1000", "99999.99")]
        ratios = [Decimal(r) for r in ("0", "0.05", "0.1", "0.5", "1")]
        for i in range(len(amounts) - 1):
            for r in ratios:
                self.assertLessEqual(commission(amounts[i], r), commission(amounts[i + 1], r))
        for a in amounts:
            for j in range(len(ratios) - 1):
                self.assertLessEqual(commission(a, ratios[j]), commission(a, ratios[j + 1]))

    def test_fee_ratio_bounds(self):
        self.assertEqual(validate_fee_ratio("0"), Decimal("0"))
        self.assertEqual(validate_fee_ratio(1), Decimal("1"))
        for bad in (-0.01, 1.01, "abc", None):
            with self.assertRaises(ValidationFailure):
                validate_fee_ratio(bad)

    def test_six_sources_each_independent(self):
        self.assertEqual(len(INCOME_SOURCES), 6)
        currencies = [s.currency for s in INCOME_SOURCES]
        self.assertEqual(currencies.count("INR"), 3)
        self.assertEqual(currencies.count("GBP"), 1)
        self.assertEqual(currencies.count("USD"), 2)

        calc = CommissionCalculator("0.18")
        res = calc.calculate({"ascap": 10}, "0.10", {"USD": 80, "GBP": 100})
        lines = {l["source"]: l for l in res["lines"]}
        self.assertEqual(lines["ascap"]["amount"], Decimal("800"))
        self.assertEqual(lines["ascap"]["commission"], Decimal("80"))
        self.assertEqual(lines["sound_exchange"]["amount"], Decimal("0"))
        self.assertEqual(res["total_commission"], Decimal("80"))

    def test_totals_exact(self):
        commissions = [Decimal("100.005"), Decimal("0.333"), Decimal("0")]
        totals = calculate_totals(commissions, "0.18")
        self.assertEqual(totals["total_commission"], Decimal("100.338"))
        self.assertEqual(totals["gst"], Decimal("100.338") * Decimal("0.18"))
        self.assertEqual(totals["total_invoice"], totals["total_commission"] + totals["gst"])

    def test_scenario_a(self):
        calc = CommissionCalculator(Decimal("0.18"))
        res = calc.calculate({"iprs": 1000, "prs": 100}, "0.10", {"GBP": 110})
        lines = {l["source"]: l for l in res["lines"]}
        self.assertEqual(lines["prs"]["amount"], Decimal("11000"))
        self.assertEqual(lines["iprs"]["commission"], Decimal("100"))
        self.assertEqual(lines["prs"]["commission"], Decimal("1100"))
        self.assertEqual(res["total_commission"], Decimal("1200"))
        self.assertEqual(res["gst"], Decimal("216"))
        self.assertEqual(res["total_invoice"], Decimal("1416"))

    def test_scenario_b(self):
        calc = CommissionCalculator(Decimal("0.18"))
        res = calc.calculate({s: 0 for s in SOURCE_IDS}, "0.15", {"GBP": 110, "USD": 83})
        self.assertEqual(res["total_commission"], Decimal("0"))
        self.assertEqual(res["gst"], Decimal("0"))
        self.assertEqual(res["total_invoice"], Decimal("0"))


class TestParsing(unittest.TestCase):
    def test_parse_amount_lenient(self):
        self.assertEqual(parse_amount("₹1,234.50"), Decimal("1234.50"))
        self.assertEqual(parse_amount(" 42 "), Decimal("42"))
        self.assertEqual(parse_amount(""), Decimal("0"))
        self.assertEqual(parse_amount(None), Decimal("0"))

    def test_malformed_amount_defaults_to_zero_with_warning(self):
        with self.assertLogs("mrm_billing.modules.fee_calculator", level="WARNING"):
            self.assertEqual(parse_amount("twelve", "iprs"), Decimal("0"))

    def test_format_currency(self):
        self.assertEqual(format_currency(Decimal("1234.5")), "₹1,234.50")
        self.assertEqual(format_currency(-300), "-₹300.00")

    def test_form_field_names_accepted(self):
        inputs = BillingInput(**{
            "clientId": "MRM001",
            "month": "April",
            "iprsAmt": "1,000",
            "prsGbp": "100",
            "gbpToInrRate": "110",
            "iprsRemarks": "Q4 distribution",
            "invoiceStatus": "Bill Sent",
            "outstandingOperator": "subtract",
            "financialYear": {"startYear": 2024, "endYear": 2025},
        })
        self.assertEqual(inputs.month, Month.APR)
        self.assertEqual(inputs.amounts["iprs"], Decimal("1000"))
        self.assertEqual(inputs.exchange_rates["GBP"], Decimal("110"))
        self.assertEqual(inputs.remarks["iprs"], "Q4 distribution")
        self.assertEqual(inputs.invoice_status, InvoiceStatus.BILL_SENT)
        self.assertEqual(inputs.outstanding_operator, OutstandingOperator.SUBTRACT)
        self.assertEqual(inputs.fy_start, 2024)


class TestPeriods(unittest.TestCase):
    def test_month_parse(self):
        self.assertIs(Month.parse("apr"), Month.APR)
        self.assertIs(Month.parse("JANUARY"), Month.JAN)
        self.assertIs(Month.parse(3), Month.MAR)
        with self.assertRaises(ValidationFailure):
            Month.parse("xyz")

    def test_fy_boundary(self):
        """Jan-Mar belong to the end year of the pair."""
        fy = FinancialYear.starting(2025)
        self.assertEqual(fy.calendar_year(Month.DEC), 2025)
        self.assertEqual(fy.calendar_year(Month.JAN), 2026)
        self.assertEqual(fy.month_label("mar"), "March 2026")
        self.assertEqual(fy.label, "FY 2025-2026")

    def test_fy_must_be_consecutive(self):
        with self.assertRaises(ValueError):
            FinancialYear(start_year=2025, end_year=2027)

    def test_calendar_adjacency_crosses_fy(self):
        self.assertEqual(previous_period(Month.APR, 2025), (Month.MAR, 2024))
        self.assertEqual(previous_period(Month.JAN, 2025), (Month.DEC, 2025))
        self.assertEqual(next_period(Month.MAR, 2024), (Month.APR, 2025))

    def test_period_for_date(self):
        self.assertEqual(period_for_date(datetime.date(2026, 2, 10)), (Month.FEB, 2025))
        self.assertEqual(period_for_date(datetime.date(2025, 4, 1)), (Month.APR, 2025))


class TestFinancialsService(unittest.TestCase):
    def setUp(self):
        self.settings = SettingsModel()
        self.service = FinancialsService(self.settings)

    def test_entry_snapshots_fee_rates_and_name(self):
        inputs = BillingInput(client_id="MRM001", month="apr", fy_start=2025,
                              amounts={"iprs": 1000, "prs": 100}, exchange_rates={"GBP": 110})
        entry = self.service.build_entry(inputs, make_client("0.10"))
        self.assertEqual(entry.client_name, "Zubin Rao")
        self.assertEqual(entry.service_fee, Decimal("0.10"))
        self.assertEqual(entry.exchange_rates["GBP"], Decimal("110"))
        # Configured default used where the entry gave no rate
        self.assertEqual(entry.exchange_rates["USD"], self.settings.exchange_rates.USD)
        self.assertEqual(entry.sources["prs"].raw_amount, Decimal("100"))
        self.assertEqual(entry.sources["prs"].rate, Decimal("110"))
        self.assertEqual(entry.sources["prs"].amount, Decimal("11000"))
        self.assertEqual(entry.total_invoice, Decimal("1416"))
        self.assertEqual(entry.month_label, "April 2025")

    def test_invariants_hold(self):
        inputs = BillingInput(client_id="MRM002", month="jan", fy_start=2025,
                              amounts={"iprs": "523.17", "ascap": "12.34", "sound_exchange": "7",
                                       "isamra": "99.99", "ppl": "10", "prs": "3.3"})
        entry = self.service.build_entry(inputs, make_client("0.15", "MRM002", "Anita Iyer"))
        per_source = sum((l.commission for l in entry.sources.values()), Decimal("0"))
        self.assertEqual(entry.total_commission, per_source)
        for line in entry.sources.values():
            self.assertEqual(line.commission, line.amount * Decimal("0.15"))
        self.assertEqual(entry.gst, entry.total_commission * entry.gst_rate)
        self.assertEqual(entry.total_invoice, entry.total_commission + entry.gst)

    def test_outstanding_operators(self):
        client = make_client()
        plus = self.service.build_entry(
            BillingInput(client_id="MRM001", month="may", previous_outstanding=500,
                         current_outstanding=200, outstanding_operator="+"), client)
        self.assertEqual(plus.total_outstanding, Decimal("700"))

        # Scenario C
        minus = self.service.build_entry(
            BillingInput(client_id="MRM001", month="may", previous_outstanding=500,
                         current_outstanding=200, outstanding_operator="-"), client)
        self.assertEqual(minus.total_outstanding, Decimal("300"))

        negative = self.service.build_entry(
            BillingInput(client_id="MRM001", month="may", previous_outstanding=100,
                         current_outstanding=250, outstanding_operator="-"), client)
        self.assertEqual(negative.total_outstanding, Decimal("-150"))

    def test_carried_value_used_unless_overridden(self):
        client = make_client()
        carried = self.service.build_entry(
            BillingInput(client_id="MRM001", month="may", current_outstanding=50), client,
            previous_outstanding=Decimal("400"))
        self.assertEqual(carried.previous_outstanding, Decimal("400"))
        self.assertEqual(carried.total_outstanding, Decimal("450"))

        overridden = self.service.build_entry(
            BillingInput(client_id="MRM001", month="may", previous_outstanding=10, current_outstanding=50),
            client, previous_outstanding=Decimal("400"))
        self.assertEqual(overridden.total_outstanding, Decimal("60"))

    def test_default_fy_from_settings(self):
        entry = self.service.build_entry(BillingInput(client_id="MRM001", month="feb"), make_client())
        self.assertEqual(entry.fy_start, self.settings.financial_year.start_year)


class TestEntryStore(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.path = Path(self.temp_dir) / "entries.json"
        self.store = EntryStore(self.path)
        self.service = FinancialsService(SettingsModel())

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def build(self, client_id="MRM001", month="apr", fy=2025, iprs=1000, name="Zubin Rao", **kw):
        inputs = BillingInput(client_id=client_id, month=month, fy_start=fy, amounts={"iprs": iprs}, **kw)
        return self.service.build_entry(inputs, make_client("0.10", client_id, name))

    def test_idempotent_save(self):
        first = self.store.save(self.build())
        second = self.store.save(self.build())
        self.assertEqual(len(self.store), 1)
        self.assertEqual(first.id, second.id)
        self.assertEqual(first.created_at, second.created_at)
        self.assertEqual(first.total_invoice, second.total_invoice)

    def test_second_save_replaces(self):
        self.store.save(self.build(iprs=1000, invoice_number="A-1"))
        self.store.save(self.build(iprs=5000))
        self.assertEqual(len(self.store), 1)
        stored = self.store.get("MRM001", "apr", 2025)
        self.assertEqual(stored.sources["iprs"].amount, Decimal("5000"))
        self.assertEqual(stored.total_commission, Decimal("500"))
        # Full replacement, not a merge
        self.assertIsNone(stored.invoice_number)

    def test_key_includes_fy(self):
        self.store.save(self.build(fy=2024))
        self.store.save(self.build(fy=2025))
        self.assertEqual(len(self.store), 2)

    def test_concurrent_saves_leave_one_record(self):
        entries = [self.build(iprs=100 * (i + 1)) for i in range(8)]
        threads = [threading.Thread(target=self.store.save, args=(e,)) for e in entries]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(len(EntryStore(self.path)), 1)

    def test_delete_missing_raises_not_found(self):
        """Scenario D: store state unchanged."""
        self.store.save(self.build())
        with self.assertRaises(NotFound):
            self.store.delete("MRM001", "may", 2025)
        self.assertEqual(len(self.store), 1)

    def test_get_and_delete(self):
        self.store.save(self.build())
        removed = self.store.delete("MRM001", "apr", 2025)
        self.assertEqual(removed.key, entry_key("MRM001", "apr", 2025))
        with self.assertRaises(NotFound):
            self.store.get("MRM001", "apr", 2025)

    def test_rejects_partial_input(self):
        with self.assertRaises(ValidationFailure):
            self.store.save({"client_id": "MRM001", "month": "apr"})

    def test_persistence_roundtrip(self):
        saved = self.store.save(self.build(month="jan", iprs="123.45"))
        reloaded = EntryStore(self.path).get("MRM001", Month.JAN, 2025)
        self.assertEqual(reloaded.id, saved.id)
        self.assertEqual(reloaded.total_invoice, saved.total_invoice)
        self.assertEqual(reloaded.financial_year, saved.financial_year)

    def test_list_orderings(self):
        self.store.save(self.build(client_id="C2", name="beta"))
        self.store.save(self.build(client_id="C1", name="Alpha"))
        self.store.save(self.build(client_id="C1", name="Alpha", month="jan"))
        self.store.save(self.build(client_id="C1", name="Alpha", month="may"))
        self.store.save(self.build(client_id="C1", name="Alpha", month="mar", fy=2024))

        by_month = self.store.list_by_month("apr", 2025)
        self.assertEqual([e.client_id for e in by_month], ["C1", "C2"])

        by_client = self.store.list_by_client("C1")
        self.assertEqual([(e.month.value, e.fy_start) for e in by_client],
                         [("mar", 2024), ("apr", 2025), ("may", 2025), ("jan", 2025)])

    def test_status_open_set(self):
        """Any workflow jump is accepted by direct assignment."""
        self.store.save(self.build())
        for label in ("submitted", "draft", "outstanding", "bill_sent", "amount_received"):
            entry = self.store.update_status("MRM001", "apr", 2025, invoice_status=label)
            self.assertEqual(entry.invoice_status.value, label)
        entry = self.store.update_status("MRM001", "apr", 2025, status="submitted")
        self.assertIs(entry.status, EntryStatus.SUBMITTED)
        entry = self.store.update_status("MRM001", "apr", 2025, status="draft")
        self.assertIs(entry.status, EntryStatus.DRAFT)
        # Derived amounts untouched
        self.assertEqual(entry.total_invoice, Decimal("118"))

    def test_failed_write_leaves_store_unchanged(self):
        """A save that cannot reach disk is not visible afterwards."""
        self.store.save(self.build(month="apr"))
        with patch.object(EntryRegistry, "save", side_effect=OSError("disk full")):
            with self.assertRaises(ConflictOnWrite):
                self.store.save(self.build(month="may"))
            with self.assertRaises(ConflictOnWrite):
                self.store.delete("MRM001", "apr", 2025)
            with self.assertRaises(ConflictOnWrite):
                self.store.update_status("MRM001", "apr", 2025, status="submitted")
        with self.assertRaises(NotFound):
            self.store.get("MRM001", "may", 2025)
        self.assertIs(self.store.get("MRM001", "apr", 2025).status, EntryStatus.DRAFT)
        self.assertEqual(len(self.store.all_entries()), 1)
        self.assertEqual(os.listdir(self.temp_dir), ["entries.json"])

        # The next good write does not carry the failed one along
        self.store.save(self.build(month="jun"))
        reloaded = EntryStore(self.path)
        self.assertEqual(sorted(e.month.value for e in reloaded.all_entries()), ["apr", "jun"])

    def test_failed_temp_file_is_conflict(self):
        with patch("mrm_billing.services.entry_store.tempfile.mkstemp", side_effect=OSError("read-only")):
            with self.assertRaises(ConflictOnWrite):
                self.store.save(self.build())
        self.assertEqual(len(self.store.all_entries()), 0)

    def test_corrupt_file_is_never_overwritten(self):
        self.store.save(self.build(month="apr"))
        with open(self.path) as f:
            text = f.read()
        with open(self.path, "w") as f:
            f.write(text[: len(text) // 2])

        with self.assertRaises(CorruptStore):
            EntryStore(self.path)
        with self.assertRaises(CorruptStore):
            self.store.save(self.build(month="may"))
        with open(self.path) as f:
            self.assertEqual(f.read(), text[: len(text) // 2])

    def test_stores_on_same_file_share_writes(self):
        other = EntryStore(str(self.path))
        self.assertIs(other._lock, self.store._lock)

        months = ["apr", "may", "jun", "jul", "aug", "sep"]
        threads = [
            threading.Thread(target=(self.store if i % 2 else other).save, args=(self.build(month=m),))
            for i, m in enumerate(months)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(len(EntryStore(self.path).all_entries()), len(months))

    def test_status_strict_and_unknown(self):
        self.store.save(self.build(invoice_status="amount_received"))
        with self.assertRaises(ValidationFailure):
            self.store.update_status("MRM001", "apr", 2025, invoice_status="draft", strict=True)
        with self.assertRaises(ValidationFailure):
            self.store.update_status("MRM001", "apr", 2025, invoice_status="paid")
        with self.assertRaises(NotFound):
            self.store.update_status("MRM009", "apr", 2025, status="submitted")


class TestLifecycle(unittest.TestCase):
    def test_labels_parse(self):
        self.assertIs(parse_invoice_status("Outstanding Payment"), InvoiceStatus.OUTSTANDING)
        self.assertIs(parse_invoice_status("bill sent"), InvoiceStatus.BILL_SENT)

    def test_check_transition(self):
        self.assertIs(check_transition(None, "submitted"), InvoiceStatus.SUBMITTED)
        self.assertIs(check_transition("submitted", "draft"), InvoiceStatus.DRAFT)
        with self.assertRaises(ValidationFailure):
            check_transition("submitted", "draft", strict=True)


class TestOutstandingChain(unittest.TestCase):
    def setUp(self):
        self.store = EntryStore()
        self.service = FinancialsService(SettingsModel())
        self.chain = OutstandingService(self.store)

    def test_no_prior_entry_gives_zero(self):
        self.assertEqual(self.chain.carry_in("MRM001", Month.MAY, 2025), Decimal("0"))

    def test_carry_across_fy_boundary(self):
        inputs = BillingInput(client_id="MRM001", month="mar", fy_start=2024,
                              previous_outstanding=0, current_outstanding=750)
        self.store.save(self.service.build_entry(inputs, make_client()))
        self.assertEqual(self.chain.carry_in("MRM001", Month.APR, 2025), Decimal("750"))
        self.assertEqual(self.chain.carry_in("MRM002", Month.APR, 2025), Decimal("0"))

    def test_combine(self):
        self.assertEqual(OutstandingService.combine(500, 200, "-"), Decimal("300"))
        self.assertEqual(OutstandingService.combine("500", "200", "+"), Decimal("700"))


class TestReportService(unittest.TestCase):
    def setUp(self):
        service = FinancialsService(SettingsModel())
        self.reports = ReportService()
        self.entries = []
        rng = random.Random(7)
        for i, month in enumerate(["apr", "may", "jun", "apr", "may"]):
            client_id = "MRM001" if i < 3 else "MRM002"
            inputs = BillingInput(
                client_id=client_id, month=month, fy_start=2025,
                amounts={s: str(rng.randint(0, 5000)) + ".37" for s in SOURCE_IDS},
                status="submitted" if i % 2 else "draft",
                current_outstanding=100 * i,
            )
            self.entries.append(service.build_entry(inputs, make_client("0.12", client_id, client_id)))

    def test_rollup_matches_entry_sum_in_any_order(self):
        expected = sum((e.total_invoice for e in self.entries), Decimal("0"))
        for seed in range(3):
            shuffled = list(self.entries)
            random.Random(seed).shuffle(shuffled)
            summary = self.reports.summarize(shuffled)
            self.assertEqual(summary.total_invoice, expected)
            self.assertEqual(summary.total_entries, 5)
            self.assertEqual(summary.total_commission, sum((e.total_commission for e in self.entries), Decimal("0")))

    def test_filter_by_month(self):
        summary = self.reports.summarize(self.entries, month="apr", fy_start=2025)
        self.assertEqual(summary.total_entries, 2)
        self.assertEqual(summary.draft_count + summary.submitted_count, 2)
        self.assertEqual(self.reports.summarize(self.entries, fy_start=2024).total_entries, 0)

    def test_source_and_foreign_totals(self):
        summary = self.reports.summarize(self.entries)
        for source_id in SOURCE_IDS:
            self.assertEqual(summary.source_totals[source_id],
                             sum((e.sources[source_id].amount for e in self.entries), Decimal("0")))
        self.assertEqual(summary.foreign_totals["GBP"],
                         sum((e.sources["prs"].raw_amount for e in self.entries), Decimal("0")))
        self.assertEqual(sum(summary.invoice_status_counts.values()), 5)

    def test_client_report(self):
        report = self.reports.client_report(self.entries, "MRM001", 2025)
        self.assertEqual([e.month for e in report.entries], [Month.APR, Month.MAY, Month.JUN])
        self.assertEqual(report.summary.draft_count, 2)
        self.assertEqual(report.summary.submitted_count, 1)

    def test_dashboard_and_outstanding(self):
        clients = [make_client(client_id="MRM001", name="Zubin Rao"),
                   make_client(client_id="MRM002", name="Anita Iyer"),
                   ClientModel(id="MRM003", name="Idle", active=False)]
        stats = self.reports.dashboard(clients, self.entries)
        self.assertEqual(stats.total_clients, 3)
        self.assertEqual(stats.active_clients, 2)
        self.assertEqual(stats.clients_with_entries, 2)

        report = self.reports.outstanding_report(clients, self.entries)
        self.assertEqual([r.client_id for r in report.rows], ["MRM002", "MRM001"])
        latest = {r.client_id: r.latest_outstanding for r in report.rows}
        self.assertEqual(latest["MRM001"], self.entries[2].total_outstanding)
        self.assertFalse(report.rows[1].complete)


class TestBillingController(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config = make_workspace(self.temp_dir)
        self.controller = BillingController(self.config)

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_scenario_a_end_to_end(self):
        entry = self.controller.save_entry({
            "client_id": "MRM001", "month": "apr",
            "amounts": {"iprs": 1000, "prs": 100}, "exchange_rates": {"GBP": 110},
        })
        self.assertEqual(entry.fy_start, 2025)
        self.assertEqual(entry.total_commission, Decimal("1200"))
        self.assertEqual(entry.gst, Decimal("216"))
        self.assertEqual(entry.total_invoice, Decimal("1416"))

    def test_carry_in_on_first_save_only(self):
        self.controller.save_entry({"client_id": "MRM001", "month": "apr", "current_outstanding": 500})
        may = self.controller.save_entry({"client_id": "MRM001", "month": "may", "current_outstanding": 100})
        self.assertEqual(may.previous_outstanding, Decimal("500"))
        self.assertEqual(may.total_outstanding, Decimal("600"))

        # Re-saving keeps the stored carry-in even if April changes later
        self.controller.save_entry({"client_id": "MRM001", "month": "apr", "current_outstanding": 900})
        may = self.controller.save_entry({"client_id": "MRM001", "month": "may", "current_outstanding": 100})
        self.assertEqual(may.previous_outstanding, Decimal("500"))

    def test_unknown_client_not_found(self):
        with self.assertRaises(NotFound):
            self.controller.save_entry({"client_id": "NOPE", "month": "apr"})

    def test_bad_input_is_validation_failure(self):
        with self.assertRaises(ValidationFailure):
            self.controller.save_entry({"client_id": "MRM001", "month": "xyz"})
        with self.assertRaises(ValidationFailure):
            self.controller.save_entry({"client_id": "MRM001", "month": "apr", "amounts": {"bmi": 5}})

    def test_fee_snapshot_survives_client_change(self):
        self.controller.save_entry({"client_id": "MRM001", "month": "apr", "amounts": {"iprs": 1000}})
        changed = dict(CLIENTS, MRM001=dict(CLIENTS["MRM001"], fee=0.25))
        self.controller.directory = ClientDirectory.from_dict(changed)
        entry = self.controller.get_entry("MRM001", "apr")
        self.assertEqual(entry.service_fee, Decimal("0.1"))
        self.assertEqual(entry.total_commission, Decimal("100"))

    def test_export_writes_csv(self):
        self.controller.save_entry({"client_id": "MRM001", "month": "apr", "amounts": {"iprs": 1000}})
        self.controller.save_entry({"client_id": "MRM002", "month": "apr", "amounts": {"iprs": 2000}})
        path = self.controller.export("gst", month="apr")
        self.assertEqual(path.name, "MRM_Gst_Report_apr.csv")
        with open(path, newline="") as f:
            rows = list(csv.reader(f))
        self.assertEqual(rows[0][0], "Client ID")
        self.assertEqual([r[0] for r in rows[1:]], ["MRM002", "MRM001"])
        self.assertEqual(rows[2][6], "118.00")

        master = self.controller.export("client-master")
        self.assertEqual(master.name, "MRM_Client_Master_Report.csv")

    def test_unknown_report_type(self):
        with self.assertRaises(ValidationFailure):
            ExportService(self.temp_dir).build_rows("payroll")


class TestConfig(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_loads_settings(self):
        config = make_workspace(self.temp_dir)
        self.assertEqual(config.entries_path, Path(self.temp_dir) / "data" / "billing_entries.json")
        self.assertEqual(config.settings.tax_rate, Decimal("0.18"))
        self.assertEqual(config.settings.exchange_rates.GBP, Decimal("110.50"))

    def test_missing_settings_not_found(self):
        config = BillingConfig(root_dir=Path(self.temp_dir))
        with self.assertRaises(NotFound):
            config.settings

    def test_bad_fy_span_rejected(self):
        config = make_workspace(self.temp_dir)
        with open(config.settings_path, "w") as f:
            yaml.dump({"financial_year": {"start_year": 2025, "end_year": 2027}}, f)
        with self.assertRaises(ValidationFailure):
            config.settings

    def test_legacy_keys(self):
        settings = SettingsModel.from_dict({
            "gbpToInrRate": 100, "usdToInrRate": 80, "gstRate": 0.18,
            "financialYear": {"startYear": 2024, "endYear": 2025},
        })
        self.assertEqual(settings.exchange_rates.GBP, Decimal("100"))
        self.assertEqual(settings.exchange_rates.USD, Decimal("80"))
        self.assertEqual(settings.financial_year.start_year, 2024)

    def test_invalid_client_fee(self):
        with self.assertRaises(ValidationFailure):
            ClientDirectory.from_dict({"X1": {"name": "Bad", "fee": 1.5}})

    def test_profile_without_fee_gets_configured_default(self):
        config = make_workspace(self.temp_dir)
        settings = SettingsModel()
        settings.tax_rules.default_service_fee = Decimal("0.2")
        settings.save(config.settings_path)
        with open(config.clients_path, "w") as f:
            yaml.dump({"MRM010": {"name": "New Artist"}, "MRM011": {"name": "Set Fee", "fee": 0.05}}, f)

        directory = ClientDirectory.from_config(config)
        self.assertEqual(directory.get_client("MRM010").fee, Decimal("0.2"))
        self.assertEqual(directory.get_client("MRM011").fee, Decimal("0.05"))


class TestCommandLine(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def payload_from(self, data, *extra):
        path = os.path.join(self.temp_dir, "entry.yaml")
        with open(path, "w") as f:
            yaml.dump(data, f)
        args = billing_cli.build_parser().parse_args(["save", "--file", path, *extra])
        return billing_cli.build_payload(args)

    def test_file_with_form_field_names(self):
        inputs = self.payload_from({"clientId": "MRM001", "month": "jan", "iprsAmt": "1,000", "prsGbp": 10})
        self.assertEqual(inputs.client_id, "MRM001")
        self.assertIs(inputs.month, Month.JAN)
        self.assertEqual(inputs.amounts["iprs"], Decimal("1000"))
        self.assertEqual(inputs.amounts["prs"], Decimal("10"))

    def test_flags_merge_with_file(self):
        inputs = self.payload_from({"client_id": "MRM002"}, "--month", "may", "--amount", "ascap=12",
                                   "--rate", "USD=84", "--submit")
        self.assertIs(inputs.month, Month.MAY)
        self.assertEqual(inputs.amounts["ascap"], Decimal("12"))
        self.assertEqual(inputs.exchange_rates["USD"], Decimal("84"))
        self.assertIs(inputs.status, EntryStatus.SUBMITTED)

    def test_missing_client_is_validation_failure(self):
        with self.assertRaises(ValidationFailure):
            self.payload_from({"month": "apr"})


class TestAppState(unittest.TestCase):
    def setUp(self):
        self.state = app_state.AppState(
            clients=[make_client(), make_client(client_id="MRM002", name="Anita Iyer")],
        )

    def test_transitions_return_new_state(self):
        selected = app_state.select_client(self.state, "MRM002")
        self.assertIsNone(self.state.selected_client_id)
        self.assertEqual(selected.selected_client.name, "Anita Iyer")
        moved = app_state.set_current_month(selected, "jan")
        self.assertIs(moved.current_month, Month.JAN)
        self.assertIs(selected.current_month, Month.APR)

    def test_select_unknown_client(self):
        with self.assertRaises(NotFound):
            app_state.select_client(self.state, "NOPE")

    def test_saved_and_deleted_entries(self):
        service = FinancialsService(self.state.settings)
        entry = service.build_entry(BillingInput(client_id="MRM001", month="apr", amounts={"iprs": 100}),
                                    make_client())
        state = app_state.select_client(self.state, "MRM001")
        state = app_state.apply_saved_entry(state, entry)
        self.assertEqual(app_state.current_entry(state).key, entry.key)
        self.assertEqual(state.notices[-1].message, "Draft saved!")
        self.assertEqual(app_state.month_totals(state), Decimal("11.8"))

        state = app_state.apply_deleted_entry(state, entry.key)
        self.assertIsNone(app_state.current_entry(state))
        self.assertEqual(len(app_state.clear_notices(state).notices), 0)

    def test_settings_transitions(self):
        state = app_state.update_exchange_rate(self.state, "gbp", "120")
        self.assertEqual(state.settings.exchange_rates.GBP, Decimal("120"))
        self.assertEqual(self.state.settings.exchange_rates.GBP, Decimal("110.50"))
        with self.assertRaises(ValidationFailure):
            app_state.update_exchange_rate(self.state, "EUR", "90")
        with self.assertRaises(ValidationFailure):
            app_state.update_exchange_rate(self.state, "USD", "0")

        state = app_state.update_financial_year(state, 2026)
        self.assertEqual(state.fy_start, 2026)
        self.assertEqual(state.entries, {})

    def test_wizard_session_persists_rate(self):
        temp_dir = tempfile.mkdtemp()
        try:
            config = make_workspace(temp_dir)
            session = app_state.WizardSession(config)
            self.assertEqual([c.id for c in session.state.clients], ["MRM002", "MRM001"])
            session.change_exchange_rate("USD", "85")
            reloaded = BillingConfig(root_dir=Path(temp_dir))
            self.assertEqual(reloaded.settings.exchange_rates.USD, Decimal("85"))

            session.save({"client_id": "MRM001", "month": "apr", "amounts": {"iprs": 100}})
            self.assertEqual(len(session.state.entries), 1)
            session.delete("MRM001", "apr")
            self.assertEqual(len(session.state.entries), 0)
        finally:
            shutil.rmtree(temp_dir)


if __name__ == "__main__":
    unittest.main()
