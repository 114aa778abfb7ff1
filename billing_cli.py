#!/usr/bin/env -S uv run --script

import sys
import argparse
import yaml
from mrm_billing.billing_controller import BillingController, parse_inputs
from mrm_billing.config import BillingConfig, setup_logging
from mrm_billing.modules.errors import BillingError, ValidationFailure
from mrm_billing.modules.fee_calculator import INCOME_SOURCES, format_currency, format_percent
from mrm_billing.modules.lifecycle import INVOICE_STATUS_LABELS
from mrm_billing.services.export_service import REPORT_TYPES


def parse_pairs(pairs, what):
    """['prs=100', 'iprs=2000'] -> {'prs': '100', 'iprs': '2000'}"""
    result = {}
    for pair in pairs or []:
        if "=" not in pair:
            raise ValidationFailure(f"Expected {what} as KEY=VALUE, got {pair!r}")
        key, value = pair.split("=", 1)
        result[key.strip()] = value.strip()
    return result


def build_payload(args):
    data = {}
    if args.file:
        with open(args.file, "r") as f:
            data = yaml.safe_load(f) or {}

    if args.client: data["client_id"] = args.client
    if args.month: data["month"] = args.month
    if args.fy: data["fy_start"] = args.fy

    amounts = dict(data.get("amounts") or {})
    amounts.update(parse_pairs(args.amount, "amount"))
    data["amounts"] = amounts
    remarks = dict(data.get("remarks") or {})
    remarks.update(parse_pairs(args.remark, "remark"))
    data["remarks"] = remarks
    rates = dict(data.get("exchange_rates") or {})
    rates.update(parse_pairs(args.rate, "rate"))
    data["exchange_rates"] = rates

    if args.invoice_date: data["invoice_date"] = args.invoice_date
    if args.invoice_number: data["invoice_number"] = args.invoice_number
    if args.invoice_status: data["invoice_status"] = args.invoice_status
    if args.submit: data["status"] = "submitted"
    if args.previous_outstanding is not None: data["previous_outstanding"] = args.previous_outstanding
    if args.current_outstanding is not None: data["current_outstanding"] = args.current_outstanding
    if args.operator: data["outstanding_operator"] = args.operator

    # Form field names (clientId, iprsAmt, ...) are resolved by BillingInput
    return parse_inputs(data)


def print_entry(entry):
    print(f"\n{entry.client_name} ({entry.client_id}) - {entry.month_label} [{entry.financial_year.label}]")
    print(f"Service Fee: {format_percent(entry.service_fee)}")
    for source in INCOME_SOURCES:
        line = entry.sources[source.id]
        raw = ""
        if source.is_foreign and line.raw_amount:
            raw = f" ({line.raw_amount} {line.currency} @ {line.rate})"
        print(f"  {source.label:<16}{format_currency(line.amount):>16}{raw}  comis {format_currency(line.commission)}")
        if line.remarks:
            print(f"    Remarks: {line.remarks}")
    print(f"Total Commission:  {format_currency(entry.total_commission)}")
    print(f"GST ({format_percent(entry.gst_rate)}):         {format_currency(entry.gst)}")
    print(f"Total Invoice:     {format_currency(entry.total_invoice)}")
    print(
        f"Outstanding:       {format_currency(entry.previous_outstanding)} "
        f"{entry.outstanding_operator.value} {format_currency(entry.current_outstanding)} "
        f"= {format_currency(entry.total_outstanding)}"
    )
    print(f"Status:            {entry.status.value} / {INVOICE_STATUS_LABELS[entry.invoice_status]}")


def print_summary(summary):
    print(f"Entries: {summary.total_entries} (draft {summary.draft_count}, submitted {summary.submitted_count})")
    for source in INCOME_SOURCES:
        print(f"  {source.label:<16}{format_currency(summary.source_totals[source.id]):>16}")
    for currency, total in summary.foreign_totals.items():
        print(f"  {currency} received:  {total}")
    print(f"Total Commission:  {format_currency(summary.total_commission)}")
    print(f"Total GST:         {format_currency(summary.total_gst)}")
    print(f"Total Invoice:     {format_currency(summary.total_invoice)}")


def handle(args, controller):
    if args.command == "save":
        entry = controller.save_entry(build_payload(args))
        print_entry(entry)
    elif args.command == "show":
        print_entry(controller.get_entry(args.client, args.month, args.fy))
    elif args.command == "delete":
        entry = controller.delete_entry(args.client, args.month, args.fy)
        print(f"Deleted {entry.key}")
    elif args.command == "list":
        rows = controller.list_entries(month=args.month, client_id=args.client, status=args.status, fy_start=args.fy)
        if not rows:
            print("No entries found.")
        for e in rows:
            print(f"{e.month_label:<16}{e.client_id:<10}{e.client_name:<28}"
                  f"{format_currency(e.total_invoice):>16}  {e.status.value}")
    elif args.command == "status":
        entry = controller.update_status(
            args.client, args.month, args.fy,
            status=args.set, invoice_status=args.invoice_status, strict=args.strict,
        )
        print(f"{entry.key}: {entry.status.value} / {INVOICE_STATUS_LABELS[entry.invoice_status]}")
    elif args.command == "report":
        print_summary(controller.summary(month=args.month, fy_start=args.fy))
    elif args.command == "client-report":
        report = controller.client_report(args.client, args.fy)
        print(f"{report.client_name} ({report.client_id}) FY {report.fy_start}-{report.fy_start + 1}")
        for e in report.entries:
            print(f"  {e.month_label:<16}{format_currency(e.total_invoice):>16}  {e.status.value}")
        print_summary(report.summary)
    elif args.command == "outstanding":
        report = controller.outstanding_report(args.fy)
        for r in report.rows:
            state = "Complete" if r.complete else "Pending"
            print(f"{r.client_name:<28}drafts {r.draft_count:<3}submitted {r.submitted_count:<3}"
                  f"{format_currency(r.latest_outstanding):>16}  {state}")
        print(f"Total outstanding: {format_currency(report.total_outstanding)}")
    elif args.command == "export":
        path = controller.export(args.report, month=args.month, fy_start=args.fy)
        print(f"Exported: {path}")


def build_parser():
    parser = argparse.ArgumentParser(description="Monthly royalty billing for MRM clients.")
    sub = parser.add_subparsers(dest="command", required=True)

    def period(p, client_required=True, month_required=True):
        p.add_argument("--client", required=client_required, help="Client ID, e.g. MRM001")
        p.add_argument("--month", required=month_required, help="Month code (apr..mar)")
        p.add_argument("--fy", type=int, help="Financial year start (defaults to active FY)")

    p = sub.add_parser("save", help="Create or replace the entry for a client and month")
    period(p, client_required=False, month_required=False)
    p.add_argument("--file", help="YAML file with entry inputs")
    p.add_argument("--amount", action="append", help="SOURCE=VALUE in the source's own currency")
    p.add_argument("--rate", action="append", help="CURRENCY=INR rate for this entry")
    p.add_argument("--remark", action="append", help="SOURCE=TEXT")
    p.add_argument("--invoice-date")
    p.add_argument("--invoice-number")
    p.add_argument("--invoice-status", choices=[s.value for s in INVOICE_STATUS_LABELS])
    p.add_argument("--submit", action="store_true", help="Save as submitted instead of draft")
    p.add_argument("--previous-outstanding", help="Override the carried-in balance")
    p.add_argument("--current-outstanding")
    p.add_argument("--operator", choices=["+", "-"])

    period(sub.add_parser("show", help="Show one entry"))
    period(sub.add_parser("delete", help="Delete one entry"))

    p = sub.add_parser("list", help="List entries")
    period(p, client_required=False, month_required=False)
    p.add_argument("--status", choices=["draft", "submitted"])

    p = sub.add_parser("status", help="Change entry status")
    period(p)
    p.add_argument("--set", choices=["draft", "submitted"])
    p.add_argument("--invoice-status", choices=[s.value for s in INVOICE_STATUS_LABELS])
    p.add_argument("--strict", action="store_true", help="Refuse backwards workflow moves")

    p = sub.add_parser("report", help="Month / FY summary")
    period(p, client_required=False, month_required=False)

    p = sub.add_parser("client-report", help="Full-year report for one client")
    period(p, month_required=False)

    p = sub.add_parser("outstanding", help="Outstanding balances per client")
    p.add_argument("--fy", type=int)

    p = sub.add_parser("export", help="Write a CSV report")
    p.add_argument("report", choices=REPORT_TYPES)
    period(p, client_required=False, month_required=False)

    sub.add_parser("wizard", help="Interactive entry")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    config = BillingConfig.load_default()
    setup_logging(config)

    try:
        if args.command == "wizard":
            from mrm_billing.wizard.cli import CLIWizard
            CLIWizard().run()
            return 0
        handle(args, BillingController(config))
    except BillingError as e:
        print(f"❌ ERROR: {e}")
        return 1
    except (KeyboardInterrupt, EOFError):
        print("\nCancelled.")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
