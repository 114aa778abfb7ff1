import sys
import os
from datetime import date
import questionary
from questionary import Choice

# Custom Style for Legibility
style = questionary.Style(
    [
        ("qmark", "fg:#5f819d bold"),
        ("question", "bold"),
        ("answer", "fg:#ff9d00 bold"),
        ("pointer", "fg:#ff9d00 bold"),
        ("highlighted", "fg:#ffffff bg:#5f819d"),
        ("selected", "fg:#ff9d00"),
        ("separator", "fg:#6C6C6C"),
        ("instruction", "fg:#6C6C6C italic"),
        ("text", ""),
        ("disabled", "fg:#858585 italic"),
    ]
)

# Add root
sys.path.append(os.getcwd())

from mrm_billing.modules.errors import BillingError
from mrm_billing.modules.fee_calculator import INCOME_SOURCES, format_currency, format_percent
from mrm_billing.modules.lifecycle import INVOICE_STATUS_LABELS
from mrm_billing.modules.periods import Month
from mrm_billing.wizard.state import (
    WizardSession,
    current_entry,
    select_client,
    set_current_month,
)


def validate_float(val):
    if val is None or not str(val).strip():
        return True
    try:
        float(str(val).replace(",", ""))
        return True
    except ValueError:
        return "Please enter a valid number"


class CLIWizard:
    def __init__(self, session: WizardSession = None):
        self.session = session or WizardSession()
        self.data = {}

    @property
    def state(self):
        return self.session.state

    def run(self):
        fy = self.state.settings.financial_year
        print(f"\n🎵  MRM ROYALTY BILLING ({fy.label})\n")
        print("(Ctrl+C or Ctrl+D to quit)\n")

        self.pick_client_and_month()
        existing = current_entry(self.state)
        if existing:
            print(f"Editing existing entry for {existing.month_label} ({existing.status.value}).")

        self.ask_amounts(existing)
        self.ask_invoice_details(existing)
        self.ask_outstanding(existing)

        preview = self.session.controller.preview(self.data)
        self.print_summary(preview)

        action = questionary.select(
            "Action:",
            choices=["Save Draft", "Submit Entry", "Discard"],
            style=style,
        ).ask()
        if action in (None, "Discard"):
            print("Nothing saved.")
            return
        self.data["status"] = "submitted" if action == "Submit Entry" else "draft"

        try:
            entry = self.session.save(self.data)
            print(f"\n✅ {self.state.notices[-1].message} {entry.key}")
        except BillingError as e:
            print(f"\n❌ ERROR: {e}")

    def pick_client_and_month(self):
        choices = [Choice(title=c.display_name, value=c.id) for c in self.state.clients]
        client_id = questionary.select("Select Client:", choices=choices, style=style).ask()
        if not client_id:
            sys.exit(0)

        month = questionary.select(
            "Month:",
            choices=[Choice(title=self.state.settings.financial_year.month_label(m), value=m.value) for m in Month],
            default=self.state.current_month.value,
            style=style,
        ).ask()

        self.session.state = set_current_month(select_client(self.state, client_id), month)
        self.data.update({
            "client_id": client_id,
            "month": month,
            "fy_start": self.state.fy_start,
        })

    def ask_amounts(self, existing):
        print("\n-- Royalty Income --")
        amounts, remarks, rates = {}, {}, {}
        for source in INCOME_SOURCES:
            default = ""
            if existing:
                raw = existing.sources[source.id].raw_amount
                default = str(raw) if raw else ""
            label = f"{source.label} ({source.currency})"
            amounts[source.id] = questionary.text(
                f"{label}:", default=default, style=style, validate=validate_float
            ).ask()

            if source.is_foreign and source.currency not in rates:
                current = (existing.exchange_rates.get(source.currency) if existing else None) \
                    or self.state.settings.exchange_rates.rate_for(source.currency)
                rates[source.currency] = questionary.text(
                    f"{source.currency} to INR rate:", default=str(current),
                    style=style, validate=validate_float,
                ).ask()

            if source.id in ("iprs", "prs"):
                note = questionary.text(
                    f"{source.label} Remarks (Optional):",
                    default=existing.sources[source.id].remarks if existing else "",
                ).ask()
                if note:
                    remarks[source.id] = note

        self.data["amounts"] = amounts
        self.data["remarks"] = remarks
        self.data["exchange_rates"] = rates

    def ask_invoice_details(self, existing):
        print("\n-- Invoice Details --")
        self.data["invoice_date"] = questionary.text(
            "Invoice Date (YYYY-MM-DD):",
            default=str(existing.invoice_date if existing and existing.invoice_date else date.today()),
            style=style,
        ).ask()
        number = questionary.text(
            "Invoice Number (Optional):",
            default=(existing.invoice_number or "") if existing else "",
        ).ask()
        if number:
            self.data["invoice_number"] = number
        self.data["invoice_status"] = questionary.select(
            "Invoice Status:",
            choices=[Choice(title=label, value=s.value) for s, label in INVOICE_STATUS_LABELS.items()],
            default=existing.invoice_status.value if existing else "draft",
            style=style,
        ).ask()

    def ask_outstanding(self, existing):
        print("\n-- Outstanding --")
        if existing:
            carried = existing.previous_outstanding
        else:
            carried = self.session.controller.outstanding.carry_in(
                self.data["client_id"], self.data["month"], self.data["fy_start"]
            )
        self.data["previous_outstanding"] = questionary.text(
            "Previous Outstanding (₹):", default=str(carried), style=style, validate=validate_float
        ).ask()
        self.data["outstanding_operator"] = questionary.select(
            "Operator:", choices=["+", "-"],
            default=existing.outstanding_operator.value if existing else "+",
            style=style,
        ).ask()
        self.data["current_outstanding"] = questionary.text(
            "Current Month Outstanding (₹):",
            default=str(existing.current_outstanding) if existing else "0",
            style=style, validate=validate_float,
        ).ask()

    def print_summary(self, entry):
        print("\n--- BILLING SUMMARY ---")
        print(f"Client:           {entry.client_name} ({entry.client_id})")
        print(f"Period:           {entry.month_label}")
        print(f"Service Fee:      {format_percent(entry.service_fee)}")
        for source in INCOME_SOURCES:
            line = entry.sources[source.id]
            if line.amount:
                print(f"  {source.label:<16}{format_currency(line.amount):>16}  comis {format_currency(line.commission)}")
        print(f"Total Commission: {format_currency(entry.total_commission)}")
        print(f"GST ({format_percent(entry.gst_rate)}):        {format_currency(entry.gst)}")
        print(f"Total Invoice:    {format_currency(entry.total_invoice)}")
        print(f"Total Outstanding:{format_currency(entry.total_outstanding):>16}")


if __name__ == "__main__":
    try:
        CLIWizard().run()
    except (KeyboardInterrupt, EOFError):
        print("\nCancelled.")
