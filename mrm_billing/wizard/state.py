from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel

from mrm_billing.billing_controller import BillingController
from mrm_billing.config import BillingConfig
from mrm_billing.modules.config_models import SettingsModel
from mrm_billing.modules.errors import NotFound, ValidationFailure
from mrm_billing.modules.fee_calculator import parse_amount
from mrm_billing.modules.models import BillingEntry, ClientModel, entry_key
from mrm_billing.modules.periods import FinancialYear, Month


class Notice(BaseModel):
    message: str
    level: str = "success"


class AppState(BaseModel):
    """Everything the interactive front end shows, as one immutable value.

    Transitions below return a new AppState and never touch the old one.
    """
    clients: List[ClientModel] = []
    selected_client_id: Optional[str] = None
    current_month: Month = Month.APR
    entries: Dict[str, BillingEntry] = {}
    settings: SettingsModel = SettingsModel()
    notices: Tuple[Notice, ...] = ()

    model_config = {"frozen": True}

    @property
    def fy_start(self) -> int:
        return self.settings.financial_year.start_year

    @property
    def selected_client(self) -> Optional[ClientModel]:
        return next((c for c in self.clients if c.id == self.selected_client_id), None)


def load_state(controller: BillingController) -> AppState:
    settings = controller.settings
    fy = settings.financial_year.start_year
    entries = {e.key: e for e in controller.store.find(fy_start=fy)}
    return AppState(
        clients=controller.directory.list_clients(include_inactive=False),
        entries=entries,
        settings=settings,
    )


def current_entry(state: AppState) -> Optional[BillingEntry]:
    if not state.selected_client_id:
        return None
    return state.entries.get(entry_key(state.selected_client_id, state.current_month, state.fy_start))


def select_client(state: AppState, client_id: Optional[str]) -> AppState:
    if client_id is not None and not any(c.id == client_id for c in state.clients):
        raise NotFound(f"Client not found: {client_id}")
    return state.model_copy(update={"selected_client_id": client_id})


def set_current_month(state: AppState, month) -> AppState:
    return state.model_copy(update={"current_month": Month.parse(month)})


def apply_saved_entry(state: AppState, entry: BillingEntry) -> AppState:
    entries = dict(state.entries)
    entries[entry.key] = entry
    message = "Draft saved!" if entry.status.value == "draft" else "Entry submitted!"
    return push_notice(state.model_copy(update={"entries": entries}), message)


def apply_deleted_entry(state: AppState, key: str) -> AppState:
    entries = {k: v for k, v in state.entries.items() if k != key}
    return push_notice(state.model_copy(update={"entries": entries}), "Entry deleted!")


def update_financial_year(state: AppState, start_year: int) -> AppState:
    settings = state.settings.model_copy(
        update={"financial_year": FinancialYear.starting(int(start_year))}
    )
    # Entries on screen belong to the old year
    new_state = state.model_copy(update={"settings": settings, "entries": {}})
    return push_notice(new_state, f"Financial year updated to {settings.financial_year.label}")


def update_exchange_rate(state: AppState, currency: str, rate) -> AppState:
    currency = currency.upper()
    value = parse_amount(rate, f"{currency} rate")
    if value <= 0:
        raise ValidationFailure(f"Exchange rate must be positive, got {rate!r}")
    if currency not in type(state.settings.exchange_rates).model_fields:
        raise ValidationFailure(f"Unsupported currency: {currency}")
    rates = state.settings.exchange_rates.model_copy(update={currency: value})
    settings = state.settings.model_copy(update={"exchange_rates": rates})
    return push_notice(
        state.model_copy(update={"settings": settings}),
        f"Exchange rate updated: 1 {currency} = ₹{value:.2f}",
    )


def push_notice(state: AppState, message: str, level: str = "success") -> AppState:
    return state.model_copy(update={"notices": state.notices + (Notice(message=message, level=level),)})


def clear_notices(state: AppState) -> AppState:
    return state.model_copy(update={"notices": ()})


def month_totals(state: AppState) -> Decimal:
    return sum(
        (e.total_invoice for e in state.entries.values() if e.month is state.current_month),
        Decimal("0"),
    )


class WizardSession:
    """Wires configuration, client directory and store for the interactive CLI."""

    def __init__(self, config: Optional[BillingConfig] = None):
        self.config = config or BillingConfig.load_default()
        self.controller = BillingController(self.config)
        self.state = load_state(self.controller)

    def save(self, data: dict) -> BillingEntry:
        entry = self.controller.save_entry(data)
        self.state = apply_saved_entry(self.state, entry)
        return entry

    def delete(self, client_id: str, month) -> None:
        entry = self.controller.delete_entry(client_id, month, self.state.fy_start)
        self.state = apply_deleted_entry(self.state, entry.key)

    def change_financial_year(self, start_year: int) -> None:
        self.state = update_financial_year(self.state, start_year)
        self.config.replace_settings(self.state.settings, persist=True)
        self.state = load_state(self.controller).model_copy(update={"notices": self.state.notices})

    def change_exchange_rate(self, currency: str, rate) -> None:
        self.state = update_exchange_rate(self.state, currency, rate)
        self.config.replace_settings(self.state.settings, persist=True)
