import yaml
import logging
from typing import Dict, List, Optional

from pydantic import ValidationError

from mrm_billing.config import BillingConfig
from mrm_billing.modules.errors import NotFound, ValidationFailure
from mrm_billing.modules.models import ClientModel


class ClientDirectory:
    """Read-only view over the client profiles; billing never mutates a client."""

    def __init__(self, clients: Dict[str, ClientModel]):
        self.logger = logging.getLogger(__name__)
        self._clients = clients

    @staticmethod
    def load_yaml(path):
        with open(path, "r") as f:
            return yaml.safe_load(f)

    @classmethod
    def from_config(cls, config: BillingConfig) -> "ClientDirectory":
        if not config.clients_path.exists():
            raise NotFound(f"Client profiles not found: {config.clients_path}")
        raw = cls.load_yaml(config.clients_path) or {}
        return cls.from_dict(raw, default_fee=config.settings.tax_rules.default_service_fee)

    @classmethod
    def from_dict(cls, raw: Dict[str, dict], default_fee=None) -> "ClientDirectory":
        """Profiles without a fee get default_fee (the configured default service fee)."""
        clients = {}
        for client_id, data in raw.items():
            if str(client_id).startswith("."):
                continue
            client_data = dict(data or {})
            client_data["id"] = str(client_id)
            if client_data.get("fee") is None and default_fee is not None:
                client_data["fee"] = default_fee
            try:
                clients[str(client_id)] = ClientModel(**client_data)
            except ValidationError as e:
                raise ValidationFailure(f"Invalid client profile {client_id}: {e}")
        return cls(clients)

    @classmethod
    def from_clients(cls, clients: List[ClientModel]) -> "ClientDirectory":
        return cls({c.id: c for c in clients})

    def get_client(self, client_id: str) -> ClientModel:
        client = self._clients.get(client_id)
        if client is None:
            raise NotFound(f"Client not found: {client_id}")
        return client

    def find(self, client_id: str) -> Optional[ClientModel]:
        return self._clients.get(client_id)

    def list_clients(self, include_inactive: bool = True) -> List[ClientModel]:
        clients = self._clients.values()
        if not include_inactive:
            clients = [c for c in clients if c.active]
        return sorted(clients, key=lambda c: c.name.lower())

    def __len__(self):
        return len(self._clients)
