import os
import yaml
import logging
from pathlib import Path
from typing import Any, Optional
from pydantic import BaseModel, Field, ValidationError

from mrm_billing.modules.config_models import SettingsModel
from mrm_billing.modules.errors import NotFound, ValidationFailure

class BillingConfig(BaseModel):
    root_dir: Path

    # Fields derived from root_dir, calculated during initialization
    data_dir: Path = Field(default=None)
    config_dir: Path = Field(default=None)
    output_dir: Path = Field(default=None)
    logs_dir: Path = Field(default=None)
    profiles_dir: Path = Field(default=None)
    clients_path: Path = Field(default=None)
    entries_path: Path = Field(default=None)
    settings_path: Path = Field(default=None)

    _settings: Optional[SettingsModel] = None

    class Config:
        arbitrary_types_allowed = True

    def model_post_init(self, __context: Any) -> None:
        """Initialize dependent paths after root_dir is set."""
        if not self.data_dir: self.data_dir = self.root_dir / "data"
        if not self.config_dir: self.config_dir = self.root_dir / "config"
        if not self.output_dir: self.output_dir = self.root_dir / "output"
        if not self.logs_dir: self.logs_dir = self.root_dir / "logs"
        if not self.profiles_dir: self.profiles_dir = self.data_dir / "profiles"
        if not self.clients_path: self.clients_path = self.profiles_dir / "clients.yaml"
        if not self.entries_path: self.entries_path = self.data_dir / "billing_entries.json"
        if not self.settings_path: self.settings_path = self.config_dir / "settings.yaml"

    @property
    def settings(self) -> SettingsModel:
        if self._settings is None:
            if not self.settings_path.exists():
                raise NotFound(f"Settings file not found: {self.settings_path}")
            with open(self.settings_path, 'r') as f:
                raw = yaml.safe_load(f) or {}
            try:
                self._settings = SettingsModel.from_dict(raw)
            except ValidationError as e:
                raise ValidationFailure(f"Invalid settings in {self.settings_path}: {e}")
        return self._settings

    def replace_settings(self, settings: SettingsModel, persist: bool = False) -> None:
        self._settings = settings
        if persist:
            settings.save(self.settings_path)

    @classmethod
    def load_default(cls) -> 'BillingConfig':
        app_dir = Path(__file__).parent
        root_dir = Path(os.getenv("MRM_BILLING_ROOT", app_dir.parent))
        return cls(root_dir=root_dir)

def setup_logging(config: BillingConfig):
    os.makedirs(config.logs_dir, exist_ok=True)
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(config.logs_dir / 'billing.log'),
            logging.StreamHandler()
        ]
    )
