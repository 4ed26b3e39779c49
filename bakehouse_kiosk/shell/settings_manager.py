import json
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from bakehouse_kiosk.shared.errors import SettingsError
from bakehouse_kiosk.shared.models import KioskSettings, utcnow


class SettingsManager:
    """
    Persists the kiosk's local configuration (which URL to show) as JSON.

    A missing or corrupt file falls back to defaults so the shell can still
    start and be configured through the bridge.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()
        self.settings = self.load()

    def load(self) -> KioskSettings:
        if not self.path.exists():
            logger.info(f"No settings file at {self.path}, using defaults")
            return KioskSettings()
        try:
            settings = KioskSettings.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValidationError, ValueError) as e:
            logger.error(f"Error loading settings from {self.path}: {e}")
            return KioskSettings()
        logger.info(f"Settings loaded from {self.path}: app_url={settings.app_url}")
        return settings

    def save(self, updates: dict[str, Any]) -> KioskSettings:
        merged = {**self.settings.model_dump(), **updates, "last_updated": utcnow()}
        try:
            new_settings = KioskSettings.model_validate(merged)
        except ValidationError as e:
            raise SettingsError(f"Invalid settings: {e}") from e

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps(new_settings.model_dump(mode="json"), indent=2),
                encoding="utf-8",
            )
        except OSError as e:
            raise SettingsError(f"Could not write settings to {self.path}: {e}") from e

        self.settings = new_settings
        logger.info(f"Settings saved: app_url={new_settings.app_url}")
        return new_settings

    def get_app_url(self) -> str | None:
        return self.settings.app_url
