"""User settings persisted as a YAML file."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import ValidationError

from .errors import StorageFailure
from .models import Settings


class SettingsStore:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> Settings:
        if not self.path.exists():
            return Settings()
        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}
            return Settings.model_validate(data)
        except (OSError, yaml.YAMLError, ValidationError) as exc:
            raise StorageFailure(f"Could not read settings: {exc}") from exc

    def save(self, settings: Settings) -> Settings:
        data = settings.model_dump(by_alias=True, exclude_none=True)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
        except OSError as exc:
            raise StorageFailure(f"Could not write settings: {exc}") from exc
        return settings
