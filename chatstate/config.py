"""Runtime configuration for the web UI state core."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

OLLAMA_API_BASE_URL = "http://localhost:11434"
WEB_UI_VERSION = "v0.1.1"


@dataclass(frozen=True)
class Config:
    """Filesystem locations and defaults used to compose the app."""
    data_dir: Path
    api_base_url: str
    log_level: str

    @property
    def chat_dir(self) -> Path:
        return self.data_dir / "chats"

    @property
    def upload_dir(self) -> Path:
        return self.data_dir / "uploads"

    @property
    def settings_path(self) -> Path:
        return self.data_dir / "settings.yaml"

    def ensure_dirs(self) -> None:
        self.chat_dir.mkdir(parents=True, exist_ok=True)
        self.upload_dir.mkdir(parents=True, exist_ok=True)


def load_config() -> Config:
    """Build a Config from environment variables, falling back to defaults."""
    return Config(
        data_dir=Path(os.environ.get("OLLAMA_WEBUI_DATA", "data")).expanduser(),
        api_base_url=os.environ.get("OLLAMA_API_BASE_URL", OLLAMA_API_BASE_URL),
        log_level=os.environ.get("OLLAMA_WEBUI_LOG_LEVEL", "INFO").upper(),
    )
