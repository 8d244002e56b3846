import os
import tempfile
from pathlib import Path

import pytest

# app.py builds a module-level app from the environment on import.
os.environ.setdefault("OLLAMA_WEBUI_DATA", tempfile.mkdtemp(prefix="ollama-webui-"))

from chatstate.backends import MemoryBackend
from chatstate.config import Config
from chatstate.registry import SessionRegistry
from chatstate.store import ChatHistoryStore


@pytest.fixture
def config(tmp_path: Path) -> Config:
    cfg = Config(data_dir=tmp_path / "data", api_base_url="http://localhost:11434", log_level="DEBUG")
    cfg.ensure_dirs()
    return cfg


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def store(backend) -> ChatHistoryStore:
    return ChatHistoryStore(backend)


@pytest.fixture
def registry(backend, store) -> SessionRegistry:
    return SessionRegistry(backend, store)
