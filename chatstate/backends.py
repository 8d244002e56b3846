"""Persistence backends: an opaque key-value store of chats keyed by chat id.

Every backend stores the whole ChatHistory verbatim, image and file URLs
included, and never merges: the last ``put`` for a chat id wins.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import ValidationError

from .errors import NotFound, StorageFailure
from .models import ChatHistory, ChatMeta

logger = logging.getLogger(__name__)

CHAT_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def _meta_for(chat_id: str, history: ChatHistory, previous: Optional[ChatMeta]) -> ChatMeta:
    now = time.time()
    return ChatMeta(
        id=chat_id,
        title=history.title or "New Chat",
        created_at=previous.created_at if previous else now,
        updated_at=now,
    )


class MemoryBackend:
    """Keeps chats in a dict. Copies on the way in and out, like a real store would."""

    def __init__(self) -> None:
        self._chats: Dict[str, Tuple[ChatMeta, ChatHistory]] = {}

    async def get(self, chat_id: str) -> Optional[ChatHistory]:
        entry = self._chats.get(chat_id)
        if entry is None:
            return None
        return entry[1].model_copy(deep=True)

    async def put(self, chat_id: str, history: ChatHistory) -> ChatMeta:
        previous = self._chats.get(chat_id)
        meta = _meta_for(chat_id, history, previous[0] if previous else None)
        self._chats[chat_id] = (meta, history.model_copy(deep=True))
        return meta.model_copy()

    async def list(self) -> List[ChatMeta]:
        return [meta.model_copy() for meta, _history in self._chats.values()]

    async def delete(self, chat_id: str) -> None:
        if self._chats.pop(chat_id, None) is None:
            raise NotFound(f"Chat not found: {chat_id}")


class FileBackend:
    """One YAML file per chat under ``root``: ``<chat_id>.yaml`` with meta + history."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        # Writes to one chat run one at a time, in call order.
        self._locks: Dict[str, asyncio.Lock] = {}

    # ----------------------------
    # File I/O Helpers
    # ----------------------------
    def _path(self, chat_id: str) -> Path:
        if not CHAT_ID_RE.match(chat_id or ""):
            raise NotFound(f"Chat not found: {chat_id}")
        return self.root / f"{chat_id}.yaml"

    def _read_file(self, path: Path) -> Dict[str, Any]:
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise StorageFailure(f"Could not read {path.name}: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageFailure(f"Malformed chat file: {path.name}")
        return data

    def _write_file(self, path: Path, data: Dict[str, Any]) -> None:
        """Write to a temp file, then rename it into place."""
        tmp = None
        try:
            fd, name = tempfile.mkstemp(dir=self.root, prefix=f".{path.name}.", suffix=".tmp")
            tmp = Path(name)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                yaml.safe_dump(data, fh, sort_keys=False, allow_unicode=True)
            os.replace(tmp, path)
        except OSError as exc:
            if tmp is not None:
                tmp.unlink(missing_ok=True)
            raise StorageFailure(f"Could not write {path.name}: {exc}") from exc

    def _load_meta(self, path: Path) -> ChatMeta:
        data = self._read_file(path)
        try:
            meta = ChatMeta.model_validate(data.get("meta") or {"id": path.stem})
        except ValidationError as exc:
            raise StorageFailure(f"Malformed chat metadata in {path.name}") from exc
        return meta

    # ----------------------------
    # Sync operations
    # ----------------------------
    def _get(self, chat_id: str) -> Optional[ChatHistory]:
        path = self._path(chat_id)
        if not path.exists():
            return None
        data = self._read_file(path)
        try:
            return ChatHistory.model_validate(data.get("history") or {})
        except ValidationError as exc:
            raise StorageFailure(f"Malformed chat history in {path.name}") from exc

    def _put(self, chat_id: str, history: ChatHistory) -> ChatMeta:
        path = self._path(chat_id)
        previous = self._load_meta(path) if path.exists() else None
        meta = _meta_for(chat_id, history, previous)
        self._write_file(
            path,
            {
                "meta": meta.model_dump(by_alias=True),
                "history": history.model_dump(by_alias=True, mode="json"),
            },
        )
        logger.debug("Saved chat %s (%d messages)", chat_id, len(history.messages))
        return meta

    def _list(self) -> List[ChatMeta]:
        out: List[ChatMeta] = []
        for f in sorted(self.root.glob("*.yaml")):
            try:
                out.append(self._load_meta(f))
            except StorageFailure:
                logger.warning("Skipping unreadable chat file %s", f.name)
        return out

    def _delete(self, chat_id: str) -> None:
        path = self._path(chat_id)
        if not path.exists():
            raise NotFound(f"Chat not found: {chat_id}")
        try:
            path.unlink()
        except OSError as exc:
            raise StorageFailure(f"Could not delete {path.name}: {exc}") from exc

    # ----------------------------
    # Async interface
    # ----------------------------
    def _lock(self, chat_id: str) -> asyncio.Lock:
        lock = self._locks.get(chat_id)
        if lock is None:
            lock = self._locks[chat_id] = asyncio.Lock()
        return lock

    async def get(self, chat_id: str) -> Optional[ChatHistory]:
        return await asyncio.to_thread(self._get, chat_id)

    async def put(self, chat_id: str, history: ChatHistory) -> ChatMeta:
        # Snapshot before leaving the event loop.
        snapshot = history.model_copy(deep=True)
        async with self._lock(chat_id):
            return await asyncio.to_thread(self._put, chat_id, snapshot)

    async def list(self) -> List[ChatMeta]:
        return await asyncio.to_thread(self._list)

    async def delete(self, chat_id: str) -> None:
        async with self._lock(chat_id):
            await asyncio.to_thread(self._delete, chat_id)
