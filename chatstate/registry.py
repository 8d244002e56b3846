"""Session registry: the chat list and which chat is active."""

from __future__ import annotations

import logging
import uuid
from typing import Dict, List, Optional

from .errors import NotFound
from .models import ChatMeta
from .store import ChatHistoryStore

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Tracks chat metadata and mediates switching the selected chat."""

    def __init__(self, backend, store: ChatHistoryStore) -> None:
        self.backend = backend
        self.store = store
        self._chats: Dict[str, ChatMeta] = {}
        self._active_id: Optional[str] = None
        store.on_persist.append(self.touch)

    async def refresh(self) -> List[ChatMeta]:
        self._chats = {meta.id: meta for meta in await self.backend.list()}
        return self.list()

    def list(self) -> List[ChatMeta]:
        """Chats, most recently updated first."""
        return sorted(self._chats.values(), key=lambda m: m.updated_at, reverse=True)

    def active_id(self) -> Optional[str]:
        return self._active_id

    def get(self, chat_id: str) -> ChatMeta:
        meta = self._chats.get(chat_id)
        if meta is None:
            raise NotFound(f"Chat not found: {chat_id}")
        return meta

    def touch(self, meta: ChatMeta) -> None:
        """Record metadata from a persistence write."""
        if meta.id in self._chats:
            self._chats[meta.id] = meta

    async def create(self, title: str = "New Chat") -> str:
        chat_id = uuid.uuid4().hex
        self._chats[chat_id] = ChatMeta(id=chat_id, title=title)
        self._active_id = chat_id
        self.store.reset(chat_id, title=title)
        await self.store.persist()
        logger.info("Created chat %s", chat_id)
        return chat_id

    async def select(self, chat_id: str) -> None:
        """Make ``chat_id`` active once its history is in the store.

        A failed or superseded load leaves the previous chat active.
        """
        self.get(chat_id)
        if await self.store.load(chat_id) is not None:
            self._active_id = chat_id

    async def rename(self, chat_id: str, title: str) -> ChatMeta:
        self.get(chat_id)
        if chat_id == self.store.chat_id:
            await self.store.rename(title)
        else:
            history = await self.backend.get(chat_id)
            if history is None:
                raise NotFound(f"Chat not found: {chat_id}")
            history.title = title
            self.touch(await self.backend.put(chat_id, history))
        return self.get(chat_id)

    async def delete(self, chat_id: str) -> None:
        self.get(chat_id)
        await self.backend.delete(chat_id)
        del self._chats[chat_id]
        if self._active_id == chat_id:
            self._active_id = None
            self.store.reset(None)
        logger.info("Deleted chat %s", chat_id)
