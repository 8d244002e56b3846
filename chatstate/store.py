"""The selected-chat cell.

``ChatHistoryStore`` holds the full ChatHistory of the active chat, images and
files included, and is the only owner of it. Readers call ``get()`` or
subscribe; they never keep their own copy.

Loads are tagged with an epoch. A load whose epoch is no longer the latest
when it resolves is stale and its result is dropped, so a slow load for chat A
can never overwrite chat B after the user has moved on.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from . import tree
from .errors import NotFound, StaleResult, StorageFailure, TreeCorrupted
from .models import ChatHistory, ChatMeta, Message
from .tree import MessageTree

logger = logging.getLogger(__name__)

Subscriber = Callable[[ChatHistory], None]


class ChatHistoryStore:
    def __init__(self, backend) -> None:
        self.backend = backend
        self._value = ChatHistory()
        self._chat_id: Optional[str] = None
        self._epoch = 0
        # Chat id of the newest load still in flight, and reply updates that
        # landed in storage while it was running.
        self._loading: Optional[str] = None
        self._late_updates: Dict[str, List[Tuple[str, Dict[str, Any]]]] = {}
        self._subscribers: List[Subscriber] = []
        # Called with the ChatMeta of every successful write.
        self.on_persist: List[Callable[[ChatMeta], None]] = []

    # ----------------------------
    # Observable cell
    # ----------------------------
    @property
    def chat_id(self) -> Optional[str]:
        return self._chat_id

    @property
    def tree(self) -> MessageTree:
        return MessageTree(self._value)

    def get(self) -> ChatHistory:
        return self._value

    def set(self, history: ChatHistory) -> None:
        self._value = history
        self._notify()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; call the returned function to unsubscribe."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            callback(self._value)

    # ----------------------------
    # Loading
    # ----------------------------
    def _next_epoch(self) -> int:
        self._epoch += 1
        return self._epoch

    def _check_current(self, epoch: int, chat_id: str) -> None:
        if epoch != self._epoch:
            raise StaleResult(f"Load of {chat_id} superseded (epoch {epoch} < {self._epoch})")

    async def load(self, chat_id: str) -> Optional[ChatHistory]:
        """Replace the cell with ``chat_id``'s stored history.

        Returns the applied history, or None if a newer load or reset won.
        """
        epoch = self._next_epoch()
        self._loading = chat_id
        self._late_updates = {chat_id: self._late_updates.get(chat_id, [])}
        history = await self.backend.get(chat_id)
        try:
            self._check_current(epoch, chat_id)
        except StaleResult as exc:
            logger.debug("Discarding stale load: %s", exc)
            return None

        self._loading = None
        late = self._late_updates.pop(chat_id, [])
        if history is None:
            history = ChatHistory()
        for message_id, fields in late:
            msg = history.messages.get(message_id)
            if msg is not None:
                for name, value in fields.items():
                    setattr(msg, name, value)
        try:
            tree.check(history)
        except TreeCorrupted as exc:
            raise StorageFailure(f"Stored chat {chat_id} is corrupt: {exc}") from exc

        self._chat_id = chat_id
        self.set(history)
        return history

    def reset(self, chat_id: Optional[str], title: str = "") -> ChatHistory:
        """Start ``chat_id`` with an empty history, superseding pending loads."""
        self._next_epoch()
        self._loading = None
        self._late_updates.clear()
        self._chat_id = chat_id
        self.set(ChatHistory(title=title))
        return self._value

    # ----------------------------
    # Persistence
    # ----------------------------
    async def persist(self) -> Optional[ChatMeta]:
        """Write the whole current history for the loaded chat. Last write wins."""
        if self._chat_id is None:
            return None
        return await self._put(self._chat_id, self._value)

    async def _put(self, chat_id: str, history: ChatHistory) -> ChatMeta:
        meta = await self.backend.put(chat_id, history)
        for callback in list(self.on_persist):
            callback(meta)
        return meta

    async def _commit(self) -> Optional[ChatMeta]:
        self._notify()
        return await self.persist()

    # ----------------------------
    # Tree mutations (notify, then persist)
    # ----------------------------
    async def append(self, parent_id: Optional[str], message: Message) -> str:
        message_id = self.tree.append(parent_id, message)
        await self._commit()
        return message_id

    async def send(self, user_message: Message, reply: Message) -> Tuple[str, str]:
        """Append a user turn at the tip plus the reply placeholder under it, in one write."""
        user_id = self.tree.append(self._value.current_id, user_message)
        reply_id = self.tree.append(user_id, reply)
        await self._commit()
        return user_id, reply_id

    async def edit(self, message_id: str, new_content: str) -> str:
        new_id = self.tree.edit(message_id, new_content)
        await self._commit()
        return new_id

    async def set_current(self, message_id: Optional[str]) -> None:
        self.tree.set_current(message_id)
        await self._commit()

    async def switch_branch(self, message_id: str) -> str:
        tip = self.tree.switch_branch(message_id)
        await self._commit()
        return tip

    async def update_message(self, chat_id: str, message_id: str, **fields) -> Message:
        """Set status fields (``done``, ``error``, ``content``) on an in-flight message.

        A reply can finish after the user switched chats; in that case the
        stored copy of ``chat_id`` is updated and the selected chat is left alone.
        """
        if chat_id == self._chat_id:
            msg = self.tree.get(message_id)
            for name, value in fields.items():
                setattr(msg, name, value)
            await self._commit()
            return msg

        # A load of this chat may be reading the old copy right now.
        self._remember_late_update(chat_id, message_id, fields)
        history = await self.backend.get(chat_id)
        if history is None:
            raise NotFound(f"Chat not found: {chat_id}")
        msg = MessageTree(history).get(message_id)
        for name, value in fields.items():
            setattr(msg, name, value)
        await self._put(chat_id, history)
        self._remember_late_update(chat_id, message_id, fields)

        if chat_id == self._chat_id:
            # The chat was selected while the write ran.
            live = self._value.messages.get(message_id)
            if live is not None:
                for name, value in fields.items():
                    setattr(live, name, value)
                await self._commit()
        return msg

    def _remember_late_update(self, chat_id: str, message_id: str, fields: Dict[str, Any]) -> None:
        if chat_id == self._loading:
            self._late_updates.setdefault(chat_id, []).append((message_id, dict(fields)))

    async def rename(self, title: str) -> Optional[ChatMeta]:
        self._value.title = title
        return await self._commit()

    def transcript(self) -> List[Message]:
        return self.tree.linearize(self._value.current_id)
