"""Branching message tree operations.

A ChatHistory keeps its messages in a flat mapping of id -> Message; parent
and child links are ids. Editing a message that already has replies never
rewrites it: the edit becomes a sibling branch and the old branch stays
reachable.

Edit policy:
  - leaf message: edited in place, id kept, ``original_content`` recorded once.
  - message with children: forked into a new sibling that becomes the tip.
"""

from __future__ import annotations

import uuid
from typing import List, Optional

from .errors import NotFound, TreeCorrupted
from .models import ChatHistory, Message


class MessageTree:
    """Operations over a ChatHistory. Mutates the wrapped history in place."""

    def __init__(self, history: ChatHistory) -> None:
        self.history = history

    @property
    def messages(self):
        return self.history.messages

    def get(self, message_id: str) -> Message:
        msg = self.messages.get(message_id)
        if msg is None:
            raise NotFound(f"Message not found: {message_id}")
        return msg

    def _new_id(self) -> str:
        new_id = str(uuid.uuid4())
        while new_id in self.messages:
            new_id = str(uuid.uuid4())
        return new_id

    # ----------------------------
    # Mutations
    # ----------------------------
    def append(self, parent_id: Optional[str], message: Message) -> str:
        """Insert ``message`` under ``parent_id`` (or as a new root) and make it the tip."""
        parent = self.get(parent_id) if parent_id is not None else None

        node = message.model_copy(
            deep=True,
            update={"id": self._new_id(), "parent_id": parent_id, "children_ids": []},
        )
        self.messages[node.id] = node
        if parent is not None:
            parent.children_ids.append(node.id)

        self.history.current_id = node.id
        return node.id

    def edit(self, message_id: str, new_content: str) -> str:
        """Edit a message's text. Returns the id now holding ``new_content``."""
        target = self.get(message_id)

        if not target.children_ids:
            if target.original_content is None:
                target.original_content = target.content
            target.edited_content = new_content
            target.content = new_content
            return target.id

        fork = Message(
            role=target.role,
            content=new_content,
            original_content=(
                target.original_content if target.original_content is not None else target.content
            ),
            edited_content=new_content,
            images=list(target.images),
            files=[f.model_copy() for f in target.files],
            model=target.model,
            done=target.done,
        )
        return self.append(target.parent_id, fork)

    def set_current(self, message_id: Optional[str]) -> None:
        if message_id is not None:
            self.get(message_id)
        self.history.current_id = message_id

    def switch_branch(self, message_id: str) -> str:
        """Show the branch through ``message_id``, down to its latest leaf."""
        tip = self.tip_of(message_id)
        self.history.current_id = tip
        return tip

    # ----------------------------
    # Traversal
    # ----------------------------
    def linearize(self, current_id: Optional[str]) -> List[Message]:
        """Root-to-``current_id`` transcript. Pure: never touches the history."""
        if current_id is None:
            return []

        chain: List[Message] = []
        seen = set()
        node: Optional[Message] = self.get(current_id)
        while node is not None:
            if node.id in seen:
                raise TreeCorrupted(f"Cycle through message {node.id}")
            seen.add(node.id)
            chain.append(node)
            if node.parent_id is None:
                break
            node = self.messages.get(node.parent_id)
            if node is None:
                raise TreeCorrupted(f"Dangling parent link in chain to {current_id}")
        chain.reverse()
        return chain

    def roots(self) -> List[str]:
        return [m.id for m in self.messages.values() if m.parent_id is None]

    def siblings(self, message_id: str) -> List[str]:
        """Ids sharing ``message_id``'s parent, itself included, in creation order."""
        msg = self.get(message_id)
        if msg.parent_id is None:
            return self.roots()
        return list(self.get(msg.parent_id).children_ids)

    def tip_of(self, message_id: str) -> str:
        node = self.get(message_id)
        while node.children_ids:
            node = self.get(node.children_ids[-1])
        return node.id


def check(history: ChatHistory) -> None:
    """Raise TreeCorrupted unless every tree invariant holds."""
    messages = history.messages
    for key, msg in messages.items():
        if key != msg.id:
            raise TreeCorrupted(f"Message stored under {key} has id {msg.id}")
        if msg.parent_id is not None:
            parent = messages.get(msg.parent_id)
            if parent is None:
                raise TreeCorrupted(f"Message {key} points at missing parent {msg.parent_id}")
            if key not in parent.children_ids:
                raise TreeCorrupted(f"Parent {msg.parent_id} does not list child {key}")
        if len(set(msg.children_ids)) != len(msg.children_ids):
            raise TreeCorrupted(f"Message {key} lists a child twice")
        for child_id in msg.children_ids:
            child = messages.get(child_id)
            if child is None or child.parent_id != key:
                raise TreeCorrupted(f"Child link {key} -> {child_id} is not reciprocal")

    # With reciprocal links, anything not reachable from a root sits on a cycle.
    seen = set()
    stack = [key for key, msg in messages.items() if msg.parent_id is None]
    while stack:
        key = stack.pop()
        if key in seen:
            raise TreeCorrupted(f"Message {key} is reachable twice")
        seen.add(key)
        stack.extend(messages[key].children_ids)
    if len(seen) != len(messages):
        raise TreeCorrupted(f"{len(messages) - len(seen)} message(s) are not under any root")

    if history.current_id is not None and history.current_id not in messages:
        raise TreeCorrupted(f"currentId {history.current_id} is not in the tree")
