from __future__ import annotations

import dataclasses
from collections.abc import Callable

from loguru import logger

from model_combiner.models import ROLE_USER, Message

PHASE_EMPTY = "empty"
PHASE_ACTIVE = "active"
PHASE_PERSISTED = "persisted"

# (event, message) where event is "appended", "updated" or "reset"
ConversationListener = Callable[[str, Message | None], None]


class ConversationState:
    """Ordered messages of the active conversation.

    Every mutation happens synchronously between awaits, so concurrently
    resolving requests never interleave inside one update.
    """

    def __init__(self) -> None:
        self._messages: list[Message] = []
        self._conversation_id: str | None = None
        self._title: str | None = None
        self._created_at: str | None = None
        self._epoch = 0
        self._listeners: list[ConversationListener] = []

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def conversation_id(self) -> str | None:
        return self._conversation_id

    @property
    def title(self) -> str | None:
        return self._title

    @property
    def created_at(self) -> str | None:
        return self._created_at

    @property
    def epoch(self) -> int:
        """Incremented whenever the active conversation is swapped out."""
        return self._epoch

    @property
    def phase(self) -> str:
        if not self._messages:
            return PHASE_EMPTY
        if self._conversation_id is not None:
            return PHASE_PERSISTED
        return PHASE_ACTIVE

    def subscribe(self, listener: ConversationListener) -> None:
        self._listeners.append(listener)

    def get(self, message_id: str) -> Message | None:
        for message in self._messages:
            if message.id == message_id:
                return message
        return None

    def find_by_prefix(self, prefix: str) -> list[Message]:
        prefix = prefix.strip()
        if not prefix:
            return []
        return [m for m in self._messages if m.id.startswith(prefix)]

    def preceding_user_message(self, message_id: str) -> Message | None:
        last_user: Message | None = None
        for message in self._messages:
            if message.id == message_id:
                return last_user
            if message.role == ROLE_USER:
                last_user = message
        return None

    def append_message(self, message: Message) -> None:
        if self.get(message.id) is not None:
            raise ValueError(f"Message already exists: {message.id}")
        self._messages.append(message)
        self._notify("appended", message)

    def update_message(self, message_id: str, **changes) -> bool:
        for index, message in enumerate(self._messages):
            if message.id == message_id:
                updated = dataclasses.replace(message, **changes)
                self._messages[index] = updated
                self._notify("updated", updated)
                return True
        logger.debug(f"Ignoring update for unknown message {message_id}")
        return False

    def replace_all(
        self,
        messages: list[Message],
        *,
        conversation_id: str | None = None,
        title: str | None = None,
        created_at: str | None = None,
    ) -> None:
        self._messages = list(messages)
        self._conversation_id = conversation_id
        self._title = title
        self._created_at = created_at
        self._epoch += 1
        self._notify("reset", None)

    def reset(self) -> None:
        self.replace_all([])

    def mark_persisted(self, conversation_id: str, *, title: str, created_at: str) -> None:
        self._conversation_id = conversation_id
        self._title = title
        self._created_at = created_at

    def _notify(self, event: str, message: Message | None) -> None:
        for listener in self._listeners:
            try:
                listener(event, message)
            except Exception as ex:
                logger.warning(f"Conversation listener failed on {event}: {ex}")
