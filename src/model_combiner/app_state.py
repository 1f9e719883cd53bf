from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from loguru import logger

from model_combiner.conversation import ConversationState
from model_combiner.models import Model, Preferences

LEVEL_ERROR = "error"
LEVEL_SUCCESS = "success"


@dataclass(frozen=True)
class Notice:
    level: str
    message: str


class Notifier:
    """Single user-visible channel for errors and confirmations."""

    def __init__(self) -> None:
        self._listeners: list[Callable[[Notice], None]] = []
        self._last: Notice | None = None

    @property
    def last(self) -> Notice | None:
        return self._last

    def subscribe(self, listener: Callable[[Notice], None]) -> None:
        self._listeners.append(listener)

    def error(self, message: str) -> None:
        logger.warning(message)
        self._publish(Notice(LEVEL_ERROR, message))

    def success(self, message: str) -> None:
        logger.info(message)
        self._publish(Notice(LEVEL_SUCCESS, message))

    def clear(self) -> None:
        self._last = None

    def _publish(self, notice: Notice) -> None:
        self._last = notice
        for listener in self._listeners:
            listener(notice)


@dataclass
class AppState:
    api_key: str | None = None
    api_key_valid: bool = False
    available_models: list[Model] = field(default_factory=list)
    selected_models: list[str] = field(default_factory=list)
    preferences: Preferences = field(default_factory=Preferences)
    conversations: list[dict] = field(default_factory=list)
    conversation: ConversationState = field(default_factory=ConversationState)
    is_loading_models: bool = False
    is_generating: bool = False
    notifier: Notifier = field(default_factory=Notifier)
