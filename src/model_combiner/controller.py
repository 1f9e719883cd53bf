from __future__ import annotations

import sqlite3

from loguru import logger

from model_combiner.app_state import AppState
from model_combiner.conversation import PHASE_EMPTY
from model_combiner.dispatcher import DispatchRejected, FanOutDispatcher
from model_combiner.models import DispatchRound, Message
from model_combiner.provider import CompletionGateway
from model_combiner.retry import RetryCoordinator
from model_combiner.storage import ImportRejected, StateStore


class AppController:
    """User-facing operations over the shared AppState.

    All state changes go through these methods; the dispatcher and retry
    coordinator receive the same AppState by reference.
    """

    def __init__(
        self,
        gateway: CompletionGateway,
        store: StateStore,
        state: AppState | None = None,
        *,
        auto_load_recent: bool = True,
    ):
        self._gateway = gateway
        self._store = store
        self.state = state or AppState()
        self._auto_load_recent = auto_load_recent
        self._dispatcher = FanOutDispatcher(gateway, self.state, on_persist=self._persist_current)
        self._retry = RetryCoordinator(gateway, self.state)

    # -- startup --

    async def initialize(self, *, seed_api_key: str | None = None) -> None:
        state = self.state
        api_key = self._store.get_api_key() or seed_api_key
        if api_key:
            state.api_key = api_key
            self._gateway.set_api_key(api_key)
            state.api_key_valid = await self._gateway.validate_credential(api_key)
        await self.load_models()

        state.preferences = self._store.get_preferences()
        state.selected_models = self._store.get_selected_models()
        state.conversations = self._store.get_conversations()

        if self._auto_load_recent and state.conversation.phase == PHASE_EMPTY and state.conversations:
            most_recent = state.conversations[0]
            if most_recent.get("messages"):
                self.load_conversation(most_recent["id"])

    # -- credential and models --

    async def set_api_key(self, api_key: str | None) -> bool:
        state = self.state
        state.api_key = api_key or None
        self._gateway.set_api_key(state.api_key)
        try:
            self._store.save_api_key(state.api_key)
        except sqlite3.Error as ex:
            state.notifier.error(f"Failed to store API key: {ex}")

        if not state.api_key:
            state.api_key_valid = False
            state.available_models = []
            return False

        state.api_key_valid = await self._gateway.validate_credential(state.api_key)
        if state.api_key_valid:
            await self.load_models()
            state.notifier.success("API key validated successfully!")
        else:
            state.notifier.error("Invalid API key")
        return state.api_key_valid

    async def clear_api_key(self) -> None:
        await self.set_api_key(None)

    async def load_models(self) -> None:
        self.state.is_loading_models = True
        try:
            self.state.available_models = await self._gateway.list_models()
        finally:
            self.state.is_loading_models = False

    def set_selected_models(self, model_ids: list[str]) -> None:
        self.state.selected_models = list(dict.fromkeys(model_ids))
        try:
            self._store.save_selected_models(self.state.selected_models)
        except sqlite3.Error as ex:
            self.state.notifier.error(f"Failed to store model selection: {ex}")

    # -- conversations --

    def start_new_conversation(self) -> None:
        self.state.conversation.reset()

    def load_conversation(self, conversation_id: str) -> bool:
        record = self._store.get_conversation(conversation_id)
        if record is None:
            self.state.notifier.error(f"Conversation not found: {conversation_id}")
            return False
        try:
            messages = [Message.from_dict(m) for m in record.get("messages") or []]
        except (KeyError, TypeError, ValueError) as ex:
            self.state.notifier.error(f"Conversation {conversation_id} could not be loaded: {ex}")
            return False
        self.state.conversation.replace_all(
            messages,
            conversation_id=record["id"],
            title=record.get("title"),
            created_at=record.get("created_at"),
        )
        self.state.selected_models = list(record.get("selected_models") or [])
        return True

    def save_current_conversation(self) -> dict | None:
        conversation = self.state.conversation
        if conversation.phase == PHASE_EMPTY:
            return None
        saved = self._store.save_conversation({
            "id": conversation.conversation_id,
            "title": conversation.title,
            "messages": [m.to_dict() for m in conversation.messages],
            "selected_models": self.state.selected_models,
            "created_at": conversation.created_at,
        })
        conversation.mark_persisted(saved["id"], title=saved["title"], created_at=saved["created_at"])
        self.state.conversations = self._store.get_conversations()
        return saved

    def delete_conversation(self, conversation_id: str) -> bool:
        try:
            removed = self._store.delete_conversation(conversation_id)
        except sqlite3.Error as ex:
            self.state.notifier.error(f"Failed to delete conversation: {ex}")
            return False
        self.state.conversations = self._store.get_conversations()
        if self.state.conversation.conversation_id == conversation_id:
            self.start_new_conversation()
        return removed

    # -- preferences --

    def update_preferences(self, updates: dict) -> None:
        try:
            self.state.preferences = self._store.save_preferences(updates)
        except ValueError as ex:
            self.state.notifier.error(str(ex))
        except sqlite3.Error as ex:
            self.state.notifier.error(f"Failed to store preferences: {ex}")

    # -- completions --

    async def submit(self, prompt_text: str) -> DispatchRound | None:
        try:
            return await self._dispatcher.dispatch(prompt_text)
        except DispatchRejected as ex:
            self.state.notifier.error(str(ex))
            return None

    async def retry(self, message_id: str) -> bool:
        retried = await self._retry.retry(message_id)
        if not retried:
            self.state.notifier.error("Message not found or cannot be retried")
            return False
        if self.state.preferences.auto_save:
            self._persist_current()
        return True

    def resolve_message_id(self, prefix: str) -> str | None:
        matches = self.state.conversation.find_by_prefix(prefix)
        if len(matches) == 1:
            return matches[0].id
        if len(matches) > 1:
            self.state.notifier.error(f"Message id prefix {prefix!r} is ambiguous")
        return None

    # -- export / import --

    def export_data(self) -> dict:
        return self._store.export_data()

    def import_data(self, document: object) -> bool:
        try:
            self._store.import_data(document)
        except ImportRejected as ex:
            self.state.notifier.error(f"Failed to import data: {ex}")
            return False
        except sqlite3.Error as ex:
            self.state.notifier.error(f"Failed to import data: {ex}")
            return False
        self.state.conversations = self._store.get_conversations()
        self.state.preferences = self._store.get_preferences()
        self.state.selected_models = self._store.get_selected_models()
        self.state.notifier.success("Data imported successfully!")
        return True

    def storage_info(self) -> dict:
        return self._store.get_storage_info()

    def clear_all_conversations(self) -> bool:
        try:
            self._store.clear_all_conversations()
        except sqlite3.Error as ex:
            self.state.notifier.error(f"Failed to clear conversations: {ex}")
            return False
        self.state.conversations = []
        self.start_new_conversation()
        return True

    def clear_all_data(self) -> bool:
        try:
            self._store.clear_all_data()
        except sqlite3.Error as ex:
            self.state.notifier.error(f"Failed to clear data: {ex}")
            return False
        self.state.api_key = None
        self.state.api_key_valid = False
        self._gateway.set_api_key(None)
        self.state.conversations = []
        self.state.selected_models = []
        self.state.preferences = self._store.get_preferences()
        self.start_new_conversation()
        return True

    def _persist_current(self) -> None:
        try:
            self.save_current_conversation()
        except sqlite3.Error as ex:
            logger.error(f"Saving conversation failed: {ex}")
            self.state.notifier.error(f"Failed to save conversation: {ex}")
