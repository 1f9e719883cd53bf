from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Callable
from uuid import uuid4

from loguru import logger

from model_combiner.models import ROLE_USER, Message, Preferences, utc_now
from model_combiner.storage.kv_store import KeyValueStore

KEY_CONVERSATIONS = "model_combiner.conversations"
KEY_PREFERENCES = "model_combiner.preferences"
KEY_API_KEY = "model_combiner.api_key"
KEY_SELECTED_MODELS = "model_combiner.selected_models"

ALL_KEYS = (KEY_CONVERSATIONS, KEY_PREFERENCES, KEY_API_KEY, KEY_SELECTED_MODELS)

DEFAULT_TITLE = "New Conversation"
_TITLE_MAX_CHARS = 50


class ImportRejected(ValueError):
    pass


def generate_title(messages: list[dict]) -> str:
    for message in messages:
        if message.get("role") == ROLE_USER and message.get("content"):
            content = str(message["content"]).strip()
            if len(content) <= _TITLE_MAX_CHARS:
                return content
            return content[:_TITLE_MAX_CHARS] + "..."
    return DEFAULT_TITLE


def encode_api_key(api_key: str) -> str:
    return base64.b64encode(api_key.encode("utf-8")).decode("ascii")


def decode_api_key(encoded: str) -> str:
    return base64.b64decode(encoded.encode("ascii"), validate=True).decode("utf-8")


class StateStore:
    """Conversations, preferences, credential and model selection on top of a KeyValueStore.

    Values are JSON documents. Reads never raise on corrupt data: they log and
    fall back to the empty default. Writes propagate ``sqlite3.Error`` to the
    caller.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        *,
        max_conversations: int = 100,
        clock: Callable[[], str] = utc_now,
    ):
        self._kv = kv
        self._max_conversations = max(1, max_conversations)
        self._clock = clock

    # -- conversations --

    def save_conversation(self, conversation: dict) -> dict:
        """Insert or update one conversation keyed by its id.

        An update keeps the stored ``created_at``. The collection stays sorted
        by ``last_updated_at`` (newest first) and is trimmed to the cap.
        """
        conversations = self.get_conversations()
        messages = list(conversation.get("messages") or [])
        now = self._clock()
        saved = {
            "id": conversation.get("id") or str(uuid4()),
            "title": conversation.get("title") or generate_title(messages),
            "messages": messages,
            "selected_models": list(conversation.get("selected_models") or []),
            "created_at": conversation.get("created_at") or now,
            "last_updated_at": now,
            "message_count": len(messages),
        }

        existing_index = next(
            (i for i, c in enumerate(conversations) if c.get("id") == saved["id"]),
            None,
        )
        if existing_index is not None:
            saved["created_at"] = conversations[existing_index].get("created_at") or saved["created_at"]
            conversations[existing_index] = saved
        else:
            conversations.insert(0, saved)

        conversations.sort(key=lambda c: str(c.get("last_updated_at", "")), reverse=True)
        self._write_json(KEY_CONVERSATIONS, conversations[: self._max_conversations])
        logger.debug(f"Saved conversation {saved['id']} ({saved['message_count']} messages)")
        return saved

    def get_conversations(self) -> list[dict]:
        conversations = self._read_json(KEY_CONVERSATIONS, [])
        if not isinstance(conversations, list):
            logger.error("Stored conversations are not a list, ignoring them")
            return []
        return [c for c in conversations if isinstance(c, dict)]

    def get_conversation(self, conversation_id: str) -> dict | None:
        for conversation in self.get_conversations():
            if conversation.get("id") == conversation_id:
                return conversation
        return None

    def delete_conversation(self, conversation_id: str) -> bool:
        conversations = self.get_conversations()
        remaining = [c for c in conversations if c.get("id") != conversation_id]
        self._write_json(KEY_CONVERSATIONS, remaining)
        return len(remaining) != len(conversations)

    def clear_all_conversations(self) -> None:
        self._kv.delete(KEY_CONVERSATIONS)

    # -- preferences --

    def save_preferences(self, updates: dict) -> Preferences:
        merged = {**self.get_preferences().to_dict(), **updates}
        preferences = Preferences.from_dict(merged)
        self._write_json(KEY_PREFERENCES, preferences.to_dict())
        return preferences

    def get_preferences(self) -> Preferences:
        stored = self._read_json(KEY_PREFERENCES, None)
        if not isinstance(stored, dict):
            return Preferences()
        try:
            return Preferences.from_dict(stored)
        except ValueError as ex:
            logger.error(f"Stored preferences are invalid, using defaults: {ex}")
            return Preferences()

    # -- credential --

    def save_api_key(self, api_key: str | None) -> None:
        if api_key:
            self._kv.set(KEY_API_KEY, encode_api_key(api_key))
        else:
            self.clear_api_key()

    def get_api_key(self) -> str | None:
        encoded = self._kv.get(KEY_API_KEY)
        if not encoded:
            return None
        try:
            return decode_api_key(encoded)
        except (binascii.Error, UnicodeError) as ex:
            logger.error(f"Error retrieving API key: {ex}")
            return None

    def clear_api_key(self) -> None:
        self._kv.delete(KEY_API_KEY)

    # -- selected models --

    def save_selected_models(self, model_ids: list[str]) -> None:
        self._write_json(KEY_SELECTED_MODELS, list(model_ids))

    def get_selected_models(self) -> list[str]:
        stored = self._read_json(KEY_SELECTED_MODELS, [])
        if not isinstance(stored, list):
            return []
        return [str(m) for m in stored]

    # -- export / import --

    def export_data(self) -> dict:
        return {
            "conversations": self.get_conversations(),
            "preferences": self.get_preferences().to_dict(),
            "selected_models": self.get_selected_models(),
            "exported_at": self._clock(),
        }

    def import_data(self, data: object) -> None:
        """Overwrite stored state with an exported document.

        The whole document is validated first and written in one transaction,
        so a rejected document leaves the store untouched.
        """
        if isinstance(data, (str, bytes)):
            try:
                data = json.loads(data)
            except json.JSONDecodeError as ex:
                raise ImportRejected(f"Import document is not valid JSON: {ex}") from ex
        if not isinstance(data, dict):
            raise ImportRejected("Import document must be a JSON object")

        values: dict[str, str] = {}
        if data.get("conversations") is not None:
            values[KEY_CONVERSATIONS] = json.dumps(_validate_conversations(data["conversations"]))
        if data.get("preferences") is not None:
            preferences = data["preferences"]
            if not isinstance(preferences, dict):
                raise ImportRejected("'preferences' must be an object")
            try:
                values[KEY_PREFERENCES] = json.dumps(Preferences.from_dict(preferences).to_dict())
            except ValueError as ex:
                raise ImportRejected(str(ex)) from ex
        if data.get("selected_models") is not None:
            selected = data["selected_models"]
            if not isinstance(selected, list) or not all(isinstance(m, str) for m in selected):
                raise ImportRejected("'selected_models' must be a list of model ids")
            values[KEY_SELECTED_MODELS] = json.dumps(selected)

        if not values:
            raise ImportRejected("Import document contains no conversations, preferences or selected_models")

        self._kv.set_many(values)
        logger.info(f"Imported {', '.join(sorted(values))}")

    # -- housekeeping --

    def get_storage_info(self) -> dict:
        def size_of(key: str) -> int:
            raw = self._kv.get(key)
            return len(raw.encode("utf-8")) if raw else 0

        return {
            "conversations_size": size_of(KEY_CONVERSATIONS),
            "preferences_size": size_of(KEY_PREFERENCES),
            "selected_models_size": size_of(KEY_SELECTED_MODELS),
            "total_conversations": len(self.get_conversations()),
        }

    def clear_all_data(self) -> None:
        self._kv.delete(*ALL_KEYS)

    def _read_json(self, key: str, default: object) -> object:
        raw = self._kv.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError as ex:
            logger.error(f"Corrupt JSON under {key}: {ex}")
            return default

    def _write_json(self, key: str, value: object) -> None:
        self._kv.set(key, json.dumps(value, ensure_ascii=True))


def _validate_conversations(conversations: object) -> list[dict]:
    if not isinstance(conversations, list):
        raise ImportRejected("'conversations' must be a list")
    for index, conversation in enumerate(conversations):
        if not isinstance(conversation, dict):
            raise ImportRejected(f"Conversation #{index} is not an object")
        if not conversation.get("id"):
            raise ImportRejected(f"Conversation #{index} has no id")
        messages = conversation.get("messages")
        if not isinstance(messages, list):
            raise ImportRejected(f"Conversation {conversation['id']} has no message list")
        for message in messages:
            if not isinstance(message, dict):
                raise ImportRejected(f"Conversation {conversation['id']} contains a non-object message")
            try:
                Message.from_dict(message)
            except (KeyError, TypeError, ValueError) as ex:
                raise ImportRejected(f"Conversation {conversation['id']} has an invalid message: {ex}") from ex
    return conversations
